from __future__ import annotations

ESCALATION_PHRASE = "escalating this issue to a human"


class EscalationPolicy:
    def __init__(self, phrase: str = ESCALATION_PHRASE):
        self.phrase = phrase.lower()

    def is_escalation(self, reply: str) -> bool:
        return self.phrase in (reply or "").lower()

    def should_escalate(self, reply: str, ticket_id: int | None) -> bool:
        return ticket_id is not None and self.is_escalation(reply)
