import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from helpdesk_assistant.conversation import AssistantService
from helpdesk_assistant.errors import InvalidInput, MissingSessionId, ModelTimeout, ModelUnavailable, RateLimited
from helpdesk_assistant.session_store import SessionStore
from helpdesk_assistant.tickets import InMemoryTicketRepository, Ticket


class FakeGateway:
    def __init__(self, reply="Happy to help.", error=None, delay=0.0):
        self.reply = reply
        self.error = error
        self.delay = delay
        self.calls = []

    async def complete(self, messages):
        self.calls.append(messages)
        if self.delay:
            await asyncio.sleep(self.delay)
        else:
            await asyncio.sleep(0)
        if self.error is not None:
            raise self.error
        return self.reply


class RecordingTickets(InMemoryTicketRepository):
    def __init__(self, fail_updates=False):
        super().__init__()
        self.fail_updates = fail_updates
        self.updates = []

    async def update_status(self, ticket_id, status):
        self.updates.append((ticket_id, status))
        if self.fail_updates:
            raise RuntimeError("database is down")
        return await super().update_status(ticket_id, status)


def _service(gateway=None, tickets=None, store=None, **kwargs):
    return AssistantService(
        gateway=gateway or FakeGateway(),
        tickets=tickets or RecordingTickets(),
        store=store or SessionStore(),
        **kwargs,
    )


def _seed(tickets, count):
    for n in range(count):
        asyncio.run(
            tickets.create(
                title=f"Issue {n + 1}",
                description="",
                priority="medium",
                submitter_name="Lee",
                submitter_email="lee@example.com",
            )
        )


def test_new_sessions_get_distinct_ids():
    service = _service()
    first = asyncio.run(service.handle_chat_turn("hello"))
    second = asyncio.run(service.handle_chat_turn("hello"))
    assert first.session_id
    assert second.session_id
    assert first.session_id != second.session_id
    assert first.reply == "Happy to help."


@pytest.mark.parametrize("message", [None, 42, "", "   ", "x" * 8001])
def test_invalid_input_has_no_side_effects(message):
    gateway = FakeGateway()
    service = _service(gateway=gateway)
    with pytest.raises(InvalidInput):
        asyncio.run(service.handle_chat_turn(message, "s1"))
    assert gateway.calls == []
    assert service.store.list_session_ids() == []


def test_message_at_limit_is_accepted():
    service = _service()
    result = asyncio.run(service.handle_chat_turn("x" * 8000, "s1"))
    assert result.session_id == "s1"


def test_ticket_status_scenario():
    gateway = FakeGateway(reply="Ticket 7 is open.")
    tickets = RecordingTickets()
    _seed(tickets, 7)
    service = _service(gateway=gateway, tickets=tickets)

    result = asyncio.run(service.handle_chat_turn("What's the status of ticket 7?", "s1"))

    sent = gateway.calls[0]
    assert len(sent) == 2
    assert sent[0]["role"] == "system"
    assert "Ticket ID: 7" in sent[0]["content"]
    assert "Status: open" in sent[0]["content"]
    assert sent[1] == {"role": "user", "content": "What's the status of ticket 7?"}
    assert [t.role for t in service.get_chat_history("s1")] == ["user", "assistant"]
    assert result.reply == "Ticket 7 is open."


def test_active_ticket_persists_to_next_turn():
    gateway = FakeGateway()
    tickets = RecordingTickets()
    _seed(tickets, 3)
    service = _service(gateway=gateway, tickets=tickets)

    asyncio.run(service.handle_chat_turn("Ticket ID #3 please", "s1"))
    asyncio.run(service.handle_chat_turn("and who opened it?", "s1"))

    assert service.store.get_active_ticket("s1") == 3
    second = gateway.calls[1]
    assert "Ticket ID: 3" in second[0]["content"]
    assert [m["role"] for m in second] == ["system", "user", "assistant", "user"]


def test_new_reference_overwrites_binding():
    service = _service()
    asyncio.run(service.handle_chat_turn("ticket 1", "s1"))
    asyncio.run(service.handle_chat_turn("actually ticket#2", "s1"))
    assert service.store.get_active_ticket("s1") == 2


def test_missing_ticket_is_not_an_error():
    gateway = FakeGateway()
    service = _service(gateway=gateway)

    result = asyncio.run(service.handle_chat_turn("ticket 999", "s1"))

    assert result.reply
    assert "Ticket ID 999 was not found" in gateway.calls[0][0]["content"]


def test_no_context_without_ticket():
    gateway = FakeGateway()
    service = _service(gateway=gateway)
    asyncio.run(service.handle_chat_turn("hello", "s1"))
    assert gateway.calls[0] == [{"role": "user", "content": "hello"}]


def test_failed_model_call_leaves_history_untouched():
    service = _service(gateway=FakeGateway(error=RuntimeError("quota exhausted")))
    with pytest.raises(RateLimited):
        asyncio.run(service.handle_chat_turn("hello", "s1"))
    assert service.get_chat_history("s1") == []


def test_generic_failure_keeps_provider_text():
    service = _service(gateway=FakeGateway(error=RuntimeError("connection reset")))
    with pytest.raises(ModelUnavailable) as excinfo:
        asyncio.run(service.handle_chat_turn("hello", "s1"))
    assert excinfo.value.provider_message == "connection reset"


def test_model_deadline():
    service = _service(gateway=FakeGateway(delay=1.0), model_timeout_seconds=0.01)
    with pytest.raises(ModelTimeout):
        asyncio.run(service.handle_chat_turn("hello", "s1"))
    assert service.get_chat_history("s1") == []


def test_escalation_updates_bound_ticket_once():
    tickets = RecordingTickets()
    _seed(tickets, 5)
    gateway = FakeGateway(reply="Sorry, I'm Escalating This Issue To A Human agent.")
    service = _service(gateway=gateway, tickets=tickets)

    asyncio.run(service.handle_chat_turn("ticket 5 is still broken", "s1"))

    assert tickets.updates == [(5, "escalated")]
    assert asyncio.run(tickets.find_by_id(5)).status == "escalated"


def test_escalation_without_ticket_does_nothing():
    tickets = RecordingTickets()
    service = _service(gateway=FakeGateway(reply="I am escalating this issue to a human."), tickets=tickets)
    asyncio.run(service.handle_chat_turn("everything is broken", "s1"))
    assert tickets.updates == []


def test_escalation_failure_does_not_fail_turn():
    tickets = RecordingTickets(fail_updates=True)
    _seed(tickets, 1)
    service = _service(gateway=FakeGateway(reply="escalating this issue to a human"), tickets=tickets)

    result = asyncio.run(service.handle_chat_turn("ticket 1", "s1"))

    assert result.reply == "escalating this issue to a human"
    assert tickets.updates == [(1, "escalated")]
    assert len(service.get_chat_history("s1")) == 2


def test_turns_on_one_session_are_serialized():
    gateway = FakeGateway(delay=0.01)
    service = _service(gateway=gateway)

    async def run_both():
        await asyncio.gather(
            service.handle_chat_turn("first", "s1"),
            service.handle_chat_turn("second", "s1"),
        )

    asyncio.run(run_both())

    assert sorted(len(call) for call in gateway.calls) == [1, 3]
    assert len(service.get_chat_history("s1")) == 4


def test_clear_and_history_require_session_id():
    service = _service()
    with pytest.raises(MissingSessionId):
        service.clear_chat_history("")
    with pytest.raises(MissingSessionId):
        service.get_chat_history(None)


def test_clear_resets_history_and_binding():
    service = _service()
    asyncio.run(service.handle_chat_turn("ticket 4", "s1"))
    service.clear_chat_history("s1")
    assert service.get_chat_history("s1") == []
    assert service.store.get_active_ticket("s1") is None


def test_summarize_empty_skips_model():
    gateway = FakeGateway()
    service = _service(gateway=gateway)
    assert asyncio.run(service.summarize_tickets([])) == "There are currently no tickets to summarize."
    assert gateway.calls == []


def test_summarize_sends_one_prompt():
    gateway = FakeGateway(reply="Two open issues.")
    service = _service(gateway=gateway)
    tickets = [
        Ticket(id=1, title="A", description="", priority="low", status="open", submitter_name="x", submitter_email="x@y.z"),
        Ticket(id=2, title="B", description="d", priority="high", status="open", submitter_name="y", submitter_email="y@y.z"),
    ]
    assert asyncio.run(service.summarize_tickets(tickets)) == "Two open issues."
    assert len(gateway.calls) == 1
    assert "Ticket #2: B" in gateway.calls[0][0]["content"]


def test_connection_check_reports_success_and_failure():
    ok = asyncio.run(_service(gateway=FakeGateway(reply="hello")).test_connection())
    assert ok.success is True
    assert "hello" in ok.message

    failed = asyncio.run(_service(gateway=FakeGateway(error=RuntimeError("Invalid API key"))).test_connection())
    assert failed.success is False
    assert "Invalid API key" in failed.message


def test_sweep_sessions_uses_default_age():
    now = [datetime(2024, 1, 1, tzinfo=timezone.utc)]
    service = _service(store=SessionStore(clock=lambda: now[0]), session_max_age=timedelta(hours=1))
    asyncio.run(service.handle_chat_turn("hello", "s1"))

    now[0] += timedelta(minutes=30)
    assert service.sweep_sessions() == 0
    assert service.sweep_sessions(timedelta(minutes=10)) == 1
    assert service.get_chat_history("s1") == []


class OverlapGateway:
    def __init__(self):
        self.active = 0
        self.max_active = 0

    async def complete(self, messages):
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        await asyncio.sleep(0.01)
        self.active -= 1
        return "ok"


def test_failed_turns_do_not_leave_locks_behind():
    service = _service(gateway=FakeGateway(error=RuntimeError("upstream down")))

    async def run():
        for _ in range(100):
            with pytest.raises(ModelUnavailable):
                await service.handle_chat_turn("hello")

    asyncio.run(run())

    assert service.store.in_flight_sessions() == []
    assert service.store.list_session_ids() == []


def test_clear_while_turn_is_queued_keeps_turns_serialized():
    gateway = OverlapGateway()
    service = _service(gateway=gateway)

    async def run():
        first = asyncio.create_task(service.handle_chat_turn("first", "s1"))
        await asyncio.sleep(0)
        queued = asyncio.create_task(service.handle_chat_turn("queued", "s1"))
        await first
        service.clear_chat_history("s1")
        late = asyncio.create_task(service.handle_chat_turn("late", "s1"))
        await asyncio.gather(queued, late)

    asyncio.run(run())

    assert gateway.max_active == 1
    assert service.store.in_flight_sessions() == []
