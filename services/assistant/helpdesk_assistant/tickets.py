from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field, replace
from datetime import datetime, timezone
from typing import Any, Protocol

logger = logging.getLogger("assistant.tickets")

TICKET_STATUSES = ("open", "in progress", "closed", "escalated")
TICKET_PRIORITIES = ("low", "medium", "high")
STATUS_ESCALATED = "escalated"


class TicketNotFound(Exception):
    def __init__(self, ticket_id: int):
        super().__init__(f"Ticket {ticket_id} not found")
        self.ticket_id = ticket_id


@dataclass(frozen=True)
class Ticket:
    id: int
    title: str
    description: str
    priority: str
    status: str
    submitter_name: str
    submitter_email: str
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["created_at"] = self.created_at.isoformat()
        return data


class TicketRepository(Protocol):
    async def find_by_id(self, ticket_id: int) -> Ticket | None: ...

    async def update_status(self, ticket_id: int, status: str) -> Ticket: ...

    async def list_all(self, status: str | None = None) -> list[Ticket]: ...


class InMemoryTicketRepository:
    def __init__(self) -> None:
        self._tickets: dict[int, Ticket] = {}
        self._next_id = 1

    async def create(
        self,
        *,
        title: str,
        description: str,
        priority: str,
        submitter_name: str,
        submitter_email: str,
    ) -> Ticket:
        if priority not in TICKET_PRIORITIES:
            raise ValueError(f"Unknown priority: {priority}")
        ticket = Ticket(
            id=self._next_id,
            title=title,
            description=description,
            priority=priority,
            status="open",
            submitter_name=submitter_name,
            submitter_email=submitter_email,
        )
        self._tickets[ticket.id] = ticket
        self._next_id += 1
        logger.info("Created ticket %s priority=%s", ticket.id, priority)
        return ticket

    async def find_by_id(self, ticket_id: int) -> Ticket | None:
        return self._tickets.get(ticket_id)

    async def update_status(self, ticket_id: int, status: str) -> Ticket:
        if status not in TICKET_STATUSES:
            raise ValueError(f"Unknown status: {status}")
        ticket = self._tickets.get(ticket_id)
        if ticket is None:
            raise TicketNotFound(ticket_id)
        updated = replace(ticket, status=status)
        self._tickets[ticket_id] = updated
        logger.info("Ticket %s status %s -> %s", ticket_id, ticket.status, status)
        return updated

    async def list_all(self, status: str | None = None) -> list[Ticket]:
        tickets = sorted(self._tickets.values(), key=lambda t: (t.created_at, t.id), reverse=True)
        if status is not None:
            tickets = [t for t in tickets if t.status == status]
        return tickets


def group_by_status(tickets: list[Ticket]) -> dict[str, list[Ticket]]:
    grouped: dict[str, list[Ticket]] = {status: [] for status in TICKET_STATUSES}
    for ticket in tickets:
        grouped.setdefault(ticket.status, []).append(ticket)
    return grouped
