from __future__ import annotations

import re
from typing import Sequence

from .session_store import Turn
from .tickets import Ticket

_TICKET_REF_RE = re.compile(r"ticket\s*(?:id)?\s*#?\s*(\d+)", re.IGNORECASE)

NO_TICKETS_SUMMARY = "There are currently no tickets to summarize."
CONNECTION_TEST_PROMPT = "Say hello and confirm you are connected to the helpdesk assistant."

_ASSISTANT_ROLE = (
    "You are a helpful support assistant for a helpdesk ticketing system. "
    "Answer the user's questions using the ticket context below. "
    "If the issue cannot be resolved here, tell the user you are escalating this issue to a human agent."
)


def extract_ticket_id(text: str) -> int | None:
    """Return the first integer after ``ticket``, ``ticket id`` or ``ticket #`` in ``text``."""
    match = _TICKET_REF_RE.search(text)
    if not match:
        return None
    return int(match.group(1))


def build_ticket_context(ticket: Ticket) -> str:
    description = (ticket.description or "").strip() or "No description provided."
    return (
        f"{_ASSISTANT_ROLE}\n\n"
        "Ticket Context:\n"
        f"Ticket ID: {ticket.id}\n"
        f"Title: {ticket.title}\n"
        f"Description: {description}\n"
        f"Priority: {ticket.priority}\n"
        f"Status: {ticket.status}\n"
        f"Submitted by: {ticket.submitter_name} ({ticket.submitter_email})"
    )


def build_missing_ticket_context(ticket_id: int) -> str:
    return (
        f"{_ASSISTANT_ROLE}\n\n"
        f"Ticket ID {ticket_id} was not found in the helpdesk system. "
        "Let the user know and ask them to double-check the ticket number."
    )


def build_messages(context: str | None, history: Sequence[Turn], message: str) -> list[dict[str, str]]:
    messages: list[dict[str, str]] = []
    if context:
        messages.append({"role": "system", "content": context})
    for turn in history:
        messages.append({"role": turn.role, "content": turn.content})
    messages.append({"role": "user", "content": message})
    return messages


def build_summary_prompt(tickets: Sequence[Ticket]) -> str:
    lines = []
    for ticket in tickets:
        description = (ticket.description or "").strip() or "No description provided."
        lines.append(
            f"- Ticket #{ticket.id}: {ticket.title}\n"
            f"  Description: {description}\n"
            f"  Priority: {ticket.priority} | Status: {ticket.status}\n"
            f"  Submitted by: {ticket.submitter_name} ({ticket.submitter_email})"
        )
    return (
        "You are a helpdesk analyst. Summarize the following support tickets in a few short paragraphs. "
        "Highlight recurring problems, high-priority or escalated items, and anything that needs attention.\n\n"
        "Tickets:\n" + "\n".join(lines)
    )
