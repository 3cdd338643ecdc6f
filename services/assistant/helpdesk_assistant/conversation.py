from __future__ import annotations

import asyncio
import logging
import uuid
from dataclasses import dataclass
from datetime import timedelta
from typing import Any, Protocol, Sequence

from .errors import InvalidInput, MissingSessionId, ModelUnavailable, classify_model_error
from .escalation import EscalationPolicy
from .prompts import (
    CONNECTION_TEST_PROMPT,
    NO_TICKETS_SUMMARY,
    build_messages,
    build_missing_ticket_context,
    build_summary_prompt,
    build_ticket_context,
    extract_ticket_id,
)
from .session_store import SessionStore, Turn
from .tickets import STATUS_ESCALATED, Ticket, TicketRepository

logger = logging.getLogger("assistant.conversation")


class ModelGateway(Protocol):
    async def complete(self, messages: list[dict[str, str]]) -> str: ...


@dataclass(frozen=True)
class ChatResult:
    reply: str
    session_id: str


@dataclass(frozen=True)
class ConnectionStatus:
    success: bool
    message: str


def new_session_id() -> str:
    return uuid.uuid4().hex


class AssistantService:
    """Runs chat turns against the model with per-session history and ticket context."""

    def __init__(
        self,
        gateway: ModelGateway,
        tickets: TicketRepository,
        store: SessionStore,
        escalation: EscalationPolicy | None = None,
        max_message_chars: int = 8000,
        model_timeout_seconds: float | None = 30.0,
        session_max_age: timedelta = timedelta(hours=24),
    ):
        self.gateway = gateway
        self.tickets = tickets
        self.store = store
        self.escalation = escalation or EscalationPolicy()
        self.max_message_chars = max_message_chars
        self.model_timeout_seconds = model_timeout_seconds
        self.session_max_age = session_max_age

    async def handle_chat_turn(self, message: Any, session_id: str | None = None) -> ChatResult:
        message = self._validate_message(message)
        session_id = session_id or new_session_id()

        async with self.store.serialized(session_id):
            referenced = extract_ticket_id(message)
            if referenced is not None:
                self.store.set_active_ticket(session_id, referenced)

            ticket_id = self.store.get_active_ticket(session_id)
            context = await self._ticket_context(ticket_id)
            messages = build_messages(context, self.store.get_history(session_id), message)

            logger.info(
                "Processing chat turn session=%s ticket=%s messages=%s",
                session_id,
                ticket_id,
                len(messages),
            )
            reply = await self._invoke(messages)

            self.store.append_turn(session_id, "user", message)
            self.store.append_turn(session_id, "assistant", reply)

            if self.escalation.should_escalate(reply, ticket_id):
                await self._escalate(ticket_id, session_id)

        return ChatResult(reply=reply, session_id=session_id)

    def clear_chat_history(self, session_id: str | None) -> None:
        if not session_id:
            raise MissingSessionId()
        self.store.clear(session_id)

    def get_chat_history(self, session_id: str | None) -> list[Turn]:
        if not session_id:
            raise MissingSessionId()
        return self.store.get_history(session_id)

    async def summarize_tickets(self, tickets: Sequence[Ticket]) -> str:
        if not tickets:
            return NO_TICKETS_SUMMARY
        prompt = build_summary_prompt(tickets)
        return await self._invoke([{"role": "user", "content": prompt}])

    async def test_connection(self) -> ConnectionStatus:
        try:
            reply = await self._invoke([{"role": "user", "content": CONNECTION_TEST_PROMPT}])
        except ModelUnavailable as exc:
            logger.warning("Model connection test failed: %s", exc.diagnostic())
            return ConnectionStatus(success=False, message=exc.diagnostic())
        return ConnectionStatus(success=True, message=f"Connection successful. Response: {reply}")

    def sweep_sessions(self, max_age: timedelta | None = None) -> int:
        return self.store.sweep(max_age or self.session_max_age)

    def _validate_message(self, message: Any) -> str:
        if message is None or not isinstance(message, str):
            raise InvalidInput("Message is required and must be a string")
        if not message.strip():
            raise InvalidInput("Message cannot be empty")
        if len(message) > self.max_message_chars:
            raise InvalidInput(f"Message too long (max {self.max_message_chars} characters)")
        return message.strip()

    async def _ticket_context(self, ticket_id: int | None) -> str | None:
        if ticket_id is None:
            return None
        ticket = await self.tickets.find_by_id(ticket_id)
        if ticket is None:
            logger.info("Referenced ticket %s not found", ticket_id)
            return build_missing_ticket_context(ticket_id)
        return build_ticket_context(ticket)

    async def _invoke(self, messages: list[dict[str, str]]) -> str:
        try:
            if self.model_timeout_seconds:
                return await asyncio.wait_for(self.gateway.complete(messages), self.model_timeout_seconds)
            return await self.gateway.complete(messages)
        except ModelUnavailable as exc:
            logger.warning("Model call failed (%s): %s", exc.code, exc.diagnostic())
            raise
        except Exception as exc:
            error = classify_model_error(exc)
            logger.warning("Model call failed (%s): %s", error.code, error.diagnostic())
            raise error from exc

    async def _escalate(self, ticket_id: int, session_id: str) -> None:
        try:
            await self.tickets.update_status(ticket_id, STATUS_ESCALATED)
        except Exception as exc:
            logger.warning(
                "Escalation update failed for ticket %s (session %s): %s",
                ticket_id,
                session_id,
                exc,
            )
            return
        logger.info("Escalated ticket %s to a human agent (session %s)", ticket_id, session_id)
