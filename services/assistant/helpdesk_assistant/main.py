from __future__ import annotations

import logging
import time
from datetime import datetime, timedelta, timezone
from typing import Any, Literal
from uuid import uuid4

from fastapi import Depends, FastAPI, Header, HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field

from .config import Settings, load_settings
from .conversation import AssistantService
from .errors import (
    AssistantError,
    AuthError,
    ContentBlocked,
    InvalidInput,
    MissingSessionId,
    ModelTimeout,
    ModelUnavailable,
    RateLimited,
)
from .escalation import EscalationPolicy
from .openai_client import OpenAIClient
from .rate_limit import RateLimiter
from .session_store import SessionStore
from .tickets import TICKET_STATUSES, InMemoryTicketRepository, TicketNotFound, group_by_status

logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s %(message)s")
logger = logging.getLogger("assistant")

app = FastAPI(title="Helpdesk Assistant", version="0.1.0")

_STATUS_CODES: dict[type[AssistantError], int] = {
    InvalidInput: 400,
    MissingSessionId: 400,
    RateLimited: 429,
    AuthError: 502,
    ContentBlocked: 422,
    ModelTimeout: 504,
    ModelUnavailable: 503,
}

TicketStatus = Literal["open", "in progress", "closed", "escalated"]
TicketPriority = Literal["low", "medium", "high"]


class ChatRequest(BaseModel):
    # Validated by the service so that bad input maps to INVALID_INPUT.
    message: Any = None
    session_id: str | None = Field(default=None, alias="sessionId")


class ChatResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    response: str
    session_id: str = Field(alias="sessionId")
    timestamp: str


class ClearRequest(BaseModel):
    session_id: str | None = Field(default=None, alias="sessionId")


class SweepRequest(BaseModel):
    max_age_hours: float | None = Field(default=None, alias="maxAgeHours", gt=0)


class TicketCreateRequest(BaseModel):
    title: str = Field(min_length=1)
    description: str = ""
    priority: TicketPriority = "low"
    submitter_name: str = Field(alias="submitterName", min_length=1)
    submitter_email: str = Field(alias="submitterEmail", min_length=3)


class TicketStatusRequest(BaseModel):
    status: TicketStatus


def _utc_timestamp() -> str:
    return datetime.now(timezone.utc).isoformat()


@app.on_event("startup")
def on_startup() -> None:
    settings = load_settings()
    app.state.settings = settings
    app.state.tickets = InMemoryTicketRepository()
    app.state.rate_limiter = RateLimiter(limit=settings.chat_rate_limit, window=settings.chat_rate_window_seconds)
    app.state.assistant = AssistantService(
        gateway=OpenAIClient(
            api_key=settings.openai_api_key,
            chat_model=settings.openai_chat_model,
            temperature=settings.openai_temperature,
            max_tokens=settings.openai_max_tokens,
        ),
        tickets=app.state.tickets,
        store=SessionStore(max_turns=settings.max_history_turns),
        escalation=EscalationPolicy(),
        max_message_chars=settings.max_message_chars,
        model_timeout_seconds=settings.model_timeout_seconds,
        session_max_age=timedelta(hours=settings.session_max_age_hours),
    )
    if not settings.openai_api_key:
        logger.warning("OPENAI_API_KEY is not set; assistant replies will fail until it is configured")
    logger.info("Helpdesk assistant started model=%s", settings.openai_chat_model)


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_assistant(request: Request) -> AssistantService:
    return request.app.state.assistant


def get_tickets(request: Request) -> InMemoryTicketRepository:
    return request.app.state.tickets


def enforce_chat_rate_limit(request: Request) -> None:
    client = request.client.host if request.client else "unknown"
    request.app.state.rate_limiter.check(client)


def require_api_key(
    settings: Settings = Depends(get_settings),
    x_api_key: str | None = Header(default=None, alias="x-api-key"),
) -> None:
    if not x_api_key or x_api_key != settings.assistant_api_key:
        raise HTTPException(status_code=401, detail="Unauthorized")


@app.exception_handler(AssistantError)
async def assistant_error_handler(request: Request, exc: AssistantError) -> JSONResponse:
    status_code = next((code for cls, code in _STATUS_CODES.items() if isinstance(exc, cls)), 500)
    body = {"error": str(exc), "code": exc.code, "timestamp": _utc_timestamp()}
    if isinstance(exc, ModelUnavailable) and request.app.state.settings.expose_provider_errors:
        body["details"] = exc.provider_message
    logger.warning("AI error path=%s code=%s error=%s", request.url.path, exc.code, exc)
    return JSONResponse(status_code=status_code, content=body)


@app.middleware("http")
async def add_request_id(request: Request, call_next):
    request_id = request.headers.get("x-request-id", str(uuid4()))
    request.state.request_id = request_id
    start = time.perf_counter()
    response = await call_next(request)
    duration_ms = (time.perf_counter() - start) * 1000
    response.headers["x-request-id"] = request_id
    logger.info(
        "request_id=%s method=%s path=%s status=%s latency_ms=%.1f",
        request_id,
        request.method,
        request.url.path,
        response.status_code,
        duration_ms,
    )
    return response


@app.get("/health")
def health():
    return {"status": "ok"}


@app.post(
    "/ai/chat",
    response_model=ChatResponse,
    dependencies=[Depends(require_api_key), Depends(enforce_chat_rate_limit)],
)
async def chat(payload: ChatRequest, assistant: AssistantService = Depends(get_assistant)):
    result = await assistant.handle_chat_turn(payload.message, payload.session_id)
    return ChatResponse(response=result.reply, session_id=result.session_id, timestamp=_utc_timestamp())


@app.post("/ai/clear", dependencies=[Depends(require_api_key)])
async def clear_history(payload: ClearRequest, assistant: AssistantService = Depends(get_assistant)):
    assistant.clear_chat_history(payload.session_id)
    return {"message": "Conversation history cleared", "sessionId": payload.session_id}


@app.get("/ai/history/{session_id}", dependencies=[Depends(require_api_key)])
async def chat_history(session_id: str, assistant: AssistantService = Depends(get_assistant)):
    history = assistant.get_chat_history(session_id)
    return {
        "history": [
            {"role": turn.role, "content": turn.content, "timestamp": turn.timestamp.isoformat()}
            for turn in history
        ],
        "sessionId": session_id,
        "messageCount": len(history),
    }


@app.post("/ai/summarize", dependencies=[Depends(require_api_key)])
async def summarize(
    assistant: AssistantService = Depends(get_assistant),
    tickets: InMemoryTicketRepository = Depends(get_tickets),
):
    summary = await assistant.summarize_tickets(await tickets.list_all())
    return {"summary": summary}


@app.get("/ai/test", dependencies=[Depends(require_api_key)])
async def check_model_connection(assistant: AssistantService = Depends(get_assistant)):
    status = await assistant.test_connection()
    return {"success": status.success, "message": status.message}


@app.get("/ai/sessions", dependencies=[Depends(require_api_key)])
async def list_sessions(assistant: AssistantService = Depends(get_assistant)):
    sessions = assistant.store.list_session_ids()
    return {"sessions": sessions, "count": len(sessions)}


@app.post("/ai/sessions/sweep", dependencies=[Depends(require_api_key)])
async def sweep_sessions(payload: SweepRequest | None = None, assistant: AssistantService = Depends(get_assistant)):
    max_age = None
    if payload is not None and payload.max_age_hours is not None:
        max_age = timedelta(hours=payload.max_age_hours)
    return {"removed": assistant.sweep_sessions(max_age)}


@app.post("/tickets", status_code=201, dependencies=[Depends(require_api_key)])
async def create_ticket(payload: TicketCreateRequest, tickets: InMemoryTicketRepository = Depends(get_tickets)):
    ticket = await tickets.create(
        title=payload.title.strip(),
        description=payload.description,
        priority=payload.priority,
        submitter_name=payload.submitter_name,
        submitter_email=payload.submitter_email,
    )
    return {"success": True, "ticket": ticket.to_dict()}


@app.get("/tickets", dependencies=[Depends(require_api_key)])
async def list_tickets(status: str | None = None, tickets: InMemoryTicketRepository = Depends(get_tickets)):
    if status is not None and status not in TICKET_STATUSES:
        raise HTTPException(status_code=400, detail=f"Unknown status: {status}")
    return {"tickets": [t.to_dict() for t in await tickets.list_all(status)]}


@app.get("/tickets/dashboard", dependencies=[Depends(require_api_key)])
async def ticket_dashboard(tickets: InMemoryTicketRepository = Depends(get_tickets)):
    grouped = group_by_status(await tickets.list_all())
    return {
        "counts": {status: len(items) for status, items in grouped.items()},
        "tickets": {status: [t.to_dict() for t in items] for status, items in grouped.items()},
    }


@app.get("/tickets/{ticket_id}", dependencies=[Depends(require_api_key)])
async def get_ticket(ticket_id: int, tickets: InMemoryTicketRepository = Depends(get_tickets)):
    ticket = await tickets.find_by_id(ticket_id)
    if ticket is None:
        raise HTTPException(status_code=404, detail="Ticket not found")
    return {"ticket": ticket.to_dict()}


@app.put("/tickets/{ticket_id}/status", dependencies=[Depends(require_api_key)])
async def update_ticket_status(
    ticket_id: int,
    payload: TicketStatusRequest,
    tickets: InMemoryTicketRepository = Depends(get_tickets),
):
    try:
        ticket = await tickets.update_status(ticket_id, payload.status)
    except TicketNotFound:
        raise HTTPException(status_code=404, detail="Ticket not found")
    return {"ticket": ticket.to_dict()}
