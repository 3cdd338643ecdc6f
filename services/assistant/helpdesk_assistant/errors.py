from __future__ import annotations

import asyncio

import openai


class AssistantError(Exception):
    code = "ASSISTANT_ERROR"


class InvalidInput(AssistantError):
    code = "INVALID_INPUT"


class MissingSessionId(AssistantError):
    code = "MISSING_SESSION_ID"

    def __init__(self, message: str = "Session ID is required"):
        super().__init__(message)


class ModelUnavailable(AssistantError):
    """The model gateway failed; ``provider_message`` keeps the raw upstream text."""

    code = "MODEL_UNAVAILABLE"
    default_message = "AI service failed"

    def __init__(self, message: str | None = None, provider_message: str | None = None):
        super().__init__(message or self.default_message)
        self.provider_message = provider_message

    def diagnostic(self) -> str:
        if not self.provider_message:
            return str(self)
        return f"{self}: {self.provider_message}"


class RateLimited(ModelUnavailable):
    code = "RATE_LIMITED"
    default_message = "AI quota exceeded. Please try again later."


class AuthError(ModelUnavailable):
    code = "AUTH_ERROR"
    default_message = "Invalid AI provider API key configuration"


class ContentBlocked(ModelUnavailable):
    code = "CONTENT_BLOCKED"
    default_message = "Content blocked by safety filters. Please rephrase your message."


class ModelTimeout(ModelUnavailable):
    code = "TIMEOUT"
    default_message = "Request timeout. Please try again."


def classify_model_error(exc: BaseException) -> ModelUnavailable:
    if isinstance(exc, ModelUnavailable):
        return exc
    text = str(exc) or exc.__class__.__name__

    if isinstance(exc, openai.RateLimitError):
        return RateLimited(provider_message=text)
    if isinstance(exc, openai.AuthenticationError):
        return AuthError(provider_message=text)
    if isinstance(exc, (openai.APITimeoutError, asyncio.TimeoutError)):
        return ModelTimeout(provider_message=text)

    lowered = text.lower()
    if "quota" in lowered:
        return RateLimited(provider_message=text)
    if "api key" in lowered or "api_key" in lowered or "authentication" in lowered:
        return AuthError(provider_message=text)
    if "safety" in lowered or "blocked" in lowered:
        return ContentBlocked(provider_message=text)
    if "timeout" in lowered or "timed out" in lowered:
        return ModelTimeout(provider_message=text)
    return ModelUnavailable(provider_message=text)
