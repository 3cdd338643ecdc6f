from dataclasses import dataclass
import os


def _get_env(name: str, default: str | None = None, required: bool = False) -> str:
    value = os.getenv(name)
    if value is None or value.strip() == "":
        if default is not None:
            return default
        if required:
            raise ValueError(f"{name} is required")
        return ""
    return value


def _get_bool(name: str, default: str = "false") -> bool:
    return _get_env(name, default).strip().lower() in ("1", "true", "yes", "on")


@dataclass(frozen=True)
class Settings:
    openai_api_key: str
    openai_chat_model: str
    openai_temperature: float
    openai_max_tokens: int
    assistant_api_key: str
    max_message_chars: int
    max_history_turns: int
    model_timeout_seconds: float
    session_max_age_hours: float
    expose_provider_errors: bool
    chat_rate_limit: int
    chat_rate_window_seconds: float


def load_settings() -> Settings:
    return Settings(
        openai_api_key=_get_env("OPENAI_API_KEY", ""),
        openai_chat_model=_get_env("OPENAI_CHAT_MODEL", "gpt-4o-mini"),
        openai_temperature=float(_get_env("OPENAI_TEMPERATURE", "0.7")),
        openai_max_tokens=int(_get_env("OPENAI_MAX_TOKENS", "1000")),
        assistant_api_key=_get_env("ASSISTANT_API_KEY", required=True),
        max_message_chars=int(_get_env("MAX_MESSAGE_CHARS", "8000")),
        max_history_turns=int(_get_env("MAX_HISTORY_TURNS", "20")),
        model_timeout_seconds=float(_get_env("MODEL_TIMEOUT_SECONDS", "30")),
        session_max_age_hours=float(_get_env("SESSION_MAX_AGE_HOURS", "24")),
        expose_provider_errors=_get_bool("EXPOSE_PROVIDER_ERRORS"),
        chat_rate_limit=int(_get_env("CHAT_RATE_LIMIT", "100")),
        chat_rate_window_seconds=float(_get_env("CHAT_RATE_WINDOW_SECONDS", "900")),
    )
