"""Fixed-window request limiter for the chat route."""
from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Callable

from fastapi import HTTPException

DEFAULT_CHAT_LIMIT = 100  # requests
DEFAULT_CHAT_WINDOW = 15 * 60.0  # seconds


@dataclass
class RateLimitEntry:
    last_reset: float
    count: int


class RateLimiter:
    def __init__(
        self,
        limit: int = DEFAULT_CHAT_LIMIT,
        window: float = DEFAULT_CHAT_WINDOW,
        clock: Callable[[], float] | None = None,
    ):
        self.limit = limit
        self.window = window
        self._clock = clock or time.monotonic
        self._entries: dict[str, RateLimitEntry] = {}

    def check(self, key: str) -> None:
        now = self._clock()
        entry = self._entries.get(key)
        if entry is None or now - entry.last_reset >= self.window:
            entry = RateLimitEntry(last_reset=now, count=0)

        if entry.count >= self.limit:
            raise HTTPException(
                status_code=429,
                detail={
                    "error": "Too many AI requests, please try again later.",
                    "code": "RATE_LIMIT_EXCEEDED",
                    "limit": self.limit,
                    "window_seconds": self.window,
                },
            )

        entry.count += 1
        self._entries[key] = entry
