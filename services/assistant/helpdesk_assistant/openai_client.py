from __future__ import annotations

import logging

from openai import AsyncOpenAI

from .errors import AuthError

logger = logging.getLogger("assistant.openai")


class OpenAIClient:
    def __init__(
        self,
        api_key: str,
        chat_model: str,
        temperature: float = 0.7,
        max_tokens: int = 1000,
        client: AsyncOpenAI | None = None,
    ):
        self.api_key = api_key
        self.client = client or (AsyncOpenAI(api_key=api_key) if api_key else None)
        self.chat_model = chat_model
        self.temperature = temperature
        self.max_tokens = max_tokens

    async def complete(self, messages: list[dict[str, str]]) -> str:
        if self.client is None:
            raise AuthError(provider_message="OPENAI_API_KEY is not configured")
        try:
            response = await self.client.chat.completions.create(
                model=self.chat_model,
                messages=messages,
                temperature=self.temperature,
                max_tokens=self.max_tokens,
            )
        except Exception as exc:
            logger.warning("OpenAI chat completion failed: %s", exc)
            raise
        return response.choices[0].message.content or ""
