"""OpenAI-compatible chat client used by the agent and the operation classifier."""
from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from typing import Any

from webaccess.config import settings
from webaccess.services.logger import log_llm_call


@dataclass
class Usage:
    input_tokens: int = 0
    output_tokens: int = 0


@dataclass
class ChatResponse:
    text: str
    usage: Usage


def _temperature_for_model(model: str, requested: float) -> float:
    # Some OpenAI GPT-5-compatible gateways reject anything but the default temperature.
    lowered = (model or "").lower()
    if "gpt-5" in lowered:
        return 1
    return requested


class ChatClient:
    """Single-turn chat completions over any OpenAI-compatible base URL."""

    def __init__(
        self,
        openai_client: Any,
        *,
        timeout_seconds: float | None = None,
    ):
        self._client = openai_client
        self.timeout_seconds = (
            settings.llm_timeout_seconds if timeout_seconds is None else timeout_seconds
        )

    async def complete(
        self,
        system_prompt: str,
        user_prompt: str,
        *,
        model: str,
        temperature: float | None = None,
        max_tokens: int | None = None,
        caller: str = "agent",
    ) -> ChatResponse:
        """Send one system+user exchange and return the assistant text.

        Raises the SDK's API errors and ``asyncio.TimeoutError`` unchanged;
        callers decide whether a failure is fatal.
        """
        kwargs: dict[str, Any] = {
            "model": model,
            "messages": [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_prompt},
            ],
            "max_tokens": settings.llm_max_tokens if max_tokens is None else max_tokens,
            "temperature": _temperature_for_model(
                model,
                settings.llm_temperature if temperature is None else temperature,
            ),
        }

        started = time.monotonic()
        try:
            response = await asyncio.wait_for(
                self._client.chat.completions.create(**kwargs),
                timeout=self.timeout_seconds,
            )
        except Exception as exc:
            log_llm_call(
                model=model,
                caller=caller,
                duration_ms=int((time.monotonic() - started) * 1000),
                status="error",
                error=str(exc) or type(exc).__name__,
            )
            raise

        text = ""
        choices = getattr(response, "choices", None) or []
        if choices:
            message = getattr(choices[0], "message", None)
            text = (getattr(message, "content", None) or "").strip()

        raw_usage = getattr(response, "usage", None)
        usage = Usage(
            input_tokens=getattr(raw_usage, "prompt_tokens", 0) or 0,
            output_tokens=getattr(raw_usage, "completion_tokens", 0) or 0,
        )
        log_llm_call(
            model=model,
            caller=caller,
            input_tokens=usage.input_tokens,
            output_tokens=usage.output_tokens,
            duration_ms=int((time.monotonic() - started) * 1000),
        )
        return ChatResponse(text=text, usage=usage)


def get_client(api_key: str | None = None, base_url: str | None = None) -> ChatClient:
    """Build a chat client against the configured OpenAI-compatible endpoint."""
    from openai import AsyncOpenAI

    resolved_base = (base_url or settings.llm_base_url).strip() or "https://api.openai.com/v1"
    openai_client = AsyncOpenAI(
        api_key=settings.llm_api_key if api_key is None else api_key,
        base_url=resolved_base.rstrip("/"),
    )
    return ChatClient(openai_client)
