from __future__ import annotations

import asyncio
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest

from webaccess.llm_client import ChatClient, _temperature_for_model


def _openai_stub(create: AsyncMock) -> MagicMock:
    stub = MagicMock()
    stub.chat.completions.create = create
    return stub


def _completion(text: str | None):
    return SimpleNamespace(
        choices=[SimpleNamespace(message=SimpleNamespace(content=text))],
        usage=SimpleNamespace(prompt_tokens=120, completion_tokens=30),
    )


@pytest.mark.asyncio
async def test_complete_sends_system_and_user_messages():
    create = AsyncMock(return_value=_completion("  hello  "))
    client = ChatClient(_openai_stub(create), timeout_seconds=5)

    response = await client.complete("sys", "user", model="gpt-4o-mini", temperature=0.2, max_tokens=50)

    assert response.text == "hello"
    assert response.usage.input_tokens == 120
    assert response.usage.output_tokens == 30
    kwargs = create.await_args.kwargs
    assert kwargs["messages"] == [
        {"role": "system", "content": "sys"},
        {"role": "user", "content": "user"},
    ]
    assert kwargs["temperature"] == 0.2
    assert kwargs["max_tokens"] == 50


@pytest.mark.asyncio
async def test_complete_handles_missing_content():
    client = ChatClient(_openai_stub(AsyncMock(return_value=_completion(None))), timeout_seconds=5)
    response = await client.complete("sys", "user", model="gpt-4o-mini")
    assert response.text == ""


@pytest.mark.asyncio
async def test_complete_reraises_api_errors():
    client = ChatClient(_openai_stub(AsyncMock(side_effect=RuntimeError("rate limited"))), timeout_seconds=5)
    with pytest.raises(RuntimeError, match="rate limited"):
        await client.complete("sys", "user", model="gpt-4o-mini")


@pytest.mark.asyncio
async def test_complete_times_out():
    async def slow(**_kwargs):
        await asyncio.sleep(1)
        return _completion("late")

    client = ChatClient(_openai_stub(AsyncMock(side_effect=slow)), timeout_seconds=0.01)
    with pytest.raises(asyncio.TimeoutError):
        await client.complete("sys", "user", model="gpt-4o-mini")


def test_temperature_for_gpt5_models_is_default():
    assert _temperature_for_model("openai/gpt-5-mini", 0.1) == 1
    assert _temperature_for_model("gpt-4o-mini", 0.1) == 0.1
