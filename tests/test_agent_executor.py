from __future__ import annotations

import json
from unittest.mock import AsyncMock

import pytest

from webaccess.access_core.intent.service import detect_intent
from webaccess.access_core.models.interfaces import AcquiredContent, ExtractionAttempt, ExtractionData
from webaccess.agents.executor import AgentExecutor
from webaccess.llm_client import ChatResponse, Usage


class ScriptedChat:
    """Returns queued replies in order; an Exception in the queue is raised instead."""

    def __init__(self, *replies):
        self.replies = list(replies)
        self.calls: list[dict] = []

    async def complete(self, system_prompt, user_prompt, **kwargs):
        self.calls.append({"system": system_prompt, "user": user_prompt, **kwargs})
        reply = self.replies.pop(0)
        if isinstance(reply, Exception):
            raise reply
        return ChatResponse(text=reply, usage=Usage(input_tokens=10, output_tokens=5))


def _action(tool: str, **params) -> str:
    return json.dumps({"thinking": f"use {tool}", "action": {"tool": tool, "params": params}})


def _content(url: str = "https://acme.io/", text: str = "Acme was founded in 1999 by Jane.") -> AcquiredContent:
    return AcquiredContent(url=url, html=f"<p>{text}</p>", text=text, method="http", elapsed_ms=8, success=True)


def _extraction(task: str) -> ExtractionAttempt:
    return ExtractionAttempt(
        success=False,
        data=ExtractionData(text="Acme was founded in 1999 by Jane."),
        what_was_tried=("page_title_extraction", "text_content_extraction"),
        reason="Question-based task requires LLM to answer",
        detected_intent=detect_intent(task),
    )


def _executor(chat, acquisition=None, max_iterations=5) -> AgentExecutor:
    return AgentExecutor(
        chat,
        acquisition or AsyncMock(),
        model="gpt-4o-mini",
        max_iterations=max_iterations,
        crawl4ai_base_url="",
    )


TASK = "Who founded Acme?"


@pytest.mark.asyncio
async def test_complete_on_first_iteration():
    chat = ScriptedChat(_action("complete", result="Jane founded Acme in 1999."))
    result = await _executor(chat).run(TASK, _content(), _extraction(TASK))

    assert result.success
    assert result.text == "Jane founded Acme in 1999."
    assert result.iterations == 1
    assert result.llm_calls == 1
    assert result.sources == ["https://acme.io/"]
    assert result.estimated_cost.startswith("$")
    assert chat.calls[0]["caller"] == "agent_executor"


@pytest.mark.asyncio
async def test_scrape_then_complete_records_scratchpad():
    acquisition = AsyncMock()
    acquisition.acquire.return_value = _content("https://acme.io/about", "About Acme: founded by Jane.")
    chat = ScriptedChat(
        _action("scrape_url", url="https://acme.io/about"),
        _action("complete", result="Jane."),
    )
    result = await _executor(chat, acquisition).run(TASK, _content(), _extraction(TASK))

    assert result.success
    assert result.iterations == 2
    assert result.sources == ["https://acme.io/", "https://acme.io/about"]
    assert len(result.scratchpad) == 1
    assert result.scratchpad[0].action.tool == "scrape_url"
    assert "About Acme" in chat.calls[1]["user"]


@pytest.mark.asyncio
async def test_repeated_scrape_of_same_url_does_not_refetch():
    acquisition = AsyncMock()
    chat = ScriptedChat(
        _action("scrape_url", url="https://acme.io/"),
        _action("scrape_url", url="https://acme.io/"),
        _action("complete", result="Jane."),
    )
    result = await _executor(chat, acquisition).run(TASK, _content(), _extraction(TASK))

    assert result.success
    acquisition.acquire.assert_not_awaited()
    assert all("already_scraped" in entry.result for entry in result.scratchpad)


@pytest.mark.asyncio
async def test_budget_exhaustion_forces_synthesis():
    acquisition = AsyncMock()
    acquisition.acquire.side_effect = lambda url, options=None: _content(url, f"page {url}")
    chat = ScriptedChat(
        *[_action("scrape_url", url=f"https://acme.io/p{i}") for i in range(5)],
        "Jane founded Acme.",
    )
    result = await _executor(chat, acquisition).run(TASK, _content(), _extraction(TASK))

    assert result.success
    assert result.text == "Jane founded Acme."
    assert result.iterations == 5
    assert result.llm_calls == 6
    assert chat.calls[-1]["caller"] == "forced_completion"
    assert "FINAL ITERATION" in chat.calls[4]["user"]


@pytest.mark.asyncio
async def test_empty_complete_triggers_forced_synthesis():
    chat = ScriptedChat(_action("complete", result="   "), "Synthesized answer")
    result = await _executor(chat).run(TASK, _content(), _extraction(TASK))

    assert result.success
    assert result.text == "Synthesized answer"
    assert result.iterations == 1
    assert result.llm_calls == 2


@pytest.mark.asyncio
async def test_forced_synthesis_failure_uses_page_summary():
    chat = ScriptedChat(_action("complete", result=""), RuntimeError("gateway down"))
    result = await _executor(chat).run(TASK, _content(), _extraction(TASK))

    assert result.success
    assert result.text.startswith(f"Task: {TASK}")
    assert "Acme was founded in 1999" in result.text


@pytest.mark.asyncio
async def test_unparseable_reply_is_recorded_and_loop_continues():
    chat = ScriptedChat("no json at all, sorry", _action("complete", result="Jane."))
    result = await _executor(chat).run(TASK, _content(), _extraction(TASK))

    assert result.success
    assert result.iterations == 2
    assert result.scratchpad[0].action.tool == "error"
    assert result.scratchpad[0].result.startswith("Invalid response format")


@pytest.mark.asyncio
async def test_llm_error_mid_loop_fails_the_run():
    chat = ScriptedChat(_action("crawl_links", url="https://acme.io/"), RuntimeError("401 Unauthorized"))
    acquisition = AsyncMock()
    result = await _executor(chat, acquisition).run(TASK, _content(), _extraction(TASK))

    assert not result.success
    assert result.error == "401 Unauthorized"
    assert result.iterations == 1
    assert result.llm_calls == 2


@pytest.mark.asyncio
async def test_tool_error_is_observed_not_fatal():
    chat = ScriptedChat(_action("search_web", query="acme"), _action("complete", result="Jane."))
    result = await _executor(chat).run(TASK, _content(), _extraction(TASK))

    assert result.success
    assert result.scratchpad[0].result == "Error: Unknown tool: search_web"
