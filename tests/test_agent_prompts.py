from __future__ import annotations

from webaccess.access_core.intent.service import detect_intent
from webaccess.access_core.models.interfaces import (
    AcquiredContent,
    ExtractionAttempt,
    ExtractionData,
    ScratchpadEntry,
    ToolCall,
)
from webaccess.agents.prompts import (
    ParsedResponse,
    PromptContext,
    Unparseable,
    build_fallback_summary,
    build_forced_completion_prompt,
    build_system_prompt,
    build_user_prompt,
    parse_llm_response,
)


def _content(url: str = "https://acme.io/", text: str = "Acme builds rockets.", success: bool = True) -> AcquiredContent:
    return AcquiredContent(
        url=url,
        html="<p>x</p>" if success else "",
        text=text if success else "",
        method="http",
        elapsed_ms=40,
        success=success,
        error=None if success else "Page not found (404)",
    )


def _extraction(task: str = "Who founded Acme?") -> ExtractionAttempt:
    return ExtractionAttempt(
        success=False,
        data=ExtractionData(title="Acme"),
        what_was_tried=("page_title_extraction", "email_regex_extraction"),
        reason="Question-based task requires LLM to answer",
        detected_intent=detect_intent(task),
    )


def test_parse_strict_json():
    parsed = parse_llm_response(
        '{"thinking": "Need the about page", "action": {"tool": "scrape_url", "params": {"url": "https://acme.io/about"}}}'
    )
    assert isinstance(parsed, ParsedResponse)
    assert parsed.thinking == "Need the about page"
    assert parsed.action == ToolCall(tool="scrape_url", params={"url": "https://acme.io/about"})
    assert not parsed.salvaged


def test_parse_fenced_json_with_prose():
    raw = 'Sure!\n```json\n{"thinking": "done", "action": {"tool": "complete", "params": {"result": "Founded 1999"}}}\n```'
    parsed = parse_llm_response(raw)
    assert isinstance(parsed, ParsedResponse)
    assert parsed.action.params["result"] == "Founded 1999"


def test_parse_missing_thinking_is_allowed():
    parsed = parse_llm_response('{"action": {"tool": "crawl_links", "params": {"url": "https://acme.io"}}}')
    assert isinstance(parsed, ParsedResponse)
    assert parsed.thinking == ""


def test_parse_salvages_broken_json():
    raw = '{"thinking": "go to contact page", "action": {"tool": "scrape_url", "params": {"url": "https://acme.io/contact", }'
    parsed = parse_llm_response(raw)
    assert isinstance(parsed, ParsedResponse)
    assert parsed.salvaged
    assert parsed.action.tool == "scrape_url"
    assert parsed.action.params["url"] == "https://acme.io/contact"
    assert parsed.thinking == "go to contact page"


def test_parse_unparseable_returns_reason():
    parsed = parse_llm_response("I am not sure what to do here.")
    assert isinstance(parsed, Unparseable)
    assert parsed.reason
    assert isinstance(parse_llm_response(""), Unparseable)


def test_system_prompt_lists_tools():
    prompt = build_system_prompt()
    for tool in ("scrape_url", "crawl_links", "complete"):
        assert tool in prompt
    assert "$tools" not in prompt


def test_user_prompt_sections_and_final_iteration():
    ctx = PromptContext(
        task="Who founded Acme?",
        iteration=5,
        max_iterations=5,
        initial_content=_content(text="A" * 4000),
        extraction=_extraction(),
        scratchpad=[
            ScratchpadEntry(
                iteration=1,
                thinking="look at about",
                action=ToolCall(tool="scrape_url", params={"url": "https://acme.io/about"}),
                result="R" * 900,
            )
        ],
        accumulated={
            "https://acme.io/": _content(),
            "https://acme.io/about": _content("https://acme.io/about", "About us " * 200),
            "https://acme.io/gone": _content("https://acme.io/gone", success=False),
        },
    )
    prompt = build_user_prompt(ctx)

    assert prompt.startswith("## TASK\nWho founded Acme?")
    assert "FINAL ITERATION: You MUST call complete() now" in prompt
    assert "... (1000 more characters)" in prompt
    assert "What was tried: page_title_extraction, email_regex_extraction" in prompt
    assert "Detected intent: general" in prompt
    assert "R" * 500 + "..." in prompt
    assert "R" * 501 not in prompt
    assert "## ALL SCRAPED PAGES (3 total)" in prompt
    assert "Error: Page not found (404)" in prompt


def test_user_prompt_early_stage():
    ctx = PromptContext(
        task="Who founded Acme?",
        iteration=1,
        max_iterations=5,
        initial_content=_content(),
        extraction=_extraction(),
    )
    prompt = build_user_prompt(ctx)
    assert "Early stage" in prompt
    assert "PREVIOUS ITERATIONS" not in prompt
    assert "ALL SCRAPED PAGES" not in prompt


def test_forced_prompt_and_fallback_summary():
    accumulated = {
        "https://acme.io/": _content(),
        "https://acme.io/gone": _content("https://acme.io/gone", success=False),
    }
    forced = build_forced_completion_prompt("Who founded Acme?", accumulated)
    assert "MAX ITERATIONS REACHED" in forced
    assert "Acme builds rockets." in forced
    assert "(Failed to load: Page not found (404))" in forced

    summary = build_fallback_summary("Who founded Acme?", accumulated)
    assert summary.startswith("Task: Who founded Acme?")
    assert "Found information from 2 page(s)" in summary
    assert "Acme builds rockets." in summary
