"""Prompt assembly and response parsing for the ReAct agent loop."""
from __future__ import annotations

import json
import re
from dataclasses import dataclass, field
from typing import Any

from webaccess.access_core.models.interfaces import (
    AcquiredContent,
    ExtractionAttempt,
    ScratchpadEntry,
    TaskIntent,
    ToolCall,
)
from webaccess.agents.tools import format_tools_for_llm
from webaccess.services.prompt_store import render_prompt

INITIAL_PREVIEW_CHARS = 3000
PAGE_PREVIEW_CHARS = 1000
FORCED_PAGE_CHARS = 2000
SCRATCHPAD_RESULT_CHARS = 500
EXTRACTION_DATA_CHARS = 1000

INTENT_LABELS = {
    "wants_email": "email",
    "wants_phone": "phone",
    "wants_product_list": "products",
    "wants_text_dump": "text",
    "wants_screenshot": "screenshot",
    "wants_download": "download",
    "is_research": "research",
    "is_complex_task": "complex",
    "requires_navigation": "navigation",
    "wants_structured_data": "structured",
    "is_general": "general",
}

_FENCE_RE = re.compile(r"```(?:json)?\s*([\s\S]*?)```", re.IGNORECASE)
_THINKING_RE = re.compile(r"[\"']?thinking[\"']?\s*[:=]\s*[\"']?([^\"'\n]+)", re.IGNORECASE)
_TOOL_RE = re.compile(r"[\"']?tool[\"']?\s*[:=]\s*[\"']?(\w+)", re.IGNORECASE)
_STRING_PARAM_RE = r"[\"']{key}[\"']\s*:\s*\"((?:[^\"\\]|\\.)*)\""
_MAX_PAGES_RE = re.compile(r"[\"']max_pages[\"']\s*:\s*(\d+)")


@dataclass(frozen=True, slots=True)
class ParsedResponse:
    thinking: str
    action: ToolCall
    salvaged: bool = False


@dataclass(frozen=True, slots=True)
class Unparseable:
    reason: str
    raw: str = ""


ParseResult = ParsedResponse | Unparseable


@dataclass
class PromptContext:
    task: str
    iteration: int
    max_iterations: int
    initial_content: AcquiredContent
    extraction: ExtractionAttempt
    scratchpad: list[ScratchpadEntry] = field(default_factory=list)
    accumulated: dict[str, AcquiredContent] = field(default_factory=dict)


def build_system_prompt() -> str:
    return render_prompt("agent.system_prompt", tools=format_tools_for_llm())


def format_intent(intent: TaskIntent) -> str:
    labels = [INTENT_LABELS[flag] for flag in intent.active_flags() if flag in INTENT_LABELS]
    return ", ".join(labels) or "none detected"


def _truncate(text: str, limit: int) -> str:
    return text if len(text) <= limit else text[:limit] + "..."


def build_user_prompt(ctx: PromptContext) -> str:
    parts: list[str] = [f"## TASK\n{ctx.task}"]

    parts.append(f"\n## ITERATION: {ctx.iteration} of {ctx.max_iterations}")
    if ctx.iteration >= ctx.max_iterations:
        parts.append(
            "-> FINAL ITERATION: You MUST call complete() now with your best answer based on available information"
        )
    elif ctx.iteration <= 2:
        parts.append("-> Early stage: Explore and gather information if needed")
    else:
        parts.append("-> Middle stage: Focus on completing the task")

    initial = ctx.initial_content
    parts.append("\n## INITIAL CONTENT")
    parts.append(f"URL: {initial.url}")
    parts.append(f"Method used: {initial.method}")
    parts.append(f"Fetch time: {initial.elapsed_ms}ms")
    if initial.success:
        parts.append(f'\nContent preview:\n"""\n{initial.text[:INITIAL_PREVIEW_CHARS]}\n"""')
        if len(initial.text) > INITIAL_PREVIEW_CHARS:
            parts.append(f"... ({len(initial.text) - INITIAL_PREVIEW_CHARS} more characters)")
    else:
        parts.append(f"Error: {initial.error}")

    extraction = ctx.extraction
    parts.append("\n## PATTERN EXTRACTION ATTEMPT")
    parts.append(f"What was tried: {', '.join(extraction.what_was_tried)}")
    parts.append(f"Result: {'Success' if extraction.success else 'Failed'}")
    parts.append(f"Reason: {extraction.reason}")
    if extraction.data is not None:
        payload = extraction.data.to_dict()
        rendered = json.dumps(payload, indent=2, ensure_ascii=False)
        if len(rendered) < EXTRACTION_DATA_CHARS:
            parts.append(f"Data found:\n{rendered}")
        else:
            parts.append(f"Data found: (large object, {', '.join(payload)})")
    parts.append(f"\nDetected intent: {format_intent(extraction.detected_intent)}")

    if ctx.scratchpad:
        parts.append("\n## PREVIOUS ITERATIONS")
        for entry in ctx.scratchpad:
            parts.append(f"\n### Iteration {entry.iteration}")
            parts.append(f"Thinking: {entry.thinking}")
            parts.append(f"Action: {entry.action.tool}({json.dumps(entry.action.params, ensure_ascii=False)})")
            if entry.result:
                parts.append(f"Result: {_truncate(entry.result, SCRATCHPAD_RESULT_CHARS)}")

    others = [(url, content) for url, content in ctx.accumulated.items() if url != initial.url]
    if others:
        parts.append(f"\n## ALL SCRAPED PAGES ({len(ctx.accumulated)} total)")
        for url, content in others:
            parts.append(f"\n### {url}")
            if content.success:
                parts.append(f"Content: {_truncate(content.text, PAGE_PREVIEW_CHARS)}")
            else:
                parts.append(f"Error: {content.error}")

    parts.append("\n## YOUR TURN")
    parts.append("Think about what you need to do to complete the task, then take action.")
    parts.append("Remember: Respond with valid JSON only.")
    return "\n".join(parts)


def build_forced_completion_prompt(task: str, accumulated: dict[str, AcquiredContent]) -> str:
    parts = [
        f"## TASK\n{task}",
        "\n## MAX ITERATIONS REACHED",
        "You must now provide your best answer based on the information gathered.",
        "\n## INFORMATION GATHERED",
    ]
    for url, content in accumulated.items():
        parts.append(f"\n### {url}")
        if content.success:
            parts.append(content.text[:FORCED_PAGE_CHARS])
        else:
            parts.append(f"(Failed to load: {content.error})")
    parts.append("")
    parts.append(render_prompt("agent.forced_instructions"))
    return "\n".join(parts)


def build_fallback_summary(task: str, accumulated: dict[str, AcquiredContent]) -> str:
    """Non-LLM answer built from page previews; never empty."""
    parts = [f"Task: {task}\n", f"Found information from {len(accumulated)} page(s):\n"]
    for url, content in accumulated.items():
        parts.append(f"\n--- {url} ---")
        if content.success and content.text:
            parts.append(content.text[:FORCED_PAGE_CHARS])
        else:
            parts.append(f"(Could not load: {content.error or 'Unknown error'})")
    return "\n".join(parts)


def _json_candidate(raw: str) -> str:
    text = raw.strip()
    fenced = _FENCE_RE.search(text)
    if fenced:
        return fenced.group(1).strip()
    start, end = text.find("{"), text.rfind("}")
    if start != -1 and end > start:
        return text[start : end + 1]
    return text


def parse_strict(raw: str) -> ParseResult:
    """Parse ``{"thinking", "action": {"tool", "params"}}`` JSON, fenced or bare."""
    try:
        payload: Any = json.loads(_json_candidate(raw))
    except json.JSONDecodeError as exc:
        return Unparseable(reason=f"Invalid JSON: {exc.msg}", raw=raw)

    if not isinstance(payload, dict):
        return Unparseable(reason="Response is not a JSON object", raw=raw)
    action = payload.get("action")
    if not isinstance(action, dict) or not isinstance(action.get("tool"), str) or not action["tool"].strip():
        return Unparseable(reason="Response has no action.tool", raw=raw)

    params = action.get("params")
    thinking = payload.get("thinking")
    return ParsedResponse(
        thinking=thinking.strip() if isinstance(thinking, str) else "",
        action=ToolCall(tool=action["tool"].strip(), params=params if isinstance(params, dict) else {}),
    )


def _salvage_params(raw: str) -> dict[str, Any]:
    params: dict[str, Any] = {}
    for key in ("url", "method", "result"):
        match = re.search(_STRING_PARAM_RE.format(key=key), raw, re.DOTALL)
        if not match:
            continue
        try:
            params[key] = json.loads(f'"{match.group(1)}"')
        except json.JSONDecodeError:
            params[key] = match.group(1)
    max_pages = _MAX_PAGES_RE.search(raw)
    if max_pages:
        params["max_pages"] = int(max_pages.group(1))
    return params


def parse_salvage(raw: str) -> ParseResult:
    """Best-effort regex recovery of the tool name (and simple params) from broken output."""
    tool = _TOOL_RE.search(raw)
    if not tool:
        return Unparseable(reason="No tool name found in response", raw=raw)
    thinking = _THINKING_RE.search(raw)
    return ParsedResponse(
        thinking=thinking.group(1).strip() if thinking else "",
        action=ToolCall(tool=tool.group(1), params=_salvage_params(raw)),
        salvaged=True,
    )


def parse_llm_response(raw: str) -> ParseResult:
    if not raw or not raw.strip():
        return Unparseable(reason="Empty response", raw=raw or "")
    strict = parse_strict(raw)
    if isinstance(strict, ParsedResponse):
        return strict
    salvaged = parse_salvage(raw)
    if isinstance(salvaged, ParsedResponse):
        return salvaged
    return Unparseable(reason=f"{strict.reason}; {salvaged.reason}", raw=raw)
