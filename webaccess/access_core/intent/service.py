"""Task-intent classification.

Every flag is declared once in ``INTENT_RULES`` as keywords and/or regexes over
the lowercased task; ``detect_intent`` evaluates the table uniformly. Adding a
flag means adding a field to ``TaskIntent`` and a row here.
"""
from __future__ import annotations

import re
from dataclasses import dataclass
from typing import TYPE_CHECKING, get_args

from loguru import logger

from webaccess.access_core.models.interfaces import AssetType, Operation, TaskIntent
from webaccess.services.prompt_store import render_prompt

if TYPE_CHECKING:
    from webaccess.llm_client import ChatClient


@dataclass(frozen=True, slots=True)
class IntentRule:
    flag: str
    keywords: tuple[str, ...] = ()
    patterns: tuple[re.Pattern[str], ...] = ()

    def matches(self, text: str) -> bool:
        return any(keyword in text for keyword in self.keywords) or any(
            pattern.search(text) for pattern in self.patterns
        )


def _rx(*patterns: str) -> tuple[re.Pattern[str], ...]:
    return tuple(re.compile(p) for p in patterns)


INTENT_RULES: tuple[IntentRule, ...] = (
    IntentRule("wants_email", keywords=("email", "e-mail", "contact", "mailto", "mail address")),
    IntentRule("wants_phone", keywords=("phone", "telephone", "call", "mobile", "number")),
    IntentRule(
        "wants_product_list",
        keywords=("product", "item", "catalog", "catalogue", "price", "shop", "store", "buy", "listing"),
    ),
    IntentRule("wants_text_dump", keywords=("text", "content", "article", "read", "extract")),
    IntentRule("wants_screenshot", keywords=("screenshot", "screen shot", "capture", "image of", "picture of")),
    IntentRule("wants_download", keywords=("download", "pdf", "file", "save")),
    IntentRule("wants_pdf", keywords=("pdf", "document")),
    IntentRule("wants_images", keywords=("image", "picture", "photo", "img")),
    IntentRule("wants_csv", keywords=("csv", "spreadsheet", "data file")),
    IntentRule(
        "is_research",
        keywords=(
            "research",
            "learn about",
            "tell me about",
            "information about",
            "details",
            "overview",
            "summary",
        ),
    ),
    IntentRule(
        "is_complex_task",
        patterns=_rx(
            r"\bthen\b",
            r"\bafter\b.*\b(do|get|extract)\b",
            r",.*,",
            r"\bsteps?\s*\d",
            r"\ball\b.*\bfrom\b.*\bpage\b",
        ),
    ),
    IntentRule(
        "requires_navigation",
        keywords=("pagination", "next page", "next button", "follow", "navigate", "click"),
        patterns=_rx(r"\bpage\s+\d+\b", r"\bpages?\s+\d+\s*(to|-)\s*\d+\b"),
    ),
    IntentRule(
        "wants_structured_data",
        patterns=_rx(
            r"\bwith\s+(their|the|its)\b",
            r"\b(and|with)\s+(author|tag|price|name|date|title)s?\b",
            r"\b\d+\s+(quote|item|product|record|result)s?\b",
            r"\ball\s+(quote|item|product|record|result|link)s?\b",
        ),
    ),
)


def detect_intent(task: str) -> TaskIntent:
    text = (task or "").lower().strip()
    flags = {rule.flag: rule.matches(text) for rule in INTENT_RULES}
    flags["is_general"] = not any(flags.values())
    return TaskIntent(**flags)


# --- Operation routing ---

OPERATIONS: tuple[str, ...] = get_args(Operation)

OPERATION_RULES: tuple[tuple[str, tuple[str, ...]], ...] = (
    (
        "screenshot",
        ("screenshot", "screen shot", "capture", "visual", "image of the page", "picture of"),
    ),
    (
        "download_assets",
        (
            "download",
            "get pdf",
            "get the pdf",
            "fetch pdf",
            "save pdf",
            "get image",
            "get all image",
            "save image",
            "get csv",
            "get file",
        ),
    ),
    (
        "run_script",
        (
            "run script",
            "execute script",
            "run javascript",
            "execute javascript",
            "run code",
            "click button",
            "fill form",
            "submit form",
            "interact with",
        ),
    ),
    (
        "crawl",
        (
            "crawl",
            "spider",
            "all pages",
            "entire site",
            "whole site",
            "across the site",
            "from the website",
            "find contact",
            "find email",
            "find phone",
            "list all products",
            "get all products",
            "product catalog",
            "product list",
        ),
    ),
)

_OPERATION_ALIASES = {
    "fetchcontent": "fetch_content",
    "downloadassets": "download_assets",
    "runscript": "run_script",
}


def infer_operation(task: str) -> Operation:
    """Keyword routing; first matching rule wins, default is a single-page fetch."""
    text = (task or "").lower().strip()
    for operation, keywords in OPERATION_RULES:
        if any(keyword in text for keyword in keywords):
            return operation  # type: ignore[return-value]
    return "fetch_content"


def parse_operation(answer: str) -> Operation | None:
    cleaned = (answer or "").strip().strip("`'\".").lower().replace("-", "_").replace(" ", "_")
    cleaned = _OPERATION_ALIASES.get(cleaned, cleaned)
    return cleaned if cleaned in OPERATIONS else None  # type: ignore[return-value]


async def infer_operation_with_llm(task: str, chat: "ChatClient", model: str) -> Operation:
    """Ask the model to pick an operation; keyword routing on any failure."""
    try:
        response = await chat.complete(
            render_prompt("operation.classifier_system_prompt"),
            task,
            model=model,
            temperature=0,
            max_tokens=20,
            caller="operation_classifier",
        )
    except Exception as exc:
        logger.warning(f"Operation classification failed, using keywords: {exc}")
        return infer_operation(task)

    operation = parse_operation(response.text)
    if operation is None:
        logger.info(f"Unrecognized operation '{response.text[:40]}', using keywords")
        return infer_operation(task)
    return operation


def fallback_operations(failed: Operation) -> list[Operation]:
    if failed == "crawl":
        return ["fetch_content"]
    if failed == "fetch_content":
        return ["crawl"]
    return []


def wants_full_page_screenshot(task: str) -> bool:
    text = (task or "").lower()
    return any(cue in text for cue in ("full", "entire", "whole page", "complete page", "all of"))


def asset_type_from_task(task: str) -> AssetType | None:
    text = (task or "").lower()
    if "pdf" in text or "document" in text:
        return "pdf"
    if any(cue in text for cue in ("image", "picture", "photo", "img")):
        return "image"
    if "csv" in text or "spreadsheet" in text:
        return "csv"
    return None


def generate_sub_task(parent_task: str, intent: TaskIntent) -> str:
    """Focused per-page task used while inspecting crawl candidates.

    The wording is chosen so ``detect_intent`` on the sub-task yields
    only the content flags being looked for.
    """
    if intent.wants_email and intent.wants_phone:
        return "Find the email address and phone number on this page."
    if intent.wants_email:
        return "Find the email address on this page."
    if intent.wants_phone:
        return "Find the phone number on this page."
    if intent.wants_product_list:
        return "List the products shown on this page."
    return parent_task
