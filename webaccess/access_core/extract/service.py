from __future__ import annotations

from typing import Callable, TypeVar

from loguru import logger

from webaccess.access_core.extract import patterns
from webaccess.access_core.intent.service import detect_intent
from webaccess.access_core.models.interfaces import (
    AcquiredContent,
    ExtractionAttempt,
    ExtractionData,
    TaskIntent,
)
from webaccess.tools import web_utils

T = TypeVar("T")

TEXT_PREVIEW_CHARS = 5000
PRODUCT_PREVIEW_COUNT = 10


def _safe(step: str, fn: Callable[[], T], empty: T) -> T:
    """Run one extractor; a parse failure counts as nothing found."""
    try:
        return fn()
    except Exception as exc:
        logger.warning(f"{step} failed: {exc}")
        return empty


def _attempt(
    success: bool,
    data: ExtractionData | None,
    tried: list[str],
    reason: str,
    intent: TaskIntent,
) -> ExtractionAttempt:
    return ExtractionAttempt(
        success=success,
        data=data,
        what_was_tried=tuple(tried),
        reason=reason,
        detected_intent=intent,
    )


def try_extract(content: AcquiredContent, task: str) -> ExtractionAttempt:
    """Deterministic extraction guided by the task's intent.

    Every extractor that runs is recorded in ``what_was_tried`` in order. The
    decision precedence is: missing explicitly requested data, tasks that
    always need synthesis, general questions, screenshot/download tasks,
    any data found, and finally a raw-text fallback that still fails.
    """
    intent = detect_intent(task)
    tried: list[str] = []
    data = ExtractionData()
    found = False
    broad = intent.is_research or intent.is_general

    data.title = _safe("page_title_extraction", lambda: web_utils.extract_page_title(content.html), "")
    tried.append("page_title_extraction")

    if intent.wants_email or broad:
        tried.append("email_regex_extraction")
        emails = _safe("email_regex_extraction", lambda: patterns.extract_emails(content.html), [])
        if emails:
            data.emails = emails
            found = True

    if intent.wants_phone or broad:
        tried.append("phone_regex_extraction")
        phones = _safe(
            "phone_regex_extraction",
            lambda: patterns.extract_phones(content.text or web_utils.extract_text_content(content.html)),
            [],
        )
        if phones:
            data.phones = phones
            found = True

    if intent.wants_product_list:
        tried.append("product_dom_extraction")
        products = _safe(
            "product_dom_extraction",
            lambda: patterns.extract_products(content.html, content.url),
            [],
        )
        if products:
            data.products = products
            found = True

    if intent.wants_text_dump:
        tried.append("text_content_extraction")
        text = _safe("text_content_extraction", lambda: web_utils.extract_readable_text(content.html), "")
        if text:
            data.text = text
            found = True

    if broad:
        if "text_content_extraction" not in tried:
            tried.append("text_content_extraction")
        if not data.text:
            data.text = content.text or _safe(
                "text_content_extraction",
                lambda: web_utils.extract_text_content(content.html),
                "",
            )

    partial = data if found else None
    if intent.wants_email and not data.emails:
        return _attempt(False, partial, tried, "No email addresses found in content", intent)
    if intent.wants_phone and not data.phones:
        return _attempt(False, partial, tried, "No phone numbers found in content", intent)
    if intent.wants_product_list and not data.products:
        return _attempt(False, partial, tried, "No products found in content", intent)

    if intent.is_complex_task:
        return _attempt(False, data, tried, "Complex multi-step task requires LLM orchestration", intent)
    if intent.requires_navigation:
        return _attempt(False, data, tried, "Task requires navigation/pagination which needs LLM agent", intent)
    if intent.wants_structured_data:
        return _attempt(False, data, tried, "Structured data extraction with relationships requires LLM", intent)
    if intent.is_research:
        return _attempt(False, data, tried, "Research task requires LLM synthesis of content", intent)
    if intent.is_general and "?" in task:
        return _attempt(False, data, tried, "Question-based task requires LLM to answer", intent)

    if intent.wants_screenshot:
        reason = "Screenshot task requires the browser screenshot operation, not extraction"
        return _attempt(False, None, ["intent_detection"], reason, intent)
    if intent.wants_download:
        reason = "Download task requires asset extraction, not text extraction"
        return _attempt(False, None, ["intent_detection"], reason, intent)

    if found:
        return _attempt(True, data, tried, "Successfully extracted requested data", intent)

    return _attempt(
        False,
        ExtractionData(text=content.text),
        tried,
        "Could not extract specific data, LLM needed for interpretation",
        intent,
    )


def format_extraction_as_text(data: ExtractionData) -> str:
    parts: list[str] = []
    if data.title:
        parts.append(f"Page: {data.title}")
    if data.emails:
        label = "Emails" if len(data.emails) > 1 else "Email"
        parts.append(f"\n{label}: {', '.join(data.emails)}")
    if data.phones:
        label = "Phones" if len(data.phones) > 1 else "Phone"
        parts.append(f"\n{label}: {', '.join(data.phones)}")
    if data.products:
        parts.append(f"\n\nProducts found: {len(data.products)}")
        for index, product in enumerate(data.products[:PRODUCT_PREVIEW_COUNT], start=1):
            price = f" - {product.price}" if product.price else ""
            parts.append(f"{index}. {product.name}{price}")
            parts.append(f"   {product.url}")
        if len(data.products) > PRODUCT_PREVIEW_COUNT:
            parts.append(f"... and {len(data.products) - PRODUCT_PREVIEW_COUNT} more")

    if not data.has_structured_data() and data.text:
        parts.append(data.text[:TEXT_PREVIEW_CHARS])
    return "\n".join(parts)
