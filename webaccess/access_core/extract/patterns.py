"""Regex and DOM heuristics for emails, phone numbers and product cards."""
from __future__ import annotations

import html as html_lib
import re
from urllib.parse import unquote, urljoin

from bs4 import BeautifulSoup

from webaccess.access_core.models.interfaces import ProductSummary
from webaccess.config import settings

EMAIL_RE = re.compile(r"[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}")
MAILTO_RE = re.compile(r"mailto:([^\"'\s<>]+)", re.IGNORECASE)
PHONE_RE = re.compile(r"(?<!\d)(?:\+?[1-9]\d{0,2}[-.\s]?)?(?:\(?\d{2,4}\)?[-.\s]?)?\d{3,4}[-.\s]?\d{3,4}(?!\d)")

_AT_RE = re.compile(r"\s*[\[\(\{]\s*at\s*[\]\)\}]\s*", re.IGNORECASE)
_DOT_RE = re.compile(r"\s*[\[\(\{]\s*dot\s*[\]\)\}]\s*", re.IGNORECASE)
_SPACED_AT_RE = re.compile(r"(?<=[\w.+-])\s+@\s*(?=[\w-])|(?<=[\w.+-])\s*@\s+(?=[\w-])")
_PHONE_FORMATTING_RE = re.compile(r"[-.\s()]")

_IMAGE_EXT = r"(?:png|jpe?g|gif|webp|svg|avif|bmp)"
JUNK_EMAIL_PATTERNS = tuple(
    re.compile(p, re.IGNORECASE)
    for p in (
        r"^[a-f0-9]{32,}@",  # hashed local parts
        r"@example\.com$",
        r"@test\.com$",
        r"@localhost$",
        r"no-?reply@",
        r"@sentry\.",
        r"@wixpress\.com$",
        rf"\.{_IMAGE_EXT}@",
        rf"@.*\.{_IMAGE_EXT}$",
    )
)

PRODUCT_SELECTORS = (
    '[class*="product"]',
    '[class*="item"]',
    '[class*="card"]',
    "[data-product]",
    "[data-item]",
    "article",
    ".grid-item",
    ".collection-item",
)
PRODUCT_LINK_SELECTOR = 'a[href*="/product"], a[href*="/item"], a[href*="/p/"]'
NAME_SELECTORS = ('[class*="title"]', '[class*="name"]', "h2", "h3", "h4")
PRICE_SELECTORS = ('[class*="price"]', "[data-price]", ".amount", ".money")


def deobfuscate_emails(text: str) -> str:
    """Undo common anti-scraping spellings of '@' and '.'."""
    text = html_lib.unescape(text)
    text = _AT_RE.sub("@", text)
    text = _DOT_RE.sub(".", text)
    return _SPACED_AT_RE.sub("@", text)


def _is_junk_email(email: str) -> bool:
    if len(email) < 5 or len(email) > 254:
        return True
    local, _, domain = email.rpartition("@")
    if not local or "." not in domain:
        return True
    tld = domain.rsplit(".", 1)[1]
    if not (2 <= len(tld) <= 10 and tld.isalpha()):
        return True
    return any(pattern.search(email) for pattern in JUNK_EMAIL_PATTERNS)


def extract_emails(text_or_html: str) -> list[str]:
    """Emails in confidence order: mailto links first, then free-text matches."""
    if not text_or_html:
        return []

    candidates: list[str] = []
    for raw in MAILTO_RE.findall(html_lib.unescape(text_or_html)):
        address = unquote(raw).split("?", 1)[0].strip()
        candidates.extend(EMAIL_RE.findall(address))
    candidates.extend(EMAIL_RE.findall(deobfuscate_emails(text_or_html)))

    emails: list[str] = []
    seen: set[str] = set()
    for candidate in candidates:
        email = candidate.lower().strip(".")
        if email in seen or _is_junk_email(email):
            continue
        seen.add(email)
        emails.append(email)
    return emails


def extract_phones(text: str) -> list[str]:
    if not text:
        return []
    phones: list[str] = []
    seen: set[str] = set()
    for match in PHONE_RE.findall(text):
        cleaned = _PHONE_FORMATTING_RE.sub("", match)
        digits = re.sub(r"\D", "", cleaned)
        if not 7 <= len(digits) <= 15:
            continue
        if cleaned not in seen:
            seen.add(cleaned)
            phones.append(cleaned)
    return phones


def _first_text(node, selectors: tuple[str, ...]) -> str:
    for selector in selectors:
        found = node.select_one(selector)
        if found is None:
            continue
        text = " ".join(found.get_text(" ").split())
        if text:
            return text
    return ""


def extract_products(
    html: str,
    base_url: str | None = None,
    max_products: int | None = None,
) -> list[ProductSummary]:
    """Best-effort product cards; the first selector with any hit wins."""
    if not html:
        return []
    limit = settings.max_products if max_products is None else max_products
    soup = BeautifulSoup(html, "html.parser")
    products: list[ProductSummary] = []
    seen: set[str] = set()

    for selector in PRODUCT_SELECTORS:
        for card in soup.select(selector):
            link = card.select_one(PRODUCT_LINK_SELECTOR) or card.select_one("a[href]")
            if link is None:
                continue
            href = (link.get("href") or "").strip()
            if not href or href.startswith(("#", "javascript:", "mailto:")):
                continue
            url = urljoin(base_url, href) if base_url else href
            if url in seen:
                continue

            name = _first_text(card, NAME_SELECTORS)
            if not name:
                name = " ".join(link.get_text(" ").split()) or (link.get("title") or "").strip()
            if len(name) < 2:
                continue

            price = _first_text(card, PRICE_SELECTORS) or None
            seen.add(url)
            products.append(ProductSummary(name=name, url=url, price=price))
            if len(products) >= limit:
                return products

        if products:
            break
    return products


def merge_products(existing: list[ProductSummary], new: list[ProductSummary], limit: int) -> list[ProductSummary]:
    """Append unseen products (by URL) up to limit."""
    merged = list(existing)
    seen = {product.url for product in merged}
    for product in new:
        if len(merged) >= limit:
            break
        if product.url not in seen:
            seen.add(product.url)
            merged.append(product)
    return merged
