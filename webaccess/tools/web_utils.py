from __future__ import annotations

import ipaddress
import re
from dataclasses import dataclass
from urllib.parse import urljoin, urlparse

from bs4 import BeautifulSoup
from loguru import logger

ALLOWED_SCHEMES = ("http", "https")

BLOCKED_HOSTNAMES = {
    "localhost",
    "localhost.localdomain",
    "ip6-localhost",
    "ip6-loopback",
    "metadata.google.internal",
}

ASSET_EXTENSIONS: dict[str, tuple[str, ...]] = {
    "pdf": (".pdf",),
    "image": (".jpg", ".jpeg", ".png", ".gif", ".webp", ".avif", ".svg", ".bmp"),
    "csv": (".csv",),
}

# Substrings that only show up on interstitial / challenge pages
BLOCK_INDICATORS = (
    "captcha",
    "cf-browser-verification",
    "cloudflare ray id",
    "just a moment...",
    "checking your browser",
    "attention required!",
    "access denied",
    "403 forbidden",
    "rate limit exceeded",
    "too many requests",
    "please verify you are a human",
    "are you a robot",
    "human verification",
)

_HIDDEN_SELECTORS = (
    "script, style, noscript, iframe, svg, template, [hidden], "
    '[style*="display:none"], [style*="display: none"]'
)


@dataclass(frozen=True, slots=True)
class UrlValidation:
    valid: bool
    error: str | None = None


def _parse_ip(host: str) -> ipaddress.IPv4Address | ipaddress.IPv6Address | None:
    try:
        return ipaddress.ip_address(host)
    except ValueError:
        pass
    # Bare integer hosts like http://2130706433/ resolve to IPv4 literals
    if host.isdigit():
        try:
            return ipaddress.ip_address(int(host))
        except ValueError:
            return None
    return None


def validate_url(url: str) -> UrlValidation:
    """Reject URLs the fetchers must never touch (SSRF guard).

    Only http(s) is allowed and the host may not be a loopback, private,
    link-local, reserved or unspecified address, nor a localhost alias. No DNS
    resolution happens here.
    """
    if not url or not url.strip():
        return UrlValidation(False, "URL is empty")
    try:
        parsed = urlparse(url.strip())
    except ValueError as exc:
        return UrlValidation(False, f"Malformed URL: {exc}")

    scheme = (parsed.scheme or "").lower()
    if scheme not in ALLOWED_SCHEMES:
        return UrlValidation(False, f"Unsupported URL scheme: {scheme or 'none'} (only http and https are allowed)")

    try:
        host = (parsed.hostname or "").lower().rstrip(".")
    except ValueError as exc:
        return UrlValidation(False, f"Malformed URL: {exc}")
    if not host:
        return UrlValidation(False, "URL has no host")

    if host in BLOCKED_HOSTNAMES or host.endswith(".localhost"):
        return UrlValidation(False, f"Access to local host '{host}' is not allowed")

    ip = _parse_ip(host)
    if ip is not None:
        if isinstance(ip, ipaddress.IPv6Address) and ip.ipv4_mapped is not None:
            ip = ip.ipv4_mapped
        if (
            ip.is_private
            or ip.is_loopback
            or ip.is_link_local
            or ip.is_unspecified
            or ip.is_reserved
            or ip.is_multicast
        ):
            return UrlValidation(False, f"Access to private or reserved address {ip} is not allowed")

    return UrlValidation(True)


def _normalize_text(text: str) -> str:
    return re.sub(r"\s+", " ", text.replace("\xa0", " ")).strip()


def extract_text_content(html: str) -> str:
    """Visible text of the page with scripts, styles and hidden nodes removed."""
    if not html:
        return ""
    soup = BeautifulSoup(html, "html.parser")
    for node in soup.select(_HIDDEN_SELECTORS):
        node.decompose()
    root = soup.body or soup
    return _normalize_text(root.get_text(" "))


def extract_readable_text(html: str) -> str:
    """Main-content text via trafilatura, falling back to the full visible text."""
    if not html:
        return ""
    import trafilatura

    try:
        extracted = trafilatura.extract(html, output_format="txt")
    except Exception as exc:
        logger.debug(f"trafilatura extraction failed: {exc}")
        extracted = None
    if isinstance(extracted, str) and extracted.strip():
        return _normalize_text(extracted)
    return extract_text_content(html)


def extract_page_title(html: str) -> str:
    if not html:
        return ""
    soup = BeautifulSoup(html, "html.parser")
    if soup.title and soup.title.get_text(strip=True):
        return _normalize_text(soup.title.get_text())
    h1 = soup.find("h1")
    return _normalize_text(h1.get_text()) if h1 else ""


def normalize_domain(url: str) -> str:
    host = (urlparse(url).hostname or "").lower().strip()
    if host.startswith("www."):
        host = host[4:]
    return host


def is_same_site(url: str, seed_url: str) -> bool:
    """True when url is on the seed's domain or one of its subdomains."""
    host = normalize_domain(url)
    seed = normalize_domain(seed_url)
    if not host or not seed:
        return False
    return host == seed or host.endswith("." + seed)


def extract_internal_links(html: str, base_url: str) -> list[str]:
    """Absolute same-host links in document order, deduplicated."""
    if not html:
        return []
    base_host = (urlparse(base_url).hostname or "").lower()
    if not base_host:
        return []

    soup = BeautifulSoup(html, "html.parser")
    links: list[str] = []
    seen: set[str] = set()
    for anchor in soup.select("a[href]"):
        href = (anchor.get("href") or "").strip()
        if not href or href.startswith(("#", "javascript:", "mailto:", "tel:")):
            continue
        absolute = urljoin(base_url, href).split("#", 1)[0]
        parsed = urlparse(absolute)
        if parsed.scheme not in ALLOWED_SCHEMES:
            continue
        if (parsed.hostname or "").lower() != base_host:
            continue
        if absolute not in seen:
            seen.add(absolute)
            links.append(absolute)
    return links


def extract_asset_urls(html: str, base_url: str, asset_type: str) -> list[str]:
    """Links to files of the given asset type; images also come from <img src>."""
    if not html:
        return []
    extensions = ASSET_EXTENSIONS.get(asset_type, ())
    soup = BeautifulSoup(html, "html.parser")
    urls: list[str] = []
    seen: set[str] = set()

    def _add(raw: str) -> None:
        absolute = urljoin(base_url, raw.strip())
        if urlparse(absolute).scheme in ALLOWED_SCHEMES and absolute not in seen:
            seen.add(absolute)
            urls.append(absolute)

    for anchor in soup.select("a[href]"):
        href = anchor.get("href") or ""
        path = urlparse(href.lower()).path
        if path.endswith(extensions):
            _add(href)

    if asset_type == "image":
        for img in soup.select("img[src]"):
            src = img.get("src") or ""
            if src and not src.startswith("data:"):
                _add(src)
    return urls


def is_blocked_content(html: str) -> bool:
    """Heuristic for CAPTCHA / challenge / rate-limit interstitials."""
    if not html:
        return True
    lowered = html.lower()
    if any(indicator in lowered for indicator in BLOCK_INDICATORS):
        return True
    # Near-empty full documents are usually JS challenges
    text = extract_text_content(html)
    return len(text) < 100 and "<!doctype" in lowered
