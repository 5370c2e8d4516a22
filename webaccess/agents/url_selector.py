"""Crawl-candidate ranking for multi-page operations."""

from __future__ import annotations

import re
from urllib.parse import urlparse

from rank_bm25 import BM25Okapi

from webaccess.access_core.models.interfaces import CrawledPage, TaskIntent

URL_WEIGHT = 10
TITLE_WEIGHT = 7
SNIPPET_WEIGHT = 3
PENALTY = -20
# Below one keyword hit, so relevance only reorders equal keyword scores
BM25_WEIGHT = 0.9

CONTACT_PATTERNS = (
    "contact",
    "contacts",
    "about",
    "about-us",
    "aboutus",
    "stores",
    "store",
    "location",
    "locations",
    "head-office",
    "head_office",
    "headquarters",
    "support",
    "help",
    "customer-service",
    "customerservice",
    "reach-us",
    "get-in-touch",
    "find-us",
)

PRODUCT_PATTERNS = (
    "product",
    "products",
    "shop",
    "store",
    "catalog",
    "catalogue",
    "collection",
    "collections",
    "category",
    "categories",
    "men",
    "mens",
    "women",
    "womens",
    "accessories",
)

ASSET_PATTERNS = (
    "download",
    "downloads",
    "resource",
    "resources",
    "document",
    "documents",
    "media",
    "press",
    "files",
    "library",
)

PENALTY_PATTERNS = (
    "login",
    "signin",
    "sign-in",
    "register",
    "signup",
    "sign-up",
    "cart",
    "checkout",
    "account",
    "privacy",
    "terms",
    "cookie",
    "sitemap",
    "rss",
    "feed",
)


def _tokenize(text: str) -> list[str]:
    return [token for token in re.split(r"[^a-z0-9]+", text.lower()) if token]


def _clean_url_for_scoring(url: str) -> str:
    """Domain + path with separators replaced by spaces."""
    parsed = urlparse(url)
    cleaned = f"{parsed.netloc} {parsed.path}".lower()
    cleaned = re.sub(r"[/\-_.]", " ", cleaned)
    return re.sub(r"\s+", " ", cleaned).strip()


def _compute_bm25_scores(query: str, documents: list[str]) -> list[float]:
    """BM25 relevance of each document to the query, normalized to 0-1."""
    if not documents:
        return []
    tokenized_docs = [_tokenize(doc) or ["_"] for doc in documents]
    query_tokens = _tokenize(query)
    if not query_tokens:
        return [0.0] * len(documents)

    bm25 = BM25Okapi(tokenized_docs)
    scores = [float(score) for score in bm25.get_scores(query_tokens)]
    max_score = max(scores)
    if max_score > 0:
        return [max(score, 0.0) / max_score for score in scores]
    return [0.0] * len(scores)


def _normalize_for_dedupe(url: str) -> str:
    parsed = urlparse(url)
    host = (parsed.hostname or "").lower()
    if host.startswith("www."):
        host = host[4:]
    return f"{host}{parsed.path.rstrip('/') or '/'}?{parsed.query}"


class CandidateSelector:
    """Scores discovered pages by weighted keyword hits in URL, title and snippet."""

    def patterns_for(self, intent: TaskIntent) -> tuple[str, ...]:
        patterns: list[str] = []
        if intent.wants_email or intent.wants_phone:
            patterns.extend(CONTACT_PATTERNS)
        if intent.wants_product_list:
            patterns.extend(p for p in PRODUCT_PATTERNS if p not in patterns)
        if intent.wants_download or intent.wants_pdf or intent.wants_images or intent.wants_csv:
            patterns.extend(p for p in ASSET_PATTERNS if p not in patterns)
        return tuple(patterns)

    def score_page(self, page: CrawledPage, intent: TaskIntent) -> int:
        url = page.url.lower()
        title = (page.title or "").lower()
        snippet = (page.snippet or "").lower()
        score = 0
        for pattern in self.patterns_for(intent):
            if pattern in url:
                score += URL_WEIGHT
            if pattern in title:
                score += TITLE_WEIGHT
            if pattern in snippet:
                score += SNIPPET_WEIGHT
        for pattern in PENALTY_PATTERNS:
            if pattern in url:
                score += PENALTY
        return score

    def select(
        self,
        pages: list[CrawledPage],
        intent: TaskIntent,
        task: str,
        seed_url: str,
        max_candidates: int,
    ) -> list[CrawledPage]:
        """Positive-scoring unique pages other than the seed, best first."""
        seen = {_normalize_for_dedupe(seed_url)}
        scored: list[tuple[int, CrawledPage]] = []
        for page in pages:
            key = _normalize_for_dedupe(page.url)
            if key in seen:
                continue
            seen.add(key)
            score = self.score_page(page, intent)
            if score > 0:
                scored.append((score, page))

        if not scored:
            return []

        documents = [
            f"{page.title or ''} {page.snippet or ''} {_clean_url_for_scoring(page.url)}" for _, page in scored
        ]
        relevance = _compute_bm25_scores(task, documents)
        ranked = sorted(
            zip(scored, relevance),
            key=lambda item: item[0][0] + BM25_WEIGHT * item[1],
            reverse=True,
        )
        return [page for (_, page), _ in ranked[: max(max_candidates, 0)]]
