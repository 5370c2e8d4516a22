"""Per-URL pipeline (acquire -> extract -> agent) and the operations built on it."""
from __future__ import annotations

import asyncio
import json
from dataclasses import replace
from typing import Any
from urllib.parse import urljoin

from loguru import logger

from webaccess.access_core.acquire.service import AcquisitionService
from webaccess.access_core.extract import patterns
from webaccess.access_core.extract.service import format_extraction_as_text, try_extract
from webaccess.access_core.intent.service import (
    asset_type_from_task,
    detect_intent,
    fallback_operations,
    generate_sub_task,
    infer_operation,
    infer_operation_with_llm,
    wants_full_page_screenshot,
)
from webaccess.access_core.models.interfaces import (
    AcquiredContent,
    AcquireOptions,
    CrawledPage,
    ExtractionAttempt,
    ExtractionData,
    Operation,
    ProductSummary,
    TaskIntent,
)
from webaccess.agents.executor import AgentExecutor
from webaccess.agents.url_selector import CandidateSelector
from webaccess.config import settings
from webaccess.llm_client import ChatClient, get_client
from webaccess.models.schemas import (
    Attachment,
    MethodTried,
    NonLlmAttempt,
    PageHit,
    Product,
    ResultData,
    ResultMeta,
    WebAccessResult,
)
from webaccess.services.cost import estimate_operation_detection_cost, format_cost
from webaccess.services.logger import log_event, log_pipeline_step
from webaccess.tools import crawl4ai_client
from webaccess.tools.http_fetcher import download_asset
from webaccess.tools.web_utils import (
    extract_asset_urls,
    extract_internal_links,
    extract_page_title,
    validate_url,
)

LLM_KEY_MISSING = "LLM API key not configured"

CONTACT_PATHS = ("/contact", "/contact-us", "/contacts", "/about", "/about-us", "/support", "/help")
PRODUCT_PATHS = ("/products", "/shop", "/collections/all", "/catalog")
ASSET_PATHS = ("/downloads", "/resources", "/documents", "/media")


def _products_out(products: list[ProductSummary] | None) -> list[Product] | None:
    if not products:
        return None
    return [Product(name=p.name, url=p.url, price=p.price) for p in products]


def _non_llm_attempt(extraction: ExtractionAttempt) -> NonLlmAttempt:
    return NonLlmAttempt(tried=list(extraction.what_was_tried), reason=extraction.reason)


def _dedupe_extend(target: list[str], values: list[str] | None) -> list[str]:
    added: list[str] = []
    for value in values or []:
        if value not in target:
            target.append(value)
            added.append(value)
    return added


class WebAccessOrchestrator:
    """Runs tasks against URLs, escalating from plain fetches to the LLM agent.

    Per-call overrides default to ``settings``. The acquisition service (and
    its shared browser) is owned here and closed at the end of ``run``.
    """

    def __init__(
        self,
        *,
        use_llm: bool | None = None,
        model: str | None = None,
        api_key: str | None = None,
        base_url: str | None = None,
        flaresolverr_url: str | None = None,
        crawl4ai_base_url: str | None = None,
        max_iterations: int | None = None,
        acquisition: AcquisitionService | None = None,
        chat: ChatClient | None = None,
        selector: CandidateSelector | None = None,
    ):
        self.use_llm = settings.use_llm if use_llm is None else use_llm
        self.model = model or settings.llm_model
        self.api_key = settings.llm_api_key if api_key is None else api_key
        self.base_url = base_url or settings.llm_base_url
        self.flaresolverr_url = (settings.flaresolverr_url if flaresolverr_url is None else flaresolverr_url).strip()
        self.crawl4ai_base_url = (
            settings.crawl4ai_base_url if crawl4ai_base_url is None else crawl4ai_base_url
        ).strip()
        self.max_iterations = max_iterations or settings.agent_max_iterations
        self.acquisition = acquisition or AcquisitionService(flaresolverr_url=self.flaresolverr_url)
        self.selector = selector or CandidateSelector()
        self._chat = chat
        self.operation_detection_calls = 0

    @property
    def llm_available(self) -> bool:
        return self._chat is not None or bool(self.api_key.strip())

    def chat(self) -> ChatClient:
        if self._chat is None:
            self._chat = get_client(api_key=self.api_key, base_url=self.base_url)
        return self._chat

    # --- Batch entrypoint ---

    async def run(
        self,
        urls: list[str],
        task: str,
        operation: Operation | None = None,
        *,
        script: str | None = None,
    ) -> list[WebAccessResult]:
        """Process every non-blank URL; one result per URL, in input order."""
        targets = [url.strip() for url in urls if url and url.strip()]
        semaphore = asyncio.Semaphore(max(1, settings.max_parallel_urls))

        try:
            resolved = operation or await self.resolve_operation(task)
            log_event("batch_start", "Processing URLs", urls=len(targets), operation=resolved)

            async def _guarded(url: str) -> WebAccessResult:
                async with semaphore:
                    try:
                        return await self.execute_operation(url, task, resolved, script=script)
                    except Exception as exc:
                        logger.exception(f"Unhandled failure for {url}")
                        return WebAccessResult(
                            url=url,
                            task=task,
                            success=False,
                            meta=ResultMeta(operation=resolved),
                            error=str(exc) or type(exc).__name__,
                        )

            return list(await asyncio.gather(*(_guarded(url) for url in targets)))
        finally:
            await self.acquisition.close_all()

    async def resolve_operation(self, task: str) -> Operation:
        if self.use_llm and self.llm_available:
            self.operation_detection_calls += 1
            log_event(
                "operation_detection",
                "Classifying task with LLM",
                estimated_cost=format_cost(estimate_operation_detection_cost(self.model)),
            )
            return await infer_operation_with_llm(task, self.chat(), self.model)
        return infer_operation(task)

    async def execute_operation(
        self,
        url: str,
        task: str,
        operation: Operation,
        *,
        script: str | None = None,
    ) -> WebAccessResult:
        result = await self._dispatch(url, task, operation, script=script)
        if result.success:
            return result

        # No sources means the page itself was never acquired; crawl without
        # contact/product intent is the plain pipeline again
        if result.data.sources is None or result.meta.used_llm or not self._crawl_applies(detect_intent(task)):
            return result
        for fallback in fallback_operations(operation):
            logger.info(f"{operation} failed for {url}; trying {fallback}")
            alternative = await self._dispatch(url, task, fallback, script=script)
            if alternative.success:
                return alternative
        return result

    async def _dispatch(
        self,
        url: str,
        task: str,
        operation: Operation,
        *,
        script: str | None,
    ) -> WebAccessResult:
        if operation == "crawl":
            result = await self.crawl(url, task)
        elif operation == "download_assets":
            result = await self.download_assets(url, task)
        elif operation == "screenshot":
            result = await self.capture_screenshot(url, task)
        elif operation == "run_script":
            result = await self.run_script(url, script or "", task=task)
        else:
            result = await self.process_url(url, task)
        result.meta.operation = operation
        return result

    @staticmethod
    def _crawl_applies(intent: TaskIntent) -> bool:
        return intent.wants_email or intent.wants_phone or intent.wants_product_list

    # --- Core per-URL pipeline ---

    async def process_url(self, url: str, task: str) -> WebAccessResult:
        log_pipeline_step(url, "acquiring", "start")
        content = await self.acquisition.acquire(url, AcquireOptions(bypass_url=self.flaresolverr_url or None))
        if not content.success:
            log_pipeline_step(url, "acquiring", "failed", {"error": content.error})
            return self._acquisition_failure(url, task, content)
        log_pipeline_step(url, "acquiring", "done", {"method": content.method, "elapsed_ms": content.elapsed_ms})

        extraction = try_extract(content, task)
        log_pipeline_step(
            url,
            "extracting",
            "done" if extraction.success else "insufficient",
            {"tried": list(extraction.what_was_tried), "reason": extraction.reason},
        )
        if extraction.success and extraction.data is not None:
            return self._extraction_result(url, task, content, extraction)

        if self.use_llm:
            if not self.llm_available:
                log_pipeline_step(url, "agent", "skipped", {"error": LLM_KEY_MISSING})
                return WebAccessResult(
                    url=url,
                    task=task,
                    success=False,
                    data=self._partial_data(url, content, extraction),
                    meta=ResultMeta(
                        used_llm=False,
                        scrape_method=content.method,
                        non_llm_attempt=_non_llm_attempt(extraction),
                    ),
                    error=LLM_KEY_MISSING,
                )
            return await self._run_agent(url, task, content, extraction)

        return self._partial_fallback(url, task, content, extraction)

    async def _run_agent(
        self,
        url: str,
        task: str,
        content: AcquiredContent,
        extraction: ExtractionAttempt,
        prior_pages: list[AcquiredContent] | None = None,
    ) -> WebAccessResult:
        log_pipeline_step(url, "agent", "start", {"model": self.model})
        executor = AgentExecutor(
            self.chat(),
            self.acquisition,
            model=self.model,
            max_iterations=self.max_iterations,
            bypass_url=self.flaresolverr_url or None,
            crawl4ai_base_url=self.crawl4ai_base_url,
        )
        agent_result = await executor.run(task, content, extraction, prior_pages=prior_pages)
        meta = ResultMeta(
            used_llm=True,
            scrape_method=content.method,
            iterations=agent_result.iterations,
            llm_calls=agent_result.llm_calls,
            estimated_cost=agent_result.estimated_cost,
            non_llm_attempt=_non_llm_attempt(extraction),
        )
        log_pipeline_step(
            url,
            "agent",
            "done" if agent_result.success else "failed",
            {"iterations": agent_result.iterations, "llm_calls": agent_result.llm_calls},
        )
        if agent_result.success:
            return WebAccessResult(
                url=url,
                task=task,
                success=True,
                data=ResultData(text=agent_result.text, sources=agent_result.sources),
                meta=meta,
            )
        return WebAccessResult(
            url=url,
            task=task,
            success=False,
            data=ResultData(text="", sources=agent_result.sources),
            meta=meta,
            error=agent_result.error or "Agent failed to complete task",
        )

    def _acquisition_failure(self, url: str, task: str, content: AcquiredContent) -> WebAccessResult:
        return WebAccessResult(
            url=url,
            task=task,
            success=False,
            meta=ResultMeta(
                used_llm=False,
                scrape_method=content.method,
                methods_tried=[
                    MethodTried(method=a.method, success=a.success, error=a.error) for a in content.methods_tried
                ]
                or None,
            ),
            error=content.error or "Failed to acquire content",
        )

    def _extraction_result(
        self,
        url: str,
        task: str,
        content: AcquiredContent,
        extraction: ExtractionAttempt,
    ) -> WebAccessResult:
        data = extraction.data or ExtractionData()
        return WebAccessResult(
            url=url,
            task=task,
            success=True,
            data=ResultData(
                text=format_extraction_as_text(data),
                sources=[url],
                title=data.title or None,
                emails=data.emails,
                phones=data.phones,
                products=_products_out(data.products),
            ),
            meta=ResultMeta(
                used_llm=False,
                scrape_method=content.method,
                non_llm_attempt=_non_llm_attempt(extraction),
            ),
        )

    def _partial_data(self, url: str, content: AcquiredContent, extraction: ExtractionAttempt) -> ResultData:
        data = extraction.data
        if data is not None and data.has_structured_data():
            text = format_extraction_as_text(data)
        else:
            text = (data.text if data is not None and data.text else None) or content.text
        return ResultData(
            text=text[: settings.fallback_text_chars],
            sources=[url],
            title=(data.title or None) if data else None,
            emails=data.emails if data else None,
            phones=data.phones if data else None,
            products=_products_out(data.products) if data else None,
        )

    def _partial_fallback(
        self,
        url: str,
        task: str,
        content: AcquiredContent,
        extraction: ExtractionAttempt,
    ) -> WebAccessResult:
        has_partial = extraction.data is not None and extraction.data.has_structured_data()
        log_pipeline_step(url, "fallback", "partial" if has_partial else "failed")
        return WebAccessResult(
            url=url,
            task=task,
            success=has_partial,
            data=self._partial_data(url, content, extraction),
            meta=ResultMeta(
                used_llm=False,
                scrape_method=content.method,
                non_llm_attempt=_non_llm_attempt(extraction),
            ),
            error=None if has_partial else f"{extraction.reason}. Enable LLM for better results.",
        )

    # --- Multi-page operations ---

    async def crawl(self, url: str, task: str) -> WebAccessResult:
        intent = detect_intent(task)
        if intent.wants_email or intent.wants_phone:
            return await self.find_contacts(url, task)
        if intent.wants_product_list:
            return await self.crawl_products(url, task)
        return await self.process_url(url, task)

    async def _discover(self, seed: AcquiredContent) -> list[CrawledPage]:
        if self.crawl4ai_base_url:
            pages = await crawl4ai_client.crawl(self.crawl4ai_base_url, seed.url, settings.max_crawl_pages)
            if pages:
                return pages
        return [CrawledPage(url=link) for link in extract_internal_links(seed.html, seed.url)]

    def _follow_options(self, seed: AcquiredContent) -> AcquireOptions:
        """Pages on the same site are fetched the way the seed page succeeded."""
        return AcquireOptions(
            bypass_url=self.flaresolverr_url or None,
            preferred_method=seed.method,
            skip_render=seed.method != "browser",
        )

    async def _candidate_pages(
        self,
        seed: AcquiredContent,
        intent: TaskIntent,
        task: str,
        probable_paths: tuple[str, ...],
    ) -> list[str]:
        """Conventional paths first, then scored discovered pages; seed and duplicates removed."""
        ordered: list[str] = []
        for path in probable_paths:
            candidate = urljoin(seed.url, path)
            if candidate != seed.url and candidate not in ordered:
                ordered.append(candidate)
        discovered = await self._discover(seed)
        for page in self.selector.select(discovered, intent, task, seed.url, settings.max_crawl_candidates):
            if page.url not in ordered:
                ordered.append(page.url)
        return ordered[: settings.max_crawl_candidates]

    async def find_contacts(self, url: str, task: str) -> WebAccessResult:
        intent = detect_intent(task)
        want_email = intent.wants_email or not intent.wants_phone
        want_phone = intent.wants_phone or not intent.wants_email
        sub_task = generate_sub_task(task, intent)

        seed = await self.acquisition.acquire(url, AcquireOptions(bypass_url=self.flaresolverr_url or None))
        if not seed.success:
            return self._acquisition_failure(url, task, seed)

        emails: list[str] = []
        phones: list[str] = []
        hits: list[PageHit] = []
        inspected = 0
        visited: list[AcquiredContent] = []

        def inspect(content: AcquiredContent) -> bool:
            attempt = try_extract(content, sub_task)
            data = attempt.data or ExtractionData()
            new_emails = _dedupe_extend(emails, data.emails)
            new_phones = _dedupe_extend(phones, data.phones)
            if new_emails or new_phones:
                hits.append(PageHit(url=content.url, emails=new_emails, phones=new_phones))
            return (not want_email or bool(emails)) and (not want_phone or bool(phones))

        inspected += 1
        satisfied = inspect(seed)
        if not satisfied:
            options = self._follow_options(seed)
            for candidate in await self._candidate_pages(seed, intent, task, CONTACT_PATHS):
                if inspected >= settings.max_crawl_candidates:
                    break
                content = await self.acquisition.acquire(candidate, options)
                inspected += 1
                if not content.success:
                    continue
                visited.append(content)
                if inspect(content):
                    satisfied = True
                    break

        if not satisfied and self.use_llm and self.llm_available:
            logger.info(f"Contact crawl incomplete for {url}; handing over to the agent")
            return await self._contacts_agent_handover(url, task, seed, visited, emails, phones, hits, inspected)

        summary = ExtractionData(
            title=extract_page_title(seed.html) or None,
            emails=emails or None,
            phones=phones or None,
        )
        text = format_extraction_as_text(summary)
        if hits:
            text += "\n\nFound on:\n" + "\n".join(f"- {hit.url}" for hit in hits)

        missing = []
        if want_email and not emails:
            missing.append("email")
        if want_phone and not phones:
            missing.append("phone")
        return WebAccessResult(
            url=url,
            task=task,
            success=satisfied,
            data=ResultData(
                text=text,
                sources=[hit.url for hit in hits] or [url],
                title=summary.title or None,
                emails=emails or None,
                phones=phones or None,
                pages=hits or None,
            ),
            meta=ResultMeta(used_llm=False, scrape_method=seed.method, pages_inspected=inspected),
            error=None if satisfied else f"No {' or '.join(missing)} found across {inspected} page(s)",
        )

    async def _contacts_agent_handover(
        self,
        url: str,
        task: str,
        seed: AcquiredContent,
        visited: list[AcquiredContent],
        emails: list[str],
        phones: list[str],
        hits: list[PageHit],
        inspected: int,
    ) -> WebAccessResult:
        """Agent run over the pages the contact crawl already fetched; crawl findings are kept."""
        attempt = try_extract(seed, task)
        title = attempt.data.title if attempt.data is not None else None
        extraction = replace(
            attempt,
            data=ExtractionData(
                title=title or extract_page_title(seed.html) or None,
                emails=emails or None,
                phones=phones or None,
            ),
            what_was_tried=(*attempt.what_was_tried, "contact_page_crawl"),
        )
        result = await self._run_agent(url, task, seed, extraction, prior_pages=visited)
        result.data.emails = emails or None
        result.data.phones = phones or None
        result.data.pages = hits or None
        result.meta.pages_inspected = inspected
        return result

    async def crawl_products(self, url: str, task: str) -> WebAccessResult:
        intent = detect_intent(task)
        seed = await self.acquisition.acquire(url, AcquireOptions(bypass_url=self.flaresolverr_url or None))
        if not seed.success:
            return self._acquisition_failure(url, task, seed)

        limit = settings.max_products
        products = patterns.merge_products([], patterns.extract_products(seed.html, seed.url), limit)
        sources = [url] if products else []
        inspected = 1

        if len(products) < limit:
            options = self._follow_options(seed)
            for candidate in await self._candidate_pages(seed, intent, task, PRODUCT_PATHS):
                if inspected >= settings.max_crawl_candidates or len(products) >= limit:
                    break
                content = await self.acquisition.acquire(candidate, options)
                inspected += 1
                if not content.success:
                    continue
                before = len(products)
                products = patterns.merge_products(
                    products, patterns.extract_products(content.html, content.url), limit
                )
                if len(products) > before:
                    sources.append(candidate)

        success = bool(products)
        return WebAccessResult(
            url=url,
            task=task,
            success=success,
            data=ResultData(
                text=format_extraction_as_text(ExtractionData(products=products)) if products else "",
                sources=sources or [url],
                products=_products_out(products),
            ),
            meta=ResultMeta(used_llm=False, scrape_method=seed.method, pages_inspected=inspected),
            error=None if success else f"No products found across {inspected} page(s)",
        )

    async def download_assets(self, url: str, task: str, download: bool = True) -> WebAccessResult:
        asset_type = asset_type_from_task(task) or "pdf"
        intent = detect_intent(task)
        seed = await self.acquisition.acquire(url, AcquireOptions(bypass_url=self.flaresolverr_url or None))
        if not seed.success:
            return self._acquisition_failure(url, task, seed)

        limit = settings.max_assets
        assets: list[str] = []
        sources: list[str] = []
        if _dedupe_extend(assets, extract_asset_urls(seed.html, seed.url, asset_type)):
            sources.append(url)
        inspected = 1

        if not assets:
            options = self._follow_options(seed)
            for candidate in await self._candidate_pages(seed, intent, task, ASSET_PATHS):
                if inspected >= settings.max_crawl_candidates:
                    break
                content = await self.acquisition.acquire(candidate, options)
                inspected += 1
                if content.success and _dedupe_extend(
                    assets, extract_asset_urls(content.html, content.url, asset_type)
                ):
                    sources.append(candidate)
                    break
        assets = assets[:limit]

        attachments: list[Attachment] = []
        if download:
            for index, asset_url in enumerate(assets):
                downloaded = await download_asset(asset_url, index=index)
                if downloaded is not None:
                    attachments.append(
                        Attachment(
                            filename=downloaded.filename,
                            content_type=downloaded.content_type,
                            content=downloaded.content,
                        )
                    )

        success = bool(assets)
        lines = [f"Found {len(assets)} {asset_type} asset(s)"] + [f"- {asset}" for asset in assets]
        if download:
            lines.append(f"Downloaded {len(attachments)} of {len(assets)}")
        return WebAccessResult(
            url=url,
            task=task,
            success=success,
            data=ResultData(text="\n".join(lines), sources=sources or [url], assets=assets or None),
            meta=ResultMeta(used_llm=False, scrape_method=seed.method, pages_inspected=inspected),
            error=None if success else f"No {asset_type} assets found across {inspected} page(s)",
            attachments=attachments,
        )

    # --- Browser operations ---

    async def capture_screenshot(self, url: str, task: str) -> WebAccessResult:
        validation = validate_url(url)
        if not validation.valid:
            return WebAccessResult(url=url, task=task, success=False, error=validation.error)

        full_page = wants_full_page_screenshot(task)
        try:
            image = await self.acquisition.browser.screenshot(url, full_page=full_page)
        except Exception as exc:
            logger.warning(f"Screenshot failed for {url}: {exc}")
            return WebAccessResult(
                url=url,
                task=task,
                success=False,
                meta=ResultMeta(scrape_method="browser"),
                error=f"Screenshot failed: {exc}",
            )

        kind = "full-page" if full_page else "viewport"
        return WebAccessResult(
            url=url,
            task=task,
            success=True,
            data=ResultData(text=f"Captured {kind} screenshot of {url}", sources=[url]),
            meta=ResultMeta(scrape_method="browser"),
            attachments=[Attachment(filename="screenshot.png", content_type="image/png", content=image)],
        )

    async def run_script(self, url: str, script: str, task: str | None = None) -> WebAccessResult:
        """Evaluates ``script`` in the page; the record carries ``task``, else the script itself."""
        task = task or script
        validation = validate_url(url)
        if not validation.valid:
            return WebAccessResult(url=url, task=task, success=False, error=validation.error)
        if not script.strip():
            return WebAccessResult(url=url, task=task, success=False, error="No script provided")

        try:
            value: Any = await self.acquisition.browser.run_script(url, script)
        except Exception as exc:
            logger.warning(f"Script failed on {url}: {exc}")
            return WebAccessResult(
                url=url,
                task=task,
                success=False,
                meta=ResultMeta(scrape_method="browser"),
                error=f"Script execution failed: {exc}",
            )

        text = value if isinstance(value, str) else json.dumps(value, ensure_ascii=False, default=str)
        return WebAccessResult(
            url=url,
            task=task,
            success=True,
            data=ResultData(text=text, sources=[url], script_result=value),
            meta=ResultMeta(scrape_method="browser"),
        )
