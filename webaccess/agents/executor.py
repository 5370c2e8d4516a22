"""Bounded ReAct loop: think, call a tool, observe, repeat until complete()."""
from __future__ import annotations

import json

from loguru import logger

from webaccess.access_core.acquire.service import AcquisitionService
from webaccess.access_core.models.interfaces import (
    AcquiredContent,
    AgentResult,
    ExtractionAttempt,
    ScratchpadEntry,
    ToolCall,
)
from webaccess.agents.prompts import (
    ParsedResponse,
    PromptContext,
    build_fallback_summary,
    build_forced_completion_prompt,
    build_system_prompt,
    build_user_prompt,
    parse_llm_response,
)
from webaccess.agents.tools import AgentToolSet
from webaccess.config import settings
from webaccess.llm_client import ChatClient
from webaccess.services.cost import estimate_cost_per_call, format_cost
from webaccess.services.logger import log_event
from webaccess.services.prompt_store import render_prompt

SCRATCHPAD_FIELD_CHARS = 500
RAW_RESPONSE_CHARS = 200


class AgentExecutor:
    """Runs one agent task. Create a new executor per task; state is not reused."""

    def __init__(
        self,
        chat: ChatClient,
        acquisition: AcquisitionService,
        *,
        model: str,
        max_iterations: int | None = None,
        bypass_url: str | None = None,
        crawl4ai_base_url: str | None = None,
    ):
        self.chat = chat
        self.acquisition = acquisition
        self.model = model
        self.max_iterations = max(1, max_iterations or settings.agent_max_iterations)
        self.bypass_url = bypass_url
        self.crawl4ai_base_url = crawl4ai_base_url
        self.llm_calls = 0
        self.total_cost = 0.0

    def _count_call(self) -> None:
        self.llm_calls += 1
        self.total_cost += estimate_cost_per_call(self.model)

    def _result(
        self,
        *,
        success: bool,
        text: str,
        iterations: int,
        accumulated: dict[str, AcquiredContent],
        scratchpad: list[ScratchpadEntry],
        error: str | None = None,
    ) -> AgentResult:
        return AgentResult(
            success=success,
            text=text,
            iterations=iterations,
            llm_calls=self.llm_calls,
            sources=list(accumulated.keys()),
            estimated_cost=format_cost(self.total_cost),
            error=error,
            scratchpad=list(scratchpad),
        )

    async def run(
        self,
        task: str,
        initial_content: AcquiredContent,
        extraction: ExtractionAttempt,
        *,
        prior_pages: list[AcquiredContent] | None = None,
    ) -> AgentResult:
        scratchpad: list[ScratchpadEntry] = []
        accumulated: dict[str, AcquiredContent] = {initial_content.url: initial_content}
        # Pages fetched before the agent started count as already scraped
        for page in prior_pages or []:
            accumulated.setdefault(page.url, page)
        tools = AgentToolSet(
            self.acquisition,
            accumulated,
            bypass_url=self.bypass_url,
            crawl4ai_base_url=self.crawl4ai_base_url,
        )
        iteration = 0

        try:
            system_prompt = build_system_prompt()
            for iteration in range(1, self.max_iterations + 1):
                user_prompt = build_user_prompt(
                    PromptContext(
                        task=task,
                        iteration=iteration,
                        max_iterations=self.max_iterations,
                        initial_content=initial_content,
                        extraction=extraction,
                        scratchpad=scratchpad,
                        accumulated=accumulated,
                    )
                )

                self._count_call()
                response = await self.chat.complete(
                    system_prompt,
                    user_prompt,
                    model=self.model,
                    temperature=settings.llm_temperature,
                    max_tokens=settings.llm_max_tokens,
                    caller="agent_executor",
                )

                parsed = parse_llm_response(response.text)
                if not isinstance(parsed, ParsedResponse):
                    logger.info(f"Iteration {iteration}: unparseable response ({parsed.reason})")
                    scratchpad.append(
                        ScratchpadEntry(
                            iteration=iteration,
                            thinking="Failed to parse response",
                            action=ToolCall(tool="error", params={"raw": response.text[:RAW_RESPONSE_CHARS]}),
                            result=f"Invalid response format: {parsed.reason}",
                        )
                    )
                    continue

                if parsed.action.tool == "complete":
                    answer = parsed.action.params.get("result")
                    answer = answer.strip() if isinstance(answer, str) else ""
                    if answer:
                        log_event("agent_complete", "Agent called complete", iterations=iteration)
                        return self._result(
                            success=True,
                            text=answer,
                            iterations=iteration,
                            accumulated=accumulated,
                            scratchpad=scratchpad,
                        )
                    logger.info(f"Iteration {iteration}: empty complete(), forcing synthesis")
                    text = await self._forced_completion(task, accumulated)
                    return self._result(
                        success=True,
                        text=text,
                        iterations=iteration,
                        accumulated=accumulated,
                        scratchpad=scratchpad,
                    )

                tool_result = await tools.execute(parsed.action)
                if tool_result.success:
                    observation = json.dumps(tool_result.data, ensure_ascii=False, default=str)
                else:
                    observation = f"Error: {tool_result.error}"
                scratchpad.append(
                    ScratchpadEntry(
                        iteration=iteration,
                        thinking=parsed.thinking[:SCRATCHPAD_FIELD_CHARS],
                        action=parsed.action,
                        result=observation[:SCRATCHPAD_FIELD_CHARS],
                    )
                )
                logger.debug(f"Iteration {iteration}: {parsed.action.tool} -> {observation[:120]}")

            logger.info(f"Agent hit {self.max_iterations} iterations without complete(), forcing synthesis")
            text = await self._forced_completion(task, accumulated)
            return self._result(
                success=True,
                text=text,
                iterations=self.max_iterations,
                accumulated=accumulated,
                scratchpad=scratchpad,
            )
        except Exception as exc:
            logger.exception(f"Agent run failed at iteration {iteration}")
            return self._result(
                success=False,
                text="",
                iterations=len(scratchpad),
                accumulated=accumulated,
                scratchpad=scratchpad,
                error=str(exc) or type(exc).__name__,
            )

    async def _forced_completion(self, task: str, accumulated: dict[str, AcquiredContent]) -> str:
        """One synthesis call that must answer; page previews if it cannot."""
        self._count_call()
        try:
            response = await self.chat.complete(
                render_prompt("agent.forced_system_prompt"),
                build_forced_completion_prompt(task, accumulated),
                model=self.model,
                temperature=settings.forced_temperature,
                max_tokens=settings.forced_max_tokens,
                caller="forced_completion",
            )
        except Exception as exc:
            logger.warning(f"Forced completion failed, returning page summary: {exc}")
            return build_fallback_summary(task, accumulated)

        if not response.text.strip():
            logger.warning("Forced completion returned empty text, returning page summary")
            return build_fallback_summary(task, accumulated)
        return response.text.strip()
