"""Anti-bot bypass transport backed by a FlareSolverr v1 endpoint."""
from __future__ import annotations

import httpx
from loguru import logger
from pydantic import BaseModel, ValidationError

from webaccess.access_core.models.interfaces import TransportResult
from webaccess.config import settings
from webaccess.tools.web_utils import extract_text_content

# FlareSolverr needs slack on top of its own maxTimeout to answer
REQUEST_BUFFER_SECONDS = 10.0


class FlareSolverrCookie(BaseModel):
    name: str
    value: str
    domain: str = ""
    path: str = "/"


class FlareSolverrSolution(BaseModel):
    url: str = ""
    status: int = 0
    headers: dict[str, str] = {}
    response: str = ""
    cookies: list[FlareSolverrCookie] = []
    userAgent: str = ""


class FlareSolverrResponse(BaseModel):
    status: str
    message: str = ""
    solution: FlareSolverrSolution | None = None
    version: str = ""


async def fetch(
    url: str,
    endpoint: str,
    *,
    timeout: float | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> TransportResult:
    timeout_seconds = settings.flaresolverr_timeout_seconds if timeout is None else timeout
    payload = {
        "cmd": "request.get",
        "url": url,
        "maxTimeout": int(timeout_seconds * 1000),
    }

    try:
        async with httpx.AsyncClient(
            timeout=timeout_seconds + REQUEST_BUFFER_SECONDS,
            transport=transport,
        ) as client:
            response = await client.post(endpoint, json=payload)
    except httpx.TimeoutException:
        return TransportResult(success=False, error=f"FlareSolverr request timed out after {timeout_seconds:g}s")
    except httpx.HTTPError as exc:
        logger.debug(f"FlareSolverr unreachable at {endpoint}: {exc}")
        return TransportResult(success=False, error=f"FlareSolverr error: {exc}")

    if response.status_code >= 400:
        return TransportResult(
            success=False,
            error=f"FlareSolverr HTTP error: {response.status_code}",
            status_code=response.status_code,
        )

    try:
        body = FlareSolverrResponse.model_validate_json(response.content)
    except ValidationError as exc:
        return TransportResult(success=False, error=f"FlareSolverr returned an unexpected payload: {exc.error_count()} errors")

    if body.status != "ok":
        return TransportResult(success=False, error=f"FlareSolverr error: {body.message or 'Unknown error'}")

    if body.solution is None or not body.solution.response.strip():
        return TransportResult(success=False, error="FlareSolverr returned empty response")

    html = body.solution.response
    return TransportResult(
        success=True,
        html=html,
        text=extract_text_content(html),
        status_code=body.solution.status or None,
    )
