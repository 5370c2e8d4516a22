from __future__ import annotations

from dataclasses import asdict, dataclass, field, fields
from typing import Any, Literal


AcquireMethod = Literal["http", "flaresolverr", "browser"]
Operation = Literal["fetch_content", "crawl", "download_assets", "screenshot", "run_script"]
AssetType = Literal["pdf", "image", "csv"]

ACQUIRE_METHODS: tuple[AcquireMethod, ...] = ("http", "flaresolverr", "browser")


@dataclass(slots=True)
class TransportResult:
    """Uniform outcome of one fetch through a transport."""

    success: bool
    html: str = ""
    text: str = ""
    error: str | None = None
    status_code: int | None = None


@dataclass(frozen=True, slots=True)
class RenderedPage:
    html: str
    text: str
    final_url: str = ""


@dataclass(frozen=True, slots=True)
class MethodAttempt:
    method: AcquireMethod
    success: bool
    error: str | None = None


@dataclass(frozen=True, slots=True)
class AcquireOptions:
    bypass_url: str | None = None
    skip_bypass: bool = False
    skip_render: bool = False
    preferred_method: AcquireMethod | None = None


@dataclass(frozen=True, slots=True)
class AcquiredContent:
    url: str
    html: str
    text: str
    method: AcquireMethod
    elapsed_ms: int
    success: bool
    error: str | None = None
    methods_tried: tuple[MethodAttempt, ...] = ()


@dataclass(frozen=True, slots=True)
class TaskIntent:
    wants_email: bool = False
    wants_phone: bool = False
    wants_product_list: bool = False
    wants_text_dump: bool = False
    wants_pdf: bool = False
    wants_images: bool = False
    wants_csv: bool = False
    wants_screenshot: bool = False
    wants_download: bool = False
    is_research: bool = False
    is_complex_task: bool = False
    requires_navigation: bool = False
    wants_structured_data: bool = False
    is_general: bool = False

    def active_flags(self) -> list[str]:
        return [f.name for f in fields(self) if getattr(self, f.name)]

    @property
    def needs_llm_synthesis(self) -> bool:
        return (
            self.is_complex_task
            or self.requires_navigation
            or self.wants_structured_data
            or self.is_research
        )


@dataclass(frozen=True, slots=True)
class ProductSummary:
    name: str
    url: str
    price: str | None = None


@dataclass(slots=True)
class ExtractionData:
    title: str | None = None
    text: str | None = None
    emails: list[str] | None = None
    phones: list[str] | None = None
    products: list[ProductSummary] | None = None

    def to_dict(self) -> dict[str, Any]:
        return {key: value for key, value in asdict(self).items() if value is not None}

    def has_structured_data(self) -> bool:
        return bool(self.emails or self.phones or self.products)


@dataclass(frozen=True, slots=True)
class ExtractionAttempt:
    success: bool
    data: ExtractionData | None
    what_was_tried: tuple[str, ...]
    reason: str
    detected_intent: TaskIntent


@dataclass(frozen=True, slots=True)
class CrawledPage:
    url: str
    title: str | None = None
    snippet: str | None = None


@dataclass(frozen=True, slots=True)
class ToolCall:
    tool: str
    params: dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True)
class ToolResult:
    success: bool
    data: dict[str, Any] | None = None
    content: AcquiredContent | None = None
    pages: list[CrawledPage] | None = None
    error: str | None = None


@dataclass(frozen=True, slots=True)
class ScratchpadEntry:
    iteration: int
    thinking: str
    action: ToolCall
    result: str | None = None


@dataclass(slots=True)
class AgentResult:
    success: bool
    text: str
    iterations: int
    llm_calls: int
    sources: list[str]
    estimated_cost: str
    error: str | None = None
    scratchpad: list[ScratchpadEntry] = field(default_factory=list)
