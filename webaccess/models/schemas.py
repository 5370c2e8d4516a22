from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# --- Result record ---


class Product(_CamelModel):
    name: str
    url: str
    price: str | None = None


class NonLlmAttempt(_CamelModel):
    tried: list[str]
    reason: str


class MethodTried(_CamelModel):
    method: str
    success: bool
    error: str | None = None


class PageHit(_CamelModel):
    url: str
    emails: list[str] = []
    phones: list[str] = []


class ResultData(_CamelModel):
    text: str = ""
    sources: list[str] | None = None
    title: str | None = None
    emails: list[str] | None = None
    phones: list[str] | None = None
    products: list[Product] | None = None
    assets: list[str] | None = None
    pages: list[PageHit] | None = None
    script_result: Any = None


class ResultMeta(_CamelModel):
    used_llm: bool = False
    operation: str | None = None
    scrape_method: str | None = None
    iterations: int | None = None
    llm_calls: int | None = None
    estimated_cost: str | None = None
    non_llm_attempt: NonLlmAttempt | None = None
    methods_tried: list[MethodTried] | None = None
    pages_inspected: int | None = None


class Attachment(_CamelModel):
    """Binary side output (screenshot, downloaded file); never serialized into the record."""

    filename: str
    content_type: str
    content: bytes


class WebAccessResult(_CamelModel):
    url: str
    task: str
    success: bool
    data: ResultData = Field(default_factory=ResultData)
    meta: ResultMeta = Field(default_factory=ResultMeta)
    error: str | None = None
    attachments: list[Attachment] = Field(default_factory=list, exclude=True)

    def to_output(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)
