from __future__ import annotations

from typing import Any, Optional

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class _CamelModel(BaseModel):
    # The browser client expects camelCase keys.
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ConvertStats(_CamelModel):
    input_bytes: int
    markdown_bytes: int
    compression_ratio: Optional[float] = None
    image_count: int = 0
    chart_count: int = 0
    processing_time_ms: Optional[int] = None


class ConvertResponse(_CamelModel):
    success: bool = True
    filename: str
    has_images: bool
    download_url: str
    markdown: str
    image_count: int = 0
    chart_count: int = 0
    metadata: dict[str, Any] = {}
    stats: ConvertStats


class CleanupResponse(BaseModel):
    success: bool = True
    message: str


class ErrorResponse(BaseModel):
    success: bool = False
    error: str
