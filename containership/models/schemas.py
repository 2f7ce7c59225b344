from __future__ import annotations

from datetime import datetime, timezone
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field


def utc_timestamp() -> str:
    """ISO-8601 UTC timestamp with millisecond precision, e.g. 2024-01-01T00:00:00.000Z."""

    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


class _Envelope(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    request_id: str = Field(alias="requestId")
    timestamp: str = Field(default_factory=utc_timestamp)


class RootResponse(_Envelope):
    message: str


class MemoryUsage(BaseModel):
    rss: int
    vms: int


class HealthResponse(_Envelope):
    status: Literal["UP"] = "UP"
    uptime: float = Field(ge=0)
    memory: MemoryUsage


class ErrorResponse(_Envelope):
    error: str
