"""JSON contracts shared by the gateway and the workflow client.

Field names follow the partner API (camelCase on the wire); unknown fields are
kept so nothing the upstream adds gets lost on the way through.
"""

from datetime import datetime
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

ALL_LEVELS = (1, 2, 3, 4, 5)


class MasteringMode(StrEnum):
    PROCESS = "process"  # modern sheen and width, the default
    LITE = "lite"  # open, gentle lift
    WARM = "warm"  # powerful, saturated tilt


class WireModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")


class UploadTicket(WireModel):
    upload_url: str
    s3_key: str
    headers: dict[str, str] = {}
    expires_in: int | None = None


class SubmitRequest(WireModel):
    s3_key: str
    key: str
    mode: MasteringMode = MasteringMode.PROCESS
    title: str
    ext: str
    content_type: str = "audio/wav"
    size_bytes: int
    size_mb: float = Field(alias="sizeMB")
    size: float


class JobStatus(WireModel):
    job_id: str | None = None
    mastered: bool = False
    url: str | None = None
    error: str | None = None
    expected_key: str | None = None
    expected_url: str | None = None
    deliverables: list[Any] = []


class IntensityEntry(WireModel):
    level: int
    available: bool = False
    url: str | None = None
    expires_at: datetime | str | None = None

    @property
    def playable(self) -> bool:
        return self.available and bool(self.url)


class IntensityReport(WireModel):
    original_url: str | None = None
    intensities: list[IntensityEntry] = []
    requested_levels: list[int] | None = None
    expected_key: str | None = None
    expected_url: str | None = None


class ProbeResponse(BaseModel):
    success: bool = True
    mastered: bool
    urls: list[str]
