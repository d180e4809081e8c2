# app/schemas/job.py

from datetime import datetime, timezone
from typing import Any, Dict, Generic, Literal, Optional, TypeVar
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


# Job lifecycle
JobStatus = Literal["queued", "processing", "done", "error"]

# pending/processing are transient; only the last three are terminal
ItemStatus = Literal["pending", "processing", "success", "failed", "skipped"]
TERMINAL_STATUSES = ("success", "failed", "skipped")


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class CamelModel(BaseModel):
    """Models serialized to the browser client with camelCase keys."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_payload(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class WorkItemResult(CamelModel):
    """Outcome of one unit of work"""

    identity: str
    index: int = 0  # submission position
    status: ItemStatus
    message: str
    artifact_location: Optional[str] = None  # only when status == "success"
    archive_name: Optional[str] = None
    error: Optional[str] = None  # only when status == "failed"
    details: Dict[str, Any] = Field(default_factory=dict)
    timestamp: datetime = Field(default_factory=utc_now)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES


class WorkOutput(BaseModel):
    """What a work function hands back on success."""

    message: str = "Processed successfully"
    artifact_location: Optional[str] = None
    archive_name: Optional[str] = None
    details: Dict[str, Any] = Field(default_factory=dict)


class JobCounts(CamelModel):
    total: int
    success: int = 0
    failed: int = 0
    skipped: int = 0


class ProgressEvent(BaseModel):
    """Transient message pushed to subscribers, never persisted."""

    event: str
    data: Dict[str, Any]


class JobAccepted(CamelModel):
    job_id: str


T = TypeVar("T")


class ApiResponse(BaseModel, Generic[T]):
    success: bool
    data: Optional[T] = None
    error: Optional[str] = None
    message: Optional[str] = None
