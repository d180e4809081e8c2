# app/core/jobs.py
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence, Union

from app.schemas.job import JobStatus, WorkItemResult, WorkOutput, utc_now
from app.services.aggregator import ResultAggregator


@dataclass(frozen=True)
class WorkItem:
    """One element of a batch. A skip_reason means the item never runs."""

    identity: str
    payload: Any = None
    skip_reason: Optional[str] = None


@dataclass(frozen=True)
class WorkContext:
    """Per-item execution context handed to work functions."""

    job_id: str
    utility: str
    index: int
    identity: str
    work_dir: Any  # pathlib.Path of the job's scratch directory


WorkFunction = Callable[
    [Any, Any, WorkContext], Union[WorkOutput, Awaitable[WorkOutput]]
]

# builds extra archive members (name -> bytes) from the job id and final results
ArchiveExtras = Callable[[str, List[WorkItemResult]], Dict[str, bytes]]


@dataclass
class Job:
    id: str
    utility: str
    items: Sequence[WorkItem]
    config: Any
    work_fn: WorkFunction
    max_concurrent: int
    archive_extras: Optional[ArchiveExtras] = None

    status: JobStatus = "queued"
    completed: int = 0
    error: Optional[str] = None
    archive_path: Optional[str] = None
    created_at: datetime = field(default_factory=utc_now)
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None
    results: ResultAggregator = field(init=False)

    def __post_init__(self) -> None:
        self.results = ResultAggregator(len(self.items))

    @property
    def total(self) -> int:
        return len(self.items)

    @property
    def progress(self) -> float:
        if self.total <= 0:
            return 100.0
        return max(0.0, min(100.0, self.completed / self.total * 100))

    def mark_processing(self) -> None:
        self.status = "processing"
        self.started_at = utc_now()

    def record(self, index: int, result: WorkItemResult) -> int:
        """Store one item's result and bump the completion counter."""
        if self.completed >= self.total:
            raise RuntimeError(f"Job {self.id} already completed all {self.total} items")
        self.results.record(index, result)
        self.completed += 1
        return self.completed

    def finish(self, success: bool = True, error: Optional[str] = None) -> None:
        self.status = "done" if success else "error"
        if error:
            self.error = error
        self.finished_at = utc_now()


class JobStore:
    """Transient registry of jobs that have not reached a terminal event yet."""

    def __init__(self) -> None:
        self._store: Dict[str, Job] = {}

    def __contains__(self, job_id: str) -> bool:
        return job_id in self._store

    def __len__(self) -> int:
        return len(self._store)

    def add(self, job: Job) -> None:
        if job.id in self._store:
            raise KeyError(f"Job {job.id} is already running")
        self._store[job.id] = job

    def get_listing(self) -> List[Job]:
        return list(self._store.values())

    def discard(self, job_id: str) -> None:
        self._store.pop(job_id, None)
