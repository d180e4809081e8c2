from .aggregator import ResultAggregator
from .archive import ArchiveAssembler
from .broadcaster import ConnectionManager, JobProgressBroadcaster
from .job_ids import allocate_job_id, resolve_job_id
from .scheduler import run_bounded, run_chunked, run_sliding_window

__all__ = [
    "ResultAggregator",
    "ArchiveAssembler",
    "ConnectionManager",
    "JobProgressBroadcaster",
    "allocate_job_id",
    "resolve_job_id",
    "run_bounded",
    "run_chunked",
    "run_sliding_window",
]
