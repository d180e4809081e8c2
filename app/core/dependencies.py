# app/core/dependencies.py
"""
Centralized dependency injection for FastAPI.

Long-lived collaborators (connection manager, job store, archive assembler)
are created once in the application lifespan and kept on ``app.state``;
the providers below only read them back, so tests can swap them freely.
"""

from typing import Annotated, Callable, Optional
from fastapi import Depends, Request

from app.core.config import Settings
from app.core.jobs import JobStore
from app.core.logging import get_logger
from app.services.archive import ArchiveAssembler
from app.services.broadcaster import ConnectionManager, JobProgressBroadcaster
from app.services.bulk_runner import BulkJobRunner

logger = get_logger(__name__)


def get_app_settings(request: Request) -> Settings:
    """Settings the application was created with."""
    return request.app.state.settings


def get_connection_manager(request: Request) -> Optional[ConnectionManager]:
    """None until the lifespan has set up the progress transport."""
    return getattr(request.app.state, "connection_manager", None)


def get_job_store(request: Request) -> JobStore:
    return request.app.state.job_store


def get_archive_assembler(request: Request) -> ArchiveAssembler:
    return request.app.state.archive_assembler


def runner_provider(namespace: str, job_prefix: str) -> Callable[..., BulkJobRunner]:
    """Build a dependency returning a BulkJobRunner bound to one utility."""

    def provide(
        settings: Annotated[Settings, Depends(get_app_settings)],
        manager: Annotated[Optional[ConnectionManager], Depends(get_connection_manager)],
        store: Annotated[JobStore, Depends(get_job_store)],
        assembler: Annotated[ArchiveAssembler, Depends(get_archive_assembler)],
    ) -> BulkJobRunner:
        broadcaster = JobProgressBroadcaster(manager, namespace) if manager is not None else None
        logger.debug("Creating bulk job runner", utility=namespace)
        return BulkJobRunner(
            settings=settings,
            broadcaster=broadcaster,
            assembler=assembler,
            job_store=store,
            job_prefix=job_prefix,
            namespace=namespace,
        )

    return provide
