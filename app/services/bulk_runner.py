# app/services/bulk_runner.py
"""
Bulk job driver.

``prepare`` validates and registers a job synchronously (inside the request);
``run`` executes it as a background task after the response has been sent.
Every job that reaches ``run`` ends with exactly one terminal event:
``complete`` or ``error``.
"""

import asyncio
import os
import shutil
from functools import partial
from pathlib import Path
from typing import Any, Dict, Optional, Sequence

from app.core.config import Settings
from app.core.exceptions import BroadcasterUnavailableError, ValidationError
from app.core.jobs import ArchiveExtras, Job, JobStore, WorkContext, WorkFunction, WorkItem
from app.core.logging import LoggerMixin, log_job_context
from app.schemas.job import WorkItemResult
from app.services.archive import ArchiveAssembler
from app.services.broadcaster import JobProgressBroadcaster, serialize_results
from app.services.executor import execute_work_item, skipped_result
from app.services.job_ids import resolve_job_id
from app.services.scheduler import run_bounded


class BulkJobRunner(LoggerMixin):
    def __init__(
        self,
        settings: Settings,
        broadcaster: Optional[JobProgressBroadcaster],
        assembler: ArchiveAssembler,
        job_store: JobStore,
        job_prefix: str,
        namespace: Optional[str] = None,
    ):
        self.settings = settings
        self.broadcaster = broadcaster
        self.assembler = assembler
        self.job_store = job_store
        self.job_prefix = job_prefix
        self.namespace = namespace or (broadcaster.namespace if broadcaster else None)

    @property
    def utility(self) -> str:
        return self.namespace

    def work_dir(self, job_id: str) -> Path:
        return Path(self.settings.DOWNLOAD_DIR) / self.utility / job_id

    def prepare(
        self,
        items: Sequence[WorkItem],
        config: Any,
        work_fn: WorkFunction,
        job_id: Optional[str] = None,
        max_concurrent: Optional[int] = None,
        archive_extras: Optional[ArchiveExtras] = None,
    ) -> Job:
        """Batch setup. Raises before any id is allocated if setup is impossible."""
        if self.broadcaster is None or self.broadcaster.manager is None:
            raise BroadcasterUnavailableError("Progress transport is not initialized")

        limit = max_concurrent if max_concurrent is not None else self.settings.MAX_CONCURRENT
        if limit < 1:
            raise ValueError(f"max_concurrent must be positive, got {limit}")

        resolved = resolve_job_id(self.job_prefix, job_id)
        if resolved in self.job_store or self.assembler.locate(self.utility, resolved) is not None:
            raise ValidationError("Job id is already in use", {"job_id": resolved})

        job = Job(
            id=resolved,
            utility=self.utility,
            items=list(items),
            config=config,
            work_fn=work_fn,
            max_concurrent=limit,
            archive_extras=archive_extras,
        )
        self.job_store.add(job)
        self.logger.info(
            "Bulk job accepted",
            **log_job_context(job.id, self.utility, total=job.total, max_concurrent=limit),
        )
        return job

    async def run(self, job: Job) -> None:
        """Top-level batch driver; nothing escapes it."""
        try:
            await self._execute(job)
        except Exception as e:
            self.logger.error(
                "Bulk job failed", **log_job_context(job.id, self.utility, error=str(e))
            )
            job.finish(success=False, error=str(e) or e.__class__.__name__)
            await self._emit_error(job, e)
        finally:
            self.job_store.discard(job.id)

    async def _emit_error(self, job: Job, error: Exception) -> None:
        try:
            await self.broadcaster.emit_error(job.id, error)
        except Exception as e:
            self.logger.error(
                "Failed to deliver job error event",
                **log_job_context(job.id, self.utility, error=str(e)),
            )

    async def _execute(self, job: Job) -> None:
        job.mark_processing()
        skipped = [(i, item) for i, item in enumerate(job.items) if item.skip_reason]
        runnable = [(i, item) for i, item in enumerate(job.items) if not item.skip_reason]

        await self.broadcaster.emit_start(
            job.id,
            {
                "total": job.total,
                "runnable": len(runnable),
                "skipped": len(skipped),
                "config": _config_payload(job.config),
            },
        )

        for index, item in skipped:
            await self._complete_item(job, skipped_result(item, index, item.skip_reason))

        work_dir = self.work_dir(job.id)
        thunks = [partial(self._run_item, job, index, item, work_dir) for index, item in runnable]
        await run_bounded(thunks, job.max_concurrent, self.settings.SCHEDULER_MODE)

        results = job.results.results()
        extras = job.archive_extras(job.id, results) if job.archive_extras else None
        archive = await self.assembler.assemble(self.utility, job.id, results, extras)
        job.archive_path = str(archive)
        # artifacts now live in the archive
        await asyncio.to_thread(shutil.rmtree, work_dir, True)

        counts = job.results.counts()
        job.finish(success=True)
        self.logger.info(
            "Bulk job completed",
            **log_job_context(
                job.id,
                self.utility,
                success=counts.success,
                failed=counts.failed,
                skipped=counts.skipped,
            ),
        )
        await self.broadcaster.emit_complete(
            job.id,
            {
                "total": job.total,
                "totalProcessed": counts.success,
                "totalFailed": counts.failed,
                "totalSkipped": counts.skipped,
                "zipPath": archive.name,
                "downloadUrl": f"/api/{self.utility}/download/{job.id}",
                "results": serialize_results(results),
            },
        )

    async def _run_item(self, job: Job, index: int, item: WorkItem, work_dir: Path) -> None:
        context = WorkContext(
            job_id=job.id,
            utility=self.utility,
            index=index,
            identity=item.identity,
            work_dir=work_dir,
        )
        result = await execute_work_item(job.work_fn, item, job.config, context)
        if result.status == "success" and result.artifact_location:
            if not await asyncio.to_thread(os.path.isfile, result.artifact_location):
                result = _missing_artifact(result)
        await self._complete_item(job, result)

    async def _complete_item(self, job: Job, result: WorkItemResult) -> None:
        completed = job.record(result.index, result)
        await self.broadcaster.emit_item_progress(job.id, completed, job.total, result)


def _missing_artifact(result: WorkItemResult) -> WorkItemResult:
    error = "Generated file is missing"
    return WorkItemResult(
        identity=result.identity,
        index=result.index,
        status="failed",
        message=error,
        error=error,
        details=result.details,
    )


def _config_payload(config: Any) -> Optional[Dict[str, Any]]:
    if config is None:
        return None
    if hasattr(config, "to_payload"):
        return config.to_payload()
    if hasattr(config, "model_dump"):
        return config.model_dump(mode="json")
    return None
