# app/routers/common.py
"""
Helpers shared by the utility routers: config parsing, upload storage,
bulk submission, single-item execution and archive downloads.
"""

import asyncio
import os
import shutil
import uuid
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Sequence, Type, TypeVar

import pydantic
from fastapi import BackgroundTasks, UploadFile
from fastapi.responses import FileResponse

from app.core.config import Settings
from app.core.exceptions import (
    BroadcasterUnavailableError,
    ValidationError,
    create_http_exception,
    internal_server_http_error,
    not_found_http_error,
    service_unavailable_http_error,
    validation_http_error,
)
from app.core.jobs import ArchiveExtras, WorkContext, WorkFunction, WorkItem
from app.core.logging import get_logger
from app.schemas.job import ApiResponse, JobAccepted, WorkItemResult
from app.services.archive import ArchiveAssembler
from app.services.bulk_runner import BulkJobRunner
from app.services.executor import execute_work_item

logger = get_logger(__name__)

M = TypeVar("M", bound=pydantic.BaseModel)

SINGLE_JOB_PREFIX = "single"


def parse_config(model: Type[M], data: Dict[str, Any]) -> M:
    """Validate form-encoded config; errors surface as 422 like JSON bodies."""
    try:
        return model.model_validate({k: v for k, v in data.items() if v not in (None, "")})
    except pydantic.ValidationError as e:
        raise create_http_exception(
            422,
            "Invalid configuration",
            {"errors": e.errors(include_url=False, include_context=False)},
        )


async def save_uploads(
    files: Sequence[UploadFile],
    settings: Settings,
    allowed_content_types: Iterable[str],
) -> List[tuple]:
    """
    Store uploads under UPLOAD_DIR with unique names.

    Returns (path, original filename) pairs. On any rejection every file
    written so far is removed before the 400 is raised.
    """
    allowed = set(allowed_content_types)
    if not files:
        raise validation_http_error("No files uploaded")
    if len(files) > settings.MAX_BULK_FILES:
        raise validation_http_error(
            f"Too many files: at most {settings.MAX_BULK_FILES} per request"
        )

    upload_dir = Path(settings.UPLOAD_DIR)
    upload_dir.mkdir(parents=True, exist_ok=True)
    saved: List[tuple] = []
    try:
        for file in files:
            if not file or not file.filename:
                raise validation_http_error("File is required")
            if file.content_type not in allowed:
                logger.warning(
                    "Unsupported file type attempted",
                    filename=file.filename,
                    content_type=file.content_type,
                )
                raise validation_http_error(
                    f"Unsupported file type: {file.content_type}",
                    {"filename": file.filename},
                )

            contents = await file.read()
            if len(contents) > settings.MAX_FILE_SIZE:
                raise validation_http_error(
                    "File is too large",
                    {"filename": file.filename, "max_bytes": settings.MAX_FILE_SIZE},
                )

            path = upload_dir / f"{uuid.uuid4().hex}{Path(file.filename).suffix.lower()}"
            await asyncio.to_thread(path.write_bytes, contents)
            saved.append((str(path), Path(file.filename).name))
            logger.info("File saved to upload directory", path=str(path), size=len(contents))
    except BaseException:
        remove_files(path for path, _ in saved)
        raise
    return saved


def remove_files(paths: Iterable[str]) -> None:
    for path in paths:
        if os.path.exists(path):
            os.remove(path)


def submit_bulk(
    runner: BulkJobRunner,
    background: BackgroundTasks,
    items: Sequence[WorkItem],
    config: Any,
    work_fn: WorkFunction,
    message: str,
    job_id: Optional[str] = None,
    max_concurrent: Optional[int] = None,
    archive_extras: Optional[ArchiveExtras] = None,
) -> ApiResponse[JobAccepted]:
    """Register the job, schedule it after the response, answer with its id."""
    try:
        job = runner.prepare(
            items,
            config,
            work_fn,
            job_id=job_id,
            max_concurrent=max_concurrent,
            archive_extras=archive_extras,
        )
    except BroadcasterUnavailableError as e:
        logger.error("Bulk job rejected", utility=runner.utility, error=e.message)
        raise service_unavailable_http_error(e.message)
    except ValidationError as e:
        logger.warning("Bulk job rejected", utility=runner.utility, error=e.message)
        raise validation_http_error(e.message, e.details)
    except ValueError as e:
        raise validation_http_error(str(e))

    background.add_task(runner.run, job)
    logger.info("Background processing scheduled", job_id=job.id, utility=runner.utility)
    return ApiResponse[JobAccepted](
        success=True, data=JobAccepted(job_id=job.id), message=message
    )


async def run_single(
    settings: Settings,
    utility: str,
    work_fn: WorkFunction,
    item: WorkItem,
    config: Any,
) -> WorkItemResult:
    """Execute one item inline; failures become 400/500 responses."""
    run_id = f"{SINGLE_JOB_PREFIX}-{uuid.uuid4().hex[:12]}"
    context = WorkContext(
        job_id=run_id,
        utility=utility,
        index=0,
        identity=item.identity,
        work_dir=Path(settings.DOWNLOAD_DIR) / utility / run_id,
    )
    result = await execute_work_item(work_fn, item, config, context)
    if result.status == "success":
        return result

    shutil.rmtree(context.work_dir, ignore_errors=True)

    logger.warning("Single item failed", utility=utility, error=result.error or result.message)
    if result.status == "skipped":
        raise validation_http_error(result.message)
    raise create_http_exception(400, result.error or result.message)


def file_response(result: WorkItemResult, media_type: str, background: BackgroundTasks):
    """Stream a single-item artifact back and delete its scratch directory afterwards."""
    path = result.artifact_location
    if not path or not os.path.isfile(path):
        raise internal_server_http_error("Generated file is missing")
    background.add_task(shutil.rmtree, os.path.dirname(path), True)
    return FileResponse(
        path,
        media_type=media_type,
        filename=result.archive_name or os.path.basename(path),
    )


def archive_response(assembler: ArchiveAssembler, utility: str, job_id: str) -> FileResponse:
    try:
        path = assembler.locate(utility, job_id)
    except Exception as e:
        logger.error("Failed to locate archive", job_id=job_id, error=str(e))
        raise internal_server_http_error("Failed to locate archive")

    if path is None:
        logger.warning("Archive not found", utility=utility, job_id=job_id)
        raise not_found_http_error("Archive", job_id)

    logger.info("Serving archive", utility=utility, job_id=job_id)
    return FileResponse(path, media_type="application/zip", filename=path.name)

