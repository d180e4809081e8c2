"""
Document fetcher API.

Routes:
- POST /api/document-fetcher/process-documents - download every mapped Drive link
- GET /api/document-fetcher/download/{job_id} - finished archive, one folder per column
"""

from typing import Annotated

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException
from fastapi.responses import FileResponse

from app.core.config import Settings
from app.core.dependencies import get_app_settings, get_archive_assembler, runner_provider
from app.core.exceptions import internal_server_http_error
from app.core.logging import get_logger
from app.schemas.job import ApiResponse, JobAccepted
from app.schemas.utilities import DocumentFetcherRequest
from app.services.archive import ArchiveAssembler
from app.services.bulk_runner import BulkJobRunner
from app.utils import documents
from app.routers.common import archive_response, submit_bulk

logger = get_logger(__name__)

router = APIRouter(prefix=f"/api/{documents.NAMESPACE}", tags=["document-fetcher"])

get_runner = runner_provider(documents.NAMESPACE, documents.JOB_PREFIX)


@router.post("/process-documents", summary="Fetch Documents")
async def process_documents(
    request: DocumentFetcherRequest,
    background: BackgroundTasks,
    settings: Annotated[Settings, Depends(get_app_settings)],
    runner: Annotated[BulkJobRunner, Depends(get_runner)],
) -> ApiResponse[JobAccepted]:
    try:
        items = documents.build_items(request.data, request.config)
        logger.info(
            "Processing documents",
            rows=len(request.data),
            columns=len(request.config.column_mapping),
            items=len(items),
        )
        fetcher = documents.DocumentFetcher(runner.broadcaster, timeout=settings.DOWNLOAD_TIMEOUT)
        return submit_bulk(
            runner,
            background,
            items,
            request.config,
            fetcher,
            message="Document processing started",
            job_id=request.job_id,
            max_concurrent=request.config.max_concurrent,
        )
    except HTTPException:
        raise
    except Exception as e:
        logger.error("Failed to start document processing", error=str(e))
        raise internal_server_http_error("Failed to start document processing")


@router.get("/download/{job_id}", summary="Download Documents Archive")
async def download(
    job_id: str,
    assembler: Annotated[ArchiveAssembler, Depends(get_archive_assembler)],
) -> FileResponse:
    return archive_response(assembler, documents.NAMESPACE, job_id)
