"""
QR code API.

Routes:
- POST /api/qr-code/generate - one QR code, returned as PNG
- POST /api/qr-code/generate-bulk - background job over a list of configs
- GET /api/qr-code/download/{job_id} - finished archive
"""

from typing import Annotated

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException
from fastapi.responses import FileResponse

from app.core.config import Settings
from app.core.dependencies import get_app_settings, get_archive_assembler, runner_provider
from app.core.exceptions import internal_server_http_error
from app.core.jobs import WorkItem
from app.core.logging import get_logger
from app.schemas.job import ApiResponse, JobAccepted
from app.schemas.utilities import QRCodeBulkRequest, QRCodeConfig
from app.services.archive import ArchiveAssembler
from app.services.bulk_runner import BulkJobRunner
from app.utils import qr_codes
from app.routers.common import archive_response, file_response, run_single, submit_bulk

logger = get_logger(__name__)

router = APIRouter(prefix=f"/api/{qr_codes.NAMESPACE}", tags=["qr-code"])

get_runner = runner_provider(qr_codes.NAMESPACE, qr_codes.JOB_PREFIX)


@router.post("/generate", summary="Generate QR Code", response_class=FileResponse)
async def generate_qr_code(
    config: QRCodeConfig,
    background: BackgroundTasks,
    settings: Annotated[Settings, Depends(get_app_settings)],
):
    try:
        logger.info("Generating QR code", type=config.type, size=config.size)
        result = await run_single(
            settings,
            qr_codes.NAMESPACE,
            qr_codes.qr_work,
            WorkItem(identity="qr-1", payload=config),
            None,
        )
        return file_response(result, "image/png", background)
    except HTTPException:
        raise
    except Exception as e:
        logger.error("Failed to generate QR code", error=str(e))
        raise internal_server_http_error("Failed to generate QR code")


@router.post("/generate-bulk", summary="Generate QR Codes in Bulk")
async def generate_bulk(
    request: QRCodeBulkRequest,
    background: BackgroundTasks,
    runner: Annotated[BulkJobRunner, Depends(get_runner)],
) -> ApiResponse[JobAccepted]:
    try:
        return submit_bulk(
            runner,
            background,
            qr_codes.build_items(request.configs),
            None,
            qr_codes.qr_work,
            message="Bulk QR code generation started",
            job_id=request.job_id,
            max_concurrent=request.max_concurrent,
        )
    except HTTPException:
        raise
    except Exception as e:
        logger.error("Failed to start bulk QR code generation", error=str(e))
        raise internal_server_http_error("Failed to start bulk generation")


@router.get("/download/{job_id}", summary="Download QR Code Archive")
async def download(
    job_id: str,
    assembler: Annotated[ArchiveAssembler, Depends(get_archive_assembler)],
) -> FileResponse:
    return archive_response(assembler, qr_codes.NAMESPACE, job_id)
