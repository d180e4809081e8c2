"""
Password generator API.

Routes:
- POST /api/password-generator/generate - one password with strength report
- POST /api/password-generator/generate-bulk - background job, txt/csv/json archive
- GET /api/password-generator/download/{job_id} - finished archive
"""

from typing import Annotated, Any, Dict

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException
from fastapi.responses import FileResponse

from app.core.dependencies import get_archive_assembler, runner_provider
from app.core.exceptions import internal_server_http_error
from app.core.logging import get_logger
from app.schemas.job import ApiResponse, JobAccepted
from app.schemas.utilities import PasswordBulkRequest, PasswordConfig
from app.services.archive import ArchiveAssembler
from app.services.bulk_runner import BulkJobRunner
from app.utils import passwords
from app.routers.common import archive_response, submit_bulk

logger = get_logger(__name__)

router = APIRouter(prefix=f"/api/{passwords.NAMESPACE}", tags=["password-generator"])

get_runner = runner_provider(passwords.NAMESPACE, passwords.JOB_PREFIX)


@router.post("/generate", summary="Generate Password")
async def generate_password(config: PasswordConfig) -> ApiResponse[Dict[str, Any]]:
    try:
        result = passwords.generate_password(config)
        logger.info(
            "Password generated",
            length=config.length,
            level=result["strength"]["level"],
        )
        return ApiResponse[Dict[str, Any]](
            success=True, data=result, message="Password generated successfully"
        )
    except Exception as e:
        logger.error("Failed to generate password", error=str(e))
        raise internal_server_http_error("Failed to generate password")


@router.post("/generate-bulk", summary="Generate Passwords in Bulk")
async def generate_bulk(
    request: PasswordBulkRequest,
    background: BackgroundTasks,
    runner: Annotated[BulkJobRunner, Depends(get_runner)],
) -> ApiResponse[JobAccepted]:
    try:
        return submit_bulk(
            runner,
            background,
            passwords.build_items(request.config),
            request.config,
            passwords.password_work,
            message="Bulk password generation started",
            job_id=request.job_id,
            archive_extras=passwords.export_files(request.config),
        )
    except HTTPException:
        raise
    except Exception as e:
        logger.error("Failed to start bulk password generation", error=str(e))
        raise internal_server_http_error("Failed to start bulk generation")


@router.get("/download/{job_id}", summary="Download Password Archive")
async def download(
    job_id: str,
    assembler: Annotated[ArchiveAssembler, Depends(get_archive_assembler)],
) -> FileResponse:
    return archive_response(assembler, passwords.NAMESPACE, job_id)
