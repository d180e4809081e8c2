"""
File converter API.

Routes:
- POST /api/file-converter/convert - one document (multipart field ``file``)
- POST /api/file-converter/convert-bulk - up to MAX_BULK_FILES documents (field ``files``)
- GET /api/file-converter/download/{job_id} - finished archive
"""

from typing import Annotated, List, Optional

from fastapi import APIRouter, BackgroundTasks, Depends, File, Form, HTTPException, UploadFile
from fastapi.responses import FileResponse

from app.core.config import Settings
from app.core.dependencies import get_app_settings, get_archive_assembler, runner_provider
from app.core.exceptions import internal_server_http_error
from app.core.jobs import WorkItem
from app.core.logging import get_logger
from app.schemas.job import ApiResponse, JobAccepted
from app.schemas.utilities import FileConverterConfig
from app.services.archive import ArchiveAssembler
from app.services.bulk_runner import BulkJobRunner
from app.utils import converter
from app.routers.common import (
    archive_response,
    file_response,
    parse_config,
    remove_files,
    run_single,
    save_uploads,
    submit_bulk,
)

logger = get_logger(__name__)

router = APIRouter(prefix=f"/api/{converter.NAMESPACE}", tags=["file-converter"])

get_runner = runner_provider(converter.NAMESPACE, converter.JOB_PREFIX)

MEDIA_TYPES = {
    "txt": "text/plain",
    "pdf": "application/pdf",
    "docx": "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
}


def conversion_options(
    output_format: Annotated[Optional[str], Form(alias="outputFormat")] = None,
) -> FileConverterConfig:
    return parse_config(FileConverterConfig, {"outputFormat": output_format})


@router.post("/convert", summary="Convert File", response_class=FileResponse)
async def convert_file(
    background: BackgroundTasks,
    config: Annotated[FileConverterConfig, Depends(conversion_options)],
    settings: Annotated[Settings, Depends(get_app_settings)],
    file: UploadFile = File(...),
):
    try:
        [(path, name)] = await save_uploads([file], settings, converter.ALLOWED_CONTENT_TYPES)
        logger.info("Converting file", filename=name, output_format=config.output_format)
        result = await run_single(
            settings,
            converter.NAMESPACE,
            converter.convert_work,
            WorkItem(identity=name, payload=converter.UploadedDocument(path=path, original_name=name)),
            config,
        )
        return file_response(result, MEDIA_TYPES[config.output_format], background)
    except HTTPException:
        raise
    except Exception as e:
        logger.error("Failed to convert file", filename=file.filename, error=str(e))
        raise internal_server_http_error("Failed to convert file")


@router.post("/convert-bulk", summary="Convert Files in Bulk")
async def convert_bulk(
    background: BackgroundTasks,
    config: Annotated[FileConverterConfig, Depends(conversion_options)],
    settings: Annotated[Settings, Depends(get_app_settings)],
    runner: Annotated[BulkJobRunner, Depends(get_runner)],
    files: List[UploadFile] = File(...),
    job_id: Annotated[Optional[str], Form(alias="jobId")] = None,
) -> ApiResponse[JobAccepted]:
    saved = []
    try:
        saved = await save_uploads(files, settings, converter.ALLOWED_CONTENT_TYPES)
        documents = [converter.UploadedDocument(path=p, original_name=n) for p, n in saved]
        return submit_bulk(
            runner,
            background,
            converter.build_items(documents),
            config,
            converter.convert_work,
            message="Bulk file conversion started",
            job_id=job_id or None,
        )
    except HTTPException:
        remove_files(p for p, _ in saved)
        raise
    except Exception as e:
        remove_files(p for p, _ in saved)
        logger.error("Failed to start bulk file conversion", error=str(e))
        raise internal_server_http_error("Failed to start bulk conversion")


@router.get("/download/{job_id}", summary="Download Converted Files")
async def download(
    job_id: str,
    assembler: Annotated[ArchiveAssembler, Depends(get_archive_assembler)],
) -> FileResponse:
    return archive_response(assembler, converter.NAMESPACE, job_id)
