"""
Image resizer API.

Routes:
- POST /api/image-resizer/resize - one image (multipart field ``image``)
- POST /api/image-resizer/resize-bulk - up to MAX_BULK_FILES images (field ``images``)
- GET /api/image-resizer/download/{job_id} - finished archive

Resize options arrive as form fields next to the files.
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
from app.schemas.utilities import ImageResizerConfig
from app.services.archive import ArchiveAssembler
from app.services.bulk_runner import BulkJobRunner
from app.utils import images
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

router = APIRouter(prefix=f"/api/{images.NAMESPACE}", tags=["image-resizer"])

get_runner = runner_provider(images.NAMESPACE, images.JOB_PREFIX)

MEDIA_TYPES = {"jpeg": "image/jpeg", "png": "image/png", "webp": "image/webp"}


def resize_options(
    width: Annotated[Optional[str], Form()] = None,
    height: Annotated[Optional[str], Form()] = None,
    maintain_aspect_ratio: Annotated[Optional[str], Form(alias="maintainAspectRatio")] = None,
    quality: Annotated[Optional[str], Form()] = None,
    format: Annotated[Optional[str], Form()] = None,
    fit: Annotated[Optional[str], Form()] = None,
) -> ImageResizerConfig:
    return parse_config(
        ImageResizerConfig,
        {
            "width": width,
            "height": height,
            "maintainAspectRatio": maintain_aspect_ratio,
            "quality": quality,
            "format": format,
            "fit": fit,
        },
    )


@router.post("/resize", summary="Resize Image", response_class=FileResponse)
async def resize_image(
    background: BackgroundTasks,
    config: Annotated[ImageResizerConfig, Depends(resize_options)],
    settings: Annotated[Settings, Depends(get_app_settings)],
    image: UploadFile = File(...),
):
    try:
        [(path, name)] = await save_uploads([image], settings, images.ALLOWED_CONTENT_TYPES)
        logger.info("Resizing image", filename=name, width=config.width, height=config.height)
        result = await run_single(
            settings,
            images.NAMESPACE,
            images.resize_work,
            WorkItem(identity=name, payload=images.UploadedSource(path=path, original_name=name)),
            config,
        )
        return file_response(result, MEDIA_TYPES[config.format], background)
    except HTTPException:
        raise
    except Exception as e:
        logger.error("Failed to resize image", filename=image.filename, error=str(e))
        raise internal_server_http_error("Failed to resize image")


@router.post("/resize-bulk", summary="Resize Images in Bulk")
async def resize_bulk(
    background: BackgroundTasks,
    config: Annotated[ImageResizerConfig, Depends(resize_options)],
    settings: Annotated[Settings, Depends(get_app_settings)],
    runner: Annotated[BulkJobRunner, Depends(get_runner)],
    images_: List[UploadFile] = File(..., alias="images"),
    job_id: Annotated[Optional[str], Form(alias="jobId")] = None,
) -> ApiResponse[JobAccepted]:
    saved = []
    try:
        saved = await save_uploads(images_, settings, images.ALLOWED_CONTENT_TYPES)
        sources = [images.UploadedSource(path=p, original_name=n) for p, n in saved]
        return submit_bulk(
            runner,
            background,
            images.build_items(sources),
            config,
            images.resize_work,
            message="Bulk image resizing started",
            job_id=job_id or None,
        )
    except HTTPException:
        remove_files(p for p, _ in saved)
        raise
    except Exception as e:
        remove_files(p for p, _ in saved)
        logger.error("Failed to start bulk image resizing", error=str(e))
        raise internal_server_http_error("Failed to start bulk resizing")


@router.get("/download/{job_id}", summary="Download Resized Images")
async def download(
    job_id: str,
    assembler: Annotated[ArchiveAssembler, Depends(get_archive_assembler)],
) -> FileResponse:
    return archive_response(assembler, images.NAMESPACE, job_id)
