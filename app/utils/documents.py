# app/utils/documents.py
"""
Bulk download of Google Drive documents listed in spreadsheet rows.

Each row is one student; each mapped column holds a Drive link that is
downloaded into the column's folder as ``<regNo>_<column>.<ext>``.
"""

import asyncio
import os
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Dict, List, Mapping, Optional
from urllib.parse import urlparse

import httpx

from app.core.exceptions import DocumentFetchError
from app.core.jobs import WorkContext, WorkItem
from app.core.logging import LoggerMixin
from app.schemas.job import WorkOutput
from app.schemas.utilities import DocumentFetcherConfig
from app.services.broadcaster import JobProgressBroadcaster

NAMESPACE = "document-fetcher"
JOB_PREFIX = "doc-fetch"

REG_NO_KEYS = ("Reg No", "regNo", "REG NO")
DOWNLOAD_URL = "https://drive.google.com/uc?export=download&id={file_id}"
USER_AGENT = "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36"

_FILE_ID_PATTERNS = (
    re.compile(r"/d/([a-zA-Z0-9_-]+)"),
    re.compile(r"[?&]id=([a-zA-Z0-9_-]+)"),
    re.compile(r"/file/d/([a-zA-Z0-9_-]+)"),
)
_UNSAFE = re.compile(r"[^\w.-]+")


@dataclass(frozen=True)
class DocumentTask:
    reg_no: str
    column: str
    folder: str
    link: str


def extract_file_id(url: str) -> Optional[str]:
    for pattern in _FILE_ID_PATTERNS:
        match = pattern.search(url)
        if match:
            return match.group(1)
    return None


def is_valid_drive_link(url: Any) -> bool:
    if not url or not isinstance(url, str):
        return False
    try:
        parsed = urlparse(url)
    except ValueError:
        return False
    return parsed.hostname == "drive.google.com" and (
        "/file/d/" in url or "/open?id=" in url or "/uc?" in url
    )


def file_extension(content_type: str, original_url: str) -> str:
    content_type = (content_type or "").lower()
    if "pdf" in content_type:
        return ".pdf"
    if "jpeg" in content_type or "jpg" in content_type:
        return ".jpg"
    if "png" in content_type:
        return ".png"
    if "image" in content_type:
        return ".jpg"

    url = original_url.lower()
    if ".jpg" in url or ".jpeg" in url:
        return ".jpg"
    if ".png" in url:
        return ".png"
    return ".pdf"


def safe_name(value: str) -> str:
    return _UNSAFE.sub("_", value.strip()).strip("_") or "unnamed"


def registration_number(row: Mapping[str, Any]) -> Optional[str]:
    for key in REG_NO_KEYS:
        value = row.get(key)
        if value is not None and str(value).strip():
            return str(value).strip()
    return None


def build_items(rows: List[Mapping[str, Any]], config: DocumentFetcherConfig) -> List[WorkItem]:
    """One item per (row, mapped column); structurally invalid ones are pre-skipped."""
    items: List[WorkItem] = []
    for i, row in enumerate(rows):
        reg_no = registration_number(row) if isinstance(row, Mapping) else None
        if not reg_no:
            items.append(
                WorkItem(identity=f"row-{i + 1}", skip_reason="No registration number found")
            )
            continue

        for column, folder in config.column_mapping.items():
            identity = f"{reg_no}-{column}"
            link = row.get(column)
            if not link or not isinstance(link, str):
                items.append(WorkItem(identity=identity, skip_reason="No link provided"))
            elif not is_valid_drive_link(link):
                items.append(WorkItem(identity=identity, skip_reason="Invalid Google Drive link"))
            else:
                items.append(
                    WorkItem(
                        identity=identity,
                        payload=DocumentTask(reg_no=reg_no, column=column, folder=folder, link=link),
                    )
                )
    return items


class DocumentFetcher(LoggerMixin):
    """Work function for the document fetcher; one instance per job."""

    def __init__(
        self,
        broadcaster: Optional[JobProgressBroadcaster] = None,
        timeout: float = 30.0,
        client_factory: Optional[Callable[..., httpx.AsyncClient]] = None,
    ):
        self.broadcaster = broadcaster
        self.timeout = timeout
        self.client_factory = client_factory or httpx.AsyncClient

    async def _notify(self, job_id: str, kind: str, payload: Dict[str, Any]) -> None:
        if self.broadcaster is not None:
            await self.broadcaster.emit_custom(job_id, kind, payload)

    async def __call__(
        self, task: DocumentTask, config: DocumentFetcherConfig, context: WorkContext
    ) -> WorkOutput:
        file_id = extract_file_id(task.link)
        if not file_id:
            raise DocumentFetchError("Invalid Google Drive link")

        folder = Path(context.work_dir)
        if config.auto_organize:
            folder = folder / task.folder
        base_name = f"{safe_name(task.reg_no)}_{safe_name(task.column)}"
        # rows may share a Reg No; scratch files are keyed by item position
        scratch_name = f"{context.index:05d}_{base_name}"
        url = DOWNLOAD_URL.format(file_id=file_id)
        event = {"regNo": task.reg_no, "column": task.column}

        await self._notify(context.job_id, "download-start", {**event, "url": url})
        try:
            path = await self._download(
                url, task.link, folder, scratch_name, config.timeout or self.timeout
            )
        except Exception as e:
            message = str(e) or e.__class__.__name__
            await self._notify(context.job_id, "download-error", {**event, "error": message})
            if isinstance(e, DocumentFetchError):
                raise
            raise DocumentFetchError(f"Download failed: {message}") from e

        file_name = base_name + path.suffix
        await self._notify(context.job_id, "download-complete", {**event, "filePath": file_name})
        member = f"{task.folder}/{file_name}" if config.auto_organize else file_name
        return WorkOutput(
            message="Downloaded successfully",
            artifact_location=str(path),
            archive_name=member,
            details={
                "regNo": task.reg_no,
                "column": task.column,
                "fileName": file_name,
                "fileSize": path.stat().st_size,
            },
        )

    async def _download(
        self, url: str, original_url: str, folder: Path, base_name: str, timeout: float
    ) -> Path:
        folder.mkdir(parents=True, exist_ok=True)
        async with self.client_factory(timeout=timeout, follow_redirects=True) as client:
            async with client.stream("GET", url, headers={"User-Agent": USER_AGENT}) as response:
                if response.status_code >= 400:
                    raise DocumentFetchError(f"Download failed with HTTP {response.status_code}")

                content_type = response.headers.get("content-type", "")
                if content_type.startswith("text/html"):
                    # Drive serves an HTML interstitial for private or oversized files
                    raise DocumentFetchError("File is not publicly downloadable")

                path = folder / (base_name + file_extension(content_type, original_url))
                f = await asyncio.to_thread(open, path, "wb")
                try:
                    async for chunk in response.aiter_bytes():
                        await asyncio.to_thread(f.write, chunk)
                except BaseException:
                    f.close()
                    if path.exists():
                        os.remove(path)
                    raise
                await asyncio.to_thread(f.close)

        self.logger.debug("Document downloaded", path=str(path))
        return path
