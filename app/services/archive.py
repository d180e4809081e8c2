# app/services/archive.py
"""
Packages the successful artifacts of a job into ``<utility>_<job_id>.zip``.
"""

import asyncio
import os
import posixpath
import tempfile
import zipfile
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Set

from app.core.exceptions import ArchiveAssemblyError
from app.core.logging import LoggerMixin
from app.schemas.job import WorkItemResult
from app.services.job_ids import is_valid_job_id


def archive_filename(utility: str, job_id: str) -> str:
    return f"{utility}_{job_id}.zip"


def _clean_member_name(name: str) -> str:
    # zip members are always posix; never allow escaping the archive root
    parts = [p for p in name.replace("\\", "/").split("/") if p not in ("", ".", "..")]
    return posixpath.join(*parts) if parts else "artifact"


def _unique_name(name: str, used: Set[str]) -> str:
    if name not in used:
        return name
    stem, ext = posixpath.splitext(name)
    n = 1
    while f"{stem}-{n}{ext}" in used:
        n += 1
    return f"{stem}-{n}{ext}"


def plan_members(results: Iterable[WorkItemResult]) -> List[tuple]:
    """(source path, member name) for every archivable result, collision free."""
    used: Set[str] = set()
    members = []
    for result in results:
        if result.status != "success" or not result.artifact_location:
            continue
        source = Path(result.artifact_location)
        if not source.is_file():
            raise ArchiveAssemblyError(
                f"Artifact of {result.identity} is missing", {"path": str(source)}
            )
        name = _unique_name(
            _clean_member_name(result.archive_name or source.name), used
        )
        used.add(name)
        members.append((source, name))
    return members


class ArchiveAssembler(LoggerMixin):
    def __init__(self, download_dir: Path, compresslevel: int = 9):
        self.download_dir = Path(download_dir)
        self.compresslevel = compresslevel

    def archive_path(self, utility: str, job_id: str) -> Path:
        return self.download_dir / archive_filename(utility, job_id)

    def locate(self, utility: str, job_id: str) -> Optional[Path]:
        """Path of a finished archive, or None if it is missing."""
        if not is_valid_job_id(job_id):
            return None
        path = self.archive_path(utility, job_id)
        return path if path.is_file() else None

    async def assemble(
        self,
        utility: str,
        job_id: str,
        results: List[WorkItemResult],
        extra_members: Optional[Dict[str, bytes]] = None,
    ) -> Path:
        """Write the archive and return its path once it is fully on disk."""
        target = self.archive_path(utility, job_id)
        try:
            count = await asyncio.to_thread(
                self._write_zip, target, results, extra_members or {}
            )
        except Exception as e:
            self.logger.error(
                "Archive assembly failed", job_id=job_id, utility=utility, error=str(e)
            )
            raise ArchiveAssemblyError(
                f"Failed to create archive: {e}", {"job_id": job_id}
            ) from e

        self.logger.info(
            "Archive created",
            job_id=job_id,
            utility=utility,
            members=count,
            bytes=target.stat().st_size,
        )
        return target

    def _write_zip(
        self, target: Path, results: List[WorkItemResult], extra_members: Dict[str, bytes]
    ) -> int:
        target.parent.mkdir(parents=True, exist_ok=True)
        members = plan_members(results)
        used = {name for _, name in members}

        fd, tmp_name = tempfile.mkstemp(
            prefix=f".{target.stem}-", suffix=".part", dir=target.parent
        )
        os.close(fd)
        try:
            with zipfile.ZipFile(
                tmp_name, "w", compression=zipfile.ZIP_DEFLATED, compresslevel=self.compresslevel
            ) as zf:
                for source, name in members:
                    zf.write(source, arcname=name)
                for name, data in extra_members.items():
                    member = _unique_name(_clean_member_name(name), used)
                    used.add(member)
                    zf.writestr(member, data)
            # readers never observe a half written archive
            os.replace(tmp_name, target)
        except BaseException:
            if os.path.exists(tmp_name):
                os.remove(tmp_name)
            raise
        return len(used)
