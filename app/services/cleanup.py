# app/services/cleanup.py
"""
Retention sweep for generated files.

Anything in the download/upload directories older than the retention
window is removed, whether or not the job that produced it finished.
"""

import asyncio
import shutil
import time
from pathlib import Path
from typing import Iterable, List, Optional

from app.core.logging import get_logger
from app.services.broadcaster import ConnectionManager

logger = get_logger(__name__)


def sweep_expired(directory: Path, max_age_seconds: float, now: Optional[float] = None) -> List[str]:
    """Remove top-level entries of ``directory`` older than ``max_age_seconds``."""
    directory = Path(directory)
    if not directory.is_dir():
        return []

    now = time.time() if now is None else now
    removed = []
    for entry in directory.iterdir():
        try:
            age = now - entry.stat().st_mtime
            if age <= max_age_seconds:
                continue
            if entry.is_dir() and not entry.is_symlink():
                shutil.rmtree(entry)
            else:
                entry.unlink()
            removed.append(entry.name)
            logger.info("Cleaned up old file", path=str(entry), age_hours=round(age / 3600, 1))
        except FileNotFoundError:
            continue
        except OSError as e:
            logger.warning("Failed to remove old file", path=str(entry), error=str(e))
    return removed


async def sweep_directories(directories: Iterable[Path], max_age_seconds: float) -> List[str]:
    removed: List[str] = []
    for directory in directories:
        removed.extend(await asyncio.to_thread(sweep_expired, directory, max_age_seconds))
    return removed


async def run_cleanup_loop(
    directories: Iterable[Path], max_age_seconds: float, interval: float
) -> None:
    """Sweep forever; cancelled on application shutdown."""
    directories = list(directories)
    while True:
        try:
            removed = await sweep_directories(directories, max_age_seconds)
            if removed:
                logger.info("Retention sweep finished", removed=len(removed))
        except Exception as e:
            logger.error("Retention sweep failed", error=str(e))
        await asyncio.sleep(interval)


async def run_status_loop(manager: ConnectionManager, interval: float) -> None:
    """Periodic ``server:status`` broadcast to every connected client."""
    while True:
        await asyncio.sleep(interval)
        try:
            await manager.broadcast("server:status", manager.status_payload())
        except Exception as e:
            logger.error("Status broadcast failed", error=str(e))
