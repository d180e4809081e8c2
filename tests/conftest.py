"""Shared fixtures: isolated settings, fake WebSocket subscribers, runners."""

import asyncio
from pathlib import Path
from typing import Any, Dict, List

import pytest

from app.core.config import Settings
from app.core.jobs import JobStore
from app.services.archive import ArchiveAssembler
from app.services.broadcaster import ConnectionManager, JobProgressBroadcaster
from app.services.bulk_runner import BulkJobRunner


class FakeSubscriber:
    """Stands in for a WebSocket: records every frame it is sent."""

    def __init__(self, fail: bool = False, delay: float = 0.0):
        self.fail = fail
        self.delay = delay
        self.messages: List[Dict[str, Any]] = []
        self.closed = False

    async def send_json(self, data: Any) -> None:
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail:
            raise ConnectionResetError("socket closed")
        self.messages.append(data)

    async def close(self, code: int = 1000) -> None:
        self.closed = True

    def events(self, suffix: str = "") -> List[Dict[str, Any]]:
        return [m for m in self.messages if m["event"].endswith(suffix)]

    @property
    def names(self) -> List[str]:
        return [m["event"] for m in self.messages]


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    return Settings(
        DOWNLOAD_DIR=tmp_path / "downloads",
        UPLOAD_DIR=tmp_path / "uploads",
        MAX_CONCURRENT=2,
        SERVER_STATUS_INTERVAL=3600,
        CLEANUP_INTERVAL_SECONDS=3600,
        MAX_BULK_FILES=3,
        MAX_FILE_SIZE=1024 * 1024,
    )


@pytest.fixture
def manager() -> ConnectionManager:
    return ConnectionManager()


@pytest.fixture
def subscriber(manager: ConnectionManager) -> FakeSubscriber:
    sub = FakeSubscriber()
    manager.connect(sub, "client-1")
    return sub


@pytest.fixture
def job_store() -> JobStore:
    return JobStore()


@pytest.fixture
def assembler(settings: Settings) -> ArchiveAssembler:
    return ArchiveAssembler(settings.DOWNLOAD_DIR)


@pytest.fixture
def make_runner(settings, manager, assembler, job_store):
    def build(namespace: str = "test-utility", prefix: str = "test-bulk", **overrides):
        return BulkJobRunner(
            settings=overrides.get("settings", settings),
            broadcaster=JobProgressBroadcaster(manager, namespace),
            assembler=overrides.get("assembler", assembler),
            job_store=job_store,
            job_prefix=prefix,
        )

    return build
