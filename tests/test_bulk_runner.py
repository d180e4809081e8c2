import zipfile
from pathlib import Path

import pytest

from app.core.exceptions import (
    ArchiveAssemblyError,
    BroadcasterUnavailableError,
    ItemSkippedError,
    ValidationError,
)
from app.core.jobs import WorkItem
from app.schemas.job import WorkOutput
from app.services.archive import ArchiveAssembler
from app.services.broadcaster import ConnectionManager, JobProgressBroadcaster
from app.services.bulk_runner import BulkJobRunner
from tests.conftest import FakeSubscriber


async def write_file(payload, config, context):
    if payload == "bad":
        raise ValueError("cannot process bad")
    if payload == "skip":
        raise ItemSkippedError("nothing to do")
    target = Path(context.work_dir) / f"{payload}.txt"
    target.parent.mkdir(parents=True, exist_ok=True)
    target.write_text(payload)
    return WorkOutput(artifact_location=str(target))


def items(*payloads):
    return [WorkItem(identity=p, payload=p) for p in payloads]


@pytest.mark.asyncio
async def test_five_items_with_one_failure(make_runner, subscriber, job_store):
    runner = make_runner()
    job = runner.prepare(items("a", "b", "bad", "d", "e"), None, write_file, max_concurrent=2)
    assert job_store.get_listing() == [job]
    assert (job.status, job.progress) == ("queued", 0.0)

    await runner.run(job)

    names = subscriber.names
    assert names[0] == "test-utility:start"
    assert names[-1] == "test-utility:complete"
    progress = subscriber.events(":progress")
    assert [p["data"]["current"] for p in progress] == [1, 2, 3, 4, 5]
    assert progress[-1]["data"]["progress"] == 100.0

    complete = subscriber.events(":complete")[0]["data"]
    assert complete["totalProcessed"] == 4
    assert complete["totalFailed"] == 1
    assert complete["totalSkipped"] == 0
    assert complete["downloadUrl"] == f"/api/test-utility/download/{job.id}"
    assert [r["identity"] for r in complete["results"]] == ["a", "b", "bad", "d", "e"]
    assert complete["results"][2]["error"] == "cannot process bad"

    assert job.status == "done"
    assert job.completed == job.total == 5
    assert job.progress == 100.0
    assert job.id not in job_store

    with zipfile.ZipFile(job.archive_path) as zf:
        assert sorted(zf.namelist()) == ["a.txt", "b.txt", "d.txt", "e.txt"]


@pytest.mark.asyncio
async def test_pre_skipped_items_never_run(make_runner, subscriber):
    calls = []

    def work(payload, config, context):
        calls.append(payload)
        return None

    batch = [
        WorkItem("row-1", skip_reason="No registration number found"),
        WorkItem("x", payload="x"),
        WorkItem("y", payload="skip"),
    ]
    runner = make_runner()
    job = runner.prepare(batch, None, work)

    await runner.run(job)

    assert calls == ["x", "skip"]
    complete = subscriber.events(":complete")[0]["data"]
    assert (complete["totalProcessed"], complete["totalSkipped"]) == (2, 1)
    assert complete["results"][0]["message"] == "No registration number found"


@pytest.mark.asyncio
async def test_skip_raised_by_work_function(make_runner, subscriber):
    runner = make_runner()
    job = runner.prepare(items("a", "skip"), None, write_file)

    await runner.run(job)

    complete = subscriber.events(":complete")[0]["data"]
    assert complete["totalSkipped"] == 1
    counts = job.results.counts()
    assert counts.success + counts.failed + counts.skipped == counts.total


@pytest.mark.asyncio
async def test_empty_batch_emits_start_and_complete(make_runner, subscriber):
    runner = make_runner()
    job = runner.prepare([], None, write_file)

    await runner.run(job)

    assert subscriber.names == ["test-utility:start", "test-utility:complete"]
    data = subscriber.messages[-1]["data"]
    assert data["total"] == 0
    assert data["results"] == []
    with zipfile.ZipFile(job.archive_path) as zf:
        assert zf.namelist() == []


@pytest.mark.asyncio
async def test_archive_failure_becomes_error_event(make_runner, subscriber, settings, job_store):
    class BrokenAssembler(ArchiveAssembler):
        async def assemble(self, utility, job_id, results, extra_members=None):
            raise ArchiveAssemblyError("Failed to create archive: disk full")

    runner = make_runner(assembler=BrokenAssembler(settings.DOWNLOAD_DIR))
    job = runner.prepare(items("a"), None, write_file)

    await runner.run(job)

    assert subscriber.names[-1] == "test-utility:error"
    assert "test-utility:complete" not in subscriber.names
    assert subscriber.messages[-1]["data"]["error"] == "Failed to create archive: disk full"
    assert job.status == "error"
    assert job.id not in job_store


@pytest.mark.asyncio
async def test_archive_extras_receive_job_id(make_runner, subscriber):
    seen = {}

    def extras(job_id, results):
        seen["job_id"] = job_id
        return {"summary.txt": str(len(results)).encode()}

    runner = make_runner()
    job = runner.prepare(items("a", "b"), None, write_file, archive_extras=extras)

    await runner.run(job)

    assert seen["job_id"] == job.id
    with zipfile.ZipFile(job.archive_path) as zf:
        assert zf.read("summary.txt") == b"2"


@pytest.mark.asyncio
async def test_work_directory_is_removed_after_archiving(make_runner, subscriber):
    runner = make_runner()
    job = runner.prepare(items("a"), None, write_file)

    await runner.run(job)

    assert not runner.work_dir(job.id).exists()


@pytest.mark.asyncio
async def test_sliding_mode(make_runner, subscriber, settings):
    sliding = settings.model_copy(update={"SCHEDULER_MODE": "sliding"})
    runner = make_runner(settings=sliding)
    job = runner.prepare(items("a", "b", "c"), None, write_file)

    await runner.run(job)

    assert subscriber.events(":complete")[0]["data"]["totalProcessed"] == 3


def test_supplied_job_id_is_used(make_runner):
    job = make_runner().prepare([], None, write_file, job_id="client-job")
    assert job.id == "client-job"


def test_job_id_in_use_is_rejected(make_runner):
    runner = make_runner()
    runner.prepare([], None, write_file, job_id="client-job")
    with pytest.raises(ValidationError):
        runner.prepare([], None, write_file, job_id="client-job")


def test_invalid_job_id_is_rejected(make_runner, job_store):
    with pytest.raises(ValidationError):
        make_runner().prepare([], None, write_file, job_id="../escape")
    assert len(job_store) == 0


def test_non_positive_limit_is_rejected(make_runner):
    with pytest.raises(ValueError):
        make_runner().prepare([], None, write_file, max_concurrent=0)


def test_missing_broadcaster_is_rejected(settings, assembler, job_store):
    runner = BulkJobRunner(settings, None, assembler, job_store, "test-bulk", namespace="test")
    with pytest.raises(BroadcasterUnavailableError):
        runner.prepare([], None, write_file)
    assert len(job_store) == 0


@pytest.mark.asyncio
async def test_broken_subscriber_does_not_stop_the_job(make_runner, manager, subscriber):
    broken = FakeSubscriber(fail=True)
    manager.connect(broken, "client-2")
    runner = make_runner()
    job = runner.prepare(items("a"), None, write_file)

    await runner.run(job)

    assert subscriber.names == [
        "test-utility:start",
        "test-utility:progress",
        "test-utility:complete",
    ]
    assert broken.closed
    assert not manager.is_connected("client-2")
    assert job.status == "done"
    with zipfile.ZipFile(job.archive_path) as zf:
        assert zf.namelist() == ["a.txt"]


@pytest.mark.asyncio
async def test_error_event_delivery_failure_is_contained(make_runner, settings, job_store):
    class FailingBroadcaster(JobProgressBroadcaster):
        async def emit(self, job_id, kind, payload):
            raise RuntimeError("transport down")

    runner = make_runner()
    runner.broadcaster = FailingBroadcaster(ConnectionManager(), "test-utility")
    job = runner.prepare(items("a"), None, write_file)

    await runner.run(job)

    assert job.status == "error"
    assert job.id not in job_store


@pytest.mark.asyncio
async def test_success_without_its_file_is_reported_failed(make_runner, subscriber, tmp_path):
    def vanished(payload, config, context):
        return WorkOutput(artifact_location=str(tmp_path / "never-written.txt"))

    runner = make_runner()
    job = runner.prepare(items("a"), None, vanished)

    await runner.run(job)

    complete = subscriber.events(":complete")[0]["data"]
    assert (complete["totalProcessed"], complete["totalFailed"]) == (0, 1)
    assert complete["results"][0]["error"] == "Generated file is missing"
    assert subscriber.events(":progress")[0]["data"]["result"]["status"] == "failed"
    with zipfile.ZipFile(job.archive_path) as zf:
        assert zf.namelist() == []


@pytest.mark.asyncio
async def test_finished_job_id_cannot_be_reused(make_runner, subscriber, job_store):
    runner = make_runner()
    job = runner.prepare(items("a"), None, write_file, job_id="same-id")
    await runner.run(job)
    assert job.id not in job_store
    archived = Path(job.archive_path).read_bytes()

    with pytest.raises(ValidationError):
        runner.prepare(items("b"), None, write_file, job_id="same-id")

    assert Path(job.archive_path).read_bytes() == archived
