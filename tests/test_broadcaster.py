import pytest

from app.core.exceptions import ArchiveAssemblyError
from app.schemas.job import WorkItemResult
from app.services.broadcaster import ConnectionManager, JobProgressBroadcaster, percentage
from tests.conftest import FakeSubscriber


def item(status="success"):
    return WorkItemResult(identity="pwd-1", index=0, status=status, message="ok")


@pytest.mark.asyncio
async def test_room_member_and_fallback_each_get_one_copy(manager):
    member, other = FakeSubscriber(), FakeSubscriber()
    manager.connect(member, "member")
    manager.connect(other, "other")
    manager.join("member", "job-1")

    delivered = await JobProgressBroadcaster(manager, "qr-code").emit_start("job-1", {"total": 2})

    assert delivered == 2
    assert member.names == ["qr-code:start"]
    assert other.names == ["qr-code:start"]
    assert member.messages[0]["data"]["jobId"] == "job-1"
    assert member.messages[0]["data"]["total"] == 2
    assert "timestamp" in member.messages[0]["data"]


@pytest.mark.asyncio
async def test_room_only_delivery_when_fallback_disabled():
    manager = ConnectionManager(broadcast_to_all=False)
    member, other = FakeSubscriber(), FakeSubscriber()
    manager.connect(member, "member")
    manager.connect(other, "other")
    manager.join("member", "job-1")

    await JobProgressBroadcaster(manager, "qr-code").emit_complete("job-1", {})

    assert member.names == ["qr-code:complete"]
    assert other.messages == []


@pytest.mark.asyncio
async def test_no_subscribers_is_not_an_error(manager):
    assert await JobProgressBroadcaster(manager, "qr-code").emit_error("job-1", "boom") == 0


@pytest.mark.asyncio
async def test_progress_payload(manager, subscriber):
    broadcaster = JobProgressBroadcaster(manager, "password-generator")

    await broadcaster.emit_item_progress("job-1", 1, 4, item())

    [message] = subscriber.messages
    assert message["event"] == "password-generator:progress"
    data = message["data"]
    assert (data["current"], data["total"], data["progress"]) == (1, 4, 25.0)
    assert data["result"]["identity"] == "pwd-1"
    assert data["result"]["status"] == "success"


@pytest.mark.asyncio
async def test_error_event_carries_exception_message(manager, subscriber):
    broadcaster = JobProgressBroadcaster(manager, "qr-code")

    await broadcaster.emit_error("job-1", ArchiveAssemblyError("disk full"))

    assert subscriber.messages[0]["data"]["error"] == "disk full"


@pytest.mark.asyncio
async def test_failing_subscriber_is_dropped(manager, subscriber):
    broken = FakeSubscriber(fail=True)
    manager.connect(broken, "broken")

    delivered = await manager.broadcast("server:status", manager.status_payload())

    assert delivered == 1
    assert manager.client_count == 1
    assert subscriber.names == ["server:status"]
    assert broken.closed
    assert not manager.is_connected("broken")


@pytest.mark.asyncio
async def test_slow_subscriber_times_out():
    manager = ConnectionManager(send_timeout=0.01)
    manager.connect(FakeSubscriber(delay=1.0), "slow")

    assert await manager.broadcast("server:status", {}) == 0
    assert manager.client_count == 0


def test_leave_and_disconnect_clean_rooms(manager, subscriber):
    manager.join("client-1", "job-1")
    assert manager.room_members("job-1") == {"client-1"}

    manager.leave("client-1", "job-1")
    assert manager.room_members("job-1") == set()

    manager.join("client-1", "job-2")
    manager.disconnect("client-1")
    assert manager.room_members("job-2") == set()
    assert manager.client_count == 0


def test_unknown_connection_cannot_join(manager):
    assert manager.join("ghost", "job-1") is False
    assert manager.room_members("job-1") == set()


def test_percentage_is_clamped():
    assert percentage(0, 0) == 100.0
    assert percentage(5, 4) == 100.0
    assert percentage(-1, 4) == 0.0
    assert percentage(1, 3) == pytest.approx(33.333, rel=1e-3)


def test_status_payload(manager, subscriber):
    payload = manager.status_payload()
    assert payload["connectedClients"] == 1
    assert payload["uptime"] >= 0
    assert "timestamp" in payload
