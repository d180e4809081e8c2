# app/services/broadcaster.py
"""
Progress fan-out to WebSocket subscribers.

ConnectionManager tracks live connections and the job rooms they joined.
JobProgressBroadcaster binds a utility namespace and emits the four job
lifecycle events (``<namespace>:start|progress|complete|error``).

Delivery is fire-and-forget: a subscriber whose send fails is dropped and closed,
nothing is retried, nothing is raised to the emitting job.
"""

import asyncio
import time
import uuid
from typing import Any, Dict, Iterable, List, Optional, Protocol, Set

from app.core.logging import LoggerMixin
from app.schemas.job import ProgressEvent, WorkItemResult, utc_now


class Subscriber(Protocol):
    async def send_json(self, data: Any) -> None: ...


def percentage(completed: int, total: int) -> float:
    if total <= 0:
        return 100.0
    return max(0.0, min(100.0, completed / total * 100))


def _timestamp() -> str:
    return utc_now().isoformat()


class ConnectionManager(LoggerMixin):
    def __init__(self, broadcast_to_all: bool = True, send_timeout: float = 5.0):
        self.broadcast_to_all = broadcast_to_all
        self.send_timeout = send_timeout
        self.started_at = time.monotonic()
        self._connections: Dict[str, Subscriber] = {}
        self._rooms: Dict[str, Set[str]] = {}

    @property
    def client_count(self) -> int:
        return len(self._connections)

    @property
    def uptime(self) -> float:
        return time.monotonic() - self.started_at

    def connect(self, subscriber: Subscriber, connection_id: Optional[str] = None) -> str:
        connection_id = connection_id or uuid.uuid4().hex
        self._connections[connection_id] = subscriber
        self.logger.info("Client connected", connection_id=connection_id)
        return connection_id

    def disconnect(self, connection_id: str) -> None:
        if self._connections.pop(connection_id, None) is None:
            return
        for room in list(self._rooms):
            self._leave(room, connection_id)
        self.logger.info("Client disconnected", connection_id=connection_id)

    def is_connected(self, connection_id: str) -> bool:
        return connection_id in self._connections

    def join(self, connection_id: str, room: str) -> bool:
        if connection_id not in self._connections:
            return False
        self._rooms.setdefault(room, set()).add(connection_id)
        self.logger.debug("Client joined job room", connection_id=connection_id, job_id=room)
        return True

    def leave(self, connection_id: str, room: str) -> None:
        self._leave(room, connection_id)
        self.logger.debug("Client left job room", connection_id=connection_id, job_id=room)

    def _leave(self, room: str, connection_id: str) -> None:
        members = self._rooms.get(room)
        if members is None:
            return
        members.discard(connection_id)
        if not members:
            del self._rooms[room]

    def room_members(self, room: str) -> Set[str]:
        return set(self._rooms.get(room, ()))

    def audience(self, room: Optional[str]) -> List[str]:
        """Room members first, then (fallback) everyone else, each once."""
        targets: List[str] = []
        if room is not None:
            targets.extend(sorted(self._rooms.get(room, ())))
        if room is None or self.broadcast_to_all:
            seen = set(targets)
            targets.extend(c for c in self._connections if c not in seen)
        return targets

    async def send(self, room: Optional[str], event: str, data: Dict[str, Any]) -> int:
        """Deliver one event; returns how many subscribers accepted it."""
        message = ProgressEvent(event=event, data=data).model_dump(mode="json")
        targets = self.audience(room)
        if not targets:
            return 0

        outcomes = await asyncio.gather(
            *(self._send_one(cid, message) for cid in targets)
        )
        return sum(1 for ok in outcomes if ok)

    async def broadcast(self, event: str, data: Dict[str, Any]) -> int:
        return await self.send(None, event, data)

    async def send_to(self, connection_id: str, event: str, data: Dict[str, Any]) -> bool:
        message = ProgressEvent(event=event, data=data).model_dump(mode="json")
        return await self._send_one(connection_id, message)

    async def _send_one(self, connection_id: str, message: Dict[str, Any]) -> bool:
        subscriber = self._connections.get(connection_id)
        if subscriber is None:
            return False
        try:
            await asyncio.wait_for(subscriber.send_json(message), self.send_timeout)
            return True
        except Exception as e:
            self.logger.warning(
                "Dropping subscriber after failed send",
                connection_id=connection_id,
                event_name=message.get("event"),
                error=str(e) or e.__class__.__name__,
            )
            self.disconnect(connection_id)
            await self._close(connection_id, subscriber)
            return False

    async def _close(self, connection_id: str, subscriber: Subscriber) -> None:
        """A dropped subscriber is closed so its client can reconnect."""
        close = getattr(subscriber, "close", None)
        if close is None:
            return
        try:
            await asyncio.wait_for(close(code=1011), self.send_timeout)
        except Exception as e:
            self.logger.debug(
                "Closing dropped subscriber failed", connection_id=connection_id, error=str(e)
            )

    def status_payload(self) -> Dict[str, Any]:
        return {
            "connectedClients": self.client_count,
            "timestamp": _timestamp(),
            "uptime": round(self.uptime, 3),
        }


class JobProgressBroadcaster:
    """Lifecycle events of one utility's jobs."""

    def __init__(self, manager: ConnectionManager, namespace: str):
        self.manager = manager
        self.namespace = namespace

    def event_name(self, kind: str) -> str:
        return f"{self.namespace}:{kind}"

    async def emit(self, job_id: str, kind: str, payload: Dict[str, Any]) -> int:
        data = {"jobId": job_id, **payload}
        data.setdefault("timestamp", _timestamp())
        return await self.manager.send(job_id, self.event_name(kind), data)

    async def emit_start(self, job_id: str, payload: Dict[str, Any]) -> int:
        return await self.emit(job_id, "start", payload)

    async def emit_item_progress(
        self,
        job_id: str,
        completed: int,
        total: int,
        result: WorkItemResult,
        extra: Optional[Dict[str, Any]] = None,
    ) -> int:
        payload = {
            "current": completed,
            "total": total,
            "progress": percentage(completed, total),
            "result": result.to_payload(),
            **(extra or {}),
        }
        return await self.emit(job_id, "progress", payload)

    async def emit_complete(self, job_id: str, payload: Dict[str, Any]) -> int:
        return await self.emit(job_id, "complete", payload)

    async def emit_error(self, job_id: str, error: Any) -> int:
        if isinstance(error, BaseException):
            message = getattr(error, "message", None) or str(error) or error.__class__.__name__
        else:
            message = str(error)
        return await self.emit(job_id, "error", {"error": message})

    async def emit_custom(self, job_id: str, kind: str, payload: Dict[str, Any]) -> int:
        """Utility specific events such as ``document-fetcher:download-start``."""
        return await self.emit(job_id, kind, payload)


def serialize_results(results: Iterable[WorkItemResult]) -> List[Dict[str, Any]]:
    return [r.to_payload() for r in results]
