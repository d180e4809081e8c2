"""
Progress transport and health.

Routes:
- WS /ws - job progress events; clients join job rooms with ``join:job``
- GET /api/health - service status

Frames in both directions are JSON objects ``{"event": ..., "data": ...}``.
"""

import json
from typing import Any, Dict, Optional

from fastapi import APIRouter, Request, WebSocket, WebSocketDisconnect

from app.core.logging import get_logger
from app.schemas.job import utc_now

logger = get_logger(__name__)

router = APIRouter(tags=["realtime"])


def _job_id(data: Any) -> Optional[str]:
    """``join:job`` carries the id directly or as ``{"jobId": ...}``."""
    if isinstance(data, dict):
        data = data.get("jobId")
    if isinstance(data, str) and data:
        return data
    return None


@router.websocket("/ws")
async def progress_socket(websocket: WebSocket):
    manager = websocket.app.state.connection_manager
    await websocket.accept()
    connection_id = manager.connect(websocket)
    logger.info(
        "WebSocket connection established",
        connection_id=connection_id,
        client=str(websocket.client),
    )

    try:
        while manager.is_connected(connection_id):
            raw = await websocket.receive_text()
            if not manager.is_connected(connection_id):
                # dropped after a failed send; the socket is being closed
                break
            try:
                message = json.loads(raw)
            except json.JSONDecodeError:
                await manager.send_to(connection_id, "error", {"error": "Invalid JSON"})
                continue
            if not isinstance(message, dict):
                await manager.send_to(connection_id, "error", {"error": "Expected an object"})
                continue

            event = message.get("event")
            data = message.get("data")

            if event == "join:job":
                job_id = _job_id(data)
                if job_id is None:
                    await manager.send_to(connection_id, "error", {"error": "jobId is required"})
                    continue
                if not manager.join(connection_id, job_id):
                    break
                await manager.send_to(
                    connection_id,
                    "joined:job",
                    {"jobId": job_id, "message": "Successfully joined job room"},
                )
            elif event == "leave:job":
                job_id = _job_id(data)
                if job_id is not None:
                    manager.leave(connection_id, job_id)
            elif event == "test":
                await manager.send_to(
                    connection_id,
                    "test:response",
                    {
                        "message": "Test successful",
                        "timestamp": utc_now().isoformat(),
                        "clientId": connection_id,
                    },
                )
            elif event == "ping":
                await manager.send_to(connection_id, "pong", {})
            else:
                logger.debug(
                    "Unknown event type received", connection_id=connection_id, received=event
                )
                await manager.send_to(
                    connection_id, "error", {"error": f"Unknown event: {event}"}
                )
    except WebSocketDisconnect:
        logger.info("WebSocket client disconnected", connection_id=connection_id)
    except Exception as e:
        logger.error(
            "Unexpected error in WebSocket handler", connection_id=connection_id, error=str(e)
        )
    finally:
        manager.disconnect(connection_id)


@router.get("/api/health", summary="Health Check")
async def health(request: Request) -> Dict[str, Any]:
    state = request.app.state
    manager = getattr(state, "connection_manager", None)
    clients = manager.client_count if manager is not None else 0
    return {
        "status": "OK",
        "timestamp": utc_now().isoformat(),
        "version": state.settings.APP_VERSION,
        "connectedClients": clients,
        "activeJobs": len(state.job_store),
        "jobs": [
            {
                "jobId": job.id,
                "utility": job.utility,
                "status": job.status,
                "progress": round(job.progress, 1),
            }
            for job in state.job_store.get_listing()
        ],
        "services": {
            "server": "running",
            "socket": "connected" if clients > 0 else "disconnected",
        },
    }
