"""
Feed endpoints for the dashboard renderer.
Read-only snapshot and health access plus a WebSocket that pushes every snapshot.
"""

import asyncio
import logging
from typing import Any, Dict, List

from fastapi import APIRouter, Depends, Request, WebSocket, WebSocketDisconnect

from livefeed.errors import EngineStateError, create_http_exception
from livefeed.schemas.feed import FeedSnapshot
from livefeed.services.feed_engine import FeedEngine

logger = logging.getLogger(__name__)

router = APIRouter(tags=["feed"])

QUEUE_SIZE = 32


class ConnectionManager:
    """Fans snapshots out to connected dashboard sockets, one queue per socket."""

    def __init__(self):
        self.active_connections: Dict[WebSocket, asyncio.Queue] = {}

    async def connect(self, websocket: WebSocket) -> asyncio.Queue:
        await websocket.accept()
        queue: asyncio.Queue = asyncio.Queue(maxsize=QUEUE_SIZE)
        self.active_connections[websocket] = queue
        logger.info(f"Dashboard connected. Total connections: {len(self.active_connections)}")
        return queue

    def disconnect(self, websocket: WebSocket):
        if self.active_connections.pop(websocket, None) is not None:
            logger.info(f"Dashboard disconnected. Total connections: {len(self.active_connections)}")

    def publish(self, snapshot: FeedSnapshot) -> None:
        """Engine subscriber: queue the snapshot for every socket, dropping the oldest when full."""
        payload = snapshot.to_payload()
        for queue in self.active_connections.values():
            if queue.full():
                queue.get_nowait()
            queue.put_nowait(payload)

    @property
    def connection_count(self) -> int:
        return len(self.active_connections)


manager = ConnectionManager()


def get_engine(request: Request) -> FeedEngine:
    engine = getattr(request.app.state, "feed_engine", None)
    if engine is None:
        raise create_http_exception(EngineStateError("Feed engine is not running"))
    return engine


@router.get("/feed/snapshot")
def get_snapshot(engine: FeedEngine = Depends(get_engine)) -> Dict[str, Any]:
    """Current records, flashing tokens and error message."""
    return engine.snapshot.to_payload()


@router.get("/feed/health")
def get_health(engine: FeedEngine = Depends(get_engine)) -> Dict[str, Any]:
    """Channel state and counters."""
    health = engine.get_health().model_dump(mode="json")
    health["dashboards"] = manager.connection_count
    health["snapshot_sequence"] = engine.snapshot.sequence
    return health


@router.get("/feed/tokens")
def get_tokens(engine: FeedEngine = Depends(get_engine)) -> Dict[str, List[Any]]:
    """Tokens in the current snapshot, in render order."""
    return {"tokens": list(engine.snapshot.tokens)}


@router.websocket("/ws/feed")
async def feed_socket(websocket: WebSocket):
    """Push the current snapshot, then every new one."""
    engine = getattr(websocket.app.state, "feed_engine", None)
    if engine is None:
        await websocket.close(code=1013)
        return

    queue = await manager.connect(websocket)
    try:
        await websocket.send_json(engine.snapshot.to_payload())
        while True:
            payload = await queue.get()
            await websocket.send_json(payload)
    except WebSocketDisconnect:
        pass
    except Exception as e:
        logger.warning(f"Dashboard socket error: {e}")
    finally:
        manager.disconnect(websocket)
