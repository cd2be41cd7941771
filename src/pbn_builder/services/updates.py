"""推播通道：JobRunner 與 API 只依賴 UpdatePublisher，與實際傳輸方式解耦。"""

import asyncio
import logging
from typing import Protocol

from fastapi import WebSocket

from pbn_builder.models.project import ProjectEvent, Summary

logger = logging.getLogger(__name__)


class UpdatePublisher(Protocol):
    async def publish_project(self, event: ProjectEvent) -> None: ...

    async def publish_summary(self, summary: Summary) -> None: ...


class ConnectionManager:
    """以 WebSocket 廣播 projectUpdate / summaryUpdate。"""

    def __init__(self):
        self.connections: set[WebSocket] = set()
        self._lock = asyncio.Lock()

    async def connect(self, websocket: WebSocket):
        await websocket.accept()
        async with self._lock:
            self.connections.add(websocket)
        logger.info("Dashboard connected (%d open)", len(self.connections))

    async def disconnect(self, websocket: WebSocket):
        async with self._lock:
            self.connections.discard(websocket)

    async def broadcast(self, event: str, data: dict):
        async with self._lock:
            targets = list(self.connections)
        stale = []
        for ws in targets:
            try:
                await ws.send_json({"event": event, "data": data})
            except Exception as e:
                logger.warning("Dropping websocket after send failure: %s", e)
                stale.append(ws)
        for ws in stale:
            await self.disconnect(ws)

    async def publish_project(self, event: ProjectEvent) -> None:
        await self.broadcast("projectUpdate", event.model_dump(mode="json", by_alias=True))

    async def publish_summary(self, summary: Summary) -> None:
        await self.broadcast("summaryUpdate", summary.model_dump(mode="json", by_alias=True))
