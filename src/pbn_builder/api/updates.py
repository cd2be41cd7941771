import logging

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

logger = logging.getLogger(__name__)

router = APIRouter()


@router.websocket("/ws")
async def updates(websocket: WebSocket):
    """儀表板訂閱 projectUpdate / summaryUpdate。"""
    from pbn_builder.main import get_connections

    manager = get_connections()
    await manager.connect(websocket)
    try:
        while True:
            # 客戶端訊息只用來維持連線
            await websocket.receive_text()
    except WebSocketDisconnect:
        pass
    finally:
        await manager.disconnect(websocket)
