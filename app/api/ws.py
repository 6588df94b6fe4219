"""
app.api.ws
~~~~~~~~~~

WebSocket 实时交互接口 —— 单房间聊天。

提供 ``/ws/chat`` 端点。每个连接分配一个连接 ID 作为身份标识，
客户端事件交给 ``RoomHub`` 处理，连接关闭时一定会执行断线清理。

消息协议（双向相同）::

    {"event": "<事件名>", "data": {...}}

入站事件: ``join``、``sendMessage``、``typingStart``、``typingStop``、
``approveGuest``、``rejectGuest``、``kickGuest``、``cancelRequest``、``getRoomState``。
"""
from __future__ import annotations

from fastapi import APIRouter, WebSocket, WebSocketDisconnect
from pydantic import ValidationError

from app.core.logging import connection_id_ctx_var, get_logger
from app.schemas.room_events import InboundFrame
from app.services.hub import RoomHub

logger = get_logger(__name__)

router: APIRouter = APIRouter()


@router.websocket("/ws/chat")
async def websocket_chat_endpoint(websocket: WebSocket) -> None:
    """WebSocket 聊天室端点。

    Args:
        websocket: FastAPI WebSocket 连接对象。
    """
    hub: RoomHub = websocket.app.state.room_hub
    connection_id = await hub.gateway.connect(websocket)
    token = connection_id_ctx_var.set(connection_id[:8])
    logger.info("连接已建立 | 当前在线: %d", hub.gateway.online_count)

    try:
        while True:
            raw = await websocket.receive_text()
            try:
                frame = InboundFrame.model_validate_json(raw)
            except ValidationError:
                logger.warning("无法解析的消息帧，已忽略")
                continue
            await hub.dispatch(connection_id, frame.event, frame.data)
    except WebSocketDisconnect:
        pass  # 正常断开
    except Exception as e:
        logger.error("WebSocket 异常: %s", e, exc_info=True)
    finally:
        await hub.disconnect(connection_id)
        logger.info("连接已关闭 | 当前在线: %d", hub.gateway.online_count)
        connection_id_ctx_var.reset(token)
