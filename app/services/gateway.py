"""
app.services.gateway
~~~~~~~~~~~~~~~~~~~~

WebSocket 连接网关 —— 维护在线连接表，并执行协调器产出的投递指令。

每帧出站消息的格式为 ``{"event": <事件名>, "data": <载荷>}``。
"""
from __future__ import annotations

import asyncio
import uuid
from collections.abc import Iterable

from fastapi import WebSocket

from app.core.logging import get_logger
from app.schemas.room_events import Audience, Instruction

logger = get_logger(__name__)


class ConnectionGateway:
    """WebSocket 连接网关。

    Attributes:
        connections: 连接 ID → WebSocket 的映射。
    """

    def __init__(self) -> None:
        self.connections: dict[str, WebSocket] = {}

    async def connect(self, websocket: WebSocket) -> str:
        """接受新连接并分配连接 ID。"""
        await websocket.accept()
        connection_id = uuid.uuid4().hex
        self.connections[connection_id] = websocket
        return connection_id

    def disconnect(self, connection_id: str) -> None:
        """从连接表移除断开的连接。"""
        self.connections.pop(connection_id, None)

    @property
    def online_count(self) -> int:
        """当前在线连接数。"""
        return len(self.connections)

    def recipients(self, instruction: Instruction) -> list[str]:
        """解析一条指令的接收方连接 ID。"""
        if instruction.audience is Audience.UNICAST:
            return [instruction.target] if instruction.target in self.connections else []
        if instruction.audience is Audience.OTHERS:
            return [cid for cid in self.connections if cid != instruction.target]
        return list(self.connections)

    async def deliver(self, instructions: Iterable[Instruction]) -> list[str]:
        """按顺序执行投递指令。

        Returns:
            因发送失败被移出连接表的连接 ID，由调用方释放其房间身份。
        """
        dropped: list[str] = []
        for instruction in instructions:
            frame = {"event": instruction.event, "data": instruction.payload}
            targets = self.recipients(instruction)
            if not targets:
                continue
            results = await asyncio.gather(
                *(self.connections[cid].send_json(frame) for cid in targets),
                return_exceptions=True,
            )
            for cid, result in zip(targets, results):
                if isinstance(result, Exception):
                    logger.warning("投递失败，移除断开的连接 | event=%s | connection=%s", instruction.event, cid)
                    self.disconnect(cid)
                    dropped.append(cid)
        return dropped
