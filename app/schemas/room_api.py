"""
app.schemas.room_api
~~~~~~~~~~~~~~~~~~~~

聊天室 HTTP 接口的 Pydantic 请求/响应模型。
"""
from __future__ import annotations

from pydantic import Field

from app.schemas.room_events import CamelModel, RoomSnapshot


class RoomStateData(CamelModel):
    """房间状态概览。"""

    room: RoomSnapshot = Field(..., description="当前席位与待审批队列")
    message_count: int = Field(..., description="消息缓冲区中的条数")
    online_count: int = Field(..., description="当前 WebSocket 连接数")


class AssistantReplyRequest(CamelModel):
    """AI 助手单次问答请求体。"""

    message: str = Field(..., min_length=1, max_length=2000, description="访客消息")
    guest_name: str | None = Field(default=None, max_length=50, description="访客显示名")


class AssistantReplyData(CamelModel):
    """AI 助手单次问答响应数据。"""

    response: str = Field(..., description="AI 助手的回复")
