"""
app.schemas.room_events
~~~~~~~~~~~~~~~~~~~~~~~

聊天室领域模型与 WebSocket 事件协议。

- 出站：``Instruction`` 描述一条"发给谁、什么事件、什么载荷"的投递指令，
  由 ``RoomCoordinator`` 产生，交给 ``ConnectionGateway`` 执行。
- 入站：``*Intent`` 模型负责校验客户端发来的事件载荷。

所有序列化后的字段统一为 camelCase（``displayName``、``pendingId`` ...）。
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Annotated, Any, Literal

from pydantic import BaseModel, ConfigDict, Field, StringConstraints
from pydantic.alias_generators import to_camel


class Role(str, Enum):
    """房间内身份。"""

    ADMIN = "admin"
    GUEST = "guest"
    PENDING = "pending"


class MessageKind(str, Enum):
    """消息类型：真人/助手聊天 或 房间系统播报。"""

    CHAT = "chat"
    SYSTEM = "system"


class CamelModel(BaseModel):
    """以 camelCase 序列化、同时接受 snake_case 构造的基类。"""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_payload(self) -> dict[str, Any]:
        """导出为可直接发送的 JSON 字典。"""
        return self.model_dump(mode="json", by_alias=True)


# ── 房间实体 ──────────────────────────────────────────────────────────


class Identity(CamelModel):
    """一次连接的身份：连接 ID + 显示名。"""

    id: str = Field(..., description="稳定的连接标识")
    display_name: str = Field(..., description="显示名")


class Occupant(CamelModel):
    """占据管理员席位或访客席位的用户。"""

    id: str
    display_name: str
    role: Role
    joined_at: datetime
    last_activity_at: datetime
    session_started_at: datetime | None = None
    warning_issued: bool = False


class PendingRequest(CamelModel):
    """等待管理员审批的访客申请。"""

    id: str
    display_name: str
    requested_at: datetime


class ChatMessage(CamelModel):
    """聊天记录中的一条消息。"""

    id: str
    author_id: str | None = None
    author_name: str
    body: str
    created_at: datetime
    kind: MessageKind = MessageKind.CHAT


class RoomSnapshot(CamelModel):
    """房间状态的只读视图（用于状态同步）。"""

    admin: Occupant | None = None
    guest: Occupant | None = None
    pending: list[PendingRequest] = Field(default_factory=list)


# ── 出站投递指令 ──────────────────────────────────────────────────────


class Audience(str, Enum):
    """投递范围。"""

    UNICAST = "unicast"
    BROADCAST = "broadcast"
    OTHERS = "others"  # 除 target 之外的所有连接


@dataclass(frozen=True)
class Instruction:
    """一条出站事件投递指令。

    Attributes:
        audience: 投递范围。
        event: 事件名。
        payload: 已序列化好的事件载荷。
        target: ``UNICAST`` 时为接收方，``OTHERS`` 时为被排除方。
    """

    audience: Audience
    event: str
    payload: dict[str, Any] = field(default_factory=dict)
    target: str | None = None


def unicast(target: str, event: str, payload: dict[str, Any] | None = None) -> Instruction:
    return Instruction(Audience.UNICAST, event, payload or {}, target)


def broadcast(event: str, payload: dict[str, Any] | None = None) -> Instruction:
    return Instruction(Audience.BROADCAST, event, payload or {})


def broadcast_others(exclude: str, event: str, payload: dict[str, Any] | None = None) -> Instruction:
    return Instruction(Audience.OTHERS, event, payload or {}, exclude)


# ── 入站事件载荷 ──────────────────────────────────────────────────────


class JoinIntent(CamelModel):
    """``join`` 事件载荷。"""

    name: Annotated[str, StringConstraints(strip_whitespace=True, min_length=1, max_length=50)] = Field(
        ..., description="显示名",
    )
    role: Literal["admin", "guest"] = Field(..., description="申请的身份")
    password: str | None = Field(default=None, description="管理员口令")


class SendMessageIntent(CamelModel):
    """``sendMessage`` 事件载荷。"""

    model_config = ConfigDict(str_strip_whitespace=True)

    body: str = Field(..., min_length=1, max_length=2000, description="消息正文")


class PendingTargetIntent(CamelModel):
    """``approveGuest`` / ``rejectGuest`` 事件载荷。"""

    pending_id: str = Field(..., min_length=1, description="待审批申请 ID")


class EmptyIntent(CamelModel):
    """无载荷事件（``typingStart``、``kickGuest`` 等）。"""


class InboundFrame(BaseModel):
    """客户端发来的一帧：``{"event": ..., "data": {...}}``。"""

    event: str
    data: dict[str, Any] = Field(default_factory=dict)
