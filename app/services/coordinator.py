"""
app.services.coordinator
~~~~~~~~~~~~~~~~~~~~~~~~

房间协调器 —— 聊天室状态机。

把客户端意图（加入、发言、审批、踢人、输入中、断线 ...）翻译为
``SessionRegistry`` 调用，并为每次操作产出一组确定的出站投递指令
（``Instruction``），由网关负责真正发送。

约定:
  - 审批 / 拒绝 / 踢人仅限在席管理员，其他人调用时静默忽略；
  - 重复踢人、重复审批等属于竞态，按无操作处理，不报错；
  - 所有方法都是同步的，单次调用内不会让出事件循环。
"""
from __future__ import annotations

import uuid
from collections.abc import Callable
from datetime import datetime, timezone
from enum import Enum

from app.core.logging import get_logger
from app.schemas.room_events import (
    ChatMessage,
    Identity,
    Instruction,
    MessageKind,
    Occupant,
    Role,
    broadcast,
    broadcast_others,
    unicast,
)
from app.services.registry import ApprovalStatus, SessionRegistry

logger = get_logger(__name__)

SYSTEM_AUTHOR: str = "System"

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class KickReason(str, Enum):
    """``kicked`` 事件中的 reason 取值。"""

    ADMIN = "admin"
    REPLACED = "replaced"
    INACTIVE = "inactive"
    SESSION_EXPIRED = "session-expired"


class RoomCoordinator:
    """单房间状态机。

    Attributes:
        registry: 房间状态登记表（本协调器是它唯一的写入方）。
        clock: 时间来源，测试中可注入固定时钟。
        assistant_name: AI 助手消息的署名。
    """

    def __init__(
        self,
        registry: SessionRegistry,
        clock: Clock = utc_now,
        assistant_name: str = "AI Assistant",
    ) -> None:
        self.registry = registry
        self.clock = clock
        self.assistant_name = assistant_name

    # ── 查询 ──────────────────────────────────────────────────────────

    def role_of(self, connection_id: str) -> Role | None:
        return self.registry.role_of(connection_id)

    def conversation_history(self, limit: int) -> list[ChatMessage]:
        """最近 ``limit`` 条聊天消息（不含系统播报）。"""
        if limit <= 0:
            return []
        chat = [m for m in self.registry.messages if m.kind is MessageKind.CHAT]
        return chat[-limit:]

    # ── 加入 ──────────────────────────────────────────────────────────

    def join(
        self, caller_id: str, name: str, role: Role, password: str | None = None,
    ) -> list[Instruction]:
        """处理 ``join``：管理员直接入座，访客进入待审批队列。"""
        if self.registry.role_of(caller_id) is not None:
            return [unicast(caller_id, "joined", {"success": False, "error": "Already joined"})]

        identity = Identity(id=caller_id, display_name=name)
        if role is Role.ADMIN:
            return self._join_admin(identity, password)
        if role is Role.GUEST:
            return self._join_guest(identity)
        return [unicast(caller_id, "joined", {"success": False, "error": "Unsupported role"})]

    def _join_admin(self, identity: Identity, password: str | None) -> list[Instruction]:
        admission = self.registry.admit_admin(identity, password, self.clock())
        admin = admission.admin
        if not admission.accepted or admin is None:
            logger.info("管理员口令错误 | name=%s", identity.display_name)
            return [
                unicast(identity.id, "joined", {"success": False, "error": "Invalid admin password"}),
            ]

        instructions = [
            unicast(identity.id, "joined", {
                "success": True,
                "role": Role.ADMIN.value,
                "roomSnapshot": self._snapshot_payload(),
            }),
        ]

        replaced = admission.replaced
        if replaced is not None:
            logger.info(
                "管理员被顶替 | old=%s | new=%s", replaced.display_name, identity.display_name,
            )
            instructions += [
                unicast(replaced.id, "kicked", {"reason": KickReason.REPLACED.value}),
                broadcast("occupantLeft", {"occupantId": replaced.id, "role": Role.ADMIN.value}),
            ]

        instructions.append(
            broadcast_others(identity.id, "occupantJoined", {
                "occupant": admin.to_payload(),
                "role": Role.ADMIN.value,
            }),
        )

        waiting = self.registry.pending_count
        if waiting:
            instructions.append(
                self._system_notice(f"Admin joined. {waiting} guest request(s) waiting for approval."),
            )
        logger.info("管理员已入场 | name=%s | 待审批=%d", identity.display_name, waiting)
        return instructions

    def _join_guest(self, identity: Identity) -> list[Instruction]:
        entry = self.registry.enqueue_guest(identity, self.clock())
        if entry is None:
            logger.warning("待审批队列已满 | name=%s", identity.display_name)
            return [unicast(identity.id, "joined", {"success": False, "error": "Room is full"})]

        logger.info("访客申请加入 | name=%s | 待审批=%d", identity.display_name, self.registry.pending_count)
        return [
            unicast(identity.id, "joined", {
                "success": True,
                "role": Role.PENDING.value,
                "roomSnapshot": self._snapshot_payload(),
            }),
            broadcast_others(identity.id, "guestRequested", {"entry": entry.to_payload()}),
            self._pending_count_changed(),
        ]

    # ── 管理员操作 ────────────────────────────────────────────────────

    def approve_guest(self, caller_id: str, pending_id: str) -> list[Instruction]:
        """批准一条待审批申请。访客席位被占用时只广播一条系统提示。"""
        if not self._is_admin(caller_id):
            return []

        outcome = self.registry.approve(pending_id, self.clock())
        if outcome.status is ApprovalStatus.NOT_FOUND:
            logger.debug("审批目标不存在 | pending_id=%s", pending_id)
            return []
        if outcome.status is ApprovalStatus.SEAT_OCCUPIED:
            entry, seated = outcome.entry, self.registry.guest
            if entry is None or seated is None:
                return []
            blocked, current = entry.display_name, seated.display_name
            logger.info("访客席位已占用，无法批准 | blocked=%s | current=%s", blocked, current)
            return [
                self._system_notice(
                    f"Cannot approve {blocked}: {current} is still in the chat. "
                    "Remove the current guest first.",
                ),
            ]

        guest = outcome.guest
        if guest is None:
            return []
        logger.info("访客已获批准 | name=%s", guest.display_name)
        return [
            unicast(guest.id, "approved", {"name": guest.display_name}),
            broadcast("occupantJoined", {"occupant": guest.to_payload(), "role": Role.GUEST.value}),
            self._system_notice(f"{guest.display_name} has been approved to join the chat"),
            self._pending_count_changed(),
        ]

    def reject_guest(self, caller_id: str, pending_id: str) -> list[Instruction]:
        """拒绝一条待审批申请。"""
        if not self._is_admin(caller_id):
            return []

        entry = self.registry.reject(pending_id)
        if entry is None:
            logger.debug("拒绝目标不存在 | pending_id=%s", pending_id)
            return []

        logger.info("访客申请被拒绝 | name=%s", entry.display_name)
        return [
            unicast(entry.id, "rejected"),
            self._system_notice(f"{entry.display_name}'s request has been rejected"),
            self._pending_count_changed(),
        ]

    def kick_guest(self, caller_id: str) -> list[Instruction]:
        """管理员踢出在席访客。席位为空时不产生任何指令。"""
        if not self._is_admin(caller_id):
            return []
        return self.evict_guest(KickReason.ADMIN, "{name} has been kicked from the chat")

    def evict_guest(self, reason: KickReason, notice_template: str) -> list[Instruction]:
        """踢出访客的公共路径（管理员踢人与超时巡检共用）。

        Args:
            reason: ``kicked`` 事件中携带的原因。
            notice_template: 系统播报模板，``{name}`` 替换为访客名。
        """
        evicted = self.registry.kick_guest()
        if evicted is None:
            return []

        logger.info("访客离席 | name=%s | reason=%s", evicted.display_name, reason.value)
        return [
            unicast(evicted.id, "kicked", {"reason": reason.value}),
            broadcast("occupantLeft", {"occupantId": evicted.id, "role": Role.GUEST.value}),
            self._system_notice(notice_template.format(name=evicted.display_name)),
        ]

    # ── 访客 / 在席用户操作 ───────────────────────────────────────────

    def cancel_request(self, caller_id: str) -> list[Instruction]:
        """待审批访客主动撤回申请。"""
        entry = self.registry.reject(caller_id)
        if entry is None:
            return []

        logger.info("访客撤回申请 | name=%s", entry.display_name)
        return [
            broadcast("occupantLeft", {"occupantId": entry.id, "role": Role.PENDING.value}),
            self._system_notice(f"{entry.display_name} cancelled their request to join"),
            self._pending_count_changed(),
        ]

    def send_message(self, caller_id: str, body: str) -> list[Instruction]:
        """在席用户发言。待审批或未加入的连接被拒绝（无指令、无状态变化）。"""
        author = self.registry.occupant(caller_id)
        body = body.strip()
        if author is None or not body:
            return []

        now = self.clock()
        self.registry.touch_activity(caller_id, now)
        message = ChatMessage(
            id=uuid.uuid4().hex,
            author_id=author.id,
            author_name=author.display_name,
            body=body,
            created_at=now,
        )
        self.registry.append_message(message)
        return [
            broadcast("newMessage", {"message": message.to_payload()}),
            self._activity_updated(),
        ]

    def typing_start(self, caller_id: str) -> list[Instruction]:
        author = self.registry.occupant(caller_id)
        if author is None:
            return []
        self.registry.touch_activity(caller_id, self.clock())
        return [
            broadcast_others(caller_id, "userTyping", {
                "occupantId": author.id,
                "name": author.display_name,
                "role": author.role.value,
            }),
            self._activity_updated(),
        ]

    def typing_stop(self, caller_id: str) -> list[Instruction]:
        if self.registry.occupant(caller_id) is None:
            return []
        self.registry.touch_activity(caller_id, self.clock())
        return [
            broadcast_others(caller_id, "userStoppedTyping", {"occupantId": caller_id}),
            self._activity_updated(),
        ]

    def get_room_state(self, caller_id: str) -> list[Instruction]:
        """向在席用户单播完整房间状态（含缓冲区消息）。"""
        if self.registry.occupant(caller_id) is None:
            return []
        return [
            unicast(caller_id, "roomState", {
                "roomSnapshot": self._snapshot_payload(),
                "messages": [m.to_payload() for m in self.registry.messages],
            }),
        ]

    def disconnect(self, caller_id: str) -> list[Instruction]:
        """连接断开。待审批用户断线时不发系统播报，与主动撤回区分。"""
        removal = self.registry.remove_occupant(caller_id)
        if removal.role is None:
            return []

        logger.info("用户断线 | name=%s | role=%s", removal.display_name, removal.role.value)
        if removal.role is Role.PENDING:
            return [self._pending_count_changed(), self._activity_updated()]

        instructions = [
            broadcast("occupantLeft", {"occupantId": caller_id, "role": removal.role.value}),
        ]
        if removal.role is Role.ADMIN:
            instructions.append(self._system_notice("Admin has left the chat. New admin can join."))
        return instructions

    # ── AI 助手 ───────────────────────────────────────────────────────

    def post_assistant_reply(self, guest_id: str, text: str) -> list[Instruction]:
        """把 AI 助手的回复作为聊天消息广播。

        只有当触发回复的访客仍在席时才发布，否则丢弃。
        """
        guest = self.registry.guest
        text = text.strip()
        if guest is None or guest.id != guest_id or not text:
            logger.debug("丢弃 AI 回复：访客已离席")
            return []

        message = ChatMessage(
            id=uuid.uuid4().hex,
            author_name=self.assistant_name,
            body=text,
            created_at=self.clock(),
        )
        self.registry.append_message(message)
        return [broadcast("newMessage", {"message": message.to_payload()})]

    # ── 内部 ──────────────────────────────────────────────────────────

    def _is_admin(self, caller_id: str) -> bool:
        admin: Occupant | None = self.registry.admin
        return admin is not None and admin.id == caller_id

    def _snapshot_payload(self) -> dict:
        return self.registry.snapshot().to_payload()

    def _pending_count_changed(self) -> Instruction:
        return broadcast("pendingCountChanged", {"count": self.registry.pending_count})

    def _activity_updated(self) -> Instruction:
        return broadcast("activityUpdated", {"roomSnapshot": self._snapshot_payload()})

    def system_message(self, body: str) -> ChatMessage:
        """构造一条房间系统播报（不写入消息缓冲区）。"""
        return ChatMessage(
            id=uuid.uuid4().hex,
            author_name=SYSTEM_AUTHOR,
            body=body,
            created_at=self.clock(),
            kind=MessageKind.SYSTEM,
        )

    def _system_notice(self, body: str) -> Instruction:
        return broadcast("newMessage", {"message": self.system_message(body).to_payload()})
