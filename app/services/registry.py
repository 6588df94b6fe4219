"""
app.services.registry
~~~~~~~~~~~~~~~~~~~~~

会话登记表 —— 聊天室状态的唯一持有者。

记录最多一个管理员、最多一个在席访客、一个有序的待审批队列，
以及有界的消息环形缓冲区。所有修改方法都保证房间不变式：

- 管理员席位、访客席位各最多一人；
- 访客与待审批队列互不相交。

准入/移除属于高频的正常业务事件，因此全部以返回值表达结果，从不抛异常。
"""
from __future__ import annotations

import hmac
from collections import deque
from dataclasses import dataclass
from datetime import datetime
from enum import Enum

from app.schemas.room_events import (
    ChatMessage,
    Identity,
    Occupant,
    PendingRequest,
    Role,
    RoomSnapshot,
)


@dataclass(frozen=True)
class AdminAdmission:
    """管理员入场结果。"""

    accepted: bool
    admin: Occupant | None = None
    replaced: Occupant | None = None


class ApprovalStatus(str, Enum):
    APPROVED = "approved"
    SEAT_OCCUPIED = "seat-occupied"
    NOT_FOUND = "not-found"


@dataclass(frozen=True)
class Approval:
    """审批结果。

    Attributes:
        status: 审批状态。
        guest: ``APPROVED`` 时为新入座的访客。
        entry: ``SEAT_OCCUPIED`` 时为被阻塞（仍在队列中）的申请。
    """

    status: ApprovalStatus
    guest: Occupant | None = None
    entry: PendingRequest | None = None


@dataclass(frozen=True)
class Removal:
    """``remove_occupant`` 的结果：被移除的身份及其记录。"""

    role: Role | None
    display_name: str | None = None


class SessionRegistry:
    """单房间会话登记表。

    管理员共享口令在构造时给定，不允许为空。

    Attributes:
        message_capacity: 消息缓冲区容量，超出后丢弃最旧的消息。
        pending_limit: 待审批队列上限，``None`` 表示不限。
    """

    def __init__(
        self,
        admin_password: str,
        message_capacity: int = 100,
        pending_limit: int | None = None,
    ) -> None:
        if not admin_password or not admin_password.strip():
            raise ValueError("admin password must not be blank")
        self._admin_password = admin_password
        self.message_capacity = message_capacity
        self.pending_limit = pending_limit

        self._admin: Occupant | None = None
        self._guest: Occupant | None = None
        self._pending: list[PendingRequest] = []
        self._messages: deque[ChatMessage] = deque(maxlen=message_capacity)

    # ── 查询 ──────────────────────────────────────────────────────────

    @property
    def admin(self) -> Occupant | None:
        return self._admin

    @property
    def guest(self) -> Occupant | None:
        return self._guest

    @property
    def pending(self) -> list[PendingRequest]:
        """待审批队列副本（按申请先后排序）。"""
        return list(self._pending)

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    @property
    def messages(self) -> list[ChatMessage]:
        """缓冲区中的消息，按时间正序。"""
        return list(self._messages)

    def find_pending(self, pending_id: str) -> PendingRequest | None:
        return next((p for p in self._pending if p.id == pending_id), None)

    def occupant(self, occupant_id: str) -> Occupant | None:
        """返回 id 对应的在席用户（管理员或访客），不在席返回 ``None``。"""
        if self._admin is not None and self._admin.id == occupant_id:
            return self._admin
        if self._guest is not None and self._guest.id == occupant_id:
            return self._guest
        return None

    def role_of(self, connection_id: str) -> Role | None:
        """返回连接当前的身份，未加入返回 ``None``。"""
        seated = self.occupant(connection_id)
        if seated is not None:
            return seated.role
        if self.find_pending(connection_id) is not None:
            return Role.PENDING
        return None

    def snapshot(self) -> RoomSnapshot:
        """返回房间状态的只读副本。"""
        return RoomSnapshot(
            admin=self._admin.model_copy() if self._admin else None,
            guest=self._guest.model_copy() if self._guest else None,
            pending=[p.model_copy() for p in self._pending],
        )

    # ── 修改 ──────────────────────────────────────────────────────────

    def admit_admin(
        self, identity: Identity, supplied_password: str | None, now: datetime,
    ) -> AdminAdmission:
        """管理员入场。后到的合法管理员顶替在席管理员。

        新管理员必须提供与共享口令一致的口令；缺省口令视为不一致。
        被顶替的管理员不做二次校验，直接作为 ``replaced`` 返回。
        """
        if not self._password_matches(supplied_password):
            return AdminAdmission(accepted=False)

        previous = self._admin
        if previous is not None and previous.id == identity.id:
            previous = None

        self._admin = Occupant(
            id=identity.id,
            display_name=identity.display_name,
            role=Role.ADMIN,
            joined_at=now,
            last_activity_at=now,
        )
        return AdminAdmission(accepted=True, admin=self._admin, replaced=previous)

    def enqueue_guest(self, identity: Identity, now: datetime) -> PendingRequest | None:
        """把访客加入待审批队列。永远不会直接入座。

        Returns:
            新的队列条目；仅当配置了队列上限且已满时返回 ``None``。
        """
        if self.pending_limit is not None and len(self._pending) >= self.pending_limit:
            return None
        entry = PendingRequest(
            id=identity.id,
            display_name=identity.display_name,
            requested_at=now,
        )
        self._pending.append(entry)
        return entry

    def approve(self, pending_id: str, now: datetime) -> Approval:
        """把一条待审批申请转为在席访客。

        访客席位已被占用时不做任何修改，需要先踢出现有访客再重试。
        """
        entry = self.find_pending(pending_id)
        if entry is None:
            return Approval(ApprovalStatus.NOT_FOUND)
        if self._guest is not None:
            return Approval(ApprovalStatus.SEAT_OCCUPIED, entry=entry)

        self._pending.remove(entry)
        self._guest = Occupant(
            id=entry.id,
            display_name=entry.display_name,
            role=Role.GUEST,
            joined_at=now,
            last_activity_at=now,
            session_started_at=now,
        )
        return Approval(ApprovalStatus.APPROVED, guest=self._guest)

    def reject(self, pending_id: str) -> PendingRequest | None:
        """从队列中移除申请，返回被移除的条目。"""
        entry = self.find_pending(pending_id)
        if entry is not None:
            self._pending.remove(entry)
        return entry

    def kick_guest(self) -> Occupant | None:
        """清空访客席位，并清理队列中同 id 的残留申请。"""
        evicted = self._guest
        if evicted is None:
            return None
        self._guest = None
        self._pending = [p for p in self._pending if p.id != evicted.id]
        return evicted

    def remove_occupant(self, occupant_id: str) -> Removal:
        """按 id 在管理员、访客、队列中查找并移除（断线、主动取消）。"""
        if self._admin is not None and self._admin.id == occupant_id:
            removed, self._admin = self._admin, None
            return Removal(Role.ADMIN, removed.display_name)
        if self._guest is not None and self._guest.id == occupant_id:
            removed, self._guest = self._guest, None
            return Removal(Role.GUEST, removed.display_name)
        entry = self.reject(occupant_id)
        if entry is not None:
            return Removal(Role.PENDING, entry.display_name)
        return Removal(None)

    def touch_activity(self, occupant_id: str, now: datetime) -> None:
        """刷新在席用户的最后活跃时间，其他 id 忽略。"""
        seated = self.occupant(occupant_id)
        if seated is not None:
            seated.last_activity_at = now

    def mark_warning_issued(self, occupant_id: str) -> bool:
        """标记访客已收到到期预警。已标记过或不在席时返回 ``False``。"""
        guest = self._guest
        if guest is None or guest.id != occupant_id or guest.warning_issued:
            return False
        guest.warning_issued = True
        return True

    def append_message(self, message: ChatMessage) -> None:
        """追加消息，超出容量时从头部丢弃最旧的一条。"""
        self._messages.append(message)

    # ── 内部 ──────────────────────────────────────────────────────────

    def _password_matches(self, supplied: str | None) -> bool:
        if supplied is None:
            return False
        return hmac.compare_digest(supplied.encode("utf-8"), self._admin_password.encode("utf-8"))
