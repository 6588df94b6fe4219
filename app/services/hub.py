"""
app.services.hub
~~~~~~~~~~~~~~~~

聊天室中枢 —— 把协调器、连接网关、超时巡检和 AI 助手串起来。

房间状态只有一个写入方：所有客户端事件与巡检都通过 ``RoomHub.run()``
在同一把 ``asyncio.Lock`` 下执行"协调器计算 + 网关投递"，
保证事件按操作处理顺序发出，不会交错。

在 FastAPI lifespan 中通过 ``build_room_hub()`` 创建，挂载于 ``app.state.room_hub``。
"""
from __future__ import annotations

import asyncio
import random
from collections.abc import Callable
from datetime import timedelta
from typing import Any

from pydantic import BaseModel, ValidationError

from app.core.config import Settings
from app.core.logging import get_logger
from app.core.rate_limit import WebSocketRateLimiter
from app.llm.gemini_bot import AssistantBot
from app.schemas.room_events import (
    ChatMessage,
    EmptyIntent,
    Instruction,
    JoinIntent,
    PendingTargetIntent,
    Role,
    SendMessageIntent,
    unicast,
)
from app.services.assistant import AssistantResponder
from app.services.coordinator import RoomCoordinator
from app.services.gateway import ConnectionGateway
from app.services.registry import SessionRegistry
from app.services.sweeper import SweepPolicy, TimeoutSweeper, sweep

logger = get_logger(__name__)


class RoomHub:
    """单房间中枢（进程内唯一实例，由 lifespan 持有）。

    Attributes:
        coordinator: 房间状态机。
        gateway: WebSocket 连接网关。
        responder: 可选的 AI 助手，为 ``None`` 时访客消息不触发回复。
        policy: 超时巡检阈值。
    """

    def __init__(
        self,
        coordinator: RoomCoordinator,
        gateway: ConnectionGateway,
        responder: AssistantResponder | None = None,
        policy: SweepPolicy = SweepPolicy(),
        sweep_interval: float = 30.0,
        reply_delay: tuple[float, float] = (1.0, 3.0),
        history_limit: int = 10,
        message_interval: float = 0.5,
    ) -> None:
        self.coordinator = coordinator
        self.gateway = gateway
        self.responder = responder
        self.policy = policy
        self.reply_delay = reply_delay
        self.history_limit = history_limit

        self._lock = asyncio.Lock()
        self._rate_limiter = WebSocketRateLimiter(interval_seconds=message_interval)
        self._reply_tasks: set[asyncio.Task[None]] = set()
        self.sweeper = TimeoutSweeper(sweep_interval, self.sweep_once)

        self._routes: dict[str, tuple[type[BaseModel], Callable[[str, Any], list[Instruction]]]] = {
            "join": (JoinIntent, self._join),
            "sendMessage": (SendMessageIntent, self._send_message),
            "typingStart": (EmptyIntent, lambda cid, _: self.coordinator.typing_start(cid)),
            "typingStop": (EmptyIntent, lambda cid, _: self.coordinator.typing_stop(cid)),
            "approveGuest": (
                PendingTargetIntent,
                lambda cid, intent: self.coordinator.approve_guest(cid, intent.pending_id),
            ),
            "rejectGuest": (
                PendingTargetIntent,
                lambda cid, intent: self.coordinator.reject_guest(cid, intent.pending_id),
            ),
            "kickGuest": (EmptyIntent, lambda cid, _: self.coordinator.kick_guest(cid)),
            "cancelRequest": (EmptyIntent, lambda cid, _: self.coordinator.cancel_request(cid)),
            "getRoomState": (EmptyIntent, lambda cid, _: self.coordinator.get_room_state(cid)),
        }

    # ── 生命周期 ──────────────────────────────────────────────────────

    def start(self) -> None:
        self.sweeper.start()

    async def stop(self) -> None:
        await self.sweeper.stop()
        for task in list(self._reply_tasks):
            task.cancel()
        if self._reply_tasks:
            await asyncio.gather(*self._reply_tasks, return_exceptions=True)

    # ── 单写入方执行 ──────────────────────────────────────────────────

    async def run(self, operation: Callable[..., list[Instruction]], *args: Any) -> list[Instruction]:
        """在房间锁内执行一次状态操作，并按顺序投递其产出的指令。"""
        async with self._lock:
            instructions = operation(*args)
            await self._deliver(instructions)
        return instructions

    async def _deliver(self, instructions: list[Instruction]) -> None:
        """投递指令；发送失败被网关移除的连接同样在锁内释放其身份。调用方必须持有房间锁。"""
        dropped = await self.gateway.deliver(instructions)
        while dropped:
            cleanup: list[Instruction] = []
            for connection_id in dropped:
                self._rate_limiter.remove_client(connection_id)
                role = self.coordinator.role_of(connection_id)
                if role is not None:
                    logger.warning("连接发送失败，释放其身份 | role=%s", role.value)
                cleanup += self.coordinator.disconnect(connection_id)
            dropped = await self.gateway.deliver(cleanup)

    async def sweep_once(self) -> None:
        """执行一次超时巡检。"""
        await self.run(lambda: sweep(self.coordinator, self.coordinator.clock(), self.policy))

    # ── 客户端事件 ────────────────────────────────────────────────────

    async def dispatch(self, connection_id: str, event: str, data: dict[str, Any]) -> None:
        """校验一帧客户端事件并交给协调器处理。未知事件与非法载荷记录后忽略。"""
        route = self._routes.get(event)
        if route is None:
            logger.warning("未知事件，已忽略 | event=%s", event)
            return

        model, handler = route
        try:
            intent = model.model_validate(data)
        except ValidationError as e:
            logger.warning("事件载荷校验失败 | event=%s | errors=%d", event, e.error_count())
            if event == "join":
                await self.run(
                    lambda: [unicast(connection_id, "joined", {"success": False, "error": "Invalid join request"})],
                )
            return

        if event == "sendMessage":
            await self._dispatch_message(connection_id, intent)
            return
        await self.run(handler, connection_id, intent)

    async def disconnect(self, connection_id: str) -> None:
        """连接关闭：先从网关移除，再让协调器清理身份并通知其他人。"""
        self.gateway.disconnect(connection_id)
        self._rate_limiter.remove_client(connection_id)
        await self.run(self.coordinator.disconnect, connection_id)

    def _join(self, connection_id: str, intent: JoinIntent) -> list[Instruction]:
        return self.coordinator.join(connection_id, intent.name, Role(intent.role), intent.password)

    def _send_message(self, connection_id: str, intent: SendMessageIntent) -> list[Instruction]:
        return self.coordinator.send_message(connection_id, intent.body)

    async def _dispatch_message(self, connection_id: str, intent: SendMessageIntent) -> None:
        if not self._rate_limiter.is_allowed(connection_id):
            notice = self.coordinator.system_message("You are sending messages too quickly. Please slow down.")
            await self.run(lambda: [unicast(connection_id, "newMessage", {"message": notice.to_payload()})])
            return

        async with self._lock:
            author = self.coordinator.registry.occupant(connection_id)
            history = self.coordinator.conversation_history(self.history_limit)
            instructions = self._send_message(connection_id, intent)
            await self._deliver(instructions)

        if instructions and author is not None and author.role is Role.GUEST:
            self._schedule_reply(author.id, author.display_name, intent.body, history)

    # ── AI 助手 ───────────────────────────────────────────────────────

    def _schedule_reply(
        self, guest_id: str, guest_name: str, message: str, history: list[ChatMessage],
    ) -> None:
        if self.responder is None:
            return
        task = asyncio.create_task(self._reply(self.responder, guest_id, guest_name, message, history))
        self._reply_tasks.add(task)
        task.add_done_callback(self._reply_tasks.discard)

    async def _reply(
        self,
        responder: AssistantResponder,
        guest_id: str,
        guest_name: str,
        message: str,
        history: list[ChatMessage],
    ) -> None:
        low, high = self.reply_delay
        await asyncio.sleep(random.uniform(low, max(low, high)))
        reply = await responder.respond(message, guest_name, history)
        await self.run(self.coordinator.post_assistant_reply, guest_id, reply.text)


def build_room_hub(settings: Settings) -> RoomHub:
    """按配置组装房间中枢。未配置 Gemini Key 时不启用 AI 助手。"""
    registry = SessionRegistry(
        admin_password=settings.ADMIN_PASSWORD.get_secret_value(),
        message_capacity=settings.MESSAGE_BUFFER_SIZE,
        pending_limit=settings.PENDING_LIMIT,
    )
    coordinator = RoomCoordinator(registry, assistant_name=settings.ASSISTANT_NAME)

    responder: AssistantResponder | None = None
    if settings.assistant_enabled:
        responder = AssistantResponder(AssistantBot(), assistant_name=settings.ASSISTANT_NAME)
    else:
        logger.warning("未配置 GEMINI_API_KEY，AI 助手已关闭")

    return RoomHub(
        coordinator=coordinator,
        gateway=ConnectionGateway(),
        responder=responder,
        policy=SweepPolicy(
            inactivity_timeout=timedelta(seconds=settings.INACTIVITY_TIMEOUT_SECONDS),
            warning_after=timedelta(seconds=settings.SESSION_WARNING_SECONDS),
            session_duration=timedelta(seconds=settings.SESSION_DURATION_SECONDS),
        ),
        sweep_interval=settings.SWEEP_INTERVAL_SECONDS,
        reply_delay=(settings.ASSISTANT_MIN_DELAY, settings.ASSISTANT_MAX_DELAY),
        history_limit=settings.ASSISTANT_HISTORY_LIMIT,
        message_interval=settings.WS_RATE_LIMIT_INTERVAL,
    )
