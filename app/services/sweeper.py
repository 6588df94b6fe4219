"""
app.services.sweeper
~~~~~~~~~~~~~~~~~~~~

访客超时巡检。

``sweep()`` 是一次纯粹的巡检计算：给定协调器和当前时间，
按规则踢出长时间无活动或会话到期的访客，并在到期前发出一次预警。
``TimeoutSweeper`` 只负责按固定间隔调度它，计时机制不进入可测试的核心逻辑。

规则（按优先级）:
  1. 无活动超过 ``inactivity_timeout`` → 以 ``inactive`` 原因踢出；
  2. 会话时长落在 ``(warning_after, duration]`` 且未预警 → 私信预警一次；
  3. 会话时长超过 ``duration`` → 以 ``session-expired`` 原因踢出。
"""
from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import datetime, timedelta

from app.core.logging import get_logger
from app.schemas.room_events import Instruction, unicast
from app.services.coordinator import KickReason, RoomCoordinator

logger = get_logger(__name__)


@dataclass(frozen=True)
class SweepPolicy:
    """巡检阈值。"""

    inactivity_timeout: timedelta = timedelta(seconds=90)
    warning_after: timedelta = timedelta(seconds=240)
    session_duration: timedelta = timedelta(seconds=300)


def sweep(
    coordinator: RoomCoordinator, now: datetime, policy: SweepPolicy = SweepPolicy(),
) -> list[Instruction]:
    """执行一次巡检，返回需要投递的指令。席位为空时直接跳过。"""
    guest = coordinator.registry.guest
    if guest is None:
        return []

    if now - guest.last_activity_at > policy.inactivity_timeout:
        logger.info("访客无活动超时 | name=%s", guest.display_name)
        return coordinator.evict_guest(
            KickReason.INACTIVE, "{name} was removed from the chat due to inactivity",
        )

    if guest.session_started_at is None:
        return []

    elapsed = now - guest.session_started_at
    if policy.warning_after < elapsed <= policy.session_duration:
        if not coordinator.registry.mark_warning_issued(guest.id):
            return []
        remaining = int((policy.session_duration - elapsed).total_seconds())
        logger.info("访客会话即将到期 | name=%s | 剩余=%ds", guest.display_name, remaining)
        warning = coordinator.system_message(
            f"Your session will end in {remaining} seconds.",
        )
        return [unicast(guest.id, "newMessage", {"message": warning.to_payload()})]

    if elapsed > policy.session_duration:
        logger.info("访客会话到期 | name=%s", guest.display_name)
        return coordinator.evict_guest(
            KickReason.SESSION_EXPIRED, "{name}'s session has ended",
        )

    return []


class TimeoutSweeper:
    """按固定间隔触发巡检的后台任务。

    Attributes:
        interval: 两次巡检之间的秒数。
        tick: 每次巡检时调用的协程函数（由 ``RoomHub`` 提供，负责加锁与投递）。
    """

    def __init__(self, interval: float, tick: Callable[[], Awaitable[None]]) -> None:
        self.interval = interval
        self.tick = tick
        self._task: asyncio.Task[None] | None = None

    def start(self) -> None:
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self._run(), name="room-timeout-sweeper")
            logger.info("超时巡检已启动 | interval=%.0fs", self.interval)

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("超时巡检已停止")

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.interval)
            try:
                await self.tick()
            except Exception as e:
                # 单次巡检失败不重试，下一次巡检会重新评估
                logger.error("超时巡检异常: %s", e, exc_info=True)
