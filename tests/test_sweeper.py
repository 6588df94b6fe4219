"""
tests.test_sweeper
~~~~~~~~~~~~~~~~~~

超时巡检规则测试：无活动超时、会话到期预警（只发一次）与会话到期。
"""
from __future__ import annotations

import asyncio

import pytest

from app.schemas.room_events import Audience, Role
from app.services.coordinator import RoomCoordinator
from app.services.sweeper import SweepPolicy, TimeoutSweeper, sweep
from tests.conftest import ADMIN_PASSWORD, FakeClock, events


@pytest.fixture()
def seated(coordinator: RoomCoordinator) -> RoomCoordinator:
    """Alice 在席管理，Bob 已被批准为访客。"""
    coordinator.join("alice", "Alice", Role.ADMIN, ADMIN_PASSWORD)
    coordinator.join("bob", "Bob", Role.GUEST)
    coordinator.approve_guest("alice", "bob")
    return coordinator


def keep_active(coordinator: RoomCoordinator, clock: FakeClock, until: float, step: float = 60) -> None:
    """访客每 ``step`` 秒发一条消息，直到会话进行 ``until`` 秒。"""
    elapsed = 0.0
    while elapsed + step <= until:
        clock.advance(step)
        elapsed += step
        coordinator.send_message("bob", "still here")
    clock.advance(until - elapsed)


def test_empty_seat_does_nothing(coordinator: RoomCoordinator, clock: FakeClock) -> None:
    coordinator.join("alice", "Alice", Role.ADMIN, ADMIN_PASSWORD)

    assert sweep(coordinator, clock.advance(1000)) == []


def test_fresh_guest_is_left_alone(seated: RoomCoordinator, clock: FakeClock) -> None:
    assert sweep(seated, clock.advance(30)) == []
    assert seated.registry.guest is not None


def test_inactive_guest_is_evicted(seated: RoomCoordinator, clock: FakeClock) -> None:
    """无活动 91 秒即被移除，哪怕会话才进行了 100 秒。"""
    clock.advance(9)
    seated.send_message("bob", "hi")

    out = sweep(seated, clock.advance(91))

    assert events(out) == ["kicked", "occupantLeft", "newMessage"]
    assert out[0].target == "bob" and out[0].payload == {"reason": "inactive"}
    assert out[2].payload["message"]["body"] == "Bob was removed from the chat due to inactivity"
    assert seated.registry.guest is None


def test_exactly_at_inactivity_limit_is_not_evicted(seated: RoomCoordinator, clock: FakeClock) -> None:
    assert sweep(seated, clock.advance(90)) == []


def test_admin_activity_does_not_keep_guest_alive(seated: RoomCoordinator, clock: FakeClock) -> None:
    clock.advance(60)
    seated.send_message("alice", "anyone there?")

    out = sweep(seated, clock.advance(31))

    assert out[0].payload == {"reason": "inactive"}


def test_session_warning_is_sent_once(seated: RoomCoordinator, clock: FakeClock) -> None:
    keep_active(seated, clock, until=250)

    first = sweep(seated, clock())
    second = sweep(seated, clock.advance(10))

    assert events(first) == ["newMessage"]
    assert first[0].audience is Audience.UNICAST and first[0].target == "bob"
    assert first[0].payload["message"]["body"] == "Your session will end in 50 seconds."
    assert first[0].payload["message"]["kind"] == "system"
    assert second == []
    assert seated.registry.guest.warning_issued is True
    # 预警是私信，不进入聊天记录
    assert all(m.body != first[0].payload["message"]["body"] for m in seated.registry.messages)


def test_no_warning_before_window(seated: RoomCoordinator, clock: FakeClock) -> None:
    keep_active(seated, clock, until=240)

    assert sweep(seated, clock()) == []
    assert seated.registry.guest.warning_issued is False


def test_session_expires_after_duration(seated: RoomCoordinator, clock: FakeClock) -> None:
    keep_active(seated, clock, until=301)

    out = sweep(seated, clock())

    assert events(out) == ["kicked", "occupantLeft", "newMessage"]
    assert out[0].payload == {"reason": "session-expired"}
    assert out[2].payload["message"]["body"] == "Bob's session has ended"
    assert seated.registry.guest is None


def test_custom_policy(seated: RoomCoordinator, clock: FakeClock) -> None:
    policy = SweepPolicy(
        inactivity_timeout=SweepPolicy.inactivity_timeout,
        warning_after=SweepPolicy.warning_after / 24,
        session_duration=SweepPolicy.session_duration / 25,
    )

    out = sweep(seated, clock.advance(11), policy)

    assert events(out) == ["newMessage"]
    assert out[0].payload["message"]["body"] == "Your session will end in 1 seconds."


def test_new_guest_gets_fresh_session(seated: RoomCoordinator, clock: FakeClock) -> None:
    sweep(seated, clock.advance(100))
    seated.join("dan", "Dan", Role.GUEST)
    seated.approve_guest("alice", "dan")

    assert sweep(seated, clock.advance(60)) == []
    assert seated.registry.guest.id == "dan"


# ── 调度 ──────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_timeout_sweeper_ticks_until_stopped() -> None:
    ticks = 0
    ticked = asyncio.Event()

    async def tick() -> None:
        nonlocal ticks
        ticks += 1
        if ticks >= 2:
            ticked.set()

    sweeper = TimeoutSweeper(0.01, tick)
    sweeper.start()
    await asyncio.wait_for(ticked.wait(), timeout=2)
    await sweeper.stop()

    seen = ticks
    await asyncio.sleep(0.05)
    assert ticks == seen


@pytest.mark.asyncio
async def test_timeout_sweeper_survives_failing_tick() -> None:
    calls = 0
    recovered = asyncio.Event()

    async def tick() -> None:
        nonlocal calls
        calls += 1
        if calls == 1:
            raise RuntimeError("boom")
        recovered.set()

    sweeper = TimeoutSweeper(0.01, tick)
    sweeper.start()
    await asyncio.wait_for(recovered.wait(), timeout=2)
    await sweeper.stop()

    assert calls >= 2
