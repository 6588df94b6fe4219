"""
tests.conftest
~~~~~~~~~~~~~~

共享 pytest fixtures —— 固定时钟、独立的登记表/协调器实例，
以及 mock 的 WebSocket 连接，使单元测试无需网络即可运行。
"""
from __future__ import annotations

import os
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock

import pytest

# ── 在所有测试导入前设置环境变量 ─────────────────────────────────────
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("ADMIN_PASSWORD", "test-admin-secret")
os.environ["GEMINI_API_KEY"] = ""  # 关闭 AI 助手，避免真实 API 调用
os.environ["WS_RATE_LIMIT_INTERVAL"] = "0"

from fastapi import WebSocket  # noqa: E402

from app.services.coordinator import RoomCoordinator  # noqa: E402
from app.services.registry import SessionRegistry  # noqa: E402

ADMIN_PASSWORD: str = os.environ["ADMIN_PASSWORD"]
START: datetime = datetime(2025, 1, 1, 12, 0, 0, tzinfo=timezone.utc)


class FakeClock:
    """可手动拨动的时钟。"""

    def __init__(self, start: datetime = START) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> datetime:
        self.now += timedelta(seconds=seconds)
        return self.now


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def registry() -> SessionRegistry:
    return SessionRegistry(admin_password=ADMIN_PASSWORD)


@pytest.fixture()
def coordinator(registry: SessionRegistry, clock: FakeClock) -> RoomCoordinator:
    return RoomCoordinator(registry, clock=clock)


def make_websocket() -> AsyncMock:
    """返回一个 mock 的 ``WebSocket``，发送的帧记录在 ``send_json`` 调用里。"""
    return AsyncMock(spec=WebSocket)


def sent_frames(ws: AsyncMock) -> list[dict]:
    """取出 mock 连接收到的所有出站帧。"""
    return [call.args[0] for call in ws.send_json.call_args_list]


def events(instructions) -> list[str]:
    return [i.event for i in instructions]
