"""
app.core.config
~~~~~~~~~~~~~~~

集中式配置管理，基于 pydantic-settings 自动从 ``.env`` 文件加载。

支持多环境配置（dev / test / prod），加载顺序为:
  1. 环境变量（最高优先级）
  2. ``.env.{ENVIRONMENT}`` 环境专属文件
  3. ``.env`` 基础文件
  4. 字段默认值（最低优先级）
"""
from __future__ import annotations

import os
from functools import lru_cache
from typing import Literal

from pydantic import Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# 读取当前环境标识（在 Settings 类定义之前，用于决定加载哪个 .env 文件）
_CURRENT_ENV: str = os.getenv("ENVIRONMENT", "dev")


class Settings(BaseSettings):
    """全局配置对象，字段值按如下优先级加载：环境变量 > .env.{env} > .env > 默认值。"""

    # ── 基础 ──────────────────────────────────────────────────────────
    PROJECT_NAME: str = Field(default="Duo Chat Room", description="项目名称")
    VERSION: str = Field(default="0.1.0", description="版本号")
    ENVIRONMENT: Literal["dev", "test", "prod"] = Field(
        default="dev",
        description="运行环境：dev / test / prod",
    )

    # ── 管理员 ────────────────────────────────────────────────────────
    ADMIN_PASSWORD: SecretStr = Field(..., description="管理员共享口令（进程启动时提供）")

    # ── 房间 ──────────────────────────────────────────────────────────
    MESSAGE_BUFFER_SIZE: int = Field(default=100, ge=1, description="消息环形缓冲区容量")
    PENDING_LIMIT: int | None = Field(
        default=None,
        ge=1,
        description="待审批队列上限，None 表示不限",
    )

    # ── 超时巡检 ──────────────────────────────────────────────────────
    SWEEP_INTERVAL_SECONDS: float = Field(default=30.0, gt=0, description="巡检间隔")
    INACTIVITY_TIMEOUT_SECONDS: float = Field(default=90.0, gt=0, description="访客无活动超时")
    SESSION_WARNING_SECONDS: float = Field(default=240.0, gt=0, description="会话到期预警时间点")
    SESSION_DURATION_SECONDS: float = Field(default=300.0, gt=0, description="访客会话总时长")

    # ── AI 助手 ───────────────────────────────────────────────────────
    GEMINI_API_KEY: str | None = Field(default=None, description="Google Gemini API Key（为空时关闭 AI 助手）")
    GEMINI_MODEL: str = Field(default="gemini-2.5-flash", description="Gemini 聊天模型名称")
    ASSISTANT_NAME: str = Field(default="AI Assistant", description="AI 助手在聊天中的显示名")
    ASSISTANT_MAX_TOKENS: int = Field(default=150, ge=1, description="单次回复最大 token 数")
    ASSISTANT_TEMPERATURE: float = Field(default=0.7, ge=0.0, le=2.0, description="回复温度")
    ASSISTANT_MIN_DELAY: float = Field(default=1.0, ge=0.0, description="回复前最短等待（秒）")
    ASSISTANT_MAX_DELAY: float = Field(default=3.0, ge=0.0, description="回复前最长等待（秒）")
    ASSISTANT_HISTORY_LIMIT: int = Field(default=10, ge=0, description="带给模型的历史消息条数")

    # ── 限流 ──────────────────────────────────────────────────────────
    WS_RATE_LIMIT_INTERVAL: float = Field(default=0.5, ge=0.0, description="同一连接两条聊天消息的最小间隔（秒）")
    HTTP_RATE_LIMIT: str = Field(default="10/minute", description="HTTP 接口限流规则")

    # ── 服务 ──────────────────────────────────────────────────────────
    HOST: str = Field(default="0.0.0.0", description="服务监听地址")
    PORT: int = Field(default=8000, description="服务监听端口")
    LOG_LEVEL: str = Field(default="INFO", description="日志级别（可被环境属性覆盖）")

    # ── Pydantic Settings ─────────────────────────────────────────────
    # 先加载 .env.{env} 再加载 .env，前者优先级更高
    model_config = SettingsConfigDict(
        env_file=(f".env.{_CURRENT_ENV}", ".env"),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    @field_validator("ADMIN_PASSWORD")
    @classmethod
    def _require_admin_password(cls, value: SecretStr) -> SecretStr:
        """管理员口令不能为空或全为空白。"""
        if not value.get_secret_value().strip():
            raise ValueError("ADMIN_PASSWORD must not be blank")
        return value

    # ── 环境判断 ──────────────────────────────────────────────────────

    @property
    def is_prod(self) -> bool:
        """当前是否为生产环境。"""
        return self.ENVIRONMENT == "prod"

    @property
    def is_dev(self) -> bool:
        """当前是否为开发环境。"""
        return self.ENVIRONMENT == "dev"

    # ── 环境差异化行为 ────────────────────────────────────────────────

    @property
    def debug(self) -> bool:
        """是否开启 debug 模式。仅 dev 环境开启。"""
        return self.is_dev

    @property
    def reload(self) -> bool:
        """是否开启热重载。仅 dev 环境开启。"""
        return self.is_dev

    @property
    def effective_log_level(self) -> str:
        """根据环境自动推断日志级别。

        - dev  → INFO
        - test → DEBUG（方便排查测试失败）
        - prod → WARNING（减少噪音）

        如果环境变量中显式设置了 LOG_LEVEL，会覆盖此默认推断。
        """
        env_log = os.getenv("LOG_LEVEL")
        if env_log:
            return env_log
        return {
            "dev": "INFO",
            "test": "DEBUG",
            "prod": "WARNING",
        }.get(self.ENVIRONMENT, "INFO")

    @property
    def allow_cors_all_origins(self) -> bool:
        """是否允许所有 CORS 来源。非 prod 环境允许，方便本地调试。"""
        return not self.is_prod

    @property
    def assistant_enabled(self) -> bool:
        """是否配置了 Gemini Key，未配置时访客消息不会触发 AI 回复。"""
        return bool(self.GEMINI_API_KEY)


@lru_cache
def get_settings() -> Settings:
    """获取全局 Settings 单例（带缓存，避免重复解析 .env）。"""
    return Settings()


# 保留向后兼容的全局变量
settings: Settings = get_settings()
