"""
app.llm.gemini_bot
~~~~~~~~~~~~~~~~~~

纯 LLM 客户端封装 —— 只负责与 Google Gemini API 的连接和调用。

不包含任何 Prompt 组装或兜底逻辑（这些职责属于 ``AssistantResponder``）。
每次调用都是无状态的单轮请求，对话上下文由调用方以 ``contents`` 传入。
"""
from __future__ import annotations

from google import genai
from google.genai import types

from app.core.config import settings
from app.core.logging import get_logger
from app.llm.client import create_gemini_client

logger = get_logger(__name__)


class AssistantBot:
    """Gemini 文本生成封装。

    Attributes:
        model_name: 使用的 Gemini 模型名称。
        max_tokens: 单次回复最大输出 token 数。
        temperature: 采样温度。
    """

    def __init__(
        self,
        model_name: str | None = None,
        client: genai.Client | None = None,
        max_tokens: int | None = None,
        temperature: float | None = None,
    ) -> None:
        """初始化文本生成客户端。

        Args:
            model_name: Gemini 模型名称，默认读取 ``settings.GEMINI_MODEL``。
            client: 可选的 ``genai.Client`` 实例（用于测试注入 mock）。
            max_tokens: 默认读取 ``settings.ASSISTANT_MAX_TOKENS``。
            temperature: 默认读取 ``settings.ASSISTANT_TEMPERATURE``。
        """
        self.model_name: str = model_name or settings.GEMINI_MODEL
        self.max_tokens: int = max_tokens or settings.ASSISTANT_MAX_TOKENS
        self.temperature: float = (
            settings.ASSISTANT_TEMPERATURE if temperature is None else temperature
        )
        self._client: genai.Client = client or create_gemini_client()
        logger.info("LLM 客户端已初始化 | model=%s", self.model_name)

    async def generate_reply(self, system_prompt: str, contents: list[types.Content]) -> str:
        """发送对话内容并获取完整回复。

        Args:
            system_prompt: 系统 Prompt。
            contents: 按时间排序的对话内容，最后一条为待回复的消息。

        Returns:
            模型回复文本，模型未返回文本时为空字符串。

        Raises:
            Exception: 透传 Gemini SDK 的调用异常，由上层决定兜底策略。
        """
        response = await self._client.aio.models.generate_content(
            model=self.model_name,
            contents=contents,
            config=types.GenerateContentConfig(
                system_instruction=system_prompt,
                max_output_tokens=self.max_tokens,
                temperature=self.temperature,
            ),
        )
        return response.text or ""
