"""
app.services.assistant
~~~~~~~~~~~~~~~~~~~~~~

AI 助手应答服务 —— 串联 Prompt 组装、对话历史转换和 LLM 调用。

只为访客发出的聊天消息生成回复。LLM 调用失败时退化为兜底文案，
绝不影响消息本身的投递。
"""
from __future__ import annotations

from dataclasses import dataclass

from google.genai import types

from app.core.logging import get_logger
from app.llm.gemini_bot import AssistantBot
from app.prompts.assistant import FALLBACK_REPLY, build_system_prompt
from app.schemas.room_events import ChatMessage

logger = get_logger(__name__)


@dataclass(frozen=True)
class AssistantReply:
    """一次应答的结果。

    Attributes:
        text: 发给访客的文本（失败时为兜底文案）。
        ok: LLM 是否成功返回了内容。
    """

    text: str
    ok: bool


def _history_to_contents(
    history: list[ChatMessage], assistant_name: str,
) -> list[types.Content]:
    """将缓冲区中的聊天消息转换为 Gemini Content 列表。

    助手自己的发言映射为 ``model`` 角色，真人发言映射为 ``user`` 角色并带上署名。
    """
    contents: list[types.Content] = []
    for msg in history:
        if msg.author_id is None and msg.author_name == assistant_name:
            role, text = "model", msg.body
        else:
            role, text = "user", f"{msg.author_name}: {msg.body}"
        contents.append(
            types.Content(role=role, parts=[types.Part.from_text(text=text)]),
        )
    return contents


class AssistantResponder:
    """聊天室 AI 助手。

    Attributes:
        bot: LLM 文本生成客户端。
        assistant_name: 助手在聊天记录中的署名，用于识别历史中的助手发言。
    """

    def __init__(self, bot: AssistantBot, assistant_name: str = "AI Assistant") -> None:
        self.bot = bot
        self.assistant_name = assistant_name

    async def respond(
        self,
        message: str,
        guest_name: str | None,
        history: list[ChatMessage] | None = None,
    ) -> AssistantReply:
        """为访客消息生成回复。

        Args:
            message: 访客刚发送的消息。
            guest_name: 访客显示名。
            history: 该消息之前的聊天记录（按时间正序）。

        Returns:
            ``AssistantReply``；任何异常都会被吞下并返回兜底文案。
        """
        contents = _history_to_contents(history or [], self.assistant_name)
        contents.append(
            types.Content(role="user", parts=[types.Part.from_text(text=message)]),
        )
        try:
            text = await self.bot.generate_reply(build_system_prompt(guest_name), contents)
        except Exception as e:
            logger.error("AI 助手调用异常: %s", e, exc_info=True)
            return AssistantReply(text=FALLBACK_REPLY, ok=False)

        text = text.strip()
        if not text:
            logger.warning("AI 助手返回空内容，使用兜底回复")
            return AssistantReply(text=FALLBACK_REPLY, ok=False)
        return AssistantReply(text=text, ok=True)
