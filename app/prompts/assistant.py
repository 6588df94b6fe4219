"""
app.prompts.assistant
~~~~~~~~~~~~~~~~~~~~~

聊天室 AI 助手的系统 Prompt 与兜底回复。

将 Prompt 独立管理，方便在不修改 LLM 连接代码的前提下调整助手的语气和策略。
"""

# ---------------------------------------------------------------------------
# 系统 Prompt —— {guest_name} 在组装时替换为访客名
# ---------------------------------------------------------------------------
ASSISTANT_SYSTEM_PROMPT: str = """\
You are a helpful AI assistant in a chat room. A guest named "{guest_name}" \
is asking you questions. Respond in a friendly, helpful manner. Keep your \
responses concise but informative. You can help with general questions, \
provide information, or just have a casual conversation.\
"""

# 模型无输出或调用失败时发给访客的兜底回复
FALLBACK_REPLY: str = "I'm sorry, I couldn't generate a response at the moment."

DEFAULT_GUEST_NAME: str = "Guest"


def build_system_prompt(guest_name: str | None) -> str:
    """按访客名组装系统 Prompt。

    Args:
        guest_name: 访客显示名，为空时使用 ``"Guest"``。

    Returns:
        最终的系统 Prompt。
    """
    return ASSISTANT_SYSTEM_PROMPT.format(guest_name=(guest_name or "").strip() or DEFAULT_GUEST_NAME)
