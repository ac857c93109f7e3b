"""Text helpers: approximate token counts and conversation formatting.

Token counts here are a heuristic estimate, not a tokenizer.  Real counts
vary by model; use these only for rough budgeting.
"""

from __future__ import annotations

from typing import Any, Iterable, Mapping

from chatbot.history import ConversationManager
from chatbot.message import Message, Role

_ROLE_LABELS = {
    Role.USER: "USER",
    Role.ASSISTANT: "ASSISTANT",
    Role.SYSTEM: "SYSTEM",
}


def count_tokens(text: str) -> int:
    """Return an approximate token count for *text*.

    Averages two estimates: ~1.3 tokens per word and ~4 characters per token.
    """
    words = len(text.split())
    chars = len(text)
    return round((words * 1.3 + chars / 4) / 2)


def truncate_text(text: str, max_tokens: int) -> str:
    """Cut *text* to roughly *max_tokens* tokens, ending with ``...``.

    Text already within the budget is returned unchanged.  When possible the
    cut is moved back to a word boundary.
    """
    if count_tokens(text) <= max_tokens:
        return text

    target_chars = round(max_tokens * 4)
    truncated = text[:target_chars]

    last_space = truncated.rfind(" ")
    if last_space > 0 and last_space > target_chars * 0.8:
        truncated = truncated[: last_space + 1]

    return truncated + "..."


def _as_messages(
    conversation: ConversationManager | Iterable[Message | Mapping[str, Any]],
) -> list[Message]:
    if isinstance(conversation, ConversationManager):
        return conversation.messages
    return [m if isinstance(m, Message) else Message.from_dict(m) for m in conversation]


def format_conversation(
    conversation: ConversationManager | Iterable[Message | Mapping[str, Any]],
    include_system: bool = False,
) -> str:
    """Render a conversation as readable text.

    Each message becomes ``[HH:MM:SS] ROLE:``, its content, and a blank line.
    Accepts a manager, Message objects, or plain-data message records.
    """
    lines: list[str] = []
    for msg in _as_messages(conversation):
        if not include_system and msg.role is Role.SYSTEM:
            continue
        lines.append(f"[{msg.timestamp:%H:%M:%S}] {_ROLE_LABELS[msg.role]}:")
        lines.append(msg.content)
        lines.append("")
    return "\n".join(lines)


def conversation_stats(
    conversation: ConversationManager | Iterable[Message | Mapping[str, Any]],
) -> dict[str, Any]:
    """Return message counts, approximate tokens and average message lengths."""
    messages = _as_messages(conversation)
    user = [m for m in messages if m.role is Role.USER]
    assistant = [m for m in messages if m.role is Role.ASSISTANT]

    def _avg_len(items: list[Message]) -> int:
        if not items:
            return 0
        return round(sum(len(m.content) for m in items) / len(items))

    return {
        "total_messages": len(messages),
        "user_messages": len(user),
        "assistant_messages": len(assistant),
        "system_messages": len(messages) - len(user) - len(assistant),
        "total_tokens": sum(count_tokens(m.content) for m in messages),
        "avg_user_length": _avg_len(user),
        "avg_assistant_length": _avg_len(assistant),
    }
