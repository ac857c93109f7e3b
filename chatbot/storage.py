"""JSON persistence for conversations.

A saved conversation is a JSON array of
``{role, content, timestamp, metadata}`` objects in conversation order, with
ISO-8601 timestamps.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

from loguru import logger

from chatbot.errors import ValidationError
from chatbot.history import DEFAULT_MAX_HISTORY, ConversationManager
from chatbot.message import Message, Role


def save_conversation(conversation: ConversationManager, path: Path | str) -> Path:
    """Write *conversation* to *path* as pretty-printed JSON and return the path."""
    out_path = Path(path)
    records = []
    for record in conversation.get_messages():
        record["timestamp"] = record["timestamp"].isoformat()
        records.append(record)
    out_path.write_text(
        json.dumps(records, indent=2, ensure_ascii=False, default=str) + "\n",
        encoding="utf-8",
    )
    logger.info("Conversation saved to: {}", out_path)
    return out_path


def read_messages(path: Path | str) -> list[dict[str, Any]]:
    """Return the raw message records stored at *path*.

    Raises
    ------
    FileNotFoundError
        If *path* does not exist.
    ValidationError
        If the file is not a JSON array of message objects.
    """
    in_path = Path(path)
    if not in_path.exists():
        raise FileNotFoundError(f"Conversation file not found: {in_path}")
    try:
        data = json.loads(in_path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        raise ValidationError(f"Invalid conversation file {in_path}: {exc}") from exc
    if not isinstance(data, list) or not all(isinstance(item, dict) for item in data):
        raise ValidationError(
            f"Invalid conversation file {in_path}: expected a JSON array of messages"
        )
    return data


def read_system_prompt(path: Path | str) -> str | None:
    """Return the content of a leading system message in *path*, if any."""
    records = read_messages(path)
    if records and records[0].get("role") == Role.SYSTEM.value:
        return records[0].get("content")
    return None


def load_conversation(
    path: Path | str, max_history: int = DEFAULT_MAX_HISTORY
) -> ConversationManager:
    """Rebuild a conversation saved by :func:`save_conversation`.

    Messages are replayed through ``add_message`` in file order, so the
    history cap applies again.  A leading system message is loaded as an
    ordinary message; the returned manager has no ``system_prompt`` of its
    own.  Use :func:`read_system_prompt` to pass it to a new client instead.
    """
    conversation = ConversationManager(max_history=max_history)
    for record in read_messages(path):
        message = Message.from_dict(record)
        conversation.add_message(
            message.role, message.content, message.metadata, message.timestamp
        )
    logger.info(
        "Conversation loaded from: {} ({} messages)", Path(path), len(conversation)
    )
    return conversation
