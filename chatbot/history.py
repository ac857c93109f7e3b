"""Conversation history management.

Maintains the ordered list of :class:`~chatbot.message.Message` objects for
one conversation, with a bounded window that never evicts system messages.
"""

from __future__ import annotations

from contextlib import contextmanager
from datetime import datetime
from typing import Any, Iterable, Iterator, Mapping

from loguru import logger

from chatbot.errors import ValidationError
from chatbot.message import Message, Role

DEFAULT_MAX_HISTORY = 100


class ConversationManager:
    """In-memory conversation history with a fixed message cap.

    Parameters
    ----------
    max_history:
        Maximum number of messages to keep, system messages included.  When
        the cap is exceeded the oldest non-system messages are dropped; system
        messages are never dropped to make room.
    system_prompt:
        Optional instruction text.  When given, it is seeded as the first
        message and restored by :meth:`clear`.

    Not safe for concurrent mutation; callers sharing a manager across
    threads must serialize access themselves.
    """

    def __init__(
        self,
        max_history: int = DEFAULT_MAX_HISTORY,
        system_prompt: str | None = None,
    ) -> None:
        if isinstance(max_history, bool) or not isinstance(max_history, int) or max_history < 1:
            raise ValidationError(
                f"max_history must be a positive integer, got {max_history!r}"
            )
        self._messages: list[Message] = []
        self.max_history = max_history
        self.system_prompt = system_prompt
        if system_prompt is not None:
            self.add_message(Role.SYSTEM, system_prompt)

    @property
    def messages(self) -> list[Message]:
        """Return the current messages (read-only copy)."""
        return list(self._messages)

    def add_message(
        self,
        role: Role | str,
        content: str,
        metadata: Mapping[str, Any] | None = None,
        timestamp: datetime | None = None,
    ) -> Message:
        """Append a message and enforce the history cap.

        *timestamp* defaults to now; pass one to replay a saved message.
        """
        if timestamp is None:
            message = Message(role, content, metadata or {})
        else:
            message = Message(role, content, metadata or {}, timestamp)
        self._messages.append(message)
        self._enforce_limit()
        return message

    def get_messages(self) -> list[dict[str, Any]]:
        """Return plain-data records (role, content, timestamp, metadata)."""
        return [m.to_dict() for m in self._messages]

    def get_api_messages(self) -> list[dict[str, str]]:
        """Return ``{role, content}`` records, system messages included."""
        return [m.to_api() for m in self._messages]

    def clear(self) -> None:
        """Reset the history, re-seeding the system prompt if there is one."""
        if self.system_prompt is not None:
            self._messages = [Message(Role.SYSTEM, self.system_prompt)]
        else:
            self._messages = []

    def restore(self, records: Iterable[Mapping[str, Any]]) -> None:
        """Clear, then replay saved message records through :meth:`add_message`.

        System records are skipped when the manager already seeds its own
        system prompt, so a checkpoint taken from this manager can be
        restored without duplicating it.
        """
        self.clear()
        for record in records:
            message = Message.from_dict(record)
            if message.role is Role.SYSTEM and self.system_prompt is not None:
                continue
            self.add_message(
                message.role, message.content, message.metadata, message.timestamp
            )

    def summary(self) -> str:
        """Return a one-line count of messages by role."""
        counts = {role: 0 for role in Role}
        for m in self._messages:
            counts[m.role] += 1
        return (
            f"Conversation: {len(self._messages)} messages "
            f"({counts[Role.USER]} user, {counts[Role.ASSISTANT]} assistant, "
            f"{counts[Role.SYSTEM]} system)"
        )

    @contextmanager
    def rollback_on_error(self) -> Iterator[ConversationManager]:
        """Restore the current messages if the ``with`` block raises."""
        snapshot = list(self._messages)
        try:
            yield self
        except BaseException:
            logger.debug("Rolling conversation back to {} messages", len(snapshot))
            self._messages = snapshot
            raise

    def __len__(self) -> int:
        return len(self._messages)

    def __iter__(self) -> Iterator[Message]:
        return iter(list(self._messages))

    def __repr__(self) -> str:
        return (
            f"{self.__class__.__name__}(max_history={self.max_history!r}, "
            f"messages={len(self._messages)})"
        )

    def _enforce_limit(self) -> None:
        """Trim oldest non-system messages when we exceed max_history."""
        if len(self._messages) <= self.max_history:
            return

        # Separate system messages from the rest
        system_msgs = [m for m in self._messages if m.role is Role.SYSTEM]
        non_system = [m for m in self._messages if m.role is not Role.SYSTEM]

        keep_count = max(self.max_history - len(system_msgs), 0)
        if len(non_system) > keep_count:
            dropped = len(non_system) - keep_count
            non_system = non_system[dropped:]
            logger.debug("Trimmed {} message(s) from conversation history", dropped)

        self._messages = system_msgs + non_system
