"""Chat message record.

A :class:`Message` is one conversation turn.  It is frozen once built: to
change a message, remove it and add a new one.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from datetime import datetime, timezone
from types import MappingProxyType
from typing import Any, Mapping

from chatbot.errors import ValidationError


class Role(str, enum.Enum):
    """Speaker of a message."""

    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"

    @classmethod
    def parse(cls, value: Role | str) -> Role:
        """Return the matching role or raise :class:`ValidationError`."""
        try:
            return cls(value)
        except ValueError:
            allowed = ", ".join(r.value for r in cls)
            raise ValidationError(
                f"Invalid role {value!r}. Role must be one of: {allowed}"
            ) from None


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class Message:
    """A single chat message.

    Parameters
    ----------
    role:
        ``system``, ``user`` or ``assistant`` (a :class:`Role` or its value).
    content:
        Message text.
    metadata:
        Optional key/value annotations.  Copied and exposed read-only.
    """

    role: Role
    content: str
    metadata: Mapping[str, Any] = field(default_factory=dict, hash=False)
    timestamp: datetime = field(default_factory=_utcnow)

    def __post_init__(self) -> None:
        object.__setattr__(self, "role", Role.parse(self.role))
        object.__setattr__(
            self, "metadata", MappingProxyType(dict(self.metadata or {}))
        )

    def to_dict(self) -> dict[str, Any]:
        """Return the plain-data projection used for display and storage."""
        return {
            "role": self.role.value,
            "content": self.content,
            "timestamp": self.timestamp,
            "metadata": dict(self.metadata),
        }

    def to_api(self) -> dict[str, str]:
        """Return the minimal ``{role, content}`` record sent to providers."""
        return {"role": self.role.value, "content": self.content}

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> Message:
        """Rebuild a message from :meth:`to_dict` output.

        ``timestamp`` may be a ``datetime`` or an ISO-8601 string; when it is
        missing the message gets a fresh one.
        """
        try:
            role = data["role"]
            content = data["content"]
        except KeyError as exc:
            raise ValidationError(f"Message record is missing {exc.args[0]!r}") from None

        kwargs: dict[str, Any] = {"metadata": data.get("metadata") or {}}
        timestamp = data.get("timestamp")
        if isinstance(timestamp, str):
            try:
                kwargs["timestamp"] = datetime.fromisoformat(timestamp)
            except ValueError:
                raise ValidationError(f"Invalid timestamp: {timestamp!r}") from None
        elif isinstance(timestamp, datetime):
            kwargs["timestamp"] = timestamp
        return cls(role, content, **kwargs)
