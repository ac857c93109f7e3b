"""Error types raised by the chatbot package.

Every failure surfaces to the immediate caller as one of these; nothing in
the package swallows them.
"""

from __future__ import annotations

from typing import Any


class ChatbotError(Exception):
    """Base class for all chatbot errors."""


class ValidationError(ChatbotError, ValueError):
    """Malformed input, e.g. a message with an unrecognized role."""


class ConfigError(ChatbotError, ValueError):
    """Invalid configuration, e.g. an unknown provider tag."""


class AuthError(ChatbotError):
    """No API credential is configured for the client."""


class ApiError(ChatbotError):
    """The remote API call failed or returned an unusable response.

    Parameters
    ----------
    message:
        Human-readable description.
    status_code:
        HTTP status reported by the provider, if any.
    body:
        Raw error payload returned by the provider, kept for diagnostics.
    """

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        body: Any = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class ApiTimeoutError(ApiError):
    """The remote API call did not complete within the client timeout."""
