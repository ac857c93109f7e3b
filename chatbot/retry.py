"""Optional exponential-backoff wrapper for chatbot calls.

Clients never retry on their own; wrap a call in :func:`with_retry` when
the caller wants that policy::

    reply = with_retry(bot.chat, "Hello!", max_retries=3)
"""

from __future__ import annotations

import time
from typing import Any, Callable, TypeVar

from loguru import logger

from chatbot.errors import ApiError, AuthError

T = TypeVar("T")


def with_retry(
    func: Callable[..., T],
    *args: Any,
    max_retries: int = 3,
    base_delay: float = 1.0,
    max_delay: float = 16.0,
    retry_on: tuple[type[BaseException], ...] = (ApiError,),
    sleep: Callable[[float], None] = time.sleep,
    **kwargs: Any,
) -> T:
    """Call ``func(*args, **kwargs)``, retrying failures with exponential backoff.

    The wait after failed attempt ``n`` (1-based) is
    ``min(base_delay * 2 ** n, max_delay)``.  Only exceptions in *retry_on*
    are retried, and :class:`~chatbot.errors.AuthError` never is.  The last
    error is re-raised once *max_retries* attempts have failed.
    """
    if max_retries < 1:
        raise ValueError(f"max_retries must be at least 1, got {max_retries!r}")

    name = getattr(func, "__name__", repr(func))
    for attempt in range(max_retries):
        try:
            return func(*args, **kwargs)
        except AuthError:
            raise
        except retry_on as exc:
            logger.warning(
                "'{}' failed (attempt {}/{}): {}", name, attempt + 1, max_retries, exc
            )
            if attempt == max_retries - 1:
                logger.error("'{}' failed after {} attempts", name, max_retries)
                raise
            wait_time = min(base_delay * 2 ** (attempt + 1), max_delay)
            logger.info("Retrying in {} seconds...", wait_time)
            sleep(wait_time)
    raise AssertionError("unreachable")
