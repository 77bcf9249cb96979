"""Backoff for calls that fail transiently.

Two calls in clawup are retried: ClickUp requests that fail at the transport
level (``ClickUpTracker._request``) and ``git push`` (``GitHubCLIProvider.push``),
which can be rejected while the remote is still processing a previous push.
Everything else fails fast and is handled at the task boundary.

The wait before retry ``n`` is ``backoff_factor ** n`` seconds.
"""

import asyncio
import functools
from collections.abc import Callable
from typing import Any

import structlog

log = structlog.get_logger(__name__)


def async_retry(
    max_attempts: int = 3,
    backoff_factor: float = 2.0,
    exceptions: tuple[type[Exception], ...] = (Exception,),
) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
    """Retry a coroutine function on the listed exceptions.

    Args:
        max_attempts: Total calls, including the first.
        backoff_factor: Base of the exponential wait between calls.
        exceptions: Exception types worth another attempt.

    The last exception is re-raised once ``max_attempts`` calls have failed.

    Example:
        >>> @async_retry(max_attempts=4, exceptions=(httpx.TransportError,))
        ... async def fetch_task(task_id: str) -> dict:
        ...     ...
    """

    def decorator(func: Callable[..., Any]) -> Callable[..., Any]:
        @functools.wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> Any:
            attempt = 1
            while True:
                try:
                    return await func(*args, **kwargs)
                except exceptions as e:
                    if attempt >= max_attempts:
                        log.error("retry_exhausted", function=func.__name__, attempts=attempt, error=str(e))
                        raise
                    delay = backoff_factor**attempt
                    log.warning(
                        "retrying",
                        function=func.__name__,
                        attempt=attempt,
                        delay=delay,
                        error=str(e),
                    )
                    await asyncio.sleep(delay)
                    attempt += 1

        return wrapper

    return decorator
