"""Timeouts and exponential backoff for collaborator calls."""

import asyncio
import random
from typing import Any, Awaitable, Callable, Optional, Tuple, Type, TypeVar

from thiqax_engine.core.errors import EngineError, UpstreamUnavailableError
from thiqax_engine.utils.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


async def bounded(awaitable: Awaitable[T], timeout: Optional[float], operation: str) -> T:
    """
    Await a collaborator call, converting timeouts and transport failures
    into UpstreamUnavailableError. Engine errors pass through unchanged.
    """
    try:
        if timeout is None:
            return await awaitable
        return await asyncio.wait_for(awaitable, timeout=timeout)
    except EngineError:
        raise
    except asyncio.TimeoutError as e:
        raise UpstreamUnavailableError(
            f"{operation} timed out after {timeout}s", operation=operation, cause=e
        ) from e
    except (ConnectionError, OSError) as e:
        raise UpstreamUnavailableError(
            f"{operation} failed: {e}", operation=operation, cause=e
        ) from e


def backoff_delay(attempt: int, base_delay: float, max_delay: float, jitter: bool = True) -> float:
    """Delay before retry number ``attempt`` (1-based)."""
    delay = min(base_delay * (2 ** (attempt - 1)), max_delay)
    if jitter:
        delay *= 0.5 + random.random() / 2
    return delay


async def retry_async(
    fn: Callable[[], Awaitable[T]],
    *,
    operation: str,
    max_attempts: int = 3,
    base_delay: float = 0.5,
    max_delay: float = 8.0,
    retryable: Tuple[Type[BaseException], ...] = (UpstreamUnavailableError,),
    **log_context: Any
) -> T:
    """Call ``fn`` until it succeeds, sleeping with exponential backoff between failures."""
    for attempt in range(1, max_attempts + 1):
        try:
            return await fn()
        except retryable as e:
            if attempt == max_attempts:
                logger.error(
                    "Operation failed after retries",
                    operation=operation,
                    attempts=max_attempts,
                    error=str(e),
                    **log_context
                )
                raise
            delay = backoff_delay(attempt, base_delay, max_delay)
            logger.warning(
                "Operation failed, retrying",
                operation=operation,
                attempt=attempt,
                max_attempts=max_attempts,
                delay_seconds=round(delay, 3),
                error=str(e),
                **log_context
            )
            await asyncio.sleep(delay)
    raise RuntimeError("retry_async called with max_attempts < 1")
