"""Bounded exponential-backoff retry for job handlers."""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional, TypeVar

from ..errors import NonRetriableError

logger = logging.getLogger(__name__)

T = TypeVar("T")


async def retry_with_backoff(
    func: Callable[..., Any],
    *args: Any,
    max_retries: int = 2,
    base_delay: float = 2.0,
    give_up_on: tuple[type[BaseException], ...] = (NonRetriableError,),
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    log: Optional[logging.Logger] = None,
    **kwargs: Any,
) -> T:
    """Execute a function with exponential backoff retry logic.

    Args:
        func: Function to execute (sync or async).
        *args: Positional arguments for the function.
        max_retries: Retries after the first attempt.
        base_delay: Base delay in seconds (doubles each retry).
        give_up_on: Exception types re-raised at once, without retrying.
        sleep: Awaitable sleep, injectable for tests.
        log: Logger to report retries on. Defaults to this module's logger.
        **kwargs: Keyword arguments for the function.

    Returns:
        The function result on success.

    Raises:
        The last exception if all retries fail.
    """
    log = log or logger
    last_exception: Optional[Exception] = None

    for attempt in range(max_retries + 1):
        try:
            if asyncio.iscoroutinefunction(func):
                return await func(*args, **kwargs)
            result = func(*args, **kwargs)
            if asyncio.iscoroutine(result):
                return await result
            return result
        except give_up_on:
            raise
        except Exception as e:
            last_exception = e
            if attempt < max_retries:
                delay = base_delay * (2 ** attempt)
                log.warning(
                    "Attempt %d/%d failed: %s. Retrying in %.1fs...",
                    attempt + 1,
                    max_retries + 1,
                    str(e),
                    delay,
                )
                await sleep(delay)
            else:
                log.error(
                    "All %d attempts failed. Last error: %s",
                    max_retries + 1,
                    str(e),
                )

    if last_exception:
        raise last_exception
    raise RuntimeError("Unexpected retry loop exit")
