"""Bounded poller for discovery provider searches.

The poller is a small state machine: it asks the provider for the search
status, stops on ``idle`` or ``failed``, and otherwise sleeps for a fixed
interval until the attempt ceiling is reached. Time only advances through
the injected ``sleep``, so tests run it without real delays.
"""

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Optional, Protocol

from ..integrations.exa import WebsetStatus

logger = logging.getLogger(__name__)

DEFAULT_POLL_INTERVAL_SECONDS = 5.0
DEFAULT_MAX_POLL_ATTEMPTS = 60


class StatusSource(Protocol):
    async def poll_status(self, webset_id: str) -> WebsetStatus: ...


class PollOutcome(str, Enum):
    """Terminal state of one wait."""

    IDLE = "idle"
    FAILED = "failed"
    TIMED_OUT = "timed_out"


@dataclass
class PollResult:
    """Outcome of waiting for a search.

    Attributes:
        outcome: How the wait ended.
        attempts: Number of status calls made.
        last_status: The last status seen, None if no call succeeded.
    """

    outcome: PollOutcome
    attempts: int
    last_status: Optional[WebsetStatus] = None

    @property
    def items_found(self) -> int:
        return self.last_status.found if self.last_status else 0


class WebsetPoller:
    """Waits for a search to settle, at most ``max_attempts`` status calls.

    Args:
        provider: Anything with an async ``poll_status(webset_id)``.
        interval: Seconds to sleep between attempts.
        max_attempts: Attempt ceiling; reaching it is a timeout.
        sleep: Awaitable sleep, injectable for tests.
    """

    def __init__(
        self,
        provider: StatusSource,
        interval: float = DEFAULT_POLL_INTERVAL_SECONDS,
        max_attempts: int = DEFAULT_MAX_POLL_ATTEMPTS,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self._provider = provider
        self.interval = interval
        self.max_attempts = max_attempts
        self._sleep = sleep

    async def wait(
        self,
        webset_id: str,
        on_progress: Optional[Callable[[WebsetStatus], Awaitable[Any]]] = None,
    ) -> PollResult:
        """Poll until the search is idle, failed, or the ceiling is hit.

        Args:
            webset_id: Provider search id.
            on_progress: Called with every status seen, e.g. to store the
                items-found counter.

        Returns:
            The poll result. Provider errors propagate to the caller.
        """
        last_status: Optional[WebsetStatus] = None
        for attempt in range(1, self.max_attempts + 1):
            last_status = await self._provider.poll_status(webset_id)
            if on_progress is not None:
                await on_progress(last_status)

            if last_status.is_idle:
                logger.info(
                    "Webset finished",
                    extra={
                        "webset_id": webset_id,
                        "attempts": attempt,
                        "items_found": last_status.found,
                    },
                )
                return PollResult(PollOutcome.IDLE, attempt, last_status)
            if last_status.is_failed:
                logger.warning(
                    "Webset failed on provider side",
                    extra={"webset_id": webset_id, "status": last_status.status},
                )
                return PollResult(PollOutcome.FAILED, attempt, last_status)

            logger.debug(
                "Webset still running",
                extra={
                    "webset_id": webset_id,
                    "attempt": attempt,
                    "found": last_status.found,
                    "completion": last_status.completion,
                },
            )
            if attempt < self.max_attempts:
                await self._sleep(self.interval)

        logger.error(
            "Webset polling timed out",
            extra={"webset_id": webset_id, "attempts": self.max_attempts},
        )
        return PollResult(PollOutcome.TIMED_OUT, self.max_attempts, last_status)
