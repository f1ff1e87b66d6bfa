"""Background retry of best-effort writes.

The operator's action completes as soon as the primary call succeeds; the
secondary write runs in a detached task with exponential backoff.
"""

import asyncio
from collections.abc import Awaitable, Callable
from typing import Any

from loguru import logger

from smc_live.app_config import get_app_environ_config
from smc_live.services.church_api.church_api_schemas import ChurchApiError
from smc_live.utils.app_errors import AppErrorCode

from .console_errors import AuxiliaryFailure

# Client errors that a later attempt can still get past
RETRYABLE_CLIENT_STATUSES = {408, 429}
RETRYABLE_CLIENT_ERRCODES = {AppErrorCode.E_SESSION_VERSION_CONFLICT.value}


def is_permanent_failure(error: Exception) -> bool:
    """A 4xx answer repeats on every attempt, so retrying only delays the report."""
    if not isinstance(error, ChurchApiError) or error.status_code is None:
        return False
    if error.status_code in RETRYABLE_CLIENT_STATUSES or error.errcode in RETRYABLE_CLIENT_ERRCODES:
        return False
    return 400 <= error.status_code < 500


async def retry_with_backoff(
    operation: Callable[[], Awaitable[Any]],
    *,
    name: str,
    max_attempts: int = 4,
    base_delay: float = 1.0,
    max_delay: float = 30.0,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
) -> bool:
    """Run `operation` until it succeeds or `max_attempts` is reached.

    Returns True on success. Failures are logged; the last one is reported as an
    AuxiliaryFailure in the log, never raised. A 4xx church API answer ends the
    loop at once, except timeouts, rate limits and version conflicts.
    """
    delay = base_delay

    for attempt in range(1, max_attempts + 1):
        try:
            await operation()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            if is_permanent_failure(e):
                failure = AuxiliaryFailure(f"{name} rejected on attempt {attempt}, not retrying: {e}")
                logger.error(failure.message)
                return False

            if attempt == max_attempts:
                failure = AuxiliaryFailure(f"{name} failed after {max_attempts} attempts: {e}")
                logger.error(failure.message)
                return False

            logger.warning(
                "{} failed ({}), retrying in {} seconds (attempt {} of {})",
                name,
                e,
                delay,
                attempt,
                max_attempts,
            )
            await sleep(delay)
            delay = min(delay * 2, max_delay)
            continue

        if attempt > 1:
            logger.info("{} succeeded after backoff (attempt {} of {})", name, attempt, max_attempts)
        return True

    return False


class DurabilityWriter:
    """Owns the detached retry tasks so they can be awaited or cancelled on shutdown."""

    def __init__(
        self,
        max_attempts: int | None = None,
        base_delay: float | None = None,
        max_delay: float | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        settings = get_app_environ_config()
        self.max_attempts = max_attempts or settings.DURABILITY_MAX_ATTEMPTS
        self.base_delay = base_delay if base_delay is not None else settings.DURABILITY_BASE_DELAY_SECONDS
        self.max_delay = max_delay if max_delay is not None else settings.DURABILITY_MAX_DELAY_SECONDS
        self._sleep = sleep
        self._tasks: set[asyncio.Task] = set()

    @property
    def pending(self) -> int:
        return len(self._tasks)

    def submit(self, operation: Callable[[], Awaitable[Any]], *, name: str) -> asyncio.Task:
        task = asyncio.create_task(
            retry_with_backoff(
                operation,
                name=name,
                max_attempts=self.max_attempts,
                base_delay=self.base_delay,
                max_delay=self.max_delay,
                sleep=self._sleep,
            ),
            name=f"durability:{name}",
        )
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def drain(self) -> None:
        """Wait for every submitted write to finish."""
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)

    async def aclose(self) -> None:
        """Cancel outstanding writes."""
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
