"""Periodic live status polling with adaptive cadence.

One poll runs at a time; a caller that asks while a poll is in flight gets
that poll's result. The interval to the next tick is chosen after every poll
from its outcome, so a live -> offline change slows the very next tick.
Failures never raise: the snapshot degrades to offline with a fixed message.
"""

import asyncio
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

from loguru import logger
from pydantic import ValidationError

from smc_live.app_config import AppEnvironConfig, get_app_environ_config
from smc_live.domain.live.broadcast.broadcast_models import LiveStats, LiveStatusData, LiveStatusResponse
from smc_live.domain.live.broadcast.status_reconciler import LiveStatusReducer
from smc_live.services.church_api.church_api_client import ChurchApiClient
from smc_live.services.church_api.church_api_schemas import ChurchApiError

SERVICE_UNAVAILABLE_MESSAGE = "Service unavailable. Please try again later."
STATUS_CHECK_FAILED_MESSAGE = "Unable to check live stream status."
DEFAULT_OFFLINE_MESSAGE = "No live stream currently active."


@dataclass(frozen=True)
class StatusSnapshot:
    is_live: bool
    message: str | None = None
    data: LiveStatusData | None = None
    # The poll failed; shown exactly like "offline"
    degraded: bool = False
    fetched_at_ms: int = 0


def live_stats_from_status(data: LiveStatusData | None) -> LiveStats | None:
    """Carry over the live stats fields the status answer actually contained."""
    if data is None:
        return None

    values = {
        name: getattr(data, name)
        for name in LiveStats.model_fields
        if name in data.model_fields_set and getattr(data, name) is not None
    }
    return LiveStats.model_validate(values) if values else None


def snapshot_from_response(response: LiveStatusResponse, fetched_at_ms: int = 0) -> StatusSnapshot:
    if "success" not in response.model_fields_set or not response.success:
        return StatusSnapshot(is_live=False, message=STATUS_CHECK_FAILED_MESSAGE, fetched_at_ms=fetched_at_ms)

    if not response.is_live:
        offline_message = response.data.offline_message if response.data else None
        return StatusSnapshot(
            is_live=False,
            message=offline_message or DEFAULT_OFFLINE_MESSAGE,
            data=response.data,
            fetched_at_ms=fetched_at_ms,
        )

    return StatusSnapshot(is_live=True, data=response.data, fetched_at_ms=fetched_at_ms)


def _now_ms() -> int:
    return int(time.monotonic() * 1000)


class PollingStatusClient:
    def __init__(
        self,
        client: ChurchApiClient,
        reducer: LiveStatusReducer | None = None,
        settings: AppEnvironConfig | None = None,
        *,
        on_snapshot: Callable[[StatusSnapshot], Any] | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        clock_ms: Callable[[], int] = _now_ms,
    ):
        settings = settings or get_app_environ_config()
        self.client = client
        self.reducer = reducer
        self.live_interval_ms = settings.LIVE_POLL_INTERVAL_LIVE_MS
        self.idle_interval_ms = settings.LIVE_POLL_INTERVAL_IDLE_MS
        self.on_snapshot = on_snapshot
        self._sleep = sleep
        self._clock_ms = clock_ms

        self.last_snapshot: StatusSnapshot | None = None
        self._inflight: asyncio.Task | None = None
        self._timer: asyncio.Task | None = None
        self._tasks: set[asyncio.Task] = set()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def next_interval_ms(self) -> int:
        if self.last_snapshot is not None and self.last_snapshot.is_live:
            return self.live_interval_ms
        return self.idle_interval_ms

    async def poll(self) -> StatusSnapshot:
        """Fetch the live status, or join the poll already in flight.

        After `stop()` no request is made and the last snapshot is returned.
        """
        if self._closed:
            return self.last_snapshot or StatusSnapshot(is_live=False, message=DEFAULT_OFFLINE_MESSAGE)

        if self._inflight is None or self._inflight.done():
            self._inflight = asyncio.create_task(self._fetch(), name="live-status-poll")

        return await asyncio.shield(self._inflight)

    async def _fetch(self) -> StatusSnapshot:
        try:
            response = await self.client.get_live_status()
            snapshot = snapshot_from_response(response, self._clock_ms())
        except (ChurchApiError, ValidationError) as e:
            logger.warning(f"Live status poll failed: {e}")
            snapshot = StatusSnapshot(
                is_live=False,
                message=SERVICE_UNAVAILABLE_MESSAGE,
                degraded=True,
                fetched_at_ms=self._clock_ms(),
            )

        if self._closed:
            return snapshot

        if self.last_snapshot is None or self.last_snapshot.is_live != snapshot.is_live:
            logger.info(f"Live status changed: is_live={snapshot.is_live} degraded={snapshot.degraded}")

        self.last_snapshot = snapshot
        try:
            if self.reducer is not None:
                if snapshot.degraded:
                    self.reducer.apply_poll_failure()
                else:
                    self.reducer.apply_live_status(snapshot.is_live, live_stats_from_status(snapshot.data))
            if self.on_snapshot is not None:
                self.on_snapshot(snapshot)
        except Exception:
            # The timer must outlive a failing consumer
            logger.exception("Live status snapshot handler failed")
        return snapshot

    def start(self) -> asyncio.Task:
        """Poll now and then on a recurring timer until `stop()`."""
        if self._timer is None or self._timer.done():
            self._closed = False
            self._timer = asyncio.create_task(self._run(), name="live-status-timer")
        return self._timer

    async def _run(self) -> None:
        while not self._closed:
            await self.poll()
            if self._closed:
                break
            await self._sleep(self.next_interval_ms() / 1000)

    def refresh_after(self, delay_ms: int) -> asyncio.Task:
        """One extra poll `delay_ms` from now, on top of the regular cadence."""

        async def _delayed():
            await self._sleep(delay_ms / 1000)
            if not self._closed:
                await self.poll()

        task = asyncio.create_task(_delayed(), name="live-status-refresh")
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    def stop(self) -> None:
        """Cancel the timer and pending refreshes. No poll starts afterwards."""
        self._closed = True
        current = asyncio.current_task()
        for task in (self._timer, self._inflight, *self._tasks):
            if task is not None and task is not current and not task.done():
                task.cancel()

    async def aclose(self) -> None:
        self.stop()
        tasks = [t for t in (self._timer, self._inflight, *self._tasks) if t is not None]
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
