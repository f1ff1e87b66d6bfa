"""Operator control surface: start and stop flows over one reconciled read model."""

import asyncio
from collections.abc import Awaitable, Callable
from typing import Any

from loguru import logger

from smc_live.app_config import AppEnvironConfig, get_app_environ_config
from smc_live.domain.live.broadcast.broadcast_models import BroadcastSession
from smc_live.domain.live.broadcast.status_reconciler import LiveStatusReducer, LiveStatusView
from smc_live.domain.live.broadcast.stream_keys import StreamConfig
from smc_live.services.church_api.church_api_client import ChurchApiClient
from smc_live.services.church_api.church_api_schemas import ChurchApiError

from .console_errors import ConsoleError, MissingIdentifier
from .live_status_poller import PollingStatusClient
from .session_operations import ConfigureInput, SessionOperations, StopOutcome


class OperationInProgress(ConsoleError):
    """A start or stop from this operator is still running."""


class AdminControlSurface:
    """Start/stop orchestration for a single operator.

    The reducer is the only place the active session is decided. Start and Stop
    write their results into it and then schedule a delayed re-poll, since the
    backend may not reflect the write on the next read.
    """

    def __init__(
        self,
        client: ChurchApiClient,
        operations: SessionOperations | None = None,
        reducer: LiveStatusReducer | None = None,
        poller: PollingStatusClient | None = None,
        settings: AppEnvironConfig | None = None,
        *,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.settings = settings or get_app_environ_config()
        self.client = client
        self.operations = operations or SessionOperations(client, settings=self.settings)
        self.reducer = reducer or LiveStatusReducer(stale_after_ms=self.settings.LIVE_POLL_INTERVAL_IDLE_MS)
        self.poller = poller or PollingStatusClient(client, self.reducer, self.settings, sleep=sleep)
        self.refresh_delay_ms = self.settings.LIVE_REFRESH_DELAY_MS
        self._sleep = sleep

        self.preview: StreamConfig | None = None
        self.loading = False
        self._tasks: set[asyncio.Task] = set()

    @property
    def view(self) -> LiveStatusView:
        return self.reducer.view

    # ==================== START ====================

    def open_start_dialog(self) -> StreamConfig:
        """Generate a fresh configuration preview. Every open yields a new key."""
        self.preview = self.operations.preview()
        logger.debug(f"Configuration preview: key={self.preview.stream_key}")
        return self.preview

    def close_start_dialog(self) -> None:
        """Abandon the preview. Nothing was persisted for it."""
        self.preview = None

    async def start(self, inputs: ConfigureInput) -> BroadcastSession:
        """Configure a broadcast with the previewed key (or a new one).

        Raises the console errors from SessionOperations.configure; local state is
        untouched on failure.
        """
        async with self._guard("start"):
            session = await self.operations.configure(inputs, preview=self.preview)

        self.preview = None
        self.reducer.apply_local(session)
        self._schedule_refresh()
        return session

    # ==================== STOP ====================

    def resolve_stop_target(self) -> BroadcastSession | None:
        active = self.reducer.view.active_session
        if active is not None:
            return active
        # A session this operator already stopped; a repeated Stop lands here
        return self.reducer.local_session

    async def stop(self, sermon_id: str | None = None) -> StopOutcome:
        """Stop the active broadcast.

        Raises:
            MissingIdentifier: no id given and none could be resolved; no call is made.
        """
        target = self.resolve_stop_target()
        sermon_id = sermon_id or (target.sermon_id if target else None)
        if not sermon_id:
            raise MissingIdentifier("No active live stream to stop")

        async with self._guard("stop"):
            outcome = await self.operations.stop(sermon_id, current=target)

        self.reducer.apply_local(outcome.session)
        self._schedule_refresh()
        return outcome

    # ==================== READ ====================

    async def refresh(self) -> LiveStatusView:
        """Reload the sermon list and live status into the reducer."""
        try:
            listing = await self.client.list_sermons(page=1, limit=20)
            self.reducer.apply_sermon_list(listing.sermons)
        except ChurchApiError as e:
            logger.warning(f"Sermon list refresh failed: {e.message}")

        await self.poller.poll()
        return self.reducer.view

    def _schedule_refresh(self) -> asyncio.Task:
        async def _delayed():
            await self._sleep(self.refresh_delay_ms / 1000)
            await self.refresh()

        task = asyncio.create_task(_delayed(), name="admin-refresh")
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def aclose(self) -> None:
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        await self.poller.aclose()
        await self.operations.durability.aclose()

    def _guard(self, name: str) -> "_LoadingGuard":
        return _LoadingGuard(self, name)


class _LoadingGuard:
    def __init__(self, surface: AdminControlSurface, name: str):
        self.surface = surface
        self.name = name

    async def __aenter__(self):
        if self.surface.loading:
            raise OperationInProgress(f"Cannot {self.name} while another operation is in progress")
        self.surface.loading = True
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        self.surface.loading = False
