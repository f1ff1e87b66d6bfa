"""Reconciliation of the "what is live right now" question.

Three sources update independently and at different latencies:

- the local session, written by the operator's own start/stop actions;
- live stats, a compact summary polled frequently;
- the sermon list, richer but refreshed less often.

`resolve_active_session` merges them with a fixed precedence. `LiveStatusReducer`
keeps the inputs in one place and applies that precedence once per change.
"""

import time
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field

from smc_live.schemas import BroadcastStatus

from .broadcast_models import BroadcastSession, LiveStats

# Fields carried over verbatim when a session is synthesized from live stats
LIVE_STATS_SESSION_FIELDS = (
    "sermon_id",
    "title",
    "speaker",
    "rtmp_config",
    "started_at",
    "stream_key",
)


def synthesize_from_live_stats(live_stats: LiveStats) -> BroadcastSession:
    """Build a minimal session view from the fields present on live stats."""
    values = {
        name: getattr(live_stats, name)
        for name in LIVE_STATS_SESSION_FIELDS
        if name in live_stats.model_fields_set
    }
    return BroadcastSession.model_validate(values)


def resolve_active_session(
    local_session: BroadcastSession | None,
    sermon_list: Sequence[BroadcastSession] | None,
    live_stats: LiveStats | None,
) -> BroadcastSession | None:
    """Pick the active session; the first matching rule wins.

    1. the local session, when the operator acted in this session;
    2. the sermon matching `live_stats.sermon_id`;
    3. a session synthesized from live stats when no sermon matches;
    4. the first sermon flagged live;
    5. nothing.
    """
    if local_session is not None:
        return local_session

    sermons = sermon_list or ()
    stats_sermon_id = live_stats.sermon_id if live_stats is not None else None

    if stats_sermon_id:
        for sermon in sermons:
            if sermon.sermon_id == stats_sermon_id:
                return sermon
        return synthesize_from_live_stats(live_stats)  # type: ignore[arg-type]

    for sermon in sermons:
        if sermon.flagged_live:
            return sermon

    return None


def is_actually_live(reported_is_live: bool | None, active_session: BroadcastSession | None) -> bool:
    """Any signal of liveness wins; the signals do not have to agree."""
    return bool(reported_is_live) or active_session is not None


_CLOSED_STATES = {BroadcastStatus.ENDED, BroadcastStatus.CANCELLED}


def _now_ms() -> int:
    return int(time.monotonic() * 1000)


@dataclass
class LiveStatusView:
    """Canonical read model produced by the reducer."""

    active_session: BroadcastSession | None = None
    is_live: bool = False
    stale: bool = True


@dataclass
class LiveStatusReducer:
    """Single owner of the three status inputs.

    Each remote input records when it was fetched. Inputs older than
    `stale_after_ms` still take part in reconciliation (nothing fresher exists)
    but mark the view stale so callers know to re-poll.
    """

    stale_after_ms: int = 15000
    local_session: BroadcastSession | None = None
    sermon_list: list[BroadcastSession] = field(default_factory=list)
    live_stats: LiveStats | None = None
    reported_is_live: bool = False
    clock_ms: Callable[[], int] = _now_ms

    _sermon_list_at: int | None = None
    _live_stats_at: int | None = None
    _view: LiveStatusView = field(default_factory=LiveStatusView)

    @property
    def view(self) -> LiveStatusView:
        self._view.stale = self.is_stale()
        return self._view

    def is_stale(self) -> bool:
        now = self.clock_ms()
        for fetched_at in (self._sermon_list_at, self._live_stats_at):
            if fetched_at is None or now - fetched_at > self.stale_after_ms:
                return True
        return False

    def apply_local(self, session: BroadcastSession | None) -> LiveStatusView:
        """Record the result of the operator's own action. None clears it."""
        self.local_session = session
        if session is not None:
            # Write-through so a stale cached copy of the same sermon cannot outlive it
            self.sermon_list = [
                session if sermon.sermon_id == session.sermon_id else sermon
                for sermon in self.sermon_list
            ]
            if session.status in _CLOSED_STATES:
                self.reported_is_live = False
        return self._reduce()

    def apply_sermon_list(self, sermons: Sequence[BroadcastSession]) -> LiveStatusView:
        self.sermon_list = list(sermons)
        self._sermon_list_at = self.clock_ms()
        return self._reduce()

    def apply_live_status(self, is_live: bool, live_stats: LiveStats | None) -> LiveStatusView:
        self.reported_is_live = is_live
        self.live_stats = live_stats
        self._live_stats_at = self.clock_ms()

        # The backend caught up with a local stop; the local record has served its purpose
        if self._local_closed() and not is_live:
            self.local_session = None

        return self._reduce()

    def apply_poll_failure(self) -> LiveStatusView:
        """The live status poll failed: show offline, keep the last stats and their age."""
        self.reported_is_live = False
        return self._reduce()

    def _local_closed(self) -> bool:
        return self.local_session is not None and self.local_session.status in _CLOSED_STATES

    def _reduce(self) -> LiveStatusView:
        if self._local_closed():
            stats_sermon_id = self.live_stats.sermon_id if self.live_stats else None
            if stats_sermon_id and stats_sermon_id != self.local_session.sermon_id:  # type: ignore[union-attr]
                # Another broadcast started after ours ended
                self.local_session = None
            else:
                # Reports of the stopped session still being live are propagation lag
                self._view = LiveStatusView(active_session=None, is_live=False, stale=self.is_stale())
                return self._view

        active = resolve_active_session(self.local_session, self.sermon_list, self.live_stats)
        if active is not None and active.status in _CLOSED_STATES:
            active = None

        self._view = LiveStatusView(
            active_session=active,
            is_live=is_actually_live(self.reported_is_live, active),
            stale=self.is_stale(),
        )
        return self._view
