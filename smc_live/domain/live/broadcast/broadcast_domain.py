"""Broadcast domain service.

Server-authoritative side of the live-broadcast subsystem: it issues stream
keys, owns the session record embedded in the sermon, and answers the live
status queries the operator console and viewers poll.
"""

import math
from datetime import datetime, timezone

from loguru import logger

from smc_live.app_config import AppEnvironConfig, get_app_environ_config
from smc_live.domain.utils.idgen import new_recording_id, new_sermon_id
from smc_live.schemas import BroadcastStatus, RecordingStatus
from smc_live.utils.app_errors import AppError, AppErrorCode, HttpStatusCode

from ._store import BeanieBroadcastSessionStore, BroadcastSessionStore
from .broadcast_models import (
    BroadcastSession,
    LiveStats,
    LiveStatusData,
    LiveStatusResponse,
    RtmpConfigData,
    SermonListResponse,
    SermonPatch,
    StartLivePayload,
    StartLiveResult,
    StopLiveResult,
)
from .session_state_machine import SessionStateMachine
from .stream_keys import StreamKeyGenerator, build_stream_config, stream_key_generator


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def format_duration(started_at: datetime | None, ended_at: datetime | None) -> str:
    """HH:MM:SS between two timestamps, "00:00" when either is missing."""
    if not started_at or not ended_at:
        return "00:00"

    seconds = max(0, int((ended_at - started_at).total_seconds()))
    hours, remainder = divmod(seconds, 3600)
    minutes, seconds = divmod(remainder, 60)
    return f"{hours:02d}:{minutes:02d}:{seconds:02d}"


def _as_utc(value: datetime) -> datetime:
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


class BroadcastService:
    """Broadcast session operations over a BroadcastSessionStore."""

    def __init__(
        self,
        store: BroadcastSessionStore | None = None,
        settings: AppEnvironConfig | None = None,
        key_generator: StreamKeyGenerator | None = None,
    ):
        self.store = store or BeanieBroadcastSessionStore()
        self.settings = settings or get_app_environ_config()
        self.key_generator = key_generator or stream_key_generator

    # ==================== STREAM KEYS ====================

    async def issue_unique_stream_key(self) -> str:
        """Generate a stream key not held by any non-cancelled session.

        Raises AppError if no free key was found within STREAM_KEY_MAX_ATTEMPTS.
        """
        for attempt in range(1, self.settings.STREAM_KEY_MAX_ATTEMPTS + 1):
            candidate = self.key_generator.generate()
            if not await self.store.stream_key_in_use(candidate):
                return candidate
            logger.warning(f"Stream key collision on attempt {attempt}: {candidate}")

        raise AppError(
            errcode=AppErrorCode.E_STREAM_KEY_IN_USE,
            errmesg="Unable to issue a unique stream key",
            status_code=HttpStatusCode.CONFLICT,
        )

    async def _check_stream_key(self, stream_key: str) -> None:
        if not self.key_generator.is_valid(stream_key):
            raise AppError(
                errcode=AppErrorCode.E_INVALID_REQUEST,
                errmesg=f"Malformed stream key: {stream_key!r}",
                status_code=HttpStatusCode.BAD_REQUEST,
            )

        if await self.store.stream_key_in_use(stream_key):
            raise AppError(
                errcode=AppErrorCode.E_STREAM_KEY_IN_USE,
                errmesg=f"Stream key already issued: {stream_key}",
                status_code=HttpStatusCode.CONFLICT,
            )

    # ==================== LIFECYCLE ====================

    async def start_live(self, payload: StartLivePayload) -> StartLiveResult:
        """Configure a broadcast session on a new sermon record, or on the
        existing sermon `payload.sermon_id` when it is not started or ended.

        The session is created PENDING and, with BROADCAST_AUTO_PROMOTE, promoted
        to LIVE straight away; otherwise the RTMP publish callback promotes it.

        Raises:
            AppError: blank title/speaker, malformed or already issued stream key,
                or (with BROADCAST_ENFORCE_SINGLE_ACTIVE) another active session,
                or a `sermon_id` that is unknown or not configurable.
        """
        if not payload.title.strip() or not payload.speaker.strip():
            raise AppError(
                errcode=AppErrorCode.E_INVALID_REQUEST,
                errmesg="Title and speaker are required",
                status_code=HttpStatusCode.BAD_REQUEST,
            )

        if self.settings.BROADCAST_ENFORCE_SINGLE_ACTIVE:
            active = await self.store.find_active()
            if active:
                raise AppError(
                    errcode=AppErrorCode.E_ACTIVE_SESSION_EXISTS,
                    errmesg=f"Sermon {active[0].sermon_id} is already {active[0].status}",
                    status_code=HttpStatusCode.CONFLICT,
                )

        await self._check_stream_key(payload.stream_key)

        stream_config = build_stream_config(
            payload.stream_key,
            rtmp_server_url=payload.rtmp_config.server_url or self.settings.RTMP_SERVER_URL,
            hls_base_url=self.settings.HLS_BASE_URL,
        )
        if payload.rtmp_config.hls_url and payload.rtmp_config.hls_url != stream_config.hls_playback_url:
            logger.info(
                f"Client HLS URL {payload.rtmp_config.hls_url} replaced by "
                f"{stream_config.hls_playback_url}"
            )

        rtmp_config = RtmpConfigData(
            server_url=stream_config.rtmp_server_url,
            stream_key=stream_config.stream_key,
            hls_url=stream_config.hls_playback_url,
            auto_record=payload.auto_record,
            recording_format=payload.rtmp_config.recording_format or self.settings.RECORDING_FORMAT,
        )

        if payload.sermon_id:
            session = await self._reconfigure(payload.sermon_id, payload, rtmp_config)
        else:
            now = utc_now()
            session = await self.store.create(
                BroadcastSession(
                    sermon_id=new_sermon_id(),
                    title=payload.title.strip(),
                    speaker=payload.speaker.strip(),
                    description=payload.description,
                    category=payload.category,
                    image_url=payload.image_url,
                    status=BroadcastStatus.PENDING,
                    is_live=False,
                    stream_key=stream_config.stream_key,
                    rtmp_server_url=stream_config.rtmp_server_url,
                    hls_playback_url=stream_config.hls_playback_url,
                    rtmp_config=rtmp_config,
                    auto_record=payload.auto_record,
                    recording_id=payload.recording_id or new_recording_id(),
                    recording_status=RecordingStatus.NOT_STARTED,
                    viewers=0,
                    created_at=now,
                    updated_at=now,
                )
            )
        logger.info(f"Broadcast session configured for sermon {session.sermon_id}")

        if self.settings.BROADCAST_AUTO_PROMOTE:
            session = await self.mark_live(session.sermon_id)

        return StartLiveResult(
            success=True,
            sermon=session,
            streaming_config=rtmp_config,
            message="Live stream started successfully",
        )

    async def _reconfigure(
        self,
        sermon_id: str,
        payload: StartLivePayload,
        rtmp_config: RtmpConfigData,
    ) -> BroadcastSession:
        """NOT_STARTED|ENDED -> PENDING on an existing sermon, with a fresh stream key.

        The previous broadcast's timing, viewers and recording are reset; the old
        key is released once the new one is stored.
        """
        session = await self._get_session(sermon_id)
        if session.status not in SessionStateMachine.CONFIGURABLE_STATES:
            raise AppError(
                errcode=AppErrorCode.E_INVALID_TRANSITION,
                errmesg=f"Sermon {sermon_id} is {session.status} and cannot be configured",
                status_code=HttpStatusCode.CONFLICT,
            )

        now = utc_now()
        updates = {
            "title": payload.title.strip(),
            "speaker": payload.speaker.strip(),
            "description": payload.description,
            "category": payload.category,
            "status": BroadcastStatus.PENDING,
            "is_live": False,
            "stream_key": rtmp_config.stream_key,
            "rtmp_server_url": rtmp_config.server_url,
            "hls_playback_url": rtmp_config.hls_url,
            "rtmp_config": rtmp_config,
            "auto_record": payload.auto_record,
            "recording_id": payload.recording_id or new_recording_id(),
            "recording_status": RecordingStatus.NOT_STARTED,
            "encoder_connected": False,
            "viewers": 0,
            "duration": "00:00",
            "started_at": None,
            "ended_at": None,
            "updated_at": now,
        }
        if payload.image_url:
            updates["image_url"] = payload.image_url

        logger.info(f"Reconfiguring sermon {sermon_id} (was {session.status})")
        return await self.store.update_fields(sermon_id, updates, expected_states={session.status})

    async def mark_live(self, sermon_id: str) -> BroadcastSession:
        """PENDING -> LIVE. No-op when already live."""
        session = await self._get_session(sermon_id)
        if session.status == BroadcastStatus.LIVE:
            logger.info(f"Sermon {sermon_id} already live, skipping")
            return session

        self._check_transition(session, BroadcastStatus.LIVE)

        now = utc_now()
        updates = {
            "status": BroadcastStatus.LIVE,
            "is_live": True,
            "started_at": now,
            "updated_at": now,
        }
        if session.auto_record:
            updates["recording_status"] = RecordingStatus.RECORDING

        session = await self.store.update_fields(sermon_id, updates, expected_states={session.status})
        logger.info(f"Sermon {sermon_id} is live")
        return session

    async def stop_live(self, sermon_id: str | None) -> StopLiveResult:
        """PENDING|LIVE -> ENDED. Stopping an ENDED session is a no-op.

        Raises:
            AppError: missing id, unknown sermon, or a session that was never
                started or was cancelled.
        """
        if not sermon_id:
            raise AppError(
                errcode=AppErrorCode.E_INVALID_REQUEST,
                errmesg="sermonId is required",
                status_code=HttpStatusCode.BAD_REQUEST,
            )

        session = await self._get_session(sermon_id)
        if session.status == BroadcastStatus.ENDED:
            logger.info(f"Sermon {sermon_id} already ended, skipping")
            return StopLiveResult(success=True, message="Live stream already ended", sermon=session)

        self._check_transition(session, BroadcastStatus.ENDED)

        ended_at = utc_now()
        started_at = _as_utc(session.started_at) if session.started_at else None
        if started_at and ended_at < started_at:
            ended_at = started_at

        session = await self.store.update_fields(
            sermon_id,
            {
                "status": BroadcastStatus.ENDED,
                "is_live": False,
                "ended_at": ended_at,
                "updated_at": ended_at,
                "recording_status": RecordingStatus.PROCESSING,
                "duration": format_duration(started_at, ended_at),
            },
            expected_states={session.status},
        )
        logger.info(f"Sermon {sermon_id} ended (duration {session.duration})")

        return StopLiveResult(success=True, message="Live stream stopped successfully", sermon=session)

    async def cancel_live(self, sermon_id: str) -> BroadcastSession:
        """PENDING -> CANCELLED, releasing the stream key."""
        session = await self._get_session(sermon_id)
        if session.status == BroadcastStatus.CANCELLED:
            return session

        self._check_transition(session, BroadcastStatus.CANCELLED)

        session = await self.store.update_fields(
            sermon_id,
            {"status": BroadcastStatus.CANCELLED, "is_live": False, "updated_at": utc_now()},
            expected_states={session.status},
        )
        logger.info(f"Sermon {sermon_id} broadcast cancelled")
        return session

    # ==================== READ MODEL ====================

    async def get_live_status(self) -> LiveStatusResponse:
        session = await self.store.find_live()
        if not session:
            return LiveStatusResponse(
                success=True,
                is_live=False,
                data=LiveStatusData(offline_message=self.settings.LIVE_OFFLINE_MESSAGE),
            )

        return LiveStatusResponse(
            success=True,
            is_live=True,
            data=LiveStatusData(
                sermon_id=session.sermon_id,
                title=session.title,
                speaker=session.speaker,
                description=session.description,
                live_stream_url=session.hls_playback_url,
                stream_key=session.stream_key,
                rtmp_config=session.rtmp_config,
                started_at=session.started_at,
                viewers=session.viewers or 0,
                duration=format_duration(
                    _as_utc(session.started_at) if session.started_at else None, utc_now()
                ),
            ),
        )

    async def get_live_stats(self) -> LiveStats | None:
        session = await self.store.find_live()
        if not session:
            return None

        return LiveStats(
            sermon_id=session.sermon_id,
            title=session.title,
            speaker=session.speaker,
            rtmp_config=session.rtmp_config,
            started_at=session.started_at,
            stream_key=session.stream_key,
            viewers=session.viewers or 0,
            duration=format_duration(
                _as_utc(session.started_at) if session.started_at else None, utc_now()
            ),
        )

    async def get_session(self, sermon_id: str) -> BroadcastSession:
        return await self._get_session(sermon_id)

    async def list_sermons(
        self,
        page: int = 1,
        limit: int = 10,
        category: str | None = None,
        speaker: str | None = None,
    ) -> SermonListResponse:
        sermons, total = await self.store.list_sermons(page, limit, category=category, speaker=speaker)
        return SermonListResponse(
            sermons=sermons,
            total_pages=math.ceil(total / limit) if limit else 0,
            current_page=page,
            total=total,
        )

    async def update_sermon(self, sermon_id: str, patch: SermonPatch) -> BroadcastSession:
        """Apply a partial update.

        Status changes go through the state machine; repeating the current status
        is accepted so durability writes after a stop are idempotent. An existing
        `ended_at` is never overwritten.
        """
        session = await self._get_session(sermon_id)
        updates = patch.model_dump(exclude_unset=True, exclude_none=True)
        if not updates:
            return session

        new_status = updates.get("status")
        expected_states = None
        if new_status is not None:
            if new_status == session.status:
                updates.pop("status")
            elif new_status == BroadcastStatus.PENDING:
                # A new broadcast needs a fresh stream key, which only start issues
                raise AppError(
                    errcode=AppErrorCode.E_INVALID_TRANSITION,
                    errmesg=f"Sermon {sermon_id} can only return to pending through start",
                    status_code=HttpStatusCode.CONFLICT,
                )
            else:
                self._check_transition(session, new_status)
                expected_states = {session.status}

        if "ended_at" in updates:
            if session.ended_at is not None:
                updates.pop("ended_at")
            elif session.started_at and _as_utc(updates["ended_at"]) < _as_utc(session.started_at):
                raise AppError(
                    errcode=AppErrorCode.E_INVALID_REQUEST,
                    errmesg="endedAt must not precede startedAt",
                    status_code=HttpStatusCode.BAD_REQUEST,
                )

        updates["updated_at"] = utc_now()
        session = await self.store.update_fields(sermon_id, updates, expected_states=expected_states)
        logger.info(f"Sermon {sermon_id} updated: {sorted(updates)}")
        return session

    # ==================== RTMP CALLBACKS ====================

    async def handle_publish(self, stream_key: str) -> BroadcastSession:
        """Encoder connected. Promotes a PENDING session to LIVE.

        Raises AppError when the key is unknown or its session is closed, so the
        RTMP server rejects the publish.
        """
        session = await self._get_session_by_stream_key(stream_key)
        if session.status == BroadcastStatus.ENDED:
            raise AppError(
                errcode=AppErrorCode.E_INVALID_TRANSITION,
                errmesg=f"Stream key {stream_key} belongs to an ended session",
                status_code=HttpStatusCode.FORBIDDEN,
            )

        session = await self.store.set_fields(
            session.sermon_id,
            {"encoder_connected": True, "updated_at": utc_now()},
        )
        logger.info(f"Encoder connected for sermon {session.sermon_id}")

        if session.status == BroadcastStatus.PENDING:
            session = await self.mark_live(session.sermon_id)
        return session

    async def handle_unpublish(self, stream_key: str) -> BroadcastSession:
        """Encoder disconnected. The session stays live until the operator stops it."""
        session = await self._get_session_by_stream_key(stream_key)
        session = await self.store.set_fields(
            session.sermon_id,
            {"encoder_connected": False, "updated_at": utc_now()},
        )
        logger.info(f"Encoder disconnected for sermon {session.sermon_id} (status {session.status})")
        return session

    async def handle_viewer_change(self, stream_key: str, delta: int) -> BroadcastSession:
        """Best-effort viewer counter from RTMP play/stop callbacks."""
        session = await self._get_session_by_stream_key(stream_key)
        return await self.store.adjust_viewers(session.sermon_id, delta)

    # ==================== HELPERS ====================

    async def _get_session(self, sermon_id: str) -> BroadcastSession:
        session = await self.store.get(sermon_id)
        if not session:
            raise AppError(
                errcode=AppErrorCode.E_SERMON_NOT_FOUND,
                errmesg=f"Sermon not found: {sermon_id}",
                status_code=HttpStatusCode.NOT_FOUND,
            )
        return session

    async def _get_session_by_stream_key(self, stream_key: str) -> BroadcastSession:
        session = await self.store.find_by_stream_key(stream_key)
        if not session:
            raise AppError(
                errcode=AppErrorCode.E_STREAM_KEY_NOT_FOUND,
                errmesg=f"No session for stream key: {stream_key}",
                status_code=HttpStatusCode.NOT_FOUND,
            )
        return session

    @staticmethod
    def _check_transition(session: BroadcastSession, target: BroadcastStatus) -> None:
        if not SessionStateMachine.can_transition(session.status, target):
            raise AppError(
                errcode=AppErrorCode.E_INVALID_TRANSITION,
                errmesg=f"Invalid state transition: {session.status} -> {target}",
                status_code=HttpStatusCode.CONFLICT,
            )
