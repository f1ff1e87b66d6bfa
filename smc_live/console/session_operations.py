"""Operator-side Configure and Stop.

Configure issues a stream key, derives the playback URL and asks the backend
to create the session. Stop ends the session on the backend and returns the
locally ended record; the durability write that repeats the ended fields on
the sermon runs detached and never undoes the stop.
"""

import base64
from dataclasses import dataclass
from datetime import datetime, timezone

from loguru import logger

from smc_live.app_config import AppEnvironConfig, get_app_environ_config
from smc_live.domain.live.broadcast.broadcast_models import (
    BroadcastSession,
    RtmpConfigData,
    SermonPatch,
    StartLivePayload,
)
from smc_live.domain.live.broadcast.session_state_machine import SessionStateMachine
from smc_live.domain.live.broadcast.stream_keys import (
    StreamConfig,
    StreamKeyGenerator,
    build_stream_config,
    stream_key_generator,
)
from smc_live.domain.utils.idgen import new_recording_id
from smc_live.schemas import BroadcastStatus, RecordingStatus, SermonCategory
from smc_live.services.church_api.church_api_client import ChurchApiClient
from smc_live.services.church_api.church_api_schemas import ChurchApiError
from smc_live.utils.app_errors import AppErrorCode

from .console_errors import MissingIdentifier, UpstreamFailure, ValidationError
from .durability import DurabilityWriter

START_FAILED_MESSAGE = "Failed to start live stream"
STOP_FAILED_MESSAGE = "Failed to stop live stream"


@dataclass(frozen=True)
class Thumbnail:
    filename: str
    content: bytes
    content_type: str = "image/jpeg"

    def to_data_uri(self) -> str:
        encoded = base64.b64encode(self.content).decode("ascii")
        return f"data:{self.content_type};base64,{encoded}"


@dataclass
class ConfigureInput:
    title: str
    speaker: str
    category: SermonCategory = SermonCategory.SUNDAY_SERVICE
    description: str = ""
    auto_record: bool = True
    thumbnail: Thumbnail | None = None
    # Reconfigure this not-started or ended sermon instead of creating a new one
    sermon_id: str | None = None


@dataclass
class StopOutcome:
    """Result of Stop as the operator sees it.

    `session` is always the locally ended record. `error` is set when the backend
    call failed; the local record is ended regardless.
    """

    session: BroadcastSession
    success: bool
    message: str
    error: UpstreamFailure | None = None


class SessionOperations:
    def __init__(
        self,
        client: ChurchApiClient,
        durability: DurabilityWriter | None = None,
        settings: AppEnvironConfig | None = None,
        key_generator: StreamKeyGenerator | None = None,
    ):
        self.client = client
        self.durability = durability or DurabilityWriter()
        self.settings = settings or get_app_environ_config()
        self.key_generator = key_generator or stream_key_generator

    def preview(self) -> StreamConfig:
        """A fresh candidate key with its ingest and playback URLs. Nothing is persisted."""
        return build_stream_config(
            self.key_generator.generate(),
            rtmp_server_url=self.settings.RTMP_SERVER_URL,
            hls_base_url=self.settings.HLS_BASE_URL,
        )

    async def configure(self, inputs: ConfigureInput, preview: StreamConfig | None = None) -> BroadcastSession:
        """Configure a broadcast session and return the record the backend stored.

        Raises:
            ValidationError: blank title or speaker; no network call is made.
            UpstreamFailure: the backend refused or could not be reached.
        """
        title = (inputs.title or "").strip()
        speaker = (inputs.speaker or "").strip()
        if not title or not speaker:
            raise ValidationError("Title and speaker are required")

        image_url = await self._resolve_thumbnail(inputs.thumbnail)
        recording_id = new_recording_id()
        stream_config = preview or self.preview()

        for attempt in range(1, self.settings.STREAM_KEY_MAX_ATTEMPTS + 1):
            payload = StartLivePayload(
                sermon_id=inputs.sermon_id,
                title=title,
                speaker=speaker,
                description=inputs.description,
                category=inputs.category,
                auto_record=inputs.auto_record,
                stream_key=stream_config.stream_key,
                image_url=image_url,
                rtmp_config=RtmpConfigData.model_validate(
                    stream_config.to_rtmp_config(inputs.auto_record, self.settings.RECORDING_FORMAT).model_dump()
                ),
                recording_id=recording_id,
            )

            try:
                result = await self.client.start_live_stream(payload)
            except ChurchApiError as e:
                key_taken = e.errcode == AppErrorCode.E_STREAM_KEY_IN_USE.value
                if key_taken and attempt < self.settings.STREAM_KEY_MAX_ATTEMPTS:
                    logger.warning(f"Stream key {stream_config.stream_key} taken, regenerating (attempt {attempt})")
                    stream_config = self.preview()
                    continue
                raise UpstreamFailure(e.message or START_FAILED_MESSAGE, errcode=e.errcode) from e

            if not result.success or result.sermon is None:
                raise UpstreamFailure(result.message or START_FAILED_MESSAGE)

            logger.info(
                f"Broadcast configured: sermon={result.sermon.sermon_id} key={result.sermon.stream_key}"
            )
            return result.sermon

        raise UpstreamFailure(START_FAILED_MESSAGE, errcode=AppErrorCode.E_STREAM_KEY_IN_USE.value)

    async def stop(self, sermon_id: str | None, current: BroadcastSession | None = None) -> StopOutcome:
        """End a broadcast.

        A `current` record that is already closed makes this a no-op without a
        network call, so a repeated Stop is harmless.

        Raises:
            MissingIdentifier: no sermon id.
        """
        if not sermon_id:
            raise MissingIdentifier("No active live stream to stop")

        if current is not None and current.sermon_id == sermon_id:
            if current.status in (BroadcastStatus.ENDED, BroadcastStatus.CANCELLED):
                logger.info(f"Sermon {sermon_id} already {current.status}, nothing to stop")
                return StopOutcome(session=current, success=True, message="Live stream already stopped")
            if not SessionStateMachine.is_active(current.status):
                logger.warning(f"Stopping sermon {sermon_id} from unexpected status {current.status}")

        error: UpstreamFailure | None = None
        remote: BroadcastSession | None = None
        message = "Live stream stopped successfully"
        try:
            result = await self.client.stop_live_stream(sermon_id)
            remote = result.sermon
            if result.success:
                message = result.message or message
            else:
                error = UpstreamFailure(result.message or STOP_FAILED_MESSAGE)
        except ChurchApiError as e:
            error = UpstreamFailure(e.message or STOP_FAILED_MESSAGE, errcode=e.errcode)

        if error is not None:
            # Ended locally anyway so the operator is never left believing the stream is live
            logger.warning(f"Stop for sermon {sermon_id} failed upstream: {error.message}")
            message = error.message

        ended = self._ended_record(sermon_id, current, remote)
        self.durability.submit(
            lambda: self.client.update_sermon(
                sermon_id,
                SermonPatch(
                    status=BroadcastStatus.ENDED,
                    is_live=False,
                    recording_status=RecordingStatus.PROCESSING,
                    ended_at=ended.ended_at,
                ),
            ),
            name=f"persist-ended:{sermon_id}",
        )

        return StopOutcome(session=ended, success=error is None, message=message, error=error)

    @staticmethod
    def _ended_record(
        sermon_id: str, current: BroadcastSession | None, remote: BroadcastSession | None
    ) -> BroadcastSession:
        base = remote or (current if current is not None and current.sermon_id == sermon_id else None)
        base = base or BroadcastSession(sermon_id=sermon_id)
        ended_at = (remote.ended_at if remote else None) or datetime.now(timezone.utc)

        return base.model_copy(
            update={
                "status": BroadcastStatus.ENDED,
                "is_live": False,
                "recording_status": RecordingStatus.PROCESSING,
                "ended_at": ended_at,
                # Credentials of an ended session are never shown again
                "stream_key": None,
                "rtmp_config": None,
            }
        )

    async def _resolve_thumbnail(self, thumbnail: Thumbnail | None) -> str | None:
        if thumbnail is None:
            return None

        try:
            return await self.client.upload_thumbnail(
                thumbnail.filename, thumbnail.content, thumbnail.content_type
            )
        except ChurchApiError as e:
            if len(thumbnail.content) > self.settings.THUMBNAIL_DATA_URI_MAX_BYTES:
                logger.warning(
                    f"Thumbnail upload failed and {thumbnail.filename} is too large to embed "
                    f"({len(thumbnail.content)} bytes), configuring without an image: {e.message}"
                )
                return None
            logger.warning(f"Thumbnail upload failed, embedding as data URI: {e.message}")
            return thumbnail.to_data_uri()
