"""Broadcast domain models.

These models are shared by the service and the operator console. Python code
uses snake_case; the JSON wire format is camelCase.
"""

from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from smc_live.schemas import BroadcastStatus, RecordingStatus, Sermon, SermonCategory


def _assume_utc(v: datetime | None) -> datetime | None:
    if v is not None and v.tzinfo is None:
        return v.replace(tzinfo=timezone.utc)
    return v


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_wire(self, **kwargs: Any) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, **kwargs)


class RtmpConfigData(CamelModel):
    server_url: str | None = None
    stream_key: str | None = None
    hls_url: str | None = None
    auto_record: bool = True
    recording_format: str = "mp4"


class BroadcastSession(CamelModel):
    """Read model of one broadcast session on a sermon.

    Everything except `sermon_id` is optional because sessions synthesized from
    live stats carry only a handful of fields.
    """

    sermon_id: str
    title: str | None = None
    speaker: str | None = None
    description: str | None = None
    category: SermonCategory | None = None
    image_url: str | None = None

    status: BroadcastStatus = BroadcastStatus.NOT_STARTED
    is_live: bool = False
    stream_key: str | None = None
    rtmp_server_url: str | None = None
    hls_playback_url: str | None = None
    rtmp_config: RtmpConfigData | None = None
    auto_record: bool | None = None
    recording_id: str | None = None
    recording_status: RecordingStatus | None = None
    encoder_connected: bool | None = None
    viewers: int | None = None
    duration: str | None = None

    created_at: datetime | None = None
    updated_at: datetime | None = None
    started_at: datetime | None = None
    ended_at: datetime | None = None

    @field_validator("created_at", "updated_at", "started_at", "ended_at")
    @classmethod
    def normalize_utc(cls, v: datetime | None) -> datetime | None:
        """MongoDB hands back naive datetimes; they are UTC."""
        return _assume_utc(v)

    @property
    def flagged_live(self) -> bool:
        """Whether the record itself claims to be live."""
        return self.is_live or self.status == BroadcastStatus.LIVE

    @classmethod
    def from_document(cls, sermon: Sermon) -> "BroadcastSession":
        return cls.model_validate(sermon.model_dump(exclude={"id", "version", "stream_key_reserved"}))


class LiveStats(CamelModel):
    """Compact, frequently polled summary of the current broadcast."""

    sermon_id: str | None = None
    title: str | None = None
    speaker: str | None = None
    rtmp_config: RtmpConfigData | None = None
    started_at: datetime | None = None
    stream_key: str | None = None
    viewers: int | None = None
    duration: str | None = None

    @field_validator("started_at")
    @classmethod
    def normalize_utc(cls, v: datetime | None) -> datetime | None:
        return _assume_utc(v)


class StartLivePayload(CamelModel):
    # Existing not-started or ended sermon to configure; a new record when absent
    sermon_id: str | None = None
    title: str
    speaker: str
    description: str = ""
    category: SermonCategory = SermonCategory.SUNDAY_SERVICE
    auto_record: bool = True
    stream_key: str
    image_url: str | None = None
    rtmp_config: RtmpConfigData
    recording_id: str | None = None


class StartLiveResult(CamelModel):
    success: bool = True
    sermon: BroadcastSession | None = None
    streaming_config: RtmpConfigData | None = None
    message: str | None = None


class StopLiveResult(CamelModel):
    success: bool = True
    message: str | None = None
    sermon: BroadcastSession | None = None


class LiveStatusData(CamelModel):
    sermon_id: str | None = None
    title: str | None = None
    speaker: str | None = None
    description: str | None = None
    live_stream_url: str | None = None
    stream_key: str | None = None
    rtmp_config: RtmpConfigData | None = None
    started_at: datetime | None = None
    viewers: int | None = None
    duration: str | None = None
    offline_message: str | None = None


class LiveStatusResponse(CamelModel):
    success: bool = True
    is_live: bool = False
    data: LiveStatusData | None = None


class SermonPatch(CamelModel):
    """Partial update of a sermon's broadcast fields. Unset fields are left alone."""

    title: str | None = None
    speaker: str | None = None
    description: str | None = None
    image_url: str | None = None
    status: BroadcastStatus | None = None
    is_live: bool | None = None
    recording_status: RecordingStatus | None = None
    viewers: int | None = Field(default=None, ge=0)
    ended_at: datetime | None = None


class SermonListResponse(CamelModel):
    sermons: list[BroadcastSession]
    total_pages: int
    current_page: int
    total: int
