"""Sermon ODM schema.

Broadcast session fields are embedded in the sermon document; there is no
separate session collection.
"""

from collections.abc import Mapping
from datetime import datetime
from typing import Any

from beanie import Document, Indexed
from beanie.odm.fields import ExpressionField
from beanie.odm.operators.update.general import Set
from loguru import logger
from pydantic import Field, field_validator
from pymongo import IndexModel

from smc_live.utils.app_errors import AppError, AppErrorCode, HttpStatusCode

from .broadcast_state import BroadcastStatus, RecordingStatus, SermonCategory
from .rtmp_config import RtmpConfig
from .schema_utils import parse_mongo_datetime


class Sermon(Document):
    """Sermon document model."""

    sermon_id: Indexed(str, unique=True)  # type: ignore[valid-type]

    # Sermon descriptor fields
    title: str
    speaker: str
    description: str = ""
    category: SermonCategory = SermonCategory.SUNDAY_SERVICE
    image_url: str | None = None

    # Broadcast session
    status: BroadcastStatus = BroadcastStatus.NOT_STARTED
    is_live: bool = False
    stream_key: str | None = None
    rtmp_server_url: str | None = None
    hls_playback_url: str | None = None
    rtmp_config: RtmpConfig | None = None
    auto_record: bool = True
    recording_id: str | None = None
    recording_status: RecordingStatus = RecordingStatus.NOT_STARTED
    encoder_connected: bool = False
    # Mirrors status in (pending, live, ended); the unique key index filters on it
    stream_key_reserved: bool = False
    viewers: int = 0
    duration: str = "00:00"

    # Timestamps
    created_at: datetime
    updated_at: datetime
    started_at: datetime | None = None
    ended_at: datetime | None = None

    # Version control for optimistic locking
    version: int = Field(default=1)

    @field_validator("created_at", "updated_at", "started_at", "ended_at", mode="before")
    @classmethod
    def _parse_datetime(cls, v: Any) -> Any:
        """Parse MongoDB Extended JSON datetime format."""
        return parse_mongo_datetime(v)

    async def _raise_version_conflict(self, current_version: int) -> None:
        fresh = await Sermon.get(self.id)
        error_msg = (
            f"Version conflict on sermon {self.sermon_id}\n"
            f"Expected version: {current_version}, Current version: "
            f"{fresh.version if fresh else 'N/A'}, "
            f"status={fresh.status if fresh else 'N/A'}"
        )
        logger.warning(error_msg)
        raise AppError(
            errcode=AppErrorCode.E_SESSION_VERSION_CONFLICT,
            errmesg=error_msg,
            status_code=HttpStatusCode.CONFLICT,
        )

    async def partial_update_with_version_check(
        self,
        updates: Mapping[ExpressionField, Any],
        max_retry_on_conflicts: int = 0,
    ) -> bool:
        """Atomically update select sermon fields with optimistic locking.

        Args:
            updates: Mapping of Sermon field expressions to values.
                Example: {Sermon.status: BroadcastStatus.LIVE}
            max_retry_on_conflicts: Retries on version conflict (0-10). Not allowed
                when the update touches the status field.

        Returns:
            True if update succeeded.

        Raises:
            AppError: On version conflict after all retries (E_SESSION_VERSION_CONFLICT),
                or on invalid arguments (E_INVALID_REQUEST).
        """
        if Sermon.version in updates:
            raise AppError(
                AppErrorCode.E_INVALID_REQUEST,
                "updates must not include Sermon.version",
                HttpStatusCode.BAD_REQUEST,
            )

        if Sermon.status in updates and max_retry_on_conflicts > 0:
            raise AppError(
                AppErrorCode.E_INVALID_REQUEST,
                "retries not allowed when updating status (critical field)",
                HttpStatusCode.BAD_REQUEST,
            )

        if max_retry_on_conflicts < 0 or max_retry_on_conflicts > 10:
            raise AppError(
                AppErrorCode.E_INVALID_REQUEST,
                "max_retry_on_conflicts must be between 0 and 10",
                HttpStatusCode.BAD_REQUEST,
            )

        max_attempts = max_retry_on_conflicts + 1

        for attempt in range(1, max_attempts + 1):
            current_version = self.version or 1
            new_version = current_version + 1
            update_fields = dict(updates)
            update_fields[Sermon.version] = new_version  # type: ignore[index]

            result = await Sermon.find(
                Sermon.id == self.id,
                Sermon.version == current_version,
            ).update(Set(update_fields))  # type: ignore[arg-type]

            if result and result.modified_count > 0:
                self.version = new_version
                logger.debug(
                    f"Sermon {self.sermon_id} partially updated "
                    f"(version {current_version} -> {new_version})"
                )
                return True

            if attempt < max_attempts:
                fresh = await Sermon.get(self.id)
                if fresh is None:
                    break
                self.version = fresh.version
                logger.debug(
                    f"Sermon {self.sermon_id} version conflict, retrying "
                    f"(attempt {attempt}/{max_attempts}, refreshed version: {self.version})"
                )

        await self._raise_version_conflict(current_version)
        return False

    class Settings:
        name = "sermon"
        indexes = [
            IndexModel(
                [("stream_key", 1)],
                partialFilterExpression={
                    "stream_key_reserved": True,
                    "stream_key": {"$type": "string"},
                },
                unique=True,
                name="stream_key_issued_unique",
            ),
            IndexModel(
                [("is_live", 1), ("started_at", -1)],
                name="is_live_started_at",
            ),
            IndexModel([("status", 1)], name="status"),
            IndexModel([("created_at", -1)], name="created_at_desc"),
        ]


__all__ = ["Sermon"]
