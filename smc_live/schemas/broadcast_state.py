"""Common enums used across schemas."""

from enum import Enum


class BroadcastStatus(str, Enum):
    """Broadcast session lifecycle states.

    State Transition Flow:

    NOT_STARTED → PENDING → LIVE → ENDED
                     ↓               ↓
                 CANCELLED        PENDING (reconfigured)

    State Descriptions:
    - NOT_STARTED: Sermon has never been configured for broadcast.
    - PENDING: Stream key issued by the start form; encoder may not be connected yet.
    - LIVE: Backend declared the session live (on configure, or on RTMP publish).
    - ENDED: Operator stopped the broadcast. Recording moves to processing.
    - CANCELLED: Session abandoned before going live. Its stream key is released.

    Terminal state (no further transitions): CANCELLED
    """

    NOT_STARTED = "not_started"
    PENDING = "pending"
    LIVE = "live"
    ENDED = "ended"
    CANCELLED = "cancelled"

    def __str__(self) -> str:
        return self.value

    @classmethod
    def active_states(cls) -> list["BroadcastStatus"]:
        """States in which a session holds the broadcast."""
        return [BroadcastStatus.PENDING, BroadcastStatus.LIVE]


class RecordingStatus(str, Enum):
    """Recording pipeline states. Only PROCESSING is set by this service."""

    NOT_STARTED = "not_started"
    RECORDING = "recording"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"

    def __str__(self) -> str:
        return self.value


class SermonCategory(str, Enum):
    SUNDAY_SERVICE = "sunday-service"
    BIBLE_STUDY = "bible-study"
    PRAYER_MEETING = "prayer-meeting"
    YOUTH = "youth"
    SPECIAL = "special"
    FAITH = "faith"
    HOPE = "hope"
    LOVE = "love"

    def __str__(self) -> str:
        return self.value


__all__ = ["BroadcastStatus", "RecordingStatus", "SermonCategory"]
