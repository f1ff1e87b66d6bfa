"""Beanie ODM schemas for MongoDB collections."""

from .broadcast_state import BroadcastStatus, RecordingStatus, SermonCategory
from .init import init_beanie_odm
from .rtmp_config import RtmpConfig
from .sermon import Sermon

__all__ = [
    "BroadcastStatus",
    "RecordingStatus",
    "RtmpConfig",
    "Sermon",
    "SermonCategory",
    "init_beanie_odm",
]
