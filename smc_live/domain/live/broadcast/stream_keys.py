"""Stream key generation and derived streaming endpoints."""

import re
import secrets
import string
import time
from dataclasses import dataclass

from smc_live.schemas import RtmpConfig

STREAM_KEY_PREFIX = "smc_"
STREAM_KEY_MAX_LENGTH = 40
STREAM_KEY_PATTERN = re.compile(rf"^{STREAM_KEY_PREFIX}[0-9a-z]+$")

_BASE36_ALPHABET = string.digits + string.ascii_lowercase


def to_base36(value: int) -> str:
    if value < 0:
        raise ValueError("base36 encoding requires a non-negative integer")
    if value == 0:
        return "0"

    digits = []
    while value:
        value, remainder = divmod(value, 36)
        digits.append(_BASE36_ALPHABET[remainder])
    return "".join(reversed(digits))


class StreamKeyGenerator:
    """Produces session credentials of the form `smc_<base36 ms><base36 random>`.

    Keys are at most 40 characters. Uniqueness is statistical: 64 random bits per
    key on top of the millisecond timestamp. Callers that need a guarantee check
    the store (see BroadcastService.issue_unique_stream_key).
    """

    def __init__(self, prefix: str = STREAM_KEY_PREFIX, max_length: int = STREAM_KEY_MAX_LENGTH):
        self.prefix = prefix
        self.max_length = max_length

    def generate(self) -> str:
        timestamp = to_base36(time.time_ns() // 1_000_000)
        random_part = to_base36(secrets.randbits(64))
        return f"{self.prefix}{timestamp}{random_part}"[: self.max_length]

    def is_valid(self, stream_key: str | None) -> bool:
        return bool(
            stream_key
            and len(stream_key) <= self.max_length
            and STREAM_KEY_PATTERN.match(stream_key)
        )


stream_key_generator = StreamKeyGenerator()


def generate_stream_key() -> str:
    return stream_key_generator.generate()


@dataclass(frozen=True)
class StreamConfig:
    """Operator-facing endpoints for one stream key."""

    stream_key: str
    rtmp_server_url: str
    hls_playback_url: str

    def to_rtmp_config(self, auto_record: bool = True, recording_format: str = "mp4") -> RtmpConfig:
        return RtmpConfig(
            server_url=self.rtmp_server_url,
            stream_key=self.stream_key,
            hls_url=self.hls_playback_url,
            auto_record=auto_record,
            recording_format=recording_format,
        )


def build_hls_playback_url(stream_key: str, hls_base_url: str) -> str:
    return f"{hls_base_url.rstrip('/')}/live/{stream_key}/index.m3u8"


def build_stream_config(stream_key: str, rtmp_server_url: str, hls_base_url: str) -> StreamConfig:
    """Derive the ingest and playback endpoints for a stream key."""
    if not stream_key:
        raise ValueError("stream_key is required")

    return StreamConfig(
        stream_key=stream_key,
        rtmp_server_url=rtmp_server_url,
        hls_playback_url=build_hls_playback_url(stream_key, hls_base_url),
    )
