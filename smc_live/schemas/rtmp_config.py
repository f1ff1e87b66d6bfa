"""Streaming configuration embedded in the sermon document."""

from pydantic import BaseModel, Field


class RtmpConfig(BaseModel):
    """Encoder-facing configuration issued with a broadcast session.

    `server_url`, `stream_key` and `hls_url` are shown verbatim to the operator
    for pasting into encoder software (OBS, vMix, Wirecast).
    """

    server_url: str | None = Field(default=None, description="RTMP ingest URL")
    stream_key: str | None = Field(default=None, description="Stream key for the ingest URL")
    hls_url: str | None = Field(default=None, description="HLS playback URL derived from the key")
    auto_record: bool = True
    recording_format: str = "mp4"


__all__ = ["RtmpConfig"]
