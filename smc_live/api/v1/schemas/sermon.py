from pydantic import AliasChoices, Field

from smc_live.domain.live.broadcast.broadcast_models import CamelModel


class StopLiveIn(CamelModel):
    # Optional so a missing id reaches the domain and comes back as E_INVALID_REQUEST
    sermon_id: str | None = Field(default=None, description="Sermon whose broadcast to stop")


class CancelLiveIn(CamelModel):
    sermon_id: str = Field(description="Sermon whose pending broadcast to cancel")


class StreamCallbackIn(CamelModel):
    """RTMP server callback body. nginx-rtmp style servers send the key as `name`."""

    stream_key: str = Field(validation_alias=AliasChoices("streamKey", "stream_key", "name"))
