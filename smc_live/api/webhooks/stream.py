"""RTMP server callbacks.

The streaming server calls these when an encoder starts or stops publishing
on a stream key, and when a player attaches or detaches. A non-2xx answer to
`publish` makes the server refuse the encoder.

- publish: encoder connected; a PENDING session is promoted to LIVE
- unpublish: encoder disconnected; the session status is left alone
- play / play_done: best-effort viewer counter
"""

from fastapi import APIRouter, Depends
from loguru import logger

from smc_live.api.v1.routers.sermon_live import get_broadcast_service
from smc_live.api.v1.schemas.base import ApiOut
from smc_live.api.v1.schemas.sermon import StreamCallbackIn
from smc_live.domain.live.broadcast.broadcast_domain import BroadcastService
from smc_live.domain.live.broadcast.broadcast_models import BroadcastSession
from smc_live.shared.api.utils import make_response, verify_api_key

router = APIRouter(prefix="/webhooks/stream", tags=["Webhooks"], dependencies=[Depends(verify_api_key)])


@router.post("/publish")
async def on_publish(
    body: StreamCallbackIn,
    service: BroadcastService = Depends(get_broadcast_service),
) -> ApiOut[BroadcastSession]:
    logger.info(f"RTMP publish for stream key {body.stream_key}")
    session = await service.handle_publish(body.stream_key)
    return make_response(ApiOut[BroadcastSession](results=session.to_wire()))


@router.post("/unpublish")
async def on_unpublish(
    body: StreamCallbackIn,
    service: BroadcastService = Depends(get_broadcast_service),
) -> ApiOut[BroadcastSession]:
    logger.info(f"RTMP unpublish for stream key {body.stream_key}")
    session = await service.handle_unpublish(body.stream_key)
    return make_response(ApiOut[BroadcastSession](results=session.to_wire()))


@router.post("/play")
async def on_play(
    body: StreamCallbackIn,
    service: BroadcastService = Depends(get_broadcast_service),
) -> ApiOut[BroadcastSession]:
    session = await service.handle_viewer_change(body.stream_key, 1)
    return make_response(ApiOut[BroadcastSession](results=session.to_wire()))


@router.post("/play_done")
async def on_play_done(
    body: StreamCallbackIn,
    service: BroadcastService = Depends(get_broadcast_service),
) -> ApiOut[BroadcastSession]:
    session = await service.handle_viewer_change(body.stream_key, -1)
    return make_response(ApiOut[BroadcastSession](results=session.to_wire()))
