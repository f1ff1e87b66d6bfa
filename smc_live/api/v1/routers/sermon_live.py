from fastapi import APIRouter, Depends, Query

from smc_live.api.v1.schemas.base import ApiOut
from smc_live.api.v1.schemas.sermon import CancelLiveIn, StopLiveIn
from smc_live.domain.live.broadcast.broadcast_domain import BroadcastService
from smc_live.domain.live.broadcast.broadcast_models import (
    BroadcastSession,
    LiveStats,
    SermonListResponse,
    SermonPatch,
    StartLivePayload,
)
from smc_live.shared.api.utils import make_response, verify_api_key

router = APIRouter(prefix="/sermons", tags=["Sermons"])

# Singleton instance
_broadcast_service = BroadcastService()


def get_broadcast_service() -> BroadcastService:
    """Get the singleton BroadcastService instance."""
    return _broadcast_service


@router.get("/live/status")
async def get_live_status(service: BroadcastService = Depends(get_broadcast_service)):
    """Whether a broadcast is live, with its playback details or the offline message."""
    result = await service.get_live_status()
    return make_response(result.to_wire())


@router.get("/live/stats")
async def get_live_stats(
    service: BroadcastService = Depends(get_broadcast_service),
) -> ApiOut[LiveStats | None]:
    stats = await service.get_live_stats()
    return make_response(ApiOut[LiveStats | None](results=stats.to_wire() if stats else None))


@router.get("")
async def list_sermons(
    service: BroadcastService = Depends(get_broadcast_service),
    page: int = Query(1, ge=1, description="1-based page number"),
    limit: int = Query(10, ge=1, le=100, description="Number of sermons per page"),
    category: str | None = Query(None, description="Filter by category"),
    speaker: str | None = Query(None, description="Case-insensitive speaker filter"),
) -> ApiOut[SermonListResponse]:
    result = await service.list_sermons(page=page, limit=limit, category=category, speaker=speaker)
    return make_response(ApiOut[SermonListResponse](results=result.to_wire()))


@router.post("/admin/live/start", dependencies=[Depends(verify_api_key)])
async def start_live(
    payload: StartLivePayload,
    service: BroadcastService = Depends(get_broadcast_service),
):
    """Configure a broadcast session on a new sermon with the client-generated stream key."""
    result = await service.start_live(payload)
    return make_response(result.to_wire())


@router.post("/admin/live/stop", dependencies=[Depends(verify_api_key)])
async def stop_live(
    body: StopLiveIn,
    service: BroadcastService = Depends(get_broadcast_service),
):
    result = await service.stop_live(body.sermon_id)
    return make_response(result.to_wire())


@router.post("/admin/live/cancel", dependencies=[Depends(verify_api_key)])
async def cancel_live(
    body: CancelLiveIn,
    service: BroadcastService = Depends(get_broadcast_service),
) -> ApiOut[BroadcastSession]:
    """Abandon a pending broadcast and release its stream key."""
    session = await service.cancel_live(body.sermon_id)
    return make_response(ApiOut[BroadcastSession](results=session.to_wire()))


@router.put("/admin/{sermon_id}", dependencies=[Depends(verify_api_key)])
async def update_sermon(
    sermon_id: str,
    patch: SermonPatch,
    service: BroadcastService = Depends(get_broadcast_service),
) -> ApiOut[BroadcastSession]:
    session = await service.update_sermon(sermon_id, patch)
    return make_response(ApiOut[BroadcastSession](results=session.to_wire()))
