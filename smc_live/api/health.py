from fastapi import APIRouter

from smc_live.shared.api.utils import ApiSuccess

router = APIRouter()


@router.get("/health", response_model=ApiSuccess)
async def health():
    return ApiSuccess(results="OK")
