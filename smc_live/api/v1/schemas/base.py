from typing import Generic, TypeVar

from smc_live.shared.api.utils import ApiSuccess

T = TypeVar("T")


class ApiOut(ApiSuccess, Generic[T]):
    """Standard API envelope used by routers without a dedicated response shape."""
