from typing import Any

import httpx
from loguru import logger
from pydantic import ValidationError

from smc_live.app_config import get_app_environ_config
from smc_live.domain.live.broadcast.broadcast_models import (
    BroadcastSession,
    LiveStats,
    LiveStatusResponse,
    SermonListResponse,
    SermonPatch,
    StartLivePayload,
    StartLiveResult,
    StopLiveResult,
)
from smc_live.services.church_api.church_api_schemas import (
    ChurchApiEnvelope,
    ChurchApiError,
    ChurchApiFailureBody,
    ThumbnailUploadResult,
)


class ChurchApiClient:
    """HTTP client for the sermon live endpoints.

    `transport` is handed to every `httpx.AsyncClient` the client opens, which
    lets tests plug in `httpx.MockTransport` or `httpx.ASGITransport`.
    """

    def __init__(
        self,
        base_url: str,
        api_key: str | None = None,
        *,
        timeout: float = 30,
        thumbnail_upload_url: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.timeout = timeout
        self.thumbnail_upload_url = thumbnail_upload_url
        self._transport = transport

    @classmethod
    def from_config(cls, transport: httpx.AsyncBaseTransport | None = None) -> "ChurchApiClient":
        settings = get_app_environ_config()
        return cls(
            settings.CHURCH_API_BASE_URL,
            settings.CHURCH_API_TOKEN,
            timeout=settings.CHURCH_API_TIMEOUT_SECONDS,
            thumbnail_upload_url=settings.THUMBNAIL_UPLOAD_URL,
            transport=transport,
        )

    def _build_headers(self, extra: dict[str, str] | None = None) -> dict[str, str]:
        headers: dict[str, str] = {}
        if self.api_key:
            headers["X-Api-Key"] = self.api_key
        if extra:
            headers.update(extra)
        return headers

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=self._transport, timeout=self.timeout)

    async def _request(self, method: str, path_or_url: str, **kwargs: Any) -> httpx.Response:
        url = path_or_url if path_or_url.startswith("http") else f"{self.base_url}{path_or_url}"
        try:
            async with self._client() as client:
                response = await client.request(method, url, headers=self._build_headers(), **kwargs)
        except httpx.HTTPError as e:
            logger.warning(f"{method} {url} failed: {type(e).__name__}: {e}")
            raise ChurchApiError(f"Request failed: {e}") from e

        if response.is_success:
            return response

        failure = self._parse_failure(response)
        logger.warning(
            f"{method} {url} -> {response.status_code} {failure.errcode} {failure.erresid}: {failure.errmesg}"
        )
        raise ChurchApiError(
            failure.errmesg or f"HTTP {response.status_code}",
            status_code=response.status_code,
            errcode=failure.errcode,
            erresid=failure.erresid,
        )

    @staticmethod
    def _parse_failure(response: httpx.Response) -> ChurchApiFailureBody:
        try:
            return ChurchApiFailureBody.model_validate(response.json())
        except (ValueError, ValidationError):
            return ChurchApiFailureBody(errmesg=response.text[:200] or None)

    @staticmethod
    def _json(response: httpx.Response) -> Any:
        try:
            return response.json()
        except ValueError as e:
            raise ChurchApiError(
                f"Invalid JSON from {response.request.url}", status_code=response.status_code
            ) from e

    async def _results(self, method: str, path: str, **kwargs: Any) -> Any:
        response = await self._request(method, path, **kwargs)
        return ChurchApiEnvelope.model_validate(self._json(response)).results

    # ==================== VIEWER ====================

    async def get_live_status(self) -> LiveStatusResponse:
        """Raw `{success, isLive, data}` answer. `success` may be false; the caller decides."""
        response = await self._request("GET", "/api/v1/sermons/live/status")
        data = self._json(response)
        logger.debug(f"get_live_status response: {data}")
        return LiveStatusResponse.model_validate(data)

    async def get_live_stats(self) -> LiveStats | None:
        results = await self._results("GET", "/api/v1/sermons/live/stats")
        return LiveStats.model_validate(results) if results else None

    async def list_sermons(
        self,
        page: int = 1,
        limit: int = 10,
        category: str | None = None,
        speaker: str | None = None,
    ) -> SermonListResponse:
        params: dict[str, Any] = {"page": page, "limit": limit}
        if category:
            params["category"] = category
        if speaker:
            params["speaker"] = speaker

        results = await self._results("GET", "/api/v1/sermons", params=params)
        return SermonListResponse.model_validate(results)

    # ==================== ADMIN ====================

    async def start_live_stream(self, payload: StartLivePayload) -> StartLiveResult:
        response = await self._request(
            "POST", "/api/v1/sermons/admin/live/start", json=payload.to_wire(exclude_none=True)
        )
        data = self._json(response)
        logger.debug(f"start_live_stream response: {data}")
        return StartLiveResult.model_validate(data)

    async def stop_live_stream(self, sermon_id: str) -> StopLiveResult:
        """Stop a broadcast. A 2xx answer without `success` counts as success."""
        response = await self._request(
            "POST", "/api/v1/sermons/admin/live/stop", json={"sermonId": sermon_id}
        )
        try:
            data = response.json()
        except ValueError:
            data = None

        if not isinstance(data, dict):
            return StopLiveResult(success=True)

        data.setdefault("success", True)
        return StopLiveResult.model_validate(data)

    async def cancel_live_stream(self, sermon_id: str) -> BroadcastSession:
        results = await self._results(
            "POST", "/api/v1/sermons/admin/live/cancel", json={"sermonId": sermon_id}
        )
        return BroadcastSession.model_validate(results)

    async def update_sermon(self, sermon_id: str, patch: SermonPatch) -> BroadcastSession:
        results = await self._results(
            "PUT",
            f"/api/v1/sermons/admin/{sermon_id}",
            json=patch.to_wire(exclude_unset=True),
        )
        return BroadcastSession.model_validate(results)

    async def upload_thumbnail(self, filename: str, content: bytes, content_type: str) -> str:
        """Upload an image and return its public URL.

        Raises ChurchApiError when no upload URL is configured or the upload fails.
        """
        if not self.thumbnail_upload_url:
            raise ChurchApiError("Thumbnail upload URL is not configured")

        response = await self._request(
            "POST",
            self.thumbnail_upload_url,
            files={"file": (filename, content, content_type)},
        )
        data = self._json(response)
        if isinstance(data, dict):
            data = data.get("results") or data.get("data") or data

        try:
            return ThumbnailUploadResult.model_validate(data).url
        except ValidationError as e:
            raise ChurchApiError(f"Upload response carries no URL: {data}") from e
