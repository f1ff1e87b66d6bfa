from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field


class ChurchApiEnvelope(BaseModel):
    """`{success, results}` envelope used by the list, stats, update and cancel endpoints."""

    success: bool = True
    results: Any = None
    version: str | None = None


class ChurchApiFailureBody(BaseModel):
    success: bool = False
    errcode: str | None = None
    erresid: str | None = None
    errmesg: str | None = None

    model_config = ConfigDict(extra="ignore")


class ThumbnailUploadResult(BaseModel):
    """Upload service answer. Different services name the URL differently."""

    url: str = Field(validation_alias=AliasChoices("url", "imageUrl", "secure_url", "location"))

    model_config = ConfigDict(extra="ignore")


class ChurchApiError(Exception):
    """Non-2xx answer from the church API, or a transport failure when status_code is None."""

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        errcode: str | None = None,
        erresid: str | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.errcode = errcode
        self.erresid = erresid
