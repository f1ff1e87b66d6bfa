"""Application error type raised by the domain and converted by the API layer."""

import inspect
from enum import Enum, IntEnum
from uuid import uuid4


class AppErrorCode(str, Enum):
    E_INVALID_REQUEST = "E_INVALID_REQUEST"
    E_INVALID_PARAMS = "E_INVALID_PARAMS"
    E_INTERNAL_ERROR = "E_INTERNAL_ERROR"
    E_UNAUTHORIZED = "E_UNAUTHORIZED"

    E_SERMON_NOT_FOUND = "E_SERMON_NOT_FOUND"
    E_STREAM_KEY_IN_USE = "E_STREAM_KEY_IN_USE"
    E_STREAM_KEY_NOT_FOUND = "E_STREAM_KEY_NOT_FOUND"
    E_ACTIVE_SESSION_EXISTS = "E_ACTIVE_SESSION_EXISTS"
    E_INVALID_TRANSITION = "E_INVALID_TRANSITION"
    E_SESSION_VERSION_CONFLICT = "E_SESSION_VERSION_CONFLICT"

    def __str__(self) -> str:
        return self.value


class HttpStatusCode(IntEnum):
    OK = 200
    BAD_REQUEST = 400
    UNAUTHORIZED = 401
    FORBIDDEN = 403
    NOT_FOUND = 404
    CONFLICT = 409
    UNPROCESSABLE_ENTITY = 422
    INTERNAL_SERVER_ERROR = 500


class AppError(Exception):
    """Error carrying an API error code, message and HTTP status.

    The caller location is captured at construction so the exception handler
    can log where the error was raised rather than where it was converted.
    """

    def __init__(
        self,
        errcode: AppErrorCode | str,
        errmesg: str,
        status_code: HttpStatusCode | int = HttpStatusCode.BAD_REQUEST,
    ):
        self.errcode = errcode.value if isinstance(errcode, AppErrorCode) else str(errcode)
        self.errmesg = errmesg
        self.status_code = int(status_code)
        self.erresid = uuid4().hex[:10]

        caller_frame = inspect.stack()[1]
        self.caller_info = (
            f"{caller_frame.filename}:{caller_frame.function}:{caller_frame.lineno}"
        )

        super().__init__(f"{self.errcode}: {errmesg}")


__all__ = ["AppError", "AppErrorCode", "HttpStatusCode"]
