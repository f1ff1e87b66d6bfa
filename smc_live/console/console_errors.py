"""Errors surfaced to the operator by the console.

Auxiliary failures (thumbnail upload, the post-stop durability write) are
logged and never raised. Polling degradation is a flag on the status
snapshot, not an exception.
"""


class ConsoleError(Exception):
    """Base class for operator-facing errors."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(ConsoleError):
    """Required input missing. Raised before any network call."""


class MissingIdentifier(ConsoleError):
    """Stop requested with no resolvable sermon id."""


class UpstreamFailure(ConsoleError):
    """The primary backend call failed.

    `errcode` carries the server error code when the backend answered.
    """

    def __init__(self, message: str, errcode: str | None = None):
        super().__init__(message)
        self.errcode = errcode


class AuxiliaryFailure(ConsoleError):
    """A best-effort secondary call failed. Only ever logged."""
