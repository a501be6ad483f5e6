"""Error taxonomy for the portal data layer.

Each error carries the HTTP-equivalent status a handler should report and
whether retrying the same call can succeed. Everything except per-item
dereference failures inside RelationshipResolver propagates to the caller.
"""


class PortalError(Exception):
    """Base class for all data-layer errors."""

    status_code: int = 500
    retryable: bool = False

    def __init__(self, message: str, **details: object) -> None:
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> dict:
        return {
            "error": type(self).__name__,
            "message": self.message,
            "status_code": self.status_code,
            "details": {k: str(v) for k, v in self.details.items()},
        }


class ValidationError(PortalError):
    """Missing or malformed required field. Never retried."""

    status_code = 400


class NotFoundError(PortalError):
    """Blob or statement target absent."""

    status_code = 404


class AccessDeniedError(PortalError, PermissionError):
    """Ownership or role check failed above the data layer."""

    status_code = 403


class ConflictError(PortalError):
    """Stored version advanced past the caller's expected version.

    Callers should re-read and retry with the fresh version.
    """

    status_code = 409


class UpstreamError(PortalError):
    """Network or auth failure talking to the LRS."""

    status_code = 503
    retryable = True

    def __init__(
        self,
        message: str,
        *,
        upstream_status: int | None = None,
        retryable: bool = True,
        **details: object,
    ) -> None:
        super().__init__(message, **details)
        self.upstream_status = upstream_status
        self.retryable = retryable


class ScanTimeoutError(PortalError, TimeoutError):
    """An analytics scan exceeded its time budget."""

    status_code = 504
