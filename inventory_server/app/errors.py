from typing import Optional

from fastapi import HTTPException


class _AppError(HTTPException):
    status_code_default = 500
    detail_default = "internal error"

    def __init__(self, detail: Optional[str] = None, headers: Optional[dict] = None):
        super().__init__(
            status_code=self.status_code_default,
            detail=detail or self.detail_default,
            headers=headers,
        )


class ValidationFailed(_AppError):
    status_code_default = 400
    detail_default = "validation failed"


class Unauthorized(_AppError):
    status_code_default = 401
    detail_default = "Unauthorized"


class Forbidden(_AppError):
    status_code_default = 403
    detail_default = "Forbidden"


class NotFound(_AppError):
    status_code_default = 404
    detail_default = "not found"


class Conflict(_AppError):
    status_code_default = 409
    detail_default = "conflict"


class UpstreamError(_AppError):
    # Store failures: the caller only ever sees the generic message.
    status_code_default = 500
    detail_default = "internal error"


class ServerMisconfigured(_AppError):
    status_code_default = 503
    detail_default = "server misconfigured"
