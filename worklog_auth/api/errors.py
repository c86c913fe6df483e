from __future__ import annotations

from http import HTTPStatus

from fastapi import Request, status
from fastapi.responses import JSONResponse

from worklog_auth.domain.errors import (
    AuthzError,
    ConflictError,
    ForbiddenError,
    InvalidTargetError,
    NotFoundError,
    PendingApprovalError,
    UnauthenticatedError,
)
from worklog_auth.domain.models import ErrorResponse


class ApiError(Exception):
    def __init__(self, status_code: int, code: str, message: str) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.code = code
        self.message = message


def to_api_error(exc: AuthzError, *, overrides: dict[type[AuthzError], int] | None = None) -> ApiError:
    if isinstance(exc, UnauthenticatedError):
        status_code, code = status.HTTP_401_UNAUTHORIZED, exc.code
    elif isinstance(exc, ForbiddenError):
        # audit failures surface as a plain forbidden
        status_code, code = status.HTTP_403_FORBIDDEN, ForbiddenError.code
    elif isinstance(exc, PendingApprovalError):
        status_code, code = status.HTTP_403_FORBIDDEN, exc.code
    elif isinstance(exc, NotFoundError):
        status_code, code = status.HTTP_404_NOT_FOUND, exc.code
    elif isinstance(exc, ConflictError):
        status_code, code = status.HTTP_409_CONFLICT, exc.code
    elif isinstance(exc, InvalidTargetError):
        status_code, code = status.HTTP_400_BAD_REQUEST, exc.code
    else:
        status_code, code = status.HTTP_400_BAD_REQUEST, exc.code
    for error_type, override in (overrides or {}).items():
        if isinstance(exc, error_type):
            status_code = override
            break
    return ApiError(status_code, code, str(exc))


async def api_error_handler(_request: Request, exc: Exception) -> JSONResponse:
    if not isinstance(exc, ApiError):
        raise exc
    body = ErrorResponse(
        status_code=exc.status_code,
        code=exc.code,
        error=HTTPStatus(exc.status_code).phrase,
        message=exc.message,
    )
    headers = {"WWW-Authenticate": "Bearer"} if exc.status_code == status.HTTP_401_UNAUTHORIZED else None
    return JSONResponse(status_code=exc.status_code, content=body.model_dump(by_alias=True), headers=headers)
