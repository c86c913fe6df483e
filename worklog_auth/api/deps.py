from __future__ import annotations

from collections.abc import Callable
from typing import Annotated

from fastapi import Depends, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from worklog_auth.api.errors import ApiError, to_api_error
from worklog_auth.domain.context import AuthContext
from worklog_auth.domain.errors import ForbiddenError, PendingApprovalError, UnauthenticatedError
from worklog_auth.domain.permissions import Access
from worklog_auth.services.authorization_engine import AuthorizationEngine
from worklog_auth.services.session_manager import SessionManager

bearer_scheme = HTTPBearer(auto_error=False)


def get_session_manager() -> SessionManager:
    return SessionManager()


def get_authorization_engine() -> AuthorizationEngine:
    return AuthorizationEngine()


def get_auth_context(
    request: Request,
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(bearer_scheme)],
    sessions: Annotated[SessionManager, Depends(get_session_manager)],
) -> AuthContext:
    if credentials is None:
        raise ApiError(status.HTTP_401_UNAUTHORIZED, UnauthenticatedError.code, "bearer token required")
    try:
        ctx = sessions.verify(credentials.credentials)
    except UnauthenticatedError as exc:
        raise to_api_error(exc) from exc
    request.state.auth_context = ctx
    return ctx


def require_access(key: str, access: Access = Access.READ) -> Callable[..., AuthContext]:
    def _checker(
        ctx: Annotated[AuthContext, Depends(get_auth_context)],
        engine: Annotated[AuthorizationEngine, Depends(get_authorization_engine)],
    ) -> AuthContext:
        try:
            engine.require(ctx, key, access)
        except (ForbiddenError, PendingApprovalError) as exc:
            raise to_api_error(exc) from exc
        return ctx

    return _checker
