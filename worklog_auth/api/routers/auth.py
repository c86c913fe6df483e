from __future__ import annotations

import os
from typing import Annotated, NoReturn

from fastapi import APIRouter, Cookie, Depends, Request, Response, status

from worklog_auth.api.deps import get_auth_context, get_authorization_engine, get_session_manager
from worklog_auth.api.errors import ApiError, to_api_error
from worklog_auth.domain.context import AuthContext
from worklog_auth.domain.errors import (
    AuthzError,
    ConflictError,
    InvalidTargetError,
    NotFoundError,
    UnauthenticatedError,
)
from worklog_auth.domain.menu import DEFAULT_MENU, menu_to_dict
from worklog_auth.domain.models import (
    BypassCurrentUser,
    BypassInfo,
    BypassOriginalUser,
    BypassRequest,
    BypassResponse,
    BypassVerifyResponse,
    GrantRead,
    IdentityRead,
    LoginRequest,
    LogoutResponse,
    MenuNodeRead,
    RegisterRequest,
    TokenResponse,
    TouchRequest,
    TouchResponse,
    VerifyResponse,
)
from worklog_auth.infra.audit import set_audit_context
from worklog_auth.infra.auth import JWT_REFRESH_EXPIRES_MIN
from worklog_auth.services.access_admin_service import AccessAdminService
from worklog_auth.services.authorization_engine import AuthorizationEngine
from worklog_auth.services.impersonation_controller import ImpersonationController
from worklog_auth.services.menu_filter import MenuFilter
from worklog_auth.services.session_manager import SessionManager

router = APIRouter()

REFRESH_COOKIE_NAME = "refresh_token"
REFRESH_COOKIE_PATH = "/auth"
REFRESH_COOKIE_SECURE = os.getenv("REFRESH_COOKIE_SECURE", "false").lower() == "true"


def get_impersonation_controller() -> ImpersonationController:
    return ImpersonationController()


def get_access_admin_service() -> AccessAdminService:
    return AccessAdminService()


Context = Annotated[AuthContext, Depends(get_auth_context)]
Sessions = Annotated[SessionManager, Depends(get_session_manager)]
Engine = Annotated[AuthorizationEngine, Depends(get_authorization_engine)]
Controller = Annotated[ImpersonationController, Depends(get_impersonation_controller)]
Admin = Annotated[AccessAdminService, Depends(get_access_admin_service)]
RefreshCookie = Annotated[str | None, Cookie(alias=REFRESH_COOKIE_NAME)]

# login, refresh, logout and bypass answer 400 for anything but a denied privilege
BAD_REQUEST_OVERRIDES: dict[type[AuthzError], int] = {
    UnauthenticatedError: status.HTTP_400_BAD_REQUEST,
    ConflictError: status.HTTP_400_BAD_REQUEST,
    InvalidTargetError: status.HTTP_400_BAD_REQUEST,
    NotFoundError: status.HTTP_400_BAD_REQUEST,
}


def _handle_auth_error(exc: AuthzError, *, overrides: dict[type[AuthzError], int] | None = None) -> NoReturn:
    raise to_api_error(exc, overrides=overrides) from exc


def _set_refresh_cookie(response: Response, refresh_token: str) -> None:
    response.set_cookie(
        key=REFRESH_COOKIE_NAME,
        value=refresh_token,
        max_age=JWT_REFRESH_EXPIRES_MIN * 60,
        path=REFRESH_COOKIE_PATH,
        httponly=True,
        secure=REFRESH_COOKIE_SECURE,
        samesite="lax",
    )


def _require_refresh_cookie(refresh_token: str | None) -> str:
    if not refresh_token:
        raise ApiError(status.HTTP_400_BAD_REQUEST, UnauthenticatedError.code, "refresh token missing")
    return refresh_token


@router.post("/login", response_model=TokenResponse)
def login(payload: LoginRequest, response: Response, sessions: Sessions) -> TokenResponse:
    try:
        issued = sessions.issue(payload.account_id, payload.password)
    except AuthzError as exc:
        _handle_auth_error(exc, overrides=BAD_REQUEST_OVERRIDES)
    _set_refresh_cookie(response, issued.refresh_token)
    return TokenResponse(message="login succeeded", token=issued.access_token)


@router.post("/register", response_model=IdentityRead, status_code=status.HTTP_201_CREATED)
def register(payload: RegisterRequest, admin: Admin) -> IdentityRead:
    try:
        identity = admin.register(payload)
    except AuthzError as exc:
        _handle_auth_error(exc)
    return IdentityRead.model_validate(identity)


@router.post("/refresh", response_model=TokenResponse)
def refresh(sessions: Sessions, refresh_token: RefreshCookie = None) -> TokenResponse:
    token = _require_refresh_cookie(refresh_token)
    try:
        access_token = sessions.refresh(token)
    except AuthzError as exc:
        _handle_auth_error(exc, overrides=BAD_REQUEST_OVERRIDES)
    return TokenResponse(message="token reissued", token=access_token)


@router.post("/logout", response_model=LogoutResponse)
def logout(response: Response, sessions: Sessions, refresh_token: RefreshCookie = None) -> LogoutResponse:
    token = _require_refresh_cookie(refresh_token)
    try:
        sessions.revoke(token)
    except AuthzError as exc:
        _handle_auth_error(exc, overrides=BAD_REQUEST_OVERRIDES)
    response.delete_cookie(REFRESH_COOKIE_NAME, path=REFRESH_COOKIE_PATH)
    return LogoutResponse(message="logged out")


@router.get("/verify", response_model=VerifyResponse)
def verify(ctx: Context, engine: Engine) -> VerifyResponse:
    approval_state = engine.approval_state(ctx.subject_id)
    if approval_state is None:
        raise ApiError(status.HTTP_401_UNAUTHORIZED, UnauthenticatedError.code, "account not found")
    return VerifyResponse(status_code=status.HTTP_200_OK, message="authenticated", approval_state=approval_state)


@router.post("/touch", response_model=TouchResponse)
def touch(payload: TouchRequest, ctx: Context, sessions: Sessions) -> TouchResponse:
    try:
        sessions.touch(ctx.session_id, payload.event)
        auth_session = sessions.get_session(ctx.session_id)
    except AuthzError as exc:
        _handle_auth_error(exc)
    return TouchResponse(message="activity recorded", last_activity=auth_session.last_activity)


@router.post("/bypass", response_model=BypassResponse)
def begin_bypass(payload: BypassRequest, request: Request, ctx: Context, controller: Controller) -> BypassResponse:
    try:
        grant = controller.begin_bypass(ctx, payload.account_id)
    except AuthzError as exc:
        _handle_auth_error(exc, overrides=BAD_REQUEST_OVERRIDES)
    set_audit_context(
        request,
        action="auth.bypass.request",
        detail={"what": {"target_account_id": payload.account_id}},
    )
    return BypassResponse(
        message="bypass login succeeded",
        token=grant.token,
        bypass_info=BypassInfo(
            original_user=grant.original_account_id,
            expires_in=grant.expires_in,
            issued_at=grant.issued_at,
        ),
    )


@router.delete("/bypass", response_model=TokenResponse)
def end_bypass(ctx: Context, controller: Controller) -> TokenResponse:
    try:
        token = controller.end_bypass(ctx)
    except AuthzError as exc:
        _handle_auth_error(exc, overrides=BAD_REQUEST_OVERRIDES)
    return TokenResponse(message="bypass ended", token=token)


@router.get("/bypass/verify", response_model=BypassVerifyResponse, response_model_exclude_none=True)
def verify_bypass(ctx: Context, controller: Controller) -> BypassVerifyResponse:
    bypass = controller.verify_bypass(ctx)
    if not bypass.is_bypass or bypass.original_user is None or bypass.current_user is None:
        return BypassVerifyResponse(is_bypass=False)
    return BypassVerifyResponse(
        is_bypass=True,
        original_user=BypassOriginalUser(
            member_id=bypass.original_user.member_id,
            account_id=bypass.original_user.account_id,
            timestamp=bypass.original_user.timestamp,
        ),
        current_user=BypassCurrentUser(member_id=bypass.current_user),
    )


@router.get("/permissions", response_model=list[GrantRead])
def my_permissions(ctx: Context, engine: Engine) -> list[GrantRead]:
    grants = engine.permissions_for(ctx.subject_id)
    return [GrantRead(key=item.key, can_read=item.can_read, can_write=item.can_write) for item in grants]


@router.get("/menu", response_model=list[MenuNodeRead])
def my_menu(ctx: Context, engine: Engine) -> list[MenuNodeRead]:
    tree = MenuFilter(engine).filter(DEFAULT_MENU, ctx.subject_id)
    return [MenuNodeRead.model_validate(menu_to_dict(node)) for node in tree]
