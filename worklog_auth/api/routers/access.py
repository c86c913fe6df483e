from __future__ import annotations

from typing import Annotated, NoReturn

from fastapi import APIRouter, Depends, Query, Request, Response, status

from worklog_auth.api.deps import require_access
from worklog_auth.api.errors import to_api_error
from worklog_auth.domain.context import AuthContext
from worklog_auth.domain.errors import AuthzError
from worklog_auth.domain.models import (
    BootstrapAdminRequest,
    GrantRead,
    GrantWrite,
    IdentityRead,
    PermissionRead,
    RegisterRequest,
    RoleAssignRequest,
    RoleBindRequest,
    RoleCreate,
    RoleRead,
    RoleUpdate,
)
from worklog_auth.domain.permissions import (
    PERM_MEMBER_READ,
    PERM_MEMBER_WRITE,
    PERM_ROLE_READ,
    PERM_ROLE_WRITE,
    Access,
)
from worklog_auth.infra.audit import set_audit_context
from worklog_auth.services.access_admin_service import AccessAdminService
from worklog_auth.services.permission_registry import Grant, PermissionRegistry

router = APIRouter()


def get_access_admin_service() -> AccessAdminService:
    return AccessAdminService()


def get_permission_registry() -> PermissionRegistry:
    return PermissionRegistry()


Service = Annotated[AccessAdminService, Depends(get_access_admin_service)]
Registry = Annotated[PermissionRegistry, Depends(get_permission_registry)]
RoleReader = Annotated[AuthContext, Depends(require_access(PERM_ROLE_READ))]
RoleWriter = Annotated[AuthContext, Depends(require_access(PERM_ROLE_WRITE, Access.WRITE))]
MemberReader = Annotated[AuthContext, Depends(require_access(PERM_MEMBER_READ))]
MemberWriter = Annotated[AuthContext, Depends(require_access(PERM_MEMBER_WRITE, Access.WRITE))]


def _handle_access_error(exc: AuthzError) -> NoReturn:
    raise to_api_error(exc) from exc


def _grant_reads(grants: list[Grant]) -> list[GrantRead]:
    return [GrantRead(key=item.key, can_read=item.can_read, can_write=item.can_write) for item in grants]


@router.post("/bootstrap-admin", response_model=IdentityRead, status_code=status.HTTP_201_CREATED)
def bootstrap_admin(payload: BootstrapAdminRequest, request: Request, service: Service) -> IdentityRead:
    try:
        admin = service.bootstrap_admin(payload.account_id, payload.name, payload.password)
    except AuthzError as exc:
        _handle_access_error(exc)
    set_audit_context(request, action="access.bootstrap_admin", detail={"what": {"account_id": admin.account_id}})
    return IdentityRead.model_validate(admin)


@router.get("/permissions", response_model=list[PermissionRead])
def list_permissions(_ctx: RoleReader, service: Service) -> list[PermissionRead]:
    return [PermissionRead.model_validate(item) for item in service.list_permissions()]


@router.get("/roles", response_model=list[RoleRead])
def list_roles(_ctx: RoleReader, service: Service) -> list[RoleRead]:
    return [RoleRead.model_validate(item) for item in service.list_roles()]


@router.post("/roles", response_model=RoleRead, status_code=status.HTTP_201_CREATED)
def create_role(payload: RoleCreate, request: Request, _ctx: RoleWriter, service: Service) -> RoleRead:
    try:
        role = service.create_role(payload)
    except AuthzError as exc:
        _handle_access_error(exc)
    set_audit_context(request, action="access.role.create", detail={"what": {"role_id": role.id, "name": role.name}})
    return RoleRead.model_validate(role)


@router.get("/roles/{role_id}", response_model=RoleRead)
def get_role(role_id: str, _ctx: RoleReader, service: Service) -> RoleRead:
    try:
        role = service.get_role(role_id)
    except AuthzError as exc:
        _handle_access_error(exc)
    return RoleRead.model_validate(role)


@router.patch("/roles/{role_id}", response_model=RoleRead)
def update_role(role_id: str, payload: RoleUpdate, request: Request, _ctx: RoleWriter, service: Service) -> RoleRead:
    try:
        role = service.update_role(role_id, payload)
    except AuthzError as exc:
        _handle_access_error(exc)
    set_audit_context(
        request,
        action="access.role.update",
        detail={"what": {"role_id": role_id, "grants_replaced": payload.grants is not None}},
    )
    return RoleRead.model_validate(role)


@router.delete("/roles/{role_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_role(role_id: str, request: Request, _ctx: RoleWriter, service: Service) -> Response:
    try:
        service.delete_role(role_id)
    except AuthzError as exc:
        _handle_access_error(exc)
    set_audit_context(request, action="access.role.delete", detail={"what": {"role_id": role_id}})
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/roles/{role_id}/grants", response_model=list[GrantRead])
def get_role_grants(role_id: str, _ctx: RoleReader, service: Service, registry: Registry) -> list[GrantRead]:
    try:
        service.get_role(role_id)
    except AuthzError as exc:
        _handle_access_error(exc)
    return _grant_reads(registry.grants_for(role_id))


@router.put("/roles/{role_id}/grants", response_model=list[GrantRead])
def replace_role_grants(
    role_id: str,
    payload: list[GrantWrite],
    request: Request,
    _ctx: RoleWriter,
    registry: Registry,
) -> list[GrantRead]:
    try:
        grants = registry.replace_grants(
            role_id,
            [Grant(key=item.key, can_read=item.can_read, can_write=item.can_write) for item in payload],
        )
    except AuthzError as exc:
        _handle_access_error(exc)
    set_audit_context(
        request,
        action="access.role.grants.replace",
        detail={"what": {"role_id": role_id, "keys": [item.key for item in grants]}},
    )
    return _grant_reads(grants)


@router.get("/members", response_model=list[IdentityRead])
def list_members(
    _ctx: MemberReader,
    service: Service,
    pending: Annotated[bool, Query()] = False,
) -> list[IdentityRead]:
    return [IdentityRead.model_validate(item) for item in service.list_identities(pending_only=pending)]


@router.post("/members", response_model=IdentityRead, status_code=status.HTTP_201_CREATED)
def create_member(payload: RegisterRequest, _ctx: MemberWriter, service: Service) -> IdentityRead:
    try:
        identity = service.register(payload)
    except AuthzError as exc:
        _handle_access_error(exc)
    return IdentityRead.model_validate(identity)


@router.get("/members/{member_id}", response_model=IdentityRead)
def get_member(member_id: str, _ctx: MemberReader, service: Service) -> IdentityRead:
    try:
        identity = service.get_identity(member_id)
    except AuthzError as exc:
        _handle_access_error(exc)
    return IdentityRead.model_validate(identity)


@router.post("/members/{member_id}/approve", response_model=IdentityRead)
def approve_member(
    member_id: str,
    payload: RoleAssignRequest,
    request: Request,
    _ctx: MemberWriter,
    service: Service,
) -> IdentityRead:
    try:
        identity = service.approve(member_id, payload.role_id)
    except AuthzError as exc:
        _handle_access_error(exc)
    set_audit_context(
        request,
        action="access.member.approve",
        detail={"what": {"member_id": member_id, "role_id": payload.role_id}},
    )
    return IdentityRead.model_validate(identity)


@router.post("/members/{member_id}/reject", response_model=IdentityRead)
def reject_member(member_id: str, request: Request, _ctx: MemberWriter, service: Service) -> IdentityRead:
    try:
        identity = service.reject(member_id)
    except AuthzError as exc:
        _handle_access_error(exc)
    set_audit_context(request, action="access.member.reject", detail={"what": {"member_id": member_id}})
    return IdentityRead.model_validate(identity)


@router.post("/members/{member_id}/activate", response_model=IdentityRead)
def activate_member(member_id: str, request: Request, _ctx: MemberWriter, service: Service) -> IdentityRead:
    try:
        identity = service.set_active(member_id, True)
    except AuthzError as exc:
        _handle_access_error(exc)
    set_audit_context(request, action="access.member.activate", detail={"what": {"member_id": member_id}})
    return IdentityRead.model_validate(identity)


@router.post("/members/{member_id}/deactivate", response_model=IdentityRead)
def deactivate_member(member_id: str, request: Request, _ctx: MemberWriter, service: Service) -> IdentityRead:
    try:
        identity = service.set_active(member_id, False)
    except AuthzError as exc:
        _handle_access_error(exc)
    set_audit_context(request, action="access.member.deactivate", detail={"what": {"member_id": member_id}})
    return IdentityRead.model_validate(identity)


@router.put("/members/{member_id}/role", response_model=IdentityRead)
def bind_member_role(
    member_id: str,
    payload: RoleBindRequest,
    request: Request,
    _ctx: MemberWriter,
    service: Service,
) -> IdentityRead:
    try:
        identity = service.assign_role(member_id, payload.role_id)
    except AuthzError as exc:
        _handle_access_error(exc)
    set_audit_context(
        request,
        action="access.member.role",
        detail={"what": {"member_id": member_id, "role_id": payload.role_id}},
    )
    return IdentityRead.model_validate(identity)
