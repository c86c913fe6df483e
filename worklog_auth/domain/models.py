from __future__ import annotations

from datetime import UTC, datetime
from typing import Any
from uuid import uuid4

from pydantic import BaseModel, ConfigDict
from pydantic import Field as PydanticField
from pydantic.alias_generators import to_camel
from sqlalchemy import JSON, Column, Index
from sqlmodel import Field, SQLModel

from worklog_auth.domain.permissions import Access
from worklog_auth.domain.state_machine import ActivityEvent, ApprovalState, SessionState


def now_utc() -> datetime:
    return datetime.now(UTC)


def as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


class AuditLog(SQLModel, table=True):
    __tablename__ = "audit_logs"

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    actor_id: str | None = Field(default=None, index=True)
    action: str = Field(index=True)
    resource: str
    method: str
    status_code: int
    ts: datetime = Field(default_factory=now_utc, index=True)
    detail: dict[str, Any] = Field(
        default_factory=dict,
        sa_column=Column(JSON, nullable=False),
    )


class Role(SQLModel, table=True):
    __tablename__ = "roles"

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    name: str = Field(index=True, unique=True)
    description: str | None = None
    is_active: bool = Field(default=True)
    created_at: datetime = Field(default_factory=now_utc, index=True)
    updated_at: datetime = Field(default_factory=now_utc)


class Permission(SQLModel, table=True):
    __tablename__ = "permissions"

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    key: str = Field(index=True, unique=True)
    label: str
    created_at: datetime = Field(default_factory=now_utc, index=True)


class RolePermission(SQLModel, table=True):
    __tablename__ = "role_permissions"

    role_id: str = Field(foreign_key="roles.id", primary_key=True)
    permission_id: str = Field(foreign_key="permissions.id", primary_key=True)
    can_read: bool = Field(default=False)
    can_write: bool = Field(default=False)
    updated_at: datetime = Field(default_factory=now_utc)


class Identity(SQLModel, table=True):
    __tablename__ = "identities"
    __table_args__ = (Index("ix_identities_role_active", "role_id", "is_active"),)

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    account_id: str = Field(index=True, unique=True)
    name: str
    password_hash: str
    is_active: bool = Field(default=True)
    role_id: str | None = Field(default=None, foreign_key="roles.id", index=True)
    approved_at: datetime | None = None
    rejected_at: datetime | None = None
    created_at: datetime = Field(default_factory=now_utc, index=True)
    updated_at: datetime = Field(default_factory=now_utc)


class AuthSession(SQLModel, table=True):
    __tablename__ = "auth_sessions"

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    subject_id: str = Field(foreign_key="identities.id", index=True)
    state: SessionState = Field(default=SessionState.ACTIVE, index=True)
    refresh_jti: str | None = Field(default=None, index=True)
    issued_at: datetime = Field(default_factory=now_utc)
    last_activity: datetime = Field(default_factory=now_utc)
    ended_at: datetime | None = None
    version: int = Field(default=0)


class Impersonation(SQLModel, table=True):
    __tablename__ = "impersonations"

    session_id: str = Field(foreign_key="auth_sessions.id", primary_key=True)
    original_subject_id: str = Field(foreign_key="identities.id", index=True)
    acting_subject_id: str = Field(foreign_key="identities.id", index=True)
    issued_at: datetime = Field(default_factory=now_utc)
    expires_at: datetime


class ApiModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ORMReadModel(ApiModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)


class ErrorResponse(ApiModel):
    status_code: int
    code: str
    error: str
    message: str


class LoginRequest(ApiModel):
    account_id: str = PydanticField(max_length=255)
    password: str = PydanticField(max_length=255)


class RegisterRequest(ApiModel):
    account_id: str = PydanticField(max_length=255)
    name: str = PydanticField(max_length=255)
    password: str = PydanticField(max_length=255)


class TokenResponse(ApiModel):
    message: str
    token: str
    token_type: str = "bearer"
    logged: bool = True


class LogoutResponse(ApiModel):
    message: str
    logged: bool = False


class VerifyResponse(ApiModel):
    status_code: int
    message: str
    approval_state: ApprovalState


class TouchRequest(ApiModel):
    event: ActivityEvent


class TouchResponse(ApiModel):
    message: str
    last_activity: datetime


class BypassRequest(ApiModel):
    account_id: str = PydanticField(max_length=255)


class BypassInfo(ApiModel):
    original_user: str
    expires_in: int
    issued_at: datetime


class BypassResponse(ApiModel):
    message: str
    token: str
    token_type: str = "bearer"
    logged: bool = True
    bypass_info: BypassInfo


class BypassOriginalUser(ApiModel):
    member_id: str
    account_id: str
    timestamp: datetime


class BypassCurrentUser(ApiModel):
    member_id: str


class BypassVerifyResponse(ApiModel):
    is_bypass: bool
    original_user: BypassOriginalUser | None = None
    current_user: BypassCurrentUser | None = None


class GrantWrite(ApiModel):
    key: str
    can_read: bool = False
    can_write: bool = False


class GrantRead(ApiModel):
    key: str
    can_read: bool
    can_write: bool


class PermissionRead(ORMReadModel):
    id: str
    key: str
    label: str


class RoleCreate(ApiModel):
    name: str
    description: str | None = None
    is_active: bool = True
    grants: list[GrantWrite] | None = None


class RoleUpdate(ApiModel):
    name: str | None = None
    description: str | None = None
    is_active: bool | None = None
    grants: list[GrantWrite] | None = None


class RoleRead(ORMReadModel):
    id: str
    name: str
    description: str | None = None
    is_active: bool
    created_at: datetime
    updated_at: datetime


class IdentityRead(ORMReadModel):
    id: str
    account_id: str
    name: str
    is_active: bool
    role_id: str | None = None
    approved_at: datetime | None = None
    rejected_at: datetime | None = None
    created_at: datetime


class RoleAssignRequest(ApiModel):
    role_id: str


class MenuNodeRead(ApiModel):
    name: str
    href: str
    key: str
    access: Access
    children: list[MenuNodeRead] | None = None


class BootstrapAdminRequest(ApiModel):
    account_id: str = PydanticField(max_length=255)
    name: str = PydanticField(max_length=255)
    password: str = PydanticField(min_length=8, max_length=255)


class RoleBindRequest(ApiModel):
    role_id: str | None = None
