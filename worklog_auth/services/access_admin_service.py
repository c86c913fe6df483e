from __future__ import annotations

import logging

from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, col, select

from worklog_auth.domain.errors import ConflictError, NotFoundError
from worklog_auth.domain.models import (
    Identity,
    Permission,
    RegisterRequest,
    Role,
    RoleCreate,
    RoleUpdate,
    now_utc,
)
from worklog_auth.domain.permissions import DEFAULT_PERMISSIONS, PENDING_ROLE_ID
from worklog_auth.infra.db import open_session, transaction
from worklog_auth.infra.identity_provider import hash_password
from worklog_auth.services.approval_gate import ApprovalGate
from worklog_auth.services.permission_registry import Grant, PermissionRegistry

logger = logging.getLogger(__name__)

ADMIN_ROLE_NAME = "admin"


class AccessAdminService:
    def __init__(
        self,
        *,
        registry: PermissionRegistry | None = None,
        gate: ApprovalGate | None = None,
    ) -> None:
        self._registry = registry or PermissionRegistry()
        self._gate = gate or ApprovalGate()

    def _session(self) -> Session:
        return open_session()

    def _get_identity(self, session: Session, identity_id: str) -> Identity:
        identity = session.get(Identity, identity_id)
        if identity is None:
            raise NotFoundError("member not found")
        return identity

    def _get_role(self, session: Session, role_id: str) -> Role:
        role = session.get(Role, role_id)
        if role is None:
            raise NotFoundError("role not found")
        return role

    def _ensure_pending_role(self, session: Session) -> None:
        if session.get(Role, PENDING_ROLE_ID) is None:
            session.add(
                Role(
                    id=PENDING_ROLE_ID,
                    name="pending",
                    description="awaiting administrator approval",
                    is_active=False,
                )
            )

    def bootstrap_admin(self, account_id: str, name: str, password: str) -> Identity:
        self._registry.ensure_default_permissions()
        with self._session() as session:
            if session.exec(select(Identity.id)).first() is not None:
                raise ConflictError("already initialized")
            self._ensure_pending_role(session)
            admin_role = Role(name=ADMIN_ROLE_NAME, description="bootstrap administrator role")
            session.add(admin_role)
            session.flush()
            self._registry.write_grants(
                session,
                admin_role.id,
                [Grant(key=key, can_read=True, can_write=True) for key in DEFAULT_PERMISSIONS],
            )
            now = now_utc()
            admin = Identity(
                account_id=account_id,
                name=name,
                password_hash=hash_password(password),
                is_active=True,
                role_id=admin_role.id,
                approved_at=now,
            )
            session.add(admin)
            session.commit()
            session.refresh(admin)
        logger.info("bootstrapped administrator %s", admin.id)
        return admin

    def register(self, payload: RegisterRequest) -> Identity:
        with self._session() as session:
            identity = Identity(
                account_id=payload.account_id,
                name=payload.name,
                password_hash=hash_password(payload.password),
                is_active=True,
                role_id=None,
            )
            session.add(identity)
            try:
                session.commit()
            except IntegrityError as exc:
                session.rollback()
                raise ConflictError("account id already exists") from exc
            session.refresh(identity)
            return identity

    def list_identities(self, *, pending_only: bool = False) -> list[Identity]:
        with self._session() as session:
            identities = list(session.exec(select(Identity).order_by(col(Identity.created_at))).all())
        if pending_only:
            return [item for item in identities if not self._gate.is_active(item) and item.is_active]
        return identities

    def get_identity(self, identity_id: str) -> Identity:
        with self._session() as session:
            return self._get_identity(session, identity_id)

    def approve(self, identity_id: str, role_id: str) -> Identity:
        with self._session() as session:
            identity = self._get_identity(session, identity_id)
            role = self._get_role(session, role_id)
            if role.id in self._gate.pending_role_ids:
                raise ConflictError("cannot approve into a pending role")
            identity.role_id = role.id
            identity.is_active = True
            identity.approved_at = now_utc()
            identity.rejected_at = None
            identity.updated_at = now_utc()
            session.add(identity)
            session.commit()
            session.refresh(identity)
        logger.info("member %s approved with role %s", identity_id, role_id)
        return identity

    def reject(self, identity_id: str) -> Identity:
        with self._session() as session:
            identity = self._get_identity(session, identity_id)
            identity.rejected_at = now_utc()
            identity.approved_at = None
            identity.is_active = False
            identity.updated_at = now_utc()
            session.add(identity)
            session.commit()
            session.refresh(identity)
        logger.info("member %s rejected", identity_id)
        return identity

    def set_active(self, identity_id: str, is_active: bool) -> Identity:
        with self._session() as session:
            identity = self._get_identity(session, identity_id)
            identity.is_active = is_active
            identity.updated_at = now_utc()
            session.add(identity)
            session.commit()
            session.refresh(identity)
        logger.info("member %s %s", identity_id, "activated" if is_active else "deactivated")
        return identity

    def assign_role(self, identity_id: str, role_id: str | None) -> Identity:
        with self._session() as session:
            identity = self._get_identity(session, identity_id)
            if role_id is not None:
                self._get_role(session, role_id)
            identity.role_id = role_id
            identity.updated_at = now_utc()
            session.add(identity)
            session.commit()
            session.refresh(identity)
            return identity

    def list_roles(self) -> list[Role]:
        with self._session() as session:
            return list(session.exec(select(Role).order_by(col(Role.name))).all())

    def get_role(self, role_id: str) -> Role:
        with self._session() as session:
            return self._get_role(session, role_id)

    def create_role(self, payload: RoleCreate) -> Role:
        try:
            with transaction() as session:
                role = Role(name=payload.name, description=payload.description, is_active=payload.is_active)
                session.add(role)
                session.flush()
                if payload.grants:
                    self._registry.write_grants(
                        session,
                        role.id,
                        [Grant(key=item.key, can_read=item.can_read, can_write=item.can_write) for item in payload.grants],
                    )
        except IntegrityError as exc:
            raise ConflictError("role name already exists") from exc
        return role

    def update_role(self, role_id: str, payload: RoleUpdate) -> Role:
        try:
            with transaction() as session:
                role = self._get_role(session, role_id)
                if payload.name is not None:
                    role.name = payload.name
                if payload.description is not None:
                    role.description = payload.description
                if payload.is_active is not None:
                    role.is_active = payload.is_active
                role.updated_at = now_utc()
                session.add(role)
                if payload.grants is not None:
                    self._registry.write_grants(
                        session,
                        role.id,
                        [Grant(key=item.key, can_read=item.can_read, can_write=item.can_write) for item in payload.grants],
                    )
        except IntegrityError as exc:
            raise ConflictError("role name already exists") from exc
        return role

    def delete_role(self, role_id: str) -> None:
        with transaction() as session:
            role = self._get_role(session, role_id)
            in_use = session.exec(select(Identity.id).where(Identity.role_id == role_id)).first()
            if in_use is not None:
                raise ConflictError("role is assigned to members")
            self._registry.write_grants(session, role.id, [])
            session.flush()
            session.delete(role)
        logger.info("role %s deleted", role_id)

    def list_permissions(self) -> list[Permission]:
        return self._registry.list_permissions()
