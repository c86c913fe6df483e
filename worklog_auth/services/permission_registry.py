from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass

from sqlmodel import Session, col, select

from worklog_auth.domain.errors import NotFoundError
from worklog_auth.domain.models import Permission, Role, RolePermission, now_utc
from worklog_auth.domain.permissions import DEFAULT_PERMISSIONS, Access, grant_allows, normalize_grant
from worklog_auth.infra.db import open_session, transaction

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Grant:
    key: str
    can_read: bool
    can_write: bool

    def normalized(self) -> Grant:
        can_read, can_write = normalize_grant(self.can_read, self.can_write)
        return Grant(key=self.key, can_read=can_read, can_write=can_write)


class PermissionRegistry:
    """Role x permission-key matrix with independent read and write grants.

    Every query goes to the database; nothing is cached across calls, so an
    edit is visible to the very next decision. Each mutation is one
    transaction, so a concurrent reader sees a key's old or new grant and
    never half of a multi-key update.
    """

    def _session(self) -> Session:
        return open_session()

    def _get_role(self, session: Session, role_id: str) -> Role:
        role = session.get(Role, role_id)
        if role is None:
            raise NotFoundError("role not found")
        return role

    def _get_permission(self, session: Session, key: str) -> Permission:
        permission = session.exec(select(Permission).where(Permission.key == key)).first()
        if permission is None:
            raise NotFoundError(f"unknown permission key: {key}")
        return permission

    def ensure_default_permissions(self) -> list[Permission]:
        with self._session() as session:
            existing = {item.key for item in session.exec(select(Permission)).all()}
            created = 0
            for key, label in DEFAULT_PERMISSIONS.items():
                if key in existing:
                    continue
                session.add(Permission(key=key, label=label))
                created += 1
            if created:
                session.commit()
                logger.info("seeded %d default permission keys", created)
            return list(session.exec(select(Permission).order_by(col(Permission.key))).all())

    def list_permissions(self) -> list[Permission]:
        with self._session() as session:
            return list(session.exec(select(Permission).order_by(col(Permission.key))).all())

    def grants_for(self, role_id: str) -> list[Grant]:
        with self._session() as session:
            rows = session.exec(
                select(Permission.key, RolePermission.can_read, RolePermission.can_write)
                .join(Permission, col(Permission.id) == col(RolePermission.permission_id))
                .where(RolePermission.role_id == role_id)
                .order_by(col(Permission.key))
            ).all()
        return [Grant(key=key, can_read=can_read, can_write=can_write).normalized() for key, can_read, can_write in rows]

    def is_granted(self, role_id: str, key: str, access: Access | str) -> bool:
        access = Access(access)
        with self._session() as session:
            row = session.exec(
                select(RolePermission.can_read, RolePermission.can_write)
                .join(Permission, col(Permission.id) == col(RolePermission.permission_id))
                .where(RolePermission.role_id == role_id)
                .where(Permission.key == key)
            ).first()
        if row is None:
            return False
        can_read, can_write = row
        return grant_allows(can_read, can_write, access)

    def set_grant(self, role_id: str, key: str, *, can_read: bool, can_write: bool) -> Grant:
        can_read, can_write = normalize_grant(can_read, can_write)
        with transaction() as session:
            self._get_role(session, role_id)
            permission = self._get_permission(session, key)
            link = session.get(RolePermission, (role_id, permission.id))
            if link is None:
                link = RolePermission(role_id=role_id, permission_id=permission.id)
            link.can_read = can_read
            link.can_write = can_write
            link.updated_at = now_utc()
            session.add(link)
        return Grant(key=key, can_read=can_read, can_write=can_write)

    def revoke_grant(self, role_id: str, key: str) -> None:
        with transaction() as session:
            permission = session.exec(select(Permission).where(Permission.key == key)).first()
            if permission is None:
                return
            link = session.get(RolePermission, (role_id, permission.id))
            if link is not None:
                session.delete(link)

    def replace_grants(self, role_id: str, grants: Iterable[Grant]) -> list[Grant]:
        normalized = {grant.key: grant.normalized() for grant in grants}
        with transaction() as session:
            self.write_grants(session, role_id, normalized.values())
        return sorted(normalized.values(), key=lambda item: item.key)

    def write_grants(self, session: Session, role_id: str, grants: Iterable[Grant]) -> None:
        """Swap a role's grant set inside the caller's transaction."""
        self._get_role(session, role_id)
        resolved = [(self._get_permission(session, grant.key), grant.normalized()) for grant in grants]
        existing = session.exec(select(RolePermission).where(RolePermission.role_id == role_id)).all()
        for link in existing:
            session.delete(link)
        session.flush()
        for permission, grant in resolved:
            if not (grant.can_read or grant.can_write):
                continue
            session.add(
                RolePermission(
                    role_id=role_id,
                    permission_id=permission.id,
                    can_read=grant.can_read,
                    can_write=grant.can_write,
                )
            )
