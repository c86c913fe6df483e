from __future__ import annotations

import logging
from dataclasses import dataclass

from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session

from worklog_auth.domain.context import AuthContext
from worklog_auth.domain.errors import ForbiddenError, PendingApprovalError
from worklog_auth.domain.models import Identity, Role
from worklog_auth.domain.permissions import Access
from worklog_auth.domain.state_machine import ApprovalState
from worklog_auth.infra.db import open_session
from worklog_auth.services.approval_gate import ApprovalGate
from worklog_auth.services.permission_registry import Grant, PermissionRegistry

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Decision:
    allowed: bool
    key: str
    access: str
    approval_state: ApprovalState | None = None


class AuthorizationEngine:
    """Answers "can subject S perform access A on key K" with fail-closed semantics."""

    def __init__(
        self,
        *,
        registry: PermissionRegistry | None = None,
        gate: ApprovalGate | None = None,
    ) -> None:
        self._registry = registry or PermissionRegistry()
        self._gate = gate or ApprovalGate()

    @property
    def gate(self) -> ApprovalGate:
        return self._gate

    def _session(self) -> Session:
        return open_session()

    def _active_role_id(self, session: Session, identity: Identity) -> str | None:
        if identity.role_id is None:
            return None
        role = session.get(Role, identity.role_id)
        if role is None or not role.is_active:
            return None
        return role.id

    def approval_state(self, subject_id: str) -> ApprovalState | None:
        with self._session() as session:
            identity = session.get(Identity, subject_id)
            if identity is None:
                return None
            return self._gate.classify(identity)

    def decide(self, subject_id: str | None, key: str, access: Access | str) -> Decision:
        try:
            access = Access(access)
        except ValueError:
            return Decision(allowed=False, key=key, access=str(access))
        if not subject_id or not key:
            return Decision(allowed=False, key=key, access=access)

        try:
            with self._session() as session:
                identity = session.get(Identity, subject_id)
                if identity is None:
                    return Decision(allowed=False, key=key, access=access)
                state = self._gate.classify(identity)
                if state != ApprovalState.ACTIVE:
                    return Decision(allowed=False, key=key, access=access, approval_state=state)
                role_id = self._active_role_id(session, identity)
            if role_id is None:
                return Decision(allowed=False, key=key, access=access, approval_state=state)
            allowed = self._registry.is_granted(role_id, key, access)
        except SQLAlchemyError:
            logger.exception("permission lookup failed for subject=%s key=%s; denying", subject_id, key)
            return Decision(allowed=False, key=key, access=access)
        return Decision(allowed=allowed, key=key, access=access, approval_state=state)

    def can_access(self, subject_id: str | None, key: str, access: Access | str) -> bool:
        return self.decide(subject_id, key, access).allowed

    def can_access_context(self, ctx: AuthContext, key: str, access: Access | str) -> bool:
        return self.can_access(ctx.subject_id, key, access)

    def require(self, ctx: AuthContext, key: str, access: Access | str) -> None:
        decision = self.decide(ctx.subject_id, key, access)
        if decision.allowed:
            return
        if decision.approval_state is not None and decision.approval_state != ApprovalState.ACTIVE:
            raise PendingApprovalError(decision.approval_state)
        raise ForbiddenError(f"missing permission: {key}", key=key)

    def permissions_for(self, subject_id: str) -> list[Grant]:
        try:
            with self._session() as session:
                identity = session.get(Identity, subject_id)
                if identity is None or not self._gate.is_active(identity):
                    return []
                role_id = self._active_role_id(session, identity)
            if role_id is None:
                return []
            return self._registry.grants_for(role_id)
        except SQLAlchemyError:
            logger.exception("permission listing failed for subject=%s; returning none", subject_id)
            return []
