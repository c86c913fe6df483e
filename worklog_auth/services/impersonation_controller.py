from __future__ import annotations

import logging
import os
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta

import sqlalchemy as sa
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, col, select

from worklog_auth.domain.context import AuthContext
from worklog_auth.domain.errors import (
    AuditFailureError,
    ConflictError,
    ForbiddenError,
    InvalidTargetError,
    UnauthenticatedError,
)
from worklog_auth.domain.models import AuthSession, Identity, Impersonation, as_utc
from worklog_auth.domain.permissions import MEMBER_MANAGEMENT_KEY, ROLE_MANAGEMENT_KEY, Access
from worklog_auth.domain.state_machine import BypassState, SessionState, can_bypass_transition
from worklog_auth.infra import audit
from worklog_auth.infra.auth import create_access_token
from worklog_auth.infra.clock import Clock, system_clock
from worklog_auth.infra.db import open_session, transaction
from worklog_auth.services.authorization_engine import AuthorizationEngine

logger = logging.getLogger(__name__)

BYPASS_TTL_MIN = int(os.getenv("BYPASS_TTL_MIN", "60"))
BYPASS_PRIVILEGES: tuple[tuple[str, Access], ...] = (
    (MEMBER_MANAGEMENT_KEY, Access.WRITE),
    (ROLE_MANAGEMENT_KEY, Access.WRITE),
)

BypassAuditWriter = Callable[..., object]


@dataclass(frozen=True)
class BypassGrant:
    token: str
    session_id: str
    original_subject_id: str
    original_account_id: str
    acting_subject_id: str
    issued_at: datetime
    expires_at: datetime

    @property
    def expires_in(self) -> int:
        return int((self.expires_at - self.issued_at).total_seconds())


@dataclass(frozen=True)
class BypassParty:
    member_id: str
    account_id: str
    timestamp: datetime


@dataclass(frozen=True)
class BypassStatus:
    is_bypass: bool
    original_user: BypassParty | None = None
    current_user: str | None = None


class ImpersonationController:
    """Audited, time-boxed substitution of the acting identity within a session.

    Normal -> Impersonating happens only through ``begin_bypass``; the way back
    is ``end_bypass`` or expiry. Both transitions bump ``auth_sessions.version``
    with a compare-and-set, and ``impersonations.session_id`` is a primary key,
    so two racing begins on one session cannot both win.
    """

    def __init__(
        self,
        *,
        engine: AuthorizationEngine | None = None,
        clock: Clock | None = None,
        ttl: timedelta | None = None,
        audit_writer: BypassAuditWriter | None = None,
    ) -> None:
        self._engine = engine or AuthorizationEngine()
        self._clock = clock or system_clock
        self._ttl = ttl or timedelta(minutes=BYPASS_TTL_MIN)
        self._audit_writer = audit_writer or audit.record_bypass_event

    @property
    def ttl(self) -> timedelta:
        return self._ttl

    def _is_live(self, impersonation: Impersonation | None, now: datetime) -> bool:
        return impersonation is not None and as_utc(impersonation.expires_at) > now

    def _load_active_session(self, session: Session, ctx: AuthContext) -> AuthSession:
        auth_session = session.get(AuthSession, ctx.session_id)
        if auth_session is None or auth_session.state != SessionState.ACTIVE:
            raise UnauthenticatedError("session is not active")
        if auth_session.subject_id != ctx.original_subject_id:
            raise UnauthenticatedError("session does not belong to caller")
        return auth_session

    def _bump_version(self, session: Session, auth_session: AuthSession) -> None:
        result = session.execute(
            sa.update(AuthSession)
            .where(col(AuthSession.id) == auth_session.id)
            .where(col(AuthSession.version) == auth_session.version)
            .where(col(AuthSession.state) == SessionState.ACTIVE)
            .values(version=auth_session.version + 1)
        )
        if int(getattr(result, "rowcount", 0) or 0) != 1:
            raise ConflictError("session changed concurrently")

    def _is_privileged(self, subject_id: str) -> bool:
        return any(self._engine.can_access(subject_id, key, access) for key, access in BYPASS_PRIVILEGES)

    def begin_bypass(self, ctx: AuthContext, target_account_id: str) -> BypassGrant:
        if ctx.is_bypass:
            raise ConflictError("bypass already active")
        initiator_id = ctx.original_subject_id
        if not self._is_privileged(initiator_id):
            raise ForbiddenError(
                f"missing permission: {MEMBER_MANAGEMENT_KEY} or {ROLE_MANAGEMENT_KEY}",
                key=MEMBER_MANAGEMENT_KEY,
            )

        now = self._clock.now()
        expires_at = now + self._ttl
        try:
            with transaction() as session:
                auth_session = self._load_active_session(session, ctx)
                existing = session.get(Impersonation, auth_session.id)
                state = BypassState.IMPERSONATING if self._is_live(existing, now) else BypassState.NORMAL
                if not can_bypass_transition(state, BypassState.IMPERSONATING):
                    raise ConflictError("bypass already active")
                if existing is not None:
                    session.delete(existing)
                    session.flush()

                target = session.exec(select(Identity).where(Identity.account_id == target_account_id)).first()
                if target is None:
                    raise InvalidTargetError("target account not found")
                if target.id == initiator_id:
                    raise InvalidTargetError("cannot bypass into own account")
                initiator = session.get(Identity, initiator_id)
                if initiator is None:
                    raise UnauthenticatedError("initiator not found")

                try:
                    self._audit_writer(
                        session,
                        action=audit.ACTION_BYPASS_BEGIN,
                        initiator_id=initiator_id,
                        target_id=target.id,
                        session_id=auth_session.id,
                        at=now,
                        detail={"what": {"target_account_id": target.account_id, "expires_at": expires_at.isoformat()}},
                    )
                except Exception as exc:
                    raise AuditFailureError("bypass could not be audited") from exc

                self._bump_version(session, auth_session)
                session.add(
                    Impersonation(
                        session_id=auth_session.id,
                        original_subject_id=initiator_id,
                        acting_subject_id=target.id,
                        issued_at=now,
                        expires_at=expires_at,
                    )
                )
                session.flush()
                original_account_id = initiator.account_id
                target_id = target.id
        except IntegrityError as exc:
            raise ConflictError("bypass already active") from exc

        token = create_access_token(
            subject_id=initiator_id,
            session_id=ctx.session_id,
            expires_minutes=max(int(self._ttl.total_seconds() // 60), 1),
            extra={"bypass": True},
        )
        logger.warning("bypass started: initiator=%s target=%s session=%s", initiator_id, target_id, ctx.session_id)
        return BypassGrant(
            token=token,
            session_id=ctx.session_id,
            original_subject_id=initiator_id,
            original_account_id=original_account_id,
            acting_subject_id=target_id,
            issued_at=now,
            expires_at=expires_at,
        )

    def end_bypass(self, ctx: AuthContext) -> str:
        """Drop the impersonation and hand back a token for the original identity."""
        now = self._clock.now()
        with transaction() as session:
            auth_session = self._load_active_session(session, ctx)
            impersonation = session.get(Impersonation, auth_session.id)
            if impersonation is None:
                raise ConflictError("no bypass active")
            acting_id = impersonation.acting_subject_id
            self._bump_version(session, auth_session)
            session.delete(impersonation)

        logger.warning("bypass ended: original=%s acting=%s session=%s", ctx.original_subject_id, acting_id, ctx.session_id)
        self._record_end(ctx.original_subject_id, acting_id, ctx.session_id, now, reason="revert")
        return create_access_token(subject_id=ctx.original_subject_id, session_id=ctx.session_id)

    def reap_expired(self) -> int:
        now = self._clock.now()
        with open_session() as session:
            expired = list(session.exec(select(Impersonation).where(col(Impersonation.expires_at) <= now)).all())
        reaped = 0
        for impersonation in expired:
            with transaction() as session:
                auth_session = session.get(AuthSession, impersonation.session_id)
                current = session.get(Impersonation, impersonation.session_id)
                if auth_session is None or current is None or self._is_live(current, now):
                    continue
                if auth_session.state == SessionState.ACTIVE:
                    self._bump_version(session, auth_session)
                session.delete(current)
            reaped += 1
            self._record_end(
                impersonation.original_subject_id,
                impersonation.acting_subject_id,
                impersonation.session_id,
                now,
                reason="expired",
            )
        return reaped

    def verify_bypass(self, ctx: AuthContext) -> BypassStatus:
        now = self._clock.now()
        with open_session() as session:
            impersonation = session.get(Impersonation, ctx.session_id)
            if impersonation is None or not self._is_live(impersonation, now):
                return BypassStatus(is_bypass=False)
            original = session.get(Identity, impersonation.original_subject_id)
            if original is None:
                return BypassStatus(is_bypass=False)
            return BypassStatus(
                is_bypass=True,
                original_user=BypassParty(
                    member_id=original.id,
                    account_id=original.account_id,
                    timestamp=as_utc(impersonation.issued_at),
                ),
                current_user=impersonation.acting_subject_id,
            )

    def _record_end(self, original_id: str, acting_id: str, session_id: str, at: datetime, *, reason: str) -> None:
        # the way back never waits on the audit sink
        try:
            audit.write_audit_log(
                actor_id=original_id,
                action=audit.ACTION_BYPASS_END,
                resource=f"session:{session_id}",
                method="BYPASS",
                status_code=200,
                detail={
                    "who": {"initiator_id": original_id, "target_id": acting_id},
                    "when": {"ts": at.isoformat()},
                    "why": {"reason": reason},
                },
            )
        except Exception:
            logger.exception("failed to audit bypass end for session %s", session_id)
