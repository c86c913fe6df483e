from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, NoReturn

import jwt
import sqlalchemy as sa
from sqlmodel import Session, col

from worklog_auth.domain.context import AuthContext
from worklog_auth.domain.errors import InvalidCredentialsError, NotFoundError, UnauthenticatedError
from worklog_auth.domain.models import AuthSession, Identity, Impersonation, as_utc
from worklog_auth.domain.state_machine import (
    ActivityEvent,
    ApprovalState,
    SessionState,
    can_session_transition,
    is_activity_event,
)
from worklog_auth.infra.auth import TOKEN_TYPE_ACCESS, TOKEN_TYPE_REFRESH, create_access_token, decode_token
from worklog_auth.infra.clock import Clock, system_clock
from worklog_auth.infra.db import open_session, transaction
from worklog_auth.infra.identity_provider import IdentityProvider, LocalIdentityProvider
from worklog_auth.services.approval_gate import ApprovalGate

logger = logging.getLogger(__name__)

IDLE_TIMEOUT_MIN = int(os.getenv("IDLE_TIMEOUT_MIN", "120"))


@dataclass(frozen=True)
class IssuedSession:
    session_id: str
    subject_id: str
    access_token: str
    refresh_token: str


class SessionManager:
    """Tracked sessions on top of the identity provider's raw tokens.

    A session is ACTIVE until it is revoked (logout) or idle-expired; both are
    terminal. Access tokens are bound to a session id, so ending the session
    rejects them on the next verify even before their own expiry.
    """

    def __init__(
        self,
        *,
        provider: IdentityProvider | None = None,
        gate: ApprovalGate | None = None,
        clock: Clock | None = None,
        idle_timeout: timedelta | None = None,
    ) -> None:
        self._provider = provider or LocalIdentityProvider()
        self._gate = gate or ApprovalGate()
        self._clock = clock or system_clock
        self._idle_timeout = idle_timeout or timedelta(minutes=IDLE_TIMEOUT_MIN)

    @property
    def clock(self) -> Clock:
        return self._clock

    @property
    def idle_timeout(self) -> timedelta:
        return self._idle_timeout

    def _decode(self, token: str, token_type: str) -> dict[str, Any]:
        try:
            return decode_token(token, expected_type=token_type)
        except jwt.ExpiredSignatureError as exc:
            raise UnauthenticatedError("token expired") from exc
        except (jwt.InvalidTokenError, ValueError) as exc:
            raise UnauthenticatedError("invalid token") from exc

    def _ensure_active(self, auth_session: AuthSession | None) -> AuthSession:
        if auth_session is None:
            raise UnauthenticatedError("session not found")
        if auth_session.state == SessionState.IDLE_EXPIRED:
            raise UnauthenticatedError("session expired", session_expired=True)
        if auth_session.state != SessionState.ACTIVE:
            raise UnauthenticatedError("session revoked")
        return auth_session

    def acting_subject_id(self, session: Session, auth_session: AuthSession) -> str:
        impersonation = session.get(Impersonation, auth_session.id)
        if impersonation is None or as_utc(impersonation.expires_at) <= self._clock.now():
            return auth_session.subject_id
        return impersonation.acting_subject_id

    def get_session(self, session_id: str) -> AuthSession:
        with open_session() as session:
            auth_session = session.get(AuthSession, session_id)
        if auth_session is None:
            raise NotFoundError("session not found")
        return auth_session

    def issue(self, account_id: str, password: str) -> IssuedSession:
        identity = self._provider.verify_credentials(account_id, password)
        if self._gate.classify(identity) == ApprovalState.DEACTIVATED:
            raise InvalidCredentialsError()

        now = self._clock.now()
        with transaction() as session:
            auth_session = AuthSession(subject_id=identity.id, issued_at=now, last_activity=now)
            session.add(auth_session)
            session.flush()
            pair = self._provider.issue_refreshable(identity.id, auth_session.id)
            auth_session.refresh_jti = pair.refresh_jti
            session.add(auth_session)
        logger.info("session %s issued for subject %s", auth_session.id, identity.id)
        return IssuedSession(
            session_id=auth_session.id,
            subject_id=identity.id,
            access_token=pair.access_token,
            refresh_token=pair.refresh_token,
        )

    def refresh(self, refresh_token: str) -> str:
        claims = self._decode(refresh_token, TOKEN_TYPE_REFRESH)
        jti = str(claims.get("jti", ""))
        if not jti or self._provider.is_refresh_revoked(jti):
            raise UnauthenticatedError("refresh token revoked")

        now = self._clock.now()
        with transaction() as session:
            auth_session = self._ensure_active(session.get(AuthSession, str(claims["sid"])))
            if auth_session.refresh_jti != jti or auth_session.subject_id != claims["sub"]:
                raise UnauthenticatedError("refresh token revoked")
            identity = session.get(Identity, auth_session.subject_id)
            if identity is None or not identity.is_active:
                raise UnauthenticatedError("account deactivated")
            idle = self.is_idle(auth_session.last_activity, now)
            if not idle:
                auth_session.last_activity = now
                session.add(auth_session)
        if idle:
            self._end_idle(auth_session.id)
        return create_access_token(subject_id=auth_session.subject_id, session_id=auth_session.id)

    def verify(self, access_token: str) -> AuthContext:
        claims = self._decode(access_token, TOKEN_TYPE_ACCESS)
        with open_session() as session:
            auth_session = self._ensure_active(session.get(AuthSession, str(claims["sid"])))
            if auth_session.subject_id != claims["sub"]:
                raise UnauthenticatedError("invalid token")
            acting_id = self.acting_subject_id(session, auth_session)
        if self.is_idle(auth_session.last_activity):
            self._end_idle(auth_session.id)
        return AuthContext(
            subject_id=acting_id,
            session_id=auth_session.id,
            original_subject_id=auth_session.subject_id,
        )

    def revoke(self, refresh_token: str) -> bool:
        claims = self._decode(refresh_token, TOKEN_TYPE_REFRESH)
        self._provider.invalidate_refresh_token(refresh_token)
        revoked = self._terminate(str(claims["sid"]), SessionState.REVOKED)
        if revoked:
            logger.info("session %s revoked by logout", claims["sid"])
        return revoked

    def expire_idle(self, session_id: str) -> bool:
        """Force-end an idle session; a session that already ended is left alone."""
        expired = self._terminate(session_id, SessionState.IDLE_EXPIRED)
        if expired:
            logger.info("session %s expired after %s of inactivity", session_id, self._idle_timeout)
        return expired

    def touch(self, session_id: str, event: ActivityEvent | str) -> bool:
        """Record a qualifying user interaction as the session's last activity."""
        if not is_activity_event(event):
            return False
        now = self._clock.now()
        with transaction() as session:
            auth_session = self._ensure_active(session.get(AuthSession, session_id))
            idle = self.is_idle(auth_session.last_activity, now)
            if not idle:
                auth_session.last_activity = now
                session.add(auth_session)
        if idle:
            self._end_idle(session_id)
        return True

    def is_idle(self, last_activity: datetime, now: datetime | None = None) -> bool:
        now = now or self._clock.now()
        return now - as_utc(last_activity) > self._idle_timeout

    def _end_idle(self, session_id: str) -> NoReturn:
        self.expire_idle(session_id)
        raise UnauthenticatedError("session expired", session_expired=True)

    def _terminate(self, session_id: str, target: SessionState) -> bool:
        now = self._clock.now()
        with transaction() as session:
            current = session.get(AuthSession, session_id)
            if current is None or not can_session_transition(current.state, target):
                return False
            result = session.execute(
                sa.update(AuthSession)
                .where(col(AuthSession.id) == session_id)
                .where(col(AuthSession.version) == current.version)
                .where(col(AuthSession.state) == SessionState.ACTIVE)
                .values(state=target, ended_at=now, version=current.version + 1)
            )
            if int(getattr(result, "rowcount", 0) or 0) != 1:
                return False
            # an ended session carries no bypass
            session.execute(sa.delete(Impersonation).where(col(Impersonation.session_id) == session_id))
        return True
