from __future__ import annotations

import hashlib
import hmac
import logging
import os
from typing import Protocol

import jwt
from sqlmodel import select

from worklog_auth.domain.errors import InvalidCredentialsError
from worklog_auth.domain.models import Identity
from worklog_auth.infra import redis_state
from worklog_auth.infra.auth import (
    TOKEN_TYPE_REFRESH,
    TokenPair,
    create_token_pair,
    decode_token,
    seconds_until_expiry,
)
from worklog_auth.infra.db import open_session

logger = logging.getLogger(__name__)


class IdentityProvider(Protocol):
    def verify_credentials(self, account_id: str, password: str) -> Identity: ...

    def issue_refreshable(self, subject_id: str, session_id: str) -> TokenPair: ...

    def invalidate_refresh_token(self, token: str) -> None: ...

    def is_refresh_revoked(self, jti: str) -> bool: ...


def hash_password(raw_password: str) -> str:
    salt = os.getenv("PASSWORD_SALT", "worklog-dev-salt")
    return hashlib.sha256(f"{salt}:{raw_password}".encode()).hexdigest()


class LocalIdentityProvider:
    """Credential check against the identities table, JWT issuance, Redis denylist."""

    def verify_credentials(self, account_id: str, password: str) -> Identity:
        with open_session() as session:
            identity = session.exec(select(Identity).where(Identity.account_id == account_id)).first()
        # same error for unknown account and wrong secret
        if identity is None:
            raise InvalidCredentialsError()
        if not hmac.compare_digest(identity.password_hash, hash_password(password)):
            raise InvalidCredentialsError()
        return identity

    def issue_refreshable(self, subject_id: str, session_id: str) -> TokenPair:
        return create_token_pair(subject_id=subject_id, session_id=session_id)

    def invalidate_refresh_token(self, token: str) -> None:
        try:
            claims = decode_token(token, expected_type=TOKEN_TYPE_REFRESH)
        except jwt.ExpiredSignatureError:
            return
        except (jwt.InvalidTokenError, ValueError):
            logger.info("ignoring invalidation of malformed refresh token")
            return
        redis_state.mark_refresh_revoked(str(claims["jti"]), seconds_until_expiry(claims))

    def is_refresh_revoked(self, jti: str) -> bool:
        return redis_state.is_refresh_revoked(jti)
