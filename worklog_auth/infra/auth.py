from __future__ import annotations

import os
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import Any
from uuid import uuid4

import jwt

JWT_SECRET = os.getenv("JWT_SECRET", "dev-secret-change-me")
JWT_ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")
JWT_ACCESS_EXPIRES_MIN = int(os.getenv("JWT_ACCESS_EXPIRES_MIN", "15"))
JWT_REFRESH_EXPIRES_MIN = int(os.getenv("JWT_REFRESH_EXPIRES_MIN", str(60 * 24 * 7)))

TOKEN_TYPE_ACCESS = "access"
TOKEN_TYPE_REFRESH = "refresh"


@dataclass(frozen=True)
class TokenPair:
    access_token: str
    refresh_token: str
    refresh_jti: str


def _encode(
    *,
    subject_id: str,
    session_id: str,
    token_type: str,
    expires_minutes: int,
    extra: dict[str, Any] | None = None,
) -> tuple[str, str]:
    now = datetime.now(UTC)
    jti = str(uuid4())
    payload: dict[str, Any] = {
        "sub": subject_id,
        "sid": session_id,
        "typ": token_type,
        "jti": jti,
        "iat": int(now.timestamp()),
        "exp": int((now + timedelta(minutes=expires_minutes)).timestamp()),
    }
    if extra:
        payload.update(extra)
    return jwt.encode(payload, JWT_SECRET, algorithm=JWT_ALGORITHM), jti


def create_access_token(
    *,
    subject_id: str,
    session_id: str,
    expires_minutes: int | None = None,
    extra: dict[str, Any] | None = None,
) -> str:
    token, _ = _encode(
        subject_id=subject_id,
        session_id=session_id,
        token_type=TOKEN_TYPE_ACCESS,
        expires_minutes=expires_minutes or JWT_ACCESS_EXPIRES_MIN,
        extra=extra,
    )
    return token


def create_token_pair(*, subject_id: str, session_id: str) -> TokenPair:
    access_token = create_access_token(subject_id=subject_id, session_id=session_id)
    refresh_token, refresh_jti = _encode(
        subject_id=subject_id,
        session_id=session_id,
        token_type=TOKEN_TYPE_REFRESH,
        expires_minutes=JWT_REFRESH_EXPIRES_MIN,
    )
    return TokenPair(access_token=access_token, refresh_token=refresh_token, refresh_jti=refresh_jti)


def decode_token(token: str, *, expected_type: str) -> dict[str, Any]:
    decoded = jwt.decode(
        token,
        JWT_SECRET,
        algorithms=[JWT_ALGORITHM],
        options={"require": ["sub", "sid", "typ", "exp"]},
    )
    if not isinstance(decoded, dict):
        raise ValueError("Invalid token payload")
    if decoded.get("typ") != expected_type:
        raise ValueError("Unexpected token type")
    return decoded


def seconds_until_expiry(claims: dict[str, Any]) -> int:
    exp = claims.get("exp")
    if not isinstance(exp, int):
        return 0
    return max(exp - int(datetime.now(UTC).timestamp()), 0)
