from __future__ import annotations

import os
from functools import lru_cache

from redis import Redis

REDIS_URL = os.getenv("REDIS_URL", "redis://redis:6379/0")
REVOKED_REFRESH_PREFIX = "auth:refresh:revoked"


@lru_cache(maxsize=1)
def get_redis() -> Redis:
    return Redis.from_url(REDIS_URL, decode_responses=True)


def _revoked_key(jti: str) -> str:
    return f"{REVOKED_REFRESH_PREFIX}:{jti}"


def mark_refresh_revoked(jti: str, ttl_seconds: int) -> None:
    # entry only needs to outlive the token it blocks
    get_redis().set(_revoked_key(jti), "1", ex=max(ttl_seconds, 1))


def is_refresh_revoked(jti: str) -> bool:
    return get_redis().get(_revoked_key(jti)) is not None


def check_redis_ready() -> bool:
    try:
        return bool(get_redis().ping())
    except Exception:
        return False
