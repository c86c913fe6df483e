from __future__ import annotations

from enum import StrEnum


class ApprovalState(StrEnum):
    ACTIVE = "ACTIVE"
    PENDING = "PENDING"
    DEACTIVATED = "DEACTIVATED"


class SessionState(StrEnum):
    ACTIVE = "ACTIVE"
    IDLE_EXPIRED = "IDLE_EXPIRED"
    REVOKED = "REVOKED"


SESSION_ALLOWED_TRANSITIONS: dict[SessionState, set[SessionState]] = {
    SessionState.ACTIVE: {SessionState.IDLE_EXPIRED, SessionState.REVOKED},
    SessionState.IDLE_EXPIRED: set(),
    SessionState.REVOKED: set(),
}


def can_session_transition(source: SessionState, target: SessionState) -> bool:
    return target in SESSION_ALLOWED_TRANSITIONS.get(source, set())


class BypassState(StrEnum):
    NORMAL = "NORMAL"
    IMPERSONATING = "IMPERSONATING"


BYPASS_ALLOWED_TRANSITIONS: dict[BypassState, set[BypassState]] = {
    BypassState.NORMAL: {BypassState.IMPERSONATING},
    BypassState.IMPERSONATING: {BypassState.NORMAL},
}


def can_bypass_transition(source: BypassState, target: BypassState) -> bool:
    return target in BYPASS_ALLOWED_TRANSITIONS.get(source, set())


class ActivityEvent(StrEnum):
    POINTER_DOWN = "pointer_down"
    KEY_DOWN = "key_down"
    SCROLL = "scroll"
    TOUCH_START = "touch_start"


def is_activity_event(event: str) -> bool:
    return event in ActivityEvent.__members__.values()
