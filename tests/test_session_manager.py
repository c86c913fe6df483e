from __future__ import annotations

from datetime import timedelta

import pytest
from sqlmodel import Session

from worklog_auth.domain.errors import InvalidCredentialsError, UnauthenticatedError
from worklog_auth.domain.models import AuthSession, Identity, as_utc
from worklog_auth.domain.state_machine import SessionState
from worklog_auth.infra.redis_state import REVOKED_REFRESH_PREFIX
from worklog_auth.services.session_manager import SessionManager


@pytest.fixture()
def manager(test_engine, fake_redis, clock) -> SessionManager:
    return SessionManager(clock=clock, idle_timeout=timedelta(minutes=120))


def test_issue_and_verify(seed, manager: SessionManager, clock) -> None:
    viewer = seed.role("Viewer", {"task.read": (True, False)})
    member = seed.identity("member-a", role_id=viewer)

    issued = manager.issue("member-a", "secret-pass")
    ctx = manager.verify(issued.access_token)

    assert issued.subject_id == member
    assert ctx.subject_id == member
    assert ctx.original_subject_id == member
    assert ctx.session_id == issued.session_id
    assert ctx.is_bypass is False
    stored = manager.get_session(issued.session_id)
    assert stored.state == SessionState.ACTIVE
    assert as_utc(stored.last_activity) == clock.now()


def test_bad_credentials_share_one_message(seed, manager: SessionManager) -> None:
    seed.identity("member-a")

    with pytest.raises(InvalidCredentialsError) as wrong_password:
        manager.issue("member-a", "nope")
    with pytest.raises(InvalidCredentialsError) as unknown_account:
        manager.issue("nobody", "secret-pass")

    assert str(wrong_password.value) == str(unknown_account.value) == InvalidCredentialsError.GENERIC_MESSAGE


def test_deactivated_identity_cannot_log_in(seed, manager: SessionManager) -> None:
    seed.identity("leaver", is_active=False)

    with pytest.raises(InvalidCredentialsError):
        manager.issue("leaver", "secret-pass")


def test_pending_identity_can_hold_a_session(seed, manager: SessionManager) -> None:
    newcomer = seed.identity("newcomer", role_id=None, approved=False)

    issued = manager.issue("newcomer", "secret-pass")

    assert manager.verify(issued.access_token).subject_id == newcomer


def test_refresh_updates_last_activity(seed, manager: SessionManager, clock) -> None:
    seed.identity("member-a")
    issued = manager.issue("member-a", "secret-pass")

    clock.advance(minutes=30)
    access_token = manager.refresh(issued.refresh_token)

    assert manager.verify(access_token).subject_id == issued.subject_id
    assert as_utc(manager.get_session(issued.session_id).last_activity) == clock.now()


def test_access_token_is_not_a_refresh_token(seed, manager: SessionManager) -> None:
    seed.identity("member-a")
    issued = manager.issue("member-a", "secret-pass")

    with pytest.raises(UnauthenticatedError):
        manager.refresh(issued.access_token)
    with pytest.raises(UnauthenticatedError):
        manager.verify(issued.refresh_token)
    with pytest.raises(UnauthenticatedError):
        manager.verify("not-a-token")


def test_revoke_invalidates_refresh_and_outstanding_access(
    seed,
    manager: SessionManager,
    fake_redis,
) -> None:
    seed.identity("member-a")
    issued = manager.issue("member-a", "secret-pass")

    assert manager.revoke(issued.refresh_token) is True

    assert any(key.startswith(REVOKED_REFRESH_PREFIX) for key in fake_redis.keys())
    assert manager.get_session(issued.session_id).state == SessionState.REVOKED
    with pytest.raises(UnauthenticatedError):
        manager.refresh(issued.refresh_token)
    with pytest.raises(UnauthenticatedError) as excinfo:
        manager.verify(issued.access_token)
    assert excinfo.value.session_expired is False
    assert manager.revoke(issued.refresh_token) is False


def test_refresh_fails_once_identity_is_deactivated(seed, manager: SessionManager, test_engine) -> None:
    member = seed.identity("member-a")
    issued = manager.issue("member-a", "secret-pass")

    with Session(test_engine) as session:
        identity = session.get(Identity, member)
        assert identity is not None
        identity.is_active = False
        session.add(identity)
        session.commit()

    with pytest.raises(UnauthenticatedError):
        manager.refresh(issued.refresh_token)


def test_idle_expired_session_reports_expiry(seed, manager: SessionManager) -> None:
    seed.identity("member-a")
    issued = manager.issue("member-a", "secret-pass")

    assert manager.expire_idle(issued.session_id) is True
    assert manager.expire_idle(issued.session_id) is False

    with pytest.raises(UnauthenticatedError) as excinfo:
        manager.verify(issued.access_token)
    assert excinfo.value.session_expired is True
    assert excinfo.value.code == "SESSION_EXPIRED"


def test_terminal_states_do_not_change(seed, manager: SessionManager, test_engine) -> None:
    seed.identity("member-a")
    issued = manager.issue("member-a", "secret-pass")
    manager.revoke(issued.refresh_token)

    assert manager.expire_idle(issued.session_id) is False
    with Session(test_engine) as session:
        stored = session.get(AuthSession, issued.session_id)
        assert stored is not None
        assert stored.state == SessionState.REVOKED


def test_is_idle_boundary(manager: SessionManager, clock) -> None:
    start = clock.now()

    assert manager.is_idle(start, start + timedelta(minutes=120)) is False
    assert manager.is_idle(start, start + timedelta(minutes=120, seconds=1)) is True


def test_verify_ends_a_session_left_idle(seed, manager: SessionManager, clock) -> None:
    seed.identity("member-a")
    issued = manager.issue("member-a", "secret-pass")

    clock.advance(minutes=121)
    with pytest.raises(UnauthenticatedError) as excinfo:
        manager.verify(issued.access_token)

    assert excinfo.value.session_expired is True
    stored = manager.get_session(issued.session_id)
    assert stored.state == SessionState.IDLE_EXPIRED
    assert stored.ended_at is not None
    assert as_utc(stored.ended_at) == clock.now()


def test_refresh_does_not_revive_an_idle_session(seed, manager: SessionManager, clock) -> None:
    seed.identity("member-a")
    issued = manager.issue("member-a", "secret-pass")
    issued_at = clock.now()

    clock.advance(minutes=121)
    with pytest.raises(UnauthenticatedError) as excinfo:
        manager.refresh(issued.refresh_token)

    assert excinfo.value.session_expired is True
    stored = manager.get_session(issued.session_id)
    assert stored.state == SessionState.IDLE_EXPIRED
    assert as_utc(stored.last_activity) == issued_at


def test_touch_keeps_the_session_alive(seed, manager: SessionManager, clock) -> None:
    seed.identity("member-a")
    issued = manager.issue("member-a", "secret-pass")

    clock.advance(minutes=119)
    assert manager.touch(issued.session_id, "key_down") is True
    clock.advance(minutes=119)

    assert manager.verify(issued.access_token).session_id == issued.session_id
    assert as_utc(manager.get_session(issued.session_id).last_activity) == clock.now() - timedelta(minutes=119)


def test_touch_ignores_non_interaction_events(seed, manager: SessionManager, clock) -> None:
    seed.identity("member-a")
    issued = manager.issue("member-a", "secret-pass")
    issued_at = clock.now()

    clock.advance(minutes=10)
    assert manager.touch(issued.session_id, "mouse_move") is False
    assert as_utc(manager.get_session(issued.session_id).last_activity) == issued_at


def test_touch_after_timeout_expires_instead(seed, manager: SessionManager, clock) -> None:
    seed.identity("member-a")
    issued = manager.issue("member-a", "secret-pass")

    clock.advance(minutes=121)
    with pytest.raises(UnauthenticatedError) as excinfo:
        manager.touch(issued.session_id, "scroll")

    assert excinfo.value.session_expired is True
    assert manager.get_session(issued.session_id).state == SessionState.IDLE_EXPIRED
