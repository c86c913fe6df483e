from __future__ import annotations

import pytest
from sqlalchemy.exc import OperationalError

from worklog_auth.domain.context import AuthContext
from worklog_auth.domain.errors import ForbiddenError, PendingApprovalError
from worklog_auth.domain.permissions import PENDING_ROLE_ID, Access
from worklog_auth.domain.state_machine import ApprovalState
from worklog_auth.services.authorization_engine import AuthorizationEngine
from worklog_auth.services.permission_registry import Grant, PermissionRegistry


def _ctx(subject_id: str) -> AuthContext:
    return AuthContext(subject_id=subject_id, session_id="s-1", original_subject_id=subject_id)


def test_viewer_reads_but_cannot_write_tasks(seed) -> None:
    viewer = seed.role("Viewer", {"task.read": (True, False)})
    member_a = seed.identity("member-a", role_id=viewer)
    engine = AuthorizationEngine()

    assert engine.can_access(member_a, "task.read", Access.READ) is True
    assert engine.can_access(member_a, "task.read", Access.WRITE) is False
    assert engine.can_access(member_a, "report.read", Access.READ) is False


def test_role_less_identity_is_always_denied(seed) -> None:
    seed.role("Viewer", {"task.read": (True, False)})
    member_b = seed.identity("member-b", role_id=None)
    engine = AuthorizationEngine()

    decision = engine.decide(member_b, "task.read", Access.READ)

    assert decision.allowed is False
    assert decision.approval_state == ApprovalState.PENDING
    with pytest.raises(PendingApprovalError):
        engine.require(_ctx(member_b), "task.read", Access.READ)


def test_pending_sentinel_role_is_denied_even_with_grants(seed) -> None:
    pending = seed.role("pending", {"task.read": (True, True)}, role_id=PENDING_ROLE_ID)
    member = seed.identity("newcomer", role_id=pending)

    assert AuthorizationEngine().can_access(member, "task.read", Access.READ) is False


def test_inactive_role_denies(seed) -> None:
    retired = seed.role("Retired", {"task.read": (True, False)}, is_active=False)
    member = seed.identity("old-timer", role_id=retired)

    decision = AuthorizationEngine().decide(member, "task.read", Access.READ)

    assert decision.allowed is False
    assert decision.approval_state == ApprovalState.ACTIVE


def test_deactivated_identity_is_denied(seed) -> None:
    admin = seed.role("Admin", {"member.write": (True, True)})
    member = seed.identity("leaver", role_id=admin, is_active=False)
    engine = AuthorizationEngine()

    assert engine.decide(member, "member.write", Access.WRITE).approval_state == ApprovalState.DEACTIVATED
    assert engine.can_access(member, "member.write", Access.WRITE) is False


def test_unknown_subject_key_or_access_are_denied(seed) -> None:
    viewer = seed.role("Viewer", {"task.read": (True, False)})
    member = seed.identity("member-a", role_id=viewer)
    engine = AuthorizationEngine()

    assert engine.can_access("ghost", "task.read", Access.READ) is False
    assert engine.can_access(None, "task.read", Access.READ) is False
    assert engine.can_access(member, "no.such.key", Access.READ) is False
    assert engine.can_access(member, "task.read", "delete") is False


def test_registry_error_fails_closed(seed, monkeypatch: pytest.MonkeyPatch) -> None:
    viewer = seed.role("Viewer", {"task.read": (True, False)})
    member = seed.identity("member-a", role_id=viewer)
    registry = PermissionRegistry()

    def _boom(*_args: object, **_kwargs: object) -> bool:
        raise OperationalError("SELECT", {}, Exception("database is gone"))

    monkeypatch.setattr(registry, "is_granted", _boom)
    engine = AuthorizationEngine(registry=registry)

    assert engine.can_access(member, "task.read", Access.READ) is False


def test_grant_edit_is_visible_to_next_decision(seed) -> None:
    viewer = seed.role("Viewer", {"task.read": (True, False)})
    member = seed.identity("member-a", role_id=viewer)
    engine = AuthorizationEngine()
    registry = PermissionRegistry()

    assert engine.can_access(member, "task.write", Access.WRITE) is False
    registry.set_grant(viewer, "task.write", can_read=False, can_write=True)
    assert engine.can_access(member, "task.write", Access.WRITE) is True
    assert engine.can_access(member, "task.write", Access.READ) is True


def test_require_names_only_the_missing_key(seed) -> None:
    viewer = seed.role("Viewer", {"task.read": (True, False)})
    member = seed.identity("member-a", role_id=viewer)

    with pytest.raises(ForbiddenError) as excinfo:
        AuthorizationEngine().require(_ctx(member), "member.write", Access.WRITE)

    assert str(excinfo.value) == "missing permission: member.write"
    assert excinfo.value.key == "member.write"


def test_permissions_for_lists_grants_of_active_subjects_only(seed) -> None:
    viewer = seed.role("Viewer", {"task.read": (True, False), "report.read": (True, False)})
    active = seed.identity("member-a", role_id=viewer)
    pending = seed.identity("member-b", role_id=viewer, approved=False)
    engine = AuthorizationEngine()

    assert engine.permissions_for(active) == [
        Grant(key="report.read", can_read=True, can_write=False),
        Grant(key="task.read", can_read=True, can_write=False),
    ]
    assert engine.permissions_for(pending) == []


def test_permissions_for_fails_closed_on_database_error(seed, monkeypatch: pytest.MonkeyPatch) -> None:
    viewer = seed.role("Viewer", {"task.read": (True, False)})
    member = seed.identity("member-a", role_id=viewer)
    registry = PermissionRegistry()

    def _boom(*_args: object, **_kwargs: object) -> list[Grant]:
        raise OperationalError("SELECT", {}, Exception("database is gone"))

    monkeypatch.setattr(registry, "grants_for", _boom)
    engine = AuthorizationEngine(registry=registry)

    assert engine.permissions_for(member) == []
