from __future__ import annotations

import pytest
from sqlmodel import Session, select

from worklog_auth.domain.errors import NotFoundError
from worklog_auth.domain.models import Permission, RolePermission
from worklog_auth.domain.permissions import DEFAULT_PERMISSIONS, Access
from worklog_auth.services.permission_registry import Grant, PermissionRegistry


def test_write_only_grant_is_normalized_to_read(seed) -> None:
    role_id = seed.role("editor")
    registry = PermissionRegistry()

    grant = registry.set_grant(role_id, "task.write", can_read=False, can_write=True)

    assert grant == Grant(key="task.write", can_read=True, can_write=True)
    assert registry.is_granted(role_id, "task.write", Access.READ) is True
    assert registry.is_granted(role_id, "task.write", Access.WRITE) is True
    assert registry.grants_for(role_id) == [Grant(key="task.write", can_read=True, can_write=True)]


def test_read_grant_does_not_allow_write(seed) -> None:
    role_id = seed.role("viewer", {"task.read": (True, False)})
    registry = PermissionRegistry()

    assert registry.is_granted(role_id, "task.read", "read") is True
    assert registry.is_granted(role_id, "task.read", "write") is False


def test_missing_grant_and_unknown_key_are_denied(seed) -> None:
    role_id = seed.role("viewer", {"task.read": (True, False)})
    registry = PermissionRegistry()

    assert registry.is_granted(role_id, "project.read", Access.READ) is False
    assert registry.is_granted(role_id, "no.such.key", Access.READ) is False


def test_set_grant_is_idempotent(seed, test_engine) -> None:
    role_id = seed.role("viewer")
    registry = PermissionRegistry()

    registry.set_grant(role_id, "task.read", can_read=True, can_write=False)
    registry.set_grant(role_id, "task.read", can_read=True, can_write=False)

    with Session(test_engine) as session:
        links = session.exec(select(RolePermission).where(RolePermission.role_id == role_id)).all()
    assert len(links) == 1


def test_set_grant_rejects_unknown_key_and_role(seed) -> None:
    role_id = seed.role("viewer")
    registry = PermissionRegistry()

    with pytest.raises(NotFoundError):
        registry.set_grant(role_id, "no.such.key", can_read=True, can_write=False)
    with pytest.raises(NotFoundError):
        registry.set_grant("missing-role", "task.read", can_read=True, can_write=False)


def test_revoke_grant_is_idempotent(seed) -> None:
    role_id = seed.role("viewer", {"task.read": (True, False)})
    registry = PermissionRegistry()

    registry.revoke_grant(role_id, "task.read")
    registry.revoke_grant(role_id, "task.read")
    registry.revoke_grant(role_id, "no.such.key")

    assert registry.is_granted(role_id, "task.read", Access.READ) is False
    assert registry.grants_for(role_id) == []


def test_replace_grants_swaps_the_whole_set(seed) -> None:
    role_id = seed.role("lead", {"task.read": (True, False), "member.read": (True, False)})
    registry = PermissionRegistry()

    result = registry.replace_grants(
        role_id,
        [
            Grant(key="task.write", can_read=False, can_write=True),
            Grant(key="report.read", can_read=True, can_write=False),
            Grant(key="project.read", can_read=False, can_write=False),
        ],
    )

    assert [item.key for item in result] == ["project.read", "report.read", "task.write"]
    assert registry.grants_for(role_id) == [
        Grant(key="report.read", can_read=True, can_write=False),
        Grant(key="task.write", can_read=True, can_write=True),
    ]
    assert registry.is_granted(role_id, "member.read", Access.READ) is False


def test_replace_grants_with_unknown_key_leaves_old_set(seed) -> None:
    role_id = seed.role("lead", {"task.read": (True, False)})
    registry = PermissionRegistry()

    with pytest.raises(NotFoundError):
        registry.replace_grants(role_id, [Grant(key="bogus.key", can_read=True, can_write=False)])

    assert registry.grants_for(role_id) == [Grant(key="task.read", can_read=True, can_write=False)]


def test_ensure_default_permissions_seeds_once(test_engine) -> None:
    registry = PermissionRegistry()

    first = registry.ensure_default_permissions()
    second = registry.ensure_default_permissions()

    assert {item.key for item in first} == set(DEFAULT_PERMISSIONS)
    assert len(second) == len(first)
    with Session(test_engine) as session:
        assert len(session.exec(select(Permission)).all()) == len(DEFAULT_PERMISSIONS)
