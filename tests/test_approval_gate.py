from __future__ import annotations

from worklog_auth.domain.models import Identity, now_utc
from worklog_auth.domain.state_machine import ApprovalState
from worklog_auth.services.approval_gate import ApprovalGate


def _identity(**overrides: object) -> Identity:
    values: dict[str, object] = {
        "account_id": "alice",
        "name": "Alice",
        "password_hash": "x",
        "is_active": True,
        "role_id": "viewer",
        "approved_at": now_utc(),
    }
    values.update(overrides)
    return Identity(**values)


def test_approved_identity_with_role_is_active() -> None:
    gate = ApprovalGate()
    assert gate.classify(_identity()) == ApprovalState.ACTIVE
    assert gate.is_active(_identity()) is True


def test_identity_without_role_is_pending() -> None:
    assert ApprovalGate().classify(_identity(role_id=None)) == ApprovalState.PENDING


def test_pending_sentinel_role_is_pending() -> None:
    gate = ApprovalGate(pending_role_ids={"pending", "awaiting"})
    assert gate.classify(_identity(role_id="awaiting")) == ApprovalState.PENDING
    assert gate.classify(_identity(role_id="pending")) == ApprovalState.PENDING


def test_never_reviewed_identity_is_pending() -> None:
    assert ApprovalGate().classify(_identity(approved_at=None, rejected_at=None)) == ApprovalState.PENDING


def test_inactive_identity_is_deactivated_whatever_its_role() -> None:
    gate = ApprovalGate()
    assert gate.classify(_identity(is_active=False)) == ApprovalState.DEACTIVATED
    assert gate.classify(_identity(is_active=False, role_id=None)) == ApprovalState.DEACTIVATED
