from __future__ import annotations

from collections.abc import Iterable

from worklog_auth.domain.models import Identity
from worklog_auth.domain.permissions import PENDING_ROLE_IDS
from worklog_auth.domain.state_machine import ApprovalState


class ApprovalGate:
    def __init__(self, pending_role_ids: Iterable[str] | None = None) -> None:
        self._pending_role_ids = frozenset(PENDING_ROLE_IDS if pending_role_ids is None else pending_role_ids)

    @property
    def pending_role_ids(self) -> frozenset[str]:
        return self._pending_role_ids

    def classify(self, identity: Identity) -> ApprovalState:
        if not identity.is_active:
            return ApprovalState.DEACTIVATED
        if identity.role_id is None or identity.role_id in self._pending_role_ids:
            return ApprovalState.PENDING
        if identity.approved_at is None and identity.rejected_at is None:
            return ApprovalState.PENDING
        return ApprovalState.ACTIVE

    def is_active(self, identity: Identity) -> bool:
        return self.classify(identity) == ApprovalState.ACTIVE
