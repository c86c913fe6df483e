from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class AuthContext:
    """Who is acting in a request and on behalf of which session.

    ``subject_id`` is the acting identity (the bypass target while an
    impersonation is active); ``original_subject_id`` is who authenticated.
    """

    subject_id: str
    session_id: str
    original_subject_id: str

    @property
    def is_bypass(self) -> bool:
        return self.subject_id != self.original_subject_id
