from __future__ import annotations


class AuthzError(Exception):
    code = "AUTHZ_ERROR"


class UnauthenticatedError(AuthzError):
    code = "UNAUTHENTICATED"

    def __init__(self, message: str = "authentication required", *, session_expired: bool = False) -> None:
        super().__init__(message)
        self.session_expired = session_expired
        if session_expired:
            self.code = "SESSION_EXPIRED"


class InvalidCredentialsError(UnauthenticatedError):
    code = "INVALID_CREDENTIALS"
    GENERIC_MESSAGE = "invalid account or password"

    def __init__(self) -> None:
        super().__init__(self.GENERIC_MESSAGE)


class ForbiddenError(AuthzError):
    code = "FORBIDDEN"

    def __init__(self, message: str = "forbidden", *, key: str | None = None) -> None:
        super().__init__(message)
        self.key = key


class AuditFailureError(ForbiddenError):
    code = "AUDIT_FAILURE"


class PendingApprovalError(AuthzError):
    code = "PENDING_APPROVAL"

    def __init__(self, state: str) -> None:
        super().__init__(f"account is {state.lower()}")
        self.state = state


class InvalidTargetError(AuthzError):
    code = "INVALID_TARGET"


class NotFoundError(AuthzError):
    code = "NOT_FOUND"


class ConflictError(AuthzError):
    code = "CONFLICT"
