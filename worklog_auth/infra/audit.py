from __future__ import annotations

import logging
from datetime import datetime
from typing import Any

from sqlmodel import Session
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

from worklog_auth.domain.models import AuditLog, now_utc
from worklog_auth.infra.db import engine

logger = logging.getLogger(__name__)

WRITE_METHODS = {"POST", "PUT", "PATCH", "DELETE"}
# touch fires on every user interaction
SKIPPED_PATHS = {"/healthz", "/readyz", "/auth/touch"}
# refused bypass attempts are not recorded
SUCCESS_ONLY_PATHS = {"/auth/bypass"}
AUDIT_CONTEXT_STATE_KEY = "_audit_context"

ACTION_BYPASS_BEGIN = "auth.bypass.begin"
ACTION_BYPASS_END = "auth.bypass.end"


def build_audit_log(
    *,
    actor_id: str | None,
    action: str,
    resource: str,
    method: str,
    status_code: int,
    detail: dict[str, Any] | None = None,
) -> AuditLog:
    return AuditLog(
        actor_id=actor_id,
        action=action,
        resource=resource,
        method=method,
        status_code=status_code,
        detail=detail or {},
    )


def write_audit_log(**kwargs: Any) -> None:
    log = build_audit_log(**kwargs)
    with Session(engine) as session:
        session.add(log)
        session.commit()


def record_bypass_event(
    session: Session,
    *,
    action: str,
    initiator_id: str,
    target_id: str,
    session_id: str,
    at: datetime,
    detail: dict[str, Any] | None = None,
) -> AuditLog:
    """Stage a bypass audit row inside the caller's transaction and flush it.

    Flushing surfaces write errors before the caller attaches or removes the
    impersonation record, so both land in the same commit or neither does.
    """
    payload: dict[str, Any] = {
        "who": {"initiator_id": initiator_id, "target_id": target_id},
        "when": {"ts": at.isoformat()},
        "where": {"session_id": session_id},
    }
    if detail:
        payload = _deep_merge(payload, detail)
    log = build_audit_log(
        actor_id=initiator_id,
        action=action,
        resource=f"session:{session_id}",
        method="BYPASS",
        status_code=200,
        detail=payload,
    )
    log.ts = at
    session.add(log)
    session.flush()
    return log


def _deep_merge(base: dict[str, Any], extra: dict[str, Any]) -> dict[str, Any]:
    merged = dict(base)
    for key, value in extra.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _deep_merge(merged[key], value)
            continue
        merged[key] = value
    return merged


def _status_outcome(status_code: int) -> str:
    if status_code >= 500:
        return "error"
    if status_code in {401, 403, 404}:
        return "denied"
    if status_code >= 400:
        return "rejected"
    return "success"


def set_audit_context(
    request: Request,
    *,
    action: str | None = None,
    resource: str | None = None,
    detail: dict[str, Any] | None = None,
) -> None:
    context_raw = getattr(request.state, AUDIT_CONTEXT_STATE_KEY, {})
    context = dict(context_raw) if isinstance(context_raw, dict) else {}

    if action is not None:
        context["action"] = action
    if resource is not None:
        context["resource"] = resource

    if detail:
        previous_detail = context.get("detail")
        if isinstance(previous_detail, dict):
            context["detail"] = _deep_merge(previous_detail, detail)
        else:
            context["detail"] = detail

    setattr(request.state, AUDIT_CONTEXT_STATE_KEY, context)


class AuditMiddleware(BaseHTTPMiddleware):
    """Records every write request against the auth surface."""

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        response = await call_next(request)
        path = request.url.path
        method = request.method
        if path in SKIPPED_PATHS:
            return response
        if path in SUCCESS_ONLY_PATHS and response.status_code >= 400:
            return response
        context_raw = getattr(request.state, AUDIT_CONTEXT_STATE_KEY, {})
        context = context_raw if isinstance(context_raw, dict) else {}
        has_explicit_context = any(key in context for key in ("action", "resource", "detail"))
        if method not in WRITE_METHODS and not has_explicit_context:
            return response

        auth_context = getattr(request.state, "auth_context", None)
        actor_id = getattr(auth_context, "original_subject_id", None)
        acting_id = getattr(auth_context, "subject_id", None)
        raw_action = context.get("action")
        raw_resource = context.get("resource")
        action: str = raw_action if isinstance(raw_action, str) else f"{method}:{path}"
        resource: str = raw_resource if isinstance(raw_resource, str) else path

        base_detail: dict[str, Any] = {
            "who": {
                "actor_id": actor_id,
                "acting_id": acting_id,
            },
            "when": {
                "request_ts": now_utc().isoformat(),
            },
            "where": {
                "path": path,
                "client_ip": request.client.host if request.client is not None else None,
            },
            "result": {
                "status_code": response.status_code,
                "outcome": _status_outcome(response.status_code),
            },
        }
        context_detail = context.get("detail")
        detail = _deep_merge(base_detail, context_detail) if isinstance(context_detail, dict) else base_detail

        try:
            write_audit_log(
                actor_id=actor_id,
                action=action,
                resource=resource,
                method=method,
                status_code=response.status_code,
                detail=detail,
            )
        except Exception:
            # request trail is best-effort; bypass events are written transactionally instead
            logger.exception("failed to write request audit log for %s %s", method, path)
        return response
