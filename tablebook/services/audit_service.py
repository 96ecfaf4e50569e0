from __future__ import annotations

import logging
from typing import Any, Mapping

from fastapi import Request
from sqlalchemy.orm import Session

from tablebook.core.deps import get_client_hash
from tablebook.models.audit_log import AuditLog

logger = logging.getLogger(__name__)

# Guest contact details never reach the audit trail.
REDACTED_KEYS = frozenset({"guest_name", "name", "email", "phone", "notes"})
# Tokens keep a short suffix so staff can correlate entries.
MASKED_KEYS = frozenset({"lock_token", "client_hash"})


def _mask(value: Any) -> str:
    text = str(value or "")
    return "***" + text[-4:] if len(text) > 4 else "<redacted>"


def scrub(payload: Any) -> Any:
    if isinstance(payload, Mapping):
        out: dict[str, Any] = {}
        for key, value in payload.items():
            if key in REDACTED_KEYS:
                out[key] = "<redacted>"
            elif key in MASKED_KEYS:
                out[key] = _mask(value)
            else:
                out[key] = scrub(value)
        return out
    if isinstance(payload, (list, tuple)):
        return [scrub(v) for v in payload]
    return payload


def write_audit_log(
    db: Session,
    *,
    actor: str,
    action_type: str,
    target_type: str = "",
    target_id: str = "",
    summary: str = "",
    diff_json: Mapping[str, Any] | None = None,
    request: Request | None = None,
) -> AuditLog:
    """Append one audit entry and commit it."""
    entry = AuditLog(
        actor=actor,
        action_type=action_type,
        target_type=target_type,
        target_id=str(target_id),
        summary=summary[:255],
        diff_json=scrub(diff_json) if diff_json is not None else None,
    )
    if request is not None:
        entry.request_id = getattr(request.state, "request_id", "") or ""
        entry.client_hash = get_client_hash(request)
        entry.user_agent = request.headers.get("user-agent", "")[:255]

    db.add(entry)
    db.commit()
    logger.info("audit %s %s:%s by %s", action_type, target_type, target_id, actor)
    return entry
