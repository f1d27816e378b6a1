"""Structured audit logging helpers for operator actions."""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from typing import Any, Mapping

audit_logger = logging.getLogger("servicezones.audit")


def _to_serializable(value: Any) -> Any:
    if value is None or isinstance(value, (str, int, float, bool)):
        return value
    if isinstance(value, Mapping):
        return {str(k): _to_serializable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, set)):
        return [_to_serializable(v) for v in value]
    return str(value)


def log_audit_event(
    event_type: str,
    *,
    actor: str | None = None,
    details: Mapping[str, Any] | None = None,
) -> None:
    """Emit one JSON line describing a reseed, trigger or other operator action."""
    payload: dict[str, Any] = {
        "ts": datetime.now(timezone.utc).isoformat(),
        "event": event_type,
    }

    if actor is not None:
        payload["actor"] = actor

    if details:
        payload["details"] = _to_serializable(details)

    audit_logger.info(json.dumps(payload, ensure_ascii=True))
