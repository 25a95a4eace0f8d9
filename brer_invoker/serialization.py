"""brer_invoker.serialization — Timestamp helpers and structured observability lines."""

from __future__ import annotations

import datetime as dt
import json
import logging
import time
from typing import Any, Dict, Optional

__all__ = [
    "_emit_structured_observability",
    "_now_z",
    "_parse_iso",
    "_unix_now",
    "_utcnow",
]

logger = logging.getLogger(__name__)


def _utcnow() -> dt.datetime:
    return dt.datetime.now(dt.timezone.utc)


def _now_z() -> str:
    return _utcnow().strftime("%Y-%m-%dT%H:%M:%SZ")


def _unix_now() -> int:
    return int(time.time())


def _parse_iso(value: str) -> dt.datetime:
    """Parse an ISO 8601 timestamp (``Z`` suffix allowed) into an aware datetime.

    Naive values are taken as UTC. Raises ``ValueError`` on malformed input.
    """
    text = str(value or "").strip()
    if not text:
        raise ValueError("empty timestamp")
    parsed = dt.datetime.fromisoformat(text.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=dt.timezone.utc)
    return parsed


def _emit_structured_observability(
    *,
    component: str,
    event: str,
    invocation_ulid: Optional[str] = None,
    latency_ms: Optional[int] = None,
    error_code: Optional[str] = None,
    extra: Optional[Dict[str, Any]] = None,
) -> None:
    payload: Dict[str, Any] = {
        "timestamp": _now_z(),
        "component": component,
        "event": event,
        "invocation_ulid": str(invocation_ulid or ""),
        "latency_ms": int(max(0, latency_ms or 0)),
        "error_code": str(error_code or ""),
    }
    if extra:
        payload.update(extra)
    logger.info("[OBSERVABILITY] %s", json.dumps(payload, sort_keys=True, default=str))
