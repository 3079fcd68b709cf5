"""kbsync_shared.serialization — JSON log payloads and timestamp helpers."""

from __future__ import annotations

import datetime as dt
import json
import logging
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)

__all__ = ["_dumps", "_emit_structured_observability", "_now_z"]


def _now_z() -> str:
    """Current UTC timestamp in ISO 8601 format with Z suffix."""
    return dt.datetime.now(dt.timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def _dumps(value: Any) -> str:
    """Pretty JSON for log lines; tolerant of non-serializable values."""
    return json.dumps(value, indent=2, sort_keys=True, default=str, ensure_ascii=False)


def _emit_structured_observability(
    *,
    component: str,
    event: str,
    object_key: Optional[str] = None,
    action: Optional[str] = None,
    latency_ms: Optional[int] = None,
    error_code: Optional[str] = None,
    extra: Optional[Dict[str, Any]] = None,
) -> None:
    payload: Dict[str, Any] = {
        "timestamp": _now_z(),
        "component": component,
        "event": event,
        "object_key": str(object_key or ""),
        "action": str(action or ""),
        "latency_ms": int(max(0, latency_ms or 0)),
        "error_code": str(error_code or ""),
    }
    if extra:
        payload.update(extra)
    logger.info("[OBSERVABILITY] %s", json.dumps(payload, sort_keys=True, default=str))
