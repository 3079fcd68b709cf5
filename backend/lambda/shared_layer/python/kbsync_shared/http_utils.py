"""kbsync_shared.http_utils — Invocation response envelope and error details."""

from __future__ import annotations

import json
import logging
from typing import Any, Dict, Mapping

logger = logging.getLogger(__name__)

__all__ = ["_error_detail", "_response"]


def _response(status_code: int, message: str) -> Dict[str, Any]:
    """Build the Lambda result: the body is the JSON-encoded message string."""
    return {
        "statusCode": status_code,
        "body": json.dumps(message),
    }


def _error_detail(exc: BaseException) -> Any:
    """Return the structured error body attached to ``exc``, if any.

    Document store errors carry the parsed API body on ``detail``; requests'
    HTTP errors carry the response itself; botocore's ``ClientError`` carries
    the parsed error dict on ``response``. Never raises.
    """
    detail = getattr(exc, "detail", None)
    if detail is not None:
        return detail
    response = getattr(exc, "response", None)
    if response is None:
        return None
    if isinstance(response, Mapping):
        return dict(response)
    to_json = getattr(response, "json", None)
    if not callable(to_json):
        return str(response)
    try:
        return to_json()
    except Exception:
        return getattr(response, "text", None)
