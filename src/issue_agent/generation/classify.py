"""Map typed provider failures to a transport fallback decision."""

from __future__ import annotations

import json
import re
from enum import Enum
from typing import Optional

from ..errors import FailureKind, IssueAgentError


STREAM_REQUIRED = re.compile(r"stream\s+must\s+be\s+set\s+to\s+true", re.IGNORECASE)


class Fallback(str, Enum):
    STREAM = "stream"
    PROPAGATE = "propagate"


def extract_provider_message(raw: Optional[str]) -> Optional[str]:
    """Return ``error.message`` from a JSON error body, or the raw body when it is not one."""
    if not raw:
        return None
    try:
        parsed = json.loads(raw)
    except ValueError:
        return raw
    if isinstance(parsed, dict):
        error = parsed.get("error")
        if isinstance(error, dict) and isinstance(error.get("message"), str):
            return error["message"]
    return raw


def fallback_for(failure: IssueAgentError) -> Fallback:
    """Decide whether *failure* should be answered by repeating the call in streaming mode."""
    return Fallback.STREAM if _requires_streaming(failure) else Fallback.PROPAGATE


def _requires_streaming(failure: IssueAgentError) -> bool:
    if failure.kind is FailureKind.RETRY_EXHAUSTED:
        return any(_requires_streaming(item) for item in failure.errors)
    if failure.kind is FailureKind.PROVIDER_CALL:
        return (
            _mentions_stream_required(str(failure))
            or _mentions_stream_required(failure.provider_message)
            or _mentions_stream_required(extract_provider_message(failure.response_body))
        )
    return _mentions_stream_required(str(failure))


def _mentions_stream_required(message: Optional[str]) -> bool:
    return bool(message and STREAM_REQUIRED.search(message))


__all__ = ["Fallback", "STREAM_REQUIRED", "extract_provider_message", "fallback_for"]
