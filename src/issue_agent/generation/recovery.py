"""
Recover structured values from model text that was not delivered as clean JSON.

Recovery is an ordered list of extraction strategies. Each strategy proposes
zero or more candidate substrings; every candidate becomes one tagged
`RecoveryAttempt`, and the first attempt that parses and validates wins.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass, field
from typing import Any, Callable, List, Optional, Sequence, Tuple

from pydantic import TypeAdapter, ValidationError


ACCEPTED = "accepted"
INVALID_JSON = "invalid-json"
INVALID_SHAPE = "invalid-shape"

FENCE_PATTERN = re.compile(r"```[\w+-]*[ \t]*\n?([\s\S]*?)```")

Strategy = Callable[[str], List[str]]


@dataclass(frozen=True)
class RecoveryAttempt:
    strategy: str
    candidate: str
    status: str
    value: Any = None
    error: Optional[str] = None


@dataclass
class RecoveryOutcome:
    attempts: List[RecoveryAttempt] = field(default_factory=list)

    @property
    def accepted(self) -> Optional[RecoveryAttempt]:
        for attempt in self.attempts:
            if attempt.status == ACCEPTED:
                return attempt
        return None

    @property
    def value(self) -> Any:
        attempt = self.accepted
        return attempt.value if attempt else None


def full_text(text: str) -> List[str]:
    trimmed = text.strip()
    return [trimmed] if trimmed else []


def fenced_blocks(text: str) -> List[str]:
    return [block.strip() for block in FENCE_PATTERN.findall(text) if block.strip()]


def balanced_slice(text: str, open_char: str, close_char: str) -> Optional[str]:
    """Return the first balanced ``open_char ... close_char`` slice, ignoring brackets inside strings."""
    start = text.find(open_char)
    if start < 0:
        return None

    depth = 0
    in_string = False
    escaped = False
    for index in range(start, len(text)):
        char = text[index]
        if in_string:
            if escaped:
                escaped = False
            elif char == "\\":
                escaped = True
            elif char == '"':
                in_string = False
            continue
        if char == '"':
            in_string = True
        elif char == open_char:
            depth += 1
        elif char == close_char:
            depth -= 1
            if depth == 0:
                return text[start : index + 1]
    return None


def balanced_object(text: str) -> List[str]:
    found = balanced_slice(text, "{", "}")
    return [found.strip()] if found else []


def balanced_array(text: str) -> List[str]:
    found = balanced_slice(text, "[", "]")
    return [found.strip()] if found else []


STRATEGIES: Sequence[Tuple[str, Strategy]] = (
    ("full-text", full_text),
    ("fenced-blocks", fenced_blocks),
    ("balanced-object", balanced_object),
    ("balanced-array", balanced_array),
)


def extract_candidates(text: str) -> List[Tuple[str, str]]:
    """Return ``(strategy, candidate)`` pairs in strategy order with duplicate candidates removed."""
    seen = set()
    candidates: List[Tuple[str, str]] = []
    for name, strategy in STRATEGIES:
        for candidate in strategy(text):
            if candidate in seen:
                continue
            seen.add(candidate)
            candidates.append((name, candidate))
    return candidates


def recover(text: Optional[str], target: Any) -> RecoveryOutcome:
    """Try every candidate in *text* against *target* (a type or `TypeAdapter`) until one validates."""
    outcome = RecoveryOutcome()
    if not text:
        return outcome

    adapter = target if isinstance(target, TypeAdapter) else TypeAdapter(target)
    for strategy, candidate in extract_candidates(text):
        attempt = _attempt(adapter, strategy, candidate)
        outcome.attempts.append(attempt)
        if attempt.status == ACCEPTED:
            break
    return outcome


def _attempt(adapter: TypeAdapter, strategy: str, candidate: str) -> RecoveryAttempt:
    try:
        parsed = json.loads(candidate)
    except ValueError as exc:
        return RecoveryAttempt(strategy=strategy, candidate=candidate, status=INVALID_JSON, error=str(exc))
    try:
        value = adapter.validate_python(parsed)
    except ValidationError as exc:
        return RecoveryAttempt(
            strategy=strategy,
            candidate=candidate,
            status=INVALID_SHAPE,
            error=f"{exc.error_count()} validation error(s)",
        )
    return RecoveryAttempt(strategy=strategy, candidate=candidate, status=ACCEPTED, value=value)


__all__ = [
    "ACCEPTED",
    "INVALID_JSON",
    "INVALID_SHAPE",
    "RecoveryAttempt",
    "RecoveryOutcome",
    "STRATEGIES",
    "balanced_slice",
    "extract_candidates",
    "recover",
]
