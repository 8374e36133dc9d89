from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional

from ..errors import NoStructuredOutputError
from ..generation import generate_structured, generate_text
from ..generation.recovery import balanced_slice
from ..github import IssueBundle
from ..markdown import render_understanding_markdown
from ..schemas import ISSUE_TYPES, SEVERITIES, IssueUnderstanding
from ..skills import ISSUE_TRIAGE
from .base import AgentContext, serialize_issue


LOGGER = logging.getLogger("issue_agent.agents.understanding")

MAX_KEYWORDS = 12
BULLET = re.compile(r"^[-*]\s+")
KEYWORD_SPLIT = re.compile(r"[^a-zA-Z0-9_./:-]+")


@dataclass
class UnderstandingResult:
    markdown: str
    search_keywords: List[str]
    artifact: Optional[IssueUnderstanding] = None


def derive_keywords(text: str, min_length: int = 4, limit: int = MAX_KEYWORDS) -> List[str]:
    tokens = [token.strip() for token in KEYWORD_SPLIT.split(text or "")]
    return _unique(token for token in tokens if len(token) >= min_length)[:limit]


def bullet_keywords(markdown: str) -> List[str]:
    """Return the text of every ``-``/``*`` bullet line with at least three characters."""
    items = []
    for line in markdown.splitlines():
        line = line.strip()
        if BULLET.match(line):
            item = BULLET.sub("", line).strip()
            if len(item) >= 3:
                items.append(item)
    return items


def run_markdown(context: AgentContext) -> UnderstandingResult:
    system = context.instructions(
        [
            f"You are an issue triage specialist. Reply in {context.language}.",
            "Return a concise markdown document with sections:",
            "- Issue Classification",
            "- Key Symptoms",
            "- Acceptance Signals",
            "- Suggested Search Keywords",
            "",
            'In "Suggested Search Keywords", add 8-12 concrete terms as a bullet list.',
        ],
        ISSUE_TRIAGE,
    )
    markdown = generate_text(context.provider, system, serialize_issue(context.bundle))
    issue = context.bundle.issue
    keywords = _unique(
        [
            *bullet_keywords(markdown),
            *derive_keywords(issue.title),
            *derive_keywords(issue.body or ""),
            *derive_keywords(markdown),
        ]
    )[:MAX_KEYWORDS]
    return UnderstandingResult(markdown=markdown, search_keywords=keywords)


def run_structured(context: AgentContext) -> UnderstandingResult:
    system = context.instructions(
        [
            f"You are an issue triage specialist. Reply in {context.language}.",
            "Use only available evidence from the issue and comments.",
        ],
        ISSUE_TRIAGE,
    )
    prompt = serialize_issue(context.bundle, max_comments=15)
    try:
        understanding = generate_structured(context.provider, IssueUnderstanding, system, prompt)
    except NoStructuredOutputError as exc:
        recovered = recover_issue_understanding(exc.text, context.bundle)
        if recovered is None:
            raise
        LOGGER.info("Issue understanding rebuilt from loosely shaped model output")
        understanding = recovered

    issue = context.bundle.issue
    keywords = _unique(
        [*understanding.search_keywords, *derive_keywords(issue.title), *derive_keywords(issue.body or "")]
    )[:MAX_KEYWORDS]
    return UnderstandingResult(
        markdown=render_understanding_markdown(understanding),
        search_keywords=keywords,
        artifact=understanding,
    )


def normalize_issue_type(value: Any) -> str:
    if not isinstance(value, str):
        return "other"
    normalized = value.strip().lower()
    if normalized in ISSUE_TYPES:
        return normalized
    if any(word in normalized for word in ("bug", "regression", "incident")):
        return "bug"
    if any(word in normalized for word in ("feature", "enhancement", "request")):
        return "feature"
    if any(word in normalized for word in ("refactor", "cleanup")):
        return "refactor"
    if "doc" in normalized:
        return "documentation"
    if any(word in normalized for word in ("question", "help")):
        return "question"
    return "other"


def normalize_severity(value: Any) -> str:
    if not isinstance(value, str):
        return "medium"
    normalized = value.strip().lower()
    if normalized in SEVERITIES:
        return normalized
    if any(word in normalized for word in ("critical", "blocker", "p0")):
        return "critical"
    if any(word in normalized for word in ("high", "major", "p1")):
        return "high"
    if any(word in normalized for word in ("low", "minor", "p3")):
        return "low"
    return "medium"


def recover_issue_understanding(text: Optional[str], bundle: IssueBundle) -> Optional[IssueUnderstanding]:
    """
    Map a loosely shaped JSON object onto `IssueUnderstanding`.

    Models often answer with snake_case keys, a nested ``classification``
    object, or priority words instead of the enumerated values; this fills the
    gaps from the issue itself.
    """
    raw = balanced_slice(text or "", "{", "}")
    if not raw:
        return None
    try:
        parsed = json.loads(raw)
    except ValueError:
        return None
    if not isinstance(parsed, dict):
        return None

    classification = parsed.get("classification") if isinstance(parsed.get("classification"), dict) else {}
    issue = bundle.issue

    symptoms = _unique(
        [
            *_string_list(_first_present(parsed, "keySymptoms", "key_symptoms", "symptoms")),
            *_string_list(parsed.get("facts")),
        ]
    )[:MAX_KEYWORDS]
    signals = _unique(
        _string_list(_first_present(parsed, "acceptanceSignals", "acceptance_signals", "expected_signals"))
    )[:MAX_KEYWORDS]
    keywords = _unique(
        [
            *_string_list(_first_present(parsed, "searchKeywords", "search_keywords", "keywords", "search_terms")),
            *derive_keywords(issue.title, min_length=3, limit=8),
            *derive_keywords(issue.body or "", min_length=3, limit=8),
        ]
    )[:MAX_KEYWORDS]
    if len(keywords) < 3:
        keywords = _unique([*keywords, *derive_keywords(bundle.reference.issue_url, min_length=3, limit=8)])[
            :MAX_KEYWORDS
        ]
    if len(keywords) < 3:
        keywords = _unique([*keywords, bundle.reference.repository, str(issue.number)])

    candidate = {
        "issueType": normalize_issue_type(_first_present(parsed, "issueType", "issue_type") or classification.get("type")),
        "severity": normalize_severity(_first_present(parsed, "severity", "priority") or classification.get("severity")),
        "summary": _first_string(parsed.get("summary"), parsed.get("executiveSummary"), parsed.get("title"))
        or issue.title,
        "keySymptoms": symptoms or [_first_string(parsed.get("title")) or issue.title or "Issue symptom captured in report."],
        "acceptanceSignals": signals or ["Behavior should be reproducible and verifiable with endpoint responses."],
        "searchKeywords": keywords,
    }
    try:
        return IssueUnderstanding.model_validate(candidate)
    except ValueError:
        return None


def _first_present(data: Dict[str, Any], *keys: str) -> Any:
    for key in keys:
        if data.get(key) is not None:
            return data[key]
    return None


def _first_string(*values: Any) -> Optional[str]:
    for value in values:
        if isinstance(value, str) and value.strip():
            return value.strip()
    return None


def _string_list(value: Any) -> List[str]:
    if not isinstance(value, list):
        return []
    items = []
    for item in value:
        if isinstance(item, str):
            text = item.strip()
        elif isinstance(item, dict):
            text = _first_string(*(item.get(key) for key in ("signal", "value", "name", "title", "text", "description"))) or ""
        else:
            text = ""
        if text:
            items.append(text)
    return items


def _unique(items: Iterable[str]) -> List[str]:
    seen = set()
    result = []
    for item in items:
        if item and item not in seen:
            seen.add(item)
            result.append(item)
    return result
