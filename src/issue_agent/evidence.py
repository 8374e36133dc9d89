"""Turn free-text keywords into a ranked, budgeted set of source excerpts."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Tuple

import httpx

from .config import EvidenceBudget
from .errors import GitHostError
from .github import GitHubClient, IssueReference


LOGGER = logging.getLogger("issue_agent.evidence")

# C0/C1 control characters, keeping tab, newline and carriage return.
CONTROL_CHARS = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f-\x9f]")
DEFAULT_REF = "HEAD"


@dataclass(frozen=True)
class FileEvidence:
    path: str
    source_query: str
    url: str
    content: str
    truncated: bool

    def to_dict(self) -> Dict[str, Any]:
        return {
            "path": self.path,
            "sourceQuery": self.source_query,
            "url": self.url,
            "content": self.content,
            "truncated": self.truncated,
        }


@dataclass
class EvidenceCollection:
    files: List[FileEvidence] = field(default_factory=list)
    queries: List[str] = field(default_factory=list)
    skipped_files: List[str] = field(default_factory=list)
    failed_queries: List[str] = field(default_factory=list)


@dataclass
class _Candidate:
    path: str
    url: str
    score: float
    source_query: str


def normalize_keywords(keywords: Iterable[str], max_queries: int) -> List[str]:
    """Trim, drop empties and dedupe case-insensitively, keeping first-seen casing and order."""
    seen = set()
    normalized: List[str] = []
    for keyword in keywords:
        clean = (keyword or "").strip()
        if not clean:
            continue
        key = clean.lower()
        if key in seen:
            continue
        seen.add(key)
        normalized.append(clean)
        if len(normalized) >= max_queries:
            break
    return normalized


def sanitize_text(text: str) -> str:
    return CONTROL_CHARS.sub("", text).strip()


def truncate_text(text: str, max_chars: int) -> Tuple[str, bool]:
    if len(text) <= max_chars:
        return text, False
    return text[:max_chars], True


def collect_evidence(
    client: GitHubClient,
    reference: IssueReference,
    keywords: Iterable[str],
    budget: Optional[EvidenceBudget] = None,
) -> EvidenceCollection:
    """
    Search the repository once per normalized keyword and fetch the best-scoring files.

    Individual search or fetch failures never abort the collection: failed
    queries land in ``failed_queries`` and unreadable files in ``skipped_files``.
    """
    budget = budget or EvidenceBudget()
    queries = normalize_keywords(keywords, budget.max_queries)
    collection = EvidenceCollection(queries=queries)
    if not queries:
        return collection

    best_by_path: Dict[str, _Candidate] = {}
    for query in queries:
        try:
            hits = client.search_code(reference, query, per_page=budget.search_per_query)
        except (GitHostError, httpx.HTTPError) as exc:
            LOGGER.warning("Code search for %r failed; skipping query: %s", query, exc)
            collection.failed_queries.append(query)
            continue
        for hit in hits:
            existing = best_by_path.get(hit.path)
            if existing is None or hit.score > existing.score:
                best_by_path[hit.path] = _Candidate(
                    path=hit.path, url=hit.url, score=hit.score, source_query=query
                )

    ranked = sorted(best_by_path.values(), key=lambda candidate: candidate.score, reverse=True)
    for candidate in ranked[: budget.max_files]:
        try:
            raw = client.get_file_content(reference, candidate.path, ref=DEFAULT_REF)
        except (GitHostError, httpx.HTTPError) as exc:
            LOGGER.warning("Skipping %s: %s", candidate.path, exc)
            collection.skipped_files.append(candidate.path)
            continue
        content, truncated = truncate_text(sanitize_text(raw), budget.max_chars_per_file)
        collection.files.append(
            FileEvidence(
                path=candidate.path,
                source_query=candidate.source_query,
                url=candidate.url,
                content=content,
                truncated=truncated,
            )
        )

    LOGGER.info(
        "Collected %s evidence files from %s queries (%s skipped, %s failed queries)",
        len(collection.files),
        len(queries),
        len(collection.skipped_files),
        len(collection.failed_queries),
    )
    return collection
