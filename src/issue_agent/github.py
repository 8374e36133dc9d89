"""GitHub REST access: issue references, issue bundles, code search and file contents."""

from __future__ import annotations

import base64
import binascii
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import httpx

from .errors import GitHostError, IssueReferenceError


LOGGER = logging.getLogger("issue_agent.github")

ISSUE_URL_PATTERN = re.compile(r"https?://github\.com/([^/\s]+)/([^/\s]+)/issues/(\d+)", re.IGNORECASE)
COMMENTS_PER_PAGE = 100
DEFAULT_API_URL = "https://api.github.com"


@dataclass(frozen=True)
class IssueReference:
    """Canonical pointer to one GitHub issue."""

    owner: str
    repo: str
    issue_number: int

    @property
    def repository(self) -> str:
        return f"{self.owner}/{self.repo}"

    @property
    def issue_url(self) -> str:
        return f"https://github.com/{self.owner}/{self.repo}/issues/{self.issue_number}"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "owner": self.owner,
            "repo": self.repo,
            "issueNumber": self.issue_number,
            "issueUrl": self.issue_url,
        }


@dataclass(frozen=True)
class IssueSnapshot:
    id: int
    number: int
    title: str
    state: str
    body: Optional[str]
    user: str
    labels: List[str] = field(default_factory=list)
    assignees: List[str] = field(default_factory=list)
    created_at: str = ""
    updated_at: str = ""
    comments: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "number": self.number,
            "title": self.title,
            "state": self.state,
            "body": self.body,
            "user": self.user,
            "labels": list(self.labels),
            "assignees": list(self.assignees),
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
            "comments": self.comments,
        }


@dataclass(frozen=True)
class IssueComment:
    id: int
    user: str
    body: Optional[str]
    created_at: str
    updated_at: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "user": self.user,
            "body": self.body,
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
        }


@dataclass(frozen=True)
class IssueBundle:
    """Issue plus its full, server-ordered comment list."""

    reference: IssueReference
    issue: IssueSnapshot
    comments: List[IssueComment]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "reference": self.reference.to_dict(),
            "issue": self.issue.to_dict(),
            "comments": [comment.to_dict() for comment in self.comments],
        }


@dataclass(frozen=True)
class CodeSearchHit:
    name: str
    path: str
    sha: str
    url: str
    score: float


def parse_issue_reference(
    issue_url: Optional[str] = None,
    repository: Optional[str] = None,
    issue_number: Optional[int] = None,
) -> IssueReference:
    """
    Build an `IssueReference` from either a GitHub issue URL or an ``owner/repo`` pair plus number.

    The URL wins when both forms are supplied.
    """
    if issue_url:
        match = ISSUE_URL_PATTERN.search(issue_url.strip())
        if not match:
            raise IssueReferenceError(f"Invalid issue URL: {issue_url}")
        owner, repo, number_raw = match.groups()
        return IssueReference(owner=owner, repo=repo, issue_number=int(number_raw))

    if not repository or not issue_number:
        raise IssueReferenceError("Provide either an issue URL or both a repository and an issue number.")

    parts = repository.strip().split("/")
    if len(parts) != 2 or not parts[0] or not parts[1]:
        raise IssueReferenceError(f"Invalid repository format: {repository}. Expected owner/repo.")

    try:
        number = int(issue_number)
    except (TypeError, ValueError) as exc:
        raise IssueReferenceError(f"Invalid issue number: {issue_number}") from exc
    if number <= 0:
        raise IssueReferenceError(f"Invalid issue number: {issue_number}")

    return IssueReference(owner=parts[0], repo=parts[1], issue_number=number)


class GitHubClient:
    """Minimal synchronous GitHub REST client over httpx."""

    def __init__(
        self,
        token: Optional[str] = None,
        base_url: str = DEFAULT_API_URL,
        timeout: float = 30.0,
        transport: Optional[httpx.BaseTransport] = None,
    ) -> None:
        headers = {
            "Accept": "application/vnd.github+json",
            "X-GitHub-Api-Version": "2022-11-28",
            "User-Agent": "issue-analysis-agent",
        }
        if token and token.strip():
            headers["Authorization"] = f"Bearer {token.strip()}"
        self._http = httpx.Client(base_url=base_url, headers=headers, timeout=timeout, transport=transport)

    def __enter__(self) -> "GitHubClient":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    def close(self) -> None:
        self._http.close()

    def get_issue(self, reference: IssueReference) -> Dict[str, Any]:
        payload = self._get_json(f"/repos/{reference.owner}/{reference.repo}/issues/{reference.issue_number}")
        if not isinstance(payload, dict):
            raise GitHostError(f"Unexpected issue payload for {reference.issue_url}")
        return payload

    def list_issue_comments(self, reference: IssueReference) -> List[Dict[str, Any]]:
        """Return every comment on the issue, following pagination until a short page."""
        path = f"/repos/{reference.owner}/{reference.repo}/issues/{reference.issue_number}/comments"
        comments: List[Dict[str, Any]] = []
        page = 1
        while True:
            batch = self._get_json(path, params={"per_page": COMMENTS_PER_PAGE, "page": page})
            if not isinstance(batch, list):
                raise GitHostError(f"Unexpected comments payload for {reference.issue_url}")
            comments.extend(batch)
            if len(batch) < COMMENTS_PER_PAGE:
                return comments
            page += 1

    def search_code(self, reference: IssueReference, query: str, per_page: int = 8) -> List[CodeSearchHit]:
        normalized = query.strip()
        if not normalized:
            return []
        payload = self._get_json(
            "/search/code",
            params={"q": f"{normalized} repo:{reference.owner}/{reference.repo}", "per_page": per_page},
        )
        items = payload.get("items", []) if isinstance(payload, dict) else None
        if not isinstance(items, list):
            raise GitHostError(f"Unexpected code search payload for {normalized!r}")

        hits: List[CodeSearchHit] = []
        for item in items:
            if not isinstance(item, dict) or not item.get("path"):
                continue
            try:
                score = float(item.get("score") or 0.0)
            except (TypeError, ValueError) as exc:
                raise GitHostError(f"Invalid search score for {item['path']}: {item.get('score')!r}") from exc
            hits.append(
                CodeSearchHit(
                    name=item.get("name", ""),
                    path=item["path"],
                    sha=item.get("sha", ""),
                    url=item.get("html_url", ""),
                    score=score,
                )
            )
        return hits

    def get_file_content(self, reference: IssueReference, path: str, ref: str = "HEAD") -> str:
        """Return the decoded UTF-8 text of *path* at *ref*."""
        payload = self._get_json(
            f"/repos/{reference.owner}/{reference.repo}/contents/{path.lstrip('/')}",
            params={"ref": ref},
        )
        if not isinstance(payload, dict) or payload.get("type") != "file":
            raise GitHostError(f"Path is not a file: {path}")
        content = payload.get("content")
        if not content:
            raise GitHostError(f"No file content returned for {path}")
        encoding = payload.get("encoding")
        if encoding != "base64":
            raise GitHostError(f"Unsupported encoding ({encoding}) for {path}")
        try:
            raw = base64.b64decode(content)
        except (binascii.Error, ValueError) as exc:
            raise GitHostError(f"Could not decode content for {path}: {exc}") from exc
        return raw.decode("utf-8", errors="replace")

    def _get_json(self, path: str, params: Optional[Dict[str, Any]] = None) -> Any:
        try:
            response = self._http.get(path, params=params)
        except httpx.HTTPError as exc:
            raise GitHostError(f"GitHub request to {path} failed: {exc}") from exc

        if response.status_code == 404:
            raise GitHostError(f"GitHub resource not found: {path}", status_code=404)
        if response.is_error:
            raise GitHostError(
                f"GitHub request to {path} failed with {response.status_code}: {_error_message(response)}",
                status_code=response.status_code,
            )
        try:
            return response.json()
        except ValueError as exc:
            raise GitHostError(
                f"GitHub returned a non-JSON body for {path} ({response.status_code})",
                status_code=response.status_code,
            ) from exc


def fetch_issue_bundle(client: GitHubClient, reference: IssueReference) -> IssueBundle:
    """Fetch the issue and its comments; pull requests are rejected."""
    data = client.get_issue(reference)
    if data.get("pull_request"):
        raise GitHostError(
            f"Issue #{reference.issue_number} in {reference.repository} is a pull request, not a regular issue."
        )

    comments = client.list_issue_comments(reference)
    LOGGER.debug("Fetched %s comments for %s", len(comments), reference.issue_url)

    issue = IssueSnapshot(
        id=data.get("id", 0),
        number=data.get("number", reference.issue_number),
        title=data.get("title") or "",
        state=data.get("state") or "open",
        body=data.get("body"),
        user=_login(data.get("user")),
        labels=[name for name in (_label_name(label) for label in data.get("labels") or []) if name],
        assignees=[_login(assignee) for assignee in data.get("assignees") or [] if assignee],
        created_at=data.get("created_at") or "",
        updated_at=data.get("updated_at") or "",
        comments=data.get("comments") or 0,
    )
    return IssueBundle(
        reference=reference,
        issue=issue,
        comments=[
            IssueComment(
                id=comment.get("id", 0),
                user=_login(comment.get("user")),
                body=comment.get("body"),
                created_at=comment.get("created_at") or "",
                updated_at=comment.get("updated_at") or "",
            )
            for comment in comments
        ],
    )


def _login(user: Any) -> str:
    if isinstance(user, dict) and user.get("login"):
        return str(user["login"])
    return "unknown"


def _label_name(label: Any) -> Optional[str]:
    if isinstance(label, str):
        return label
    if isinstance(label, dict):
        return label.get("name")
    return None


def _error_message(response: httpx.Response) -> str:
    try:
        payload = response.json()
    except ValueError:
        return response.text[:300]
    if isinstance(payload, dict) and isinstance(payload.get("message"), str):
        return payload["message"]
    return response.text[:300]
