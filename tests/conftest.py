import json
from typing import Any, Dict, List, Optional

import pytest

from issue_agent.config import PACKAGE_SKILLS_DIR, Settings, get_settings
from issue_agent.generation import Completion
from issue_agent.github import CodeSearchHit, IssueReference, fetch_issue_bundle
from issue_agent.run_store import get_run_store
from issue_agent.skills import clear_skill_cache


ENV_VARS = [
    "OPENAI_API_KEY",
    "OPENAI_BASE_URL",
    "OPENAI_ORGANIZATION",
    "OPENAI_PROJECT",
    "OPENAI_PROVIDER_NAME",
    "OPENAI_API_TYPE",
    "GITHUB_TOKEN",
    "GH_TOKEN",
]

DEFAULT_MARKDOWN = "## Section\n\n- generated item"
DEFAULT_STREAM = ["# Report", "\n\nBody"]

ISSUE_PAYLOAD: Dict[str, Any] = {
    "id": 1001,
    "number": 42,
    "title": "Crash when saving large files",
    "state": "open",
    "body": "Saving a 2GB file crashes the SaveHandler.",
    "user": {"login": "octocat"},
    "labels": [{"name": "bug"}, "p1"],
    "assignees": [{"login": "maintainer"}],
    "created_at": "2024-01-01T00:00:00Z",
    "updated_at": "2024-01-02T00:00:00Z",
    "comments": 1,
}

COMMENTS_PAYLOAD: List[Dict[str, Any]] = [
    {
        "id": 7,
        "user": {"login": "maintainer"},
        "body": "Reproduced on main.",
        "created_at": "2024-01-01T01:00:00Z",
        "updated_at": "2024-01-01T01:00:00Z",
    }
]


class FakeProvider:
    """Scripted provider: each call consumes the next completion or stream outcome."""

    def __init__(self, completions=None, streams=None, model: str = "fake-model") -> None:
        self.model = model
        self.completions = list(completions or [])
        self.streams = list(streams or [])
        self.calls: List[Dict[str, Any]] = []

    def complete(self, system, prompt, response_schema=None):
        self.calls.append({"kind": "complete", "system": system, "prompt": prompt, "schema": response_schema})
        outcome = self.completions.pop(0) if self.completions else DEFAULT_MARKDOWN
        if isinstance(outcome, Exception):
            raise outcome
        if isinstance(outcome, Completion):
            return outcome
        return Completion(text=outcome, finish_reason="stop")

    def stream(self, system, prompt, response_schema=None):
        self.calls.append({"kind": "stream", "system": system, "prompt": prompt, "schema": response_schema})
        outcome = self.streams.pop(0) if self.streams else list(DEFAULT_STREAM)
        if isinstance(outcome, Exception):
            raise outcome
        return _iterate(outcome)

    def kinds(self) -> List[str]:
        return [call["kind"] for call in self.calls]


def _iterate(chunks):
    for chunk in chunks:
        if isinstance(chunk, Exception):
            raise chunk
        yield chunk


class FakeGitHubClient:
    """In-memory stand-in for `GitHubClient`."""

    def __init__(
        self,
        issue: Optional[Any] = None,
        comments: Optional[List[Dict[str, Any]]] = None,
        search: Optional[Dict[str, Any]] = None,
        files: Optional[Dict[str, Any]] = None,
    ) -> None:
        self.issue = dict(ISSUE_PAYLOAD) if issue is None else issue
        self.comments = list(COMMENTS_PAYLOAD) if comments is None else comments
        self.search = search or {}
        self.files = files or {}
        self.search_calls: List[str] = []
        self.file_calls: List[str] = []
        self.closed = False

    def get_issue(self, reference):
        if isinstance(self.issue, Exception):
            raise self.issue
        return self.issue

    def list_issue_comments(self, reference):
        return list(self.comments)

    def search_code(self, reference, query, per_page=8):
        self.search_calls.append(query)
        outcome = self.search.get(query, [])
        if isinstance(outcome, Exception):
            raise outcome
        return list(outcome)[:per_page]

    def get_file_content(self, reference, path, ref="HEAD"):
        self.file_calls.append(path)
        outcome = self.files.get(path, f"# {path}\n")
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    def close(self):
        self.closed = True


def hit(path: str, score: float) -> CodeSearchHit:
    return CodeSearchHit(
        name=path.rsplit("/", 1)[-1],
        path=path,
        sha="abc123",
        url=f"https://github.com/octo/widgets/blob/main/{path}",
        score=score,
    )


def understanding_json(**overrides: Any) -> str:
    payload = {
        "issueType": "bug",
        "severity": "high",
        "summary": "Saving large files crashes the editor.",
        "keySymptoms": ["Crash on save"],
        "acceptanceSignals": ["Large files save without crashing"],
        "searchKeywords": ["SaveHandler", "autosave", "large file"],
    }
    payload.update(overrides)
    return json.dumps(payload)


def investigation_json() -> str:
    return json.dumps(
        {
            "hypotheses": [
                {
                    "title": "Buffer overflow in SaveHandler",
                    "description": "The handler reads the whole file into memory.",
                    "confidence": "high",
                    "evidence": [
                        {
                            "filePath": "src/save.py",
                            "rationale": "Reads the file in one call.",
                            "confidence": "medium",
                            "excerpt": "data = fh.read()",
                        }
                    ],
                    "impactedPaths": ["src/save.py"],
                }
            ],
            "missingEvidence": [],
            "additionalFilesToInspect": ["src/io.py"],
        }
    )


def plan_json() -> str:
    return json.dumps(
        {
            "complexity": "M",
            "estimatedEffort": "2 days",
            "riskLevel": "medium",
            "risks": ["Regression in small-file saves"],
            "unknowns": [],
            "implementationSteps": [
                {"step": "Stream writes", "detail": "Write in chunks.", "verification": "Unit test"},
                {"step": "Add limit", "detail": "Guard memory.", "verification": "Load test"},
                {"step": "Document", "detail": "Update docs.", "verification": "Review"},
            ],
            "testPlan": ["Save 2GB file", "Save empty file", "Save while autosave runs"],
        }
    )


def report_json() -> str:
    return json.dumps(
        {
            "title": "Crash when saving large files",
            "repository": "wrong/repo",
            "issueNumber": 999,
            "issueUrl": "https://example.invalid",
            "generatedAt": "yesterday",
            "classification": {"type": "bug", "severity": "high", "complexity": "M", "riskLevel": "medium"},
            "executiveSummary": "Stream writes to avoid loading files into memory.",
            "rootCauseHypotheses": [
                {
                    "title": "Buffer overflow in SaveHandler",
                    "description": "Whole-file reads.",
                    "confidence": "high",
                    "impactedPaths": ["src/save.py"],
                }
            ],
            "evidence": [],
            "implementationPlan": [
                {"order": 1, "step": "Stream writes", "detail": "Write in chunks.", "verification": "Unit test"}
            ],
            "testingChecklist": ["Save 2GB file"],
            "openQuestions": [],
            "artifacts": {
                "issueSnapshotPath": "made-up.json",
                "reportJsonPath": "made-up-report.json",
                "reportMarkdownPath": "made-up-report.md",
            },
        }
    )


@pytest.fixture(autouse=True)
def _isolate_environment(monkeypatch):
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    get_settings.cache_clear()
    get_run_store.cache_clear()
    clear_skill_cache()
    yield
    get_settings.cache_clear()
    get_run_store.cache_clear()
    clear_skill_cache()


@pytest.fixture
def reference() -> IssueReference:
    return IssueReference(owner="octo", repo="widgets", issue_number=42)


@pytest.fixture
def bundle(reference):
    return fetch_issue_bundle(FakeGitHubClient(), reference)


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        OPENAI_API_KEY="sk-test",
        GITHUB_TOKEN="gh-test",
        output_dir=tmp_path / "reports",
        skills_dir=PACKAGE_SKILLS_DIR,
    )
