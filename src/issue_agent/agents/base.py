"""Shared inputs and prompt serialization for the analysis agents."""

from __future__ import annotations

import json
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, List, Optional, Sequence

from ..evidence import FileEvidence
from ..generation import Provider
from ..github import IssueBundle
from ..schemas import ArtifactModel
from ..skills import load_skill, merge_instructions


@dataclass
class AgentContext:
    """Inputs every agent needs: the model handle, the issue, and output preferences."""

    provider: Provider
    bundle: IssueBundle
    language: str
    skills_dir: Path

    def instructions(self, lines: Sequence[str], skill: str) -> str:
        return merge_instructions("\n".join(lines), load_skill(skill, self.skills_dir))

    def issue_header(self) -> List[str]:
        reference = self.bundle.reference
        return [
            f"Repository: {reference.repository}",
            f"Issue #{reference.issue_number}: {self.bundle.issue.title}",
        ]


@dataclass
class Document:
    """Output of one generation step: markdown for people, and the validated artifact when there is one."""

    markdown: str
    artifact: Optional[ArtifactModel] = None


def serialize_issue(bundle: IssueBundle, max_comments: int = 20, max_comment_chars: int = 1200) -> str:
    comments = "\n\n---\n\n".join(
        f"Comment {index} by {comment.user} at {comment.created_at}:\n{(comment.body or '')[:max_comment_chars]}"
        for index, comment in enumerate(bundle.comments[:max_comments], start=1)
    )
    issue = bundle.issue
    return "\n".join(
        [
            f"Repository: {bundle.reference.repository}",
            f"Issue: #{issue.number} {issue.title}",
            f"Author: {issue.user}",
            f"Labels: {', '.join(issue.labels) or 'none'}",
            f"Created: {issue.created_at}",
            f"Updated: {issue.updated_at}",
            "",
            "Issue body:",
            issue.body or "(empty)",
            "",
            "Issue comments:",
            comments or "(no comments)",
        ]
    )


def serialize_evidence(files: Iterable[FileEvidence]) -> str:
    blocks = [
        "\n".join(
            [
                f"File {index}: {item.path}",
                f"Source query: {item.source_query}",
                f"GitHub URL: {item.url}",
                f"Truncated: {'yes' if item.truncated else 'no'}",
                "Content:",
                item.content,
            ]
        )
        for index, item in enumerate(files, start=1)
    ]
    if not blocks:
        return "No file evidence was found from GitHub code search."
    return "\n\n====\n\n".join(blocks)


def dump_artifact(artifact: Optional[ArtifactModel]) -> str:
    if artifact is None:
        return "(none)"
    return json.dumps(artifact.to_json_dict(), indent=2, ensure_ascii=False)
