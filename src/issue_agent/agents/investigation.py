from __future__ import annotations

from typing import Sequence

from ..evidence import FileEvidence
from ..generation import generate_structured, generate_text
from ..markdown import render_investigation_markdown
from ..schemas import CodeInvestigation
from ..skills import CODE_ROOT_CAUSE
from .base import AgentContext, Document, dump_artifact, serialize_evidence
from .understanding import UnderstandingResult


ROLE = "You are a senior software engineer investigating root causes for GitHub issues."


def _prompt(context: AgentContext, understanding: str, files: Sequence[FileEvidence]) -> str:
    return "\n".join(
        [
            *context.issue_header(),
            "",
            "Issue understanding:",
            understanding,
            "",
            "Issue body:",
            context.bundle.issue.body or "(empty)",
            "",
            "Evidence files:",
            serialize_evidence(files),
        ]
    )


def run_markdown(context: AgentContext, understanding: UnderstandingResult, files: Sequence[FileEvidence]) -> Document:
    system = context.instructions(
        [
            f"{ROLE} Reply in {context.language}.",
            "Return a markdown document with sections:",
            "- Root Cause Hypotheses",
            "- Evidence Mapping",
            "- Impacted Code Paths",
            "- Missing Evidence",
            "",
            "Use explicit file paths in every hypothesis.",
        ],
        CODE_ROOT_CAUSE,
    )
    markdown = generate_text(context.provider, system, _prompt(context, understanding.markdown, files))
    return Document(markdown=markdown)


def run_structured(
    context: AgentContext, understanding: UnderstandingResult, files: Sequence[FileEvidence]
) -> Document:
    system = context.instructions(
        [
            f"{ROLE} Reply in {context.language}.",
            "Only cite files provided in the code context unless explicitly stating missing evidence.",
        ],
        CODE_ROOT_CAUSE,
    )
    prompt = _prompt(context, dump_artifact(understanding.artifact), files)
    investigation = generate_structured(context.provider, CodeInvestigation, system, prompt)
    return Document(markdown=render_investigation_markdown(investigation), artifact=investigation)
