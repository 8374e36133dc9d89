from __future__ import annotations

import json
from typing import List, Optional

from ..generation import DeltaSink, generate_structured, generate_text
from ..markdown import render_report_markdown
from ..schemas import CodeInvestigation, IssueReport, ReportArtifacts
from ..skills import REPORT_WRITING
from .base import AgentContext, Document, dump_artifact
from .understanding import UnderstandingResult


ROLE = "You are a principal engineer writing an implementation-ready issue analysis report."

SECTIONS = [
    "1) Executive Summary",
    "2) Classification",
    "3) Root Cause Hypotheses",
    "4) Evidence",
    "5) Implementation Plan",
    "6) Testing Checklist",
    "7) Open Questions",
    "8) Artifacts",
]


def _header(context: AgentContext, generated_at: str) -> List[str]:
    return [
        *context.issue_header(),
        f"Issue URL: {context.bundle.reference.issue_url}",
        f"Generated At: {generated_at}",
    ]


def run_markdown(
    context: AgentContext,
    understanding: UnderstandingResult,
    investigation: Document,
    plan: Document,
    artifacts: ReportArtifacts,
    generated_at: str,
    sink: Optional[DeltaSink] = None,
) -> Document:
    """Write the final report as markdown, streaming deltas to *sink* as they arrive."""
    system = context.instructions(
        [
            f"{ROLE} Reply in {context.language}.",
            "Return a complete markdown report only.",
            "Use sections:",
            *SECTIONS,
            "",
            "Be concise but actionable.",
        ],
        REPORT_WRITING,
    )
    prompt = "\n".join(
        [
            *_header(context, generated_at),
            "",
            "Issue understanding:",
            understanding.markdown,
            "",
            "Code investigation:",
            investigation.markdown,
            "",
            "Execution plan:",
            plan.markdown,
            "",
            "Artifacts (must include these paths in Artifacts section):",
            dump_artifact(artifacts),
        ]
    )
    return Document(markdown=generate_text(context.provider, system, prompt, sink=sink))


def run_structured(
    context: AgentContext,
    understanding: UnderstandingResult,
    investigation: Document,
    plan: Document,
    artifacts: ReportArtifacts,
    generated_at: str,
    sink: Optional[DeltaSink] = None,
) -> Document:
    """
    Write the final report as a validated `IssueReport`.

    Identity fields and artifact paths are overwritten with the known values,
    whatever the model returned for them. The rendered markdown is handed to
    *sink* as a single delta.
    """
    system = context.instructions(
        [f"{ROLE} Reply in {context.language}. Stay grounded in evidence."],
        REPORT_WRITING,
    )
    evidence = []
    if isinstance(investigation.artifact, CodeInvestigation):
        evidence = [
            item.to_json_dict() for hypothesis in investigation.artifact.hypotheses for item in hypothesis.evidence
        ]
    prompt = "\n".join(
        [
            *_header(context, generated_at),
            "",
            "Issue understanding:",
            dump_artifact(understanding.artifact),
            "",
            "Code investigation:",
            dump_artifact(investigation.artifact),
            "",
            "Execution plan:",
            dump_artifact(plan.artifact),
            "",
            "Artifacts (must be copied exactly):",
            dump_artifact(artifacts),
            "",
            "Evidence list:",
            json.dumps(evidence, indent=2, ensure_ascii=False),
        ]
    )
    generated = generate_structured(context.provider, IssueReport, system, prompt)
    reference = context.bundle.reference
    report = generated.model_copy(
        update={
            "repository": reference.repository,
            "issue_number": reference.issue_number,
            "issue_url": reference.issue_url,
            "generated_at": generated_at,
            "artifacts": artifacts,
        }
    )
    markdown = render_report_markdown(report)
    if sink is not None and markdown:
        sink(markdown)
    return Document(markdown=markdown, artifact=report)
