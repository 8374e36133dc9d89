"""Markdown renderings of the structured artifacts."""

from __future__ import annotations

from typing import List

from .schemas import CodeInvestigation, ExecutionPlan, IssueReport, IssueUnderstanding


def render_understanding_markdown(understanding: IssueUnderstanding) -> str:
    lines: List[str] = ["## Issue Classification", ""]
    lines.append(f"- **Type:** {understanding.issue_type}")
    lines.append(f"- **Severity:** {understanding.severity}")
    lines.extend(["", understanding.summary, "", "## Key Symptoms", ""])
    lines.extend(f"- {symptom}" for symptom in understanding.key_symptoms)
    lines.extend(["", "## Acceptance Signals", ""])
    lines.extend(f"- {signal}" for signal in understanding.acceptance_signals)
    lines.extend(["", "## Suggested Search Keywords", ""])
    lines.extend(f"- {keyword}" for keyword in understanding.search_keywords)
    return "\n".join(lines)


def render_investigation_markdown(investigation: CodeInvestigation) -> str:
    lines: List[str] = ["## Root Cause Hypotheses", ""]
    for hypothesis in investigation.hypotheses:
        lines.extend([f"### {hypothesis.title} ({hypothesis.confidence})", "", hypothesis.description, ""])
        lines.append("Evidence:")
        for item in hypothesis.evidence:
            lines.append(f"- `{item.file_path}` ({item.confidence}): {item.rationale}")
        lines.append("")
        lines.append("Impacted paths:")
        lines.extend(f"- `{path}`" for path in hypothesis.impacted_paths)
        lines.append("")

    lines.extend(["## Missing Evidence", ""])
    lines.extend(_bullets_or_none(investigation.missing_evidence))
    lines.extend(["", "## Additional Files To Inspect", ""])
    lines.extend(_bullets_or_none([f"`{path}`" for path in investigation.additional_files_to_inspect]))
    return "\n".join(lines)


def render_plan_markdown(plan: ExecutionPlan) -> str:
    lines: List[str] = ["## Complexity and Risk", ""]
    lines.append(f"- **Complexity:** {plan.complexity}")
    lines.append(f"- **Estimated Effort:** {plan.estimated_effort}")
    lines.append(f"- **Risk Level:** {plan.risk_level}")
    lines.extend(f"- Risk: {risk}" for risk in plan.risks)
    lines.extend(f"- Unknown: {unknown}" for unknown in plan.unknowns)
    lines.extend(["", "## Implementation Plan", ""])
    for index, step in enumerate(plan.implementation_steps, start=1):
        lines.append(f"{index}. **{step.step}** {step.detail} (verify: {step.verification})")
    lines.extend(["", "## Test Plan", ""])
    lines.extend(f"- {item}" for item in plan.test_plan)
    return "\n".join(lines)


def render_report_markdown(report: IssueReport) -> str:
    lines: List[str] = []

    lines.append(f"# Issue Analysis Report: {report.repository}#{report.issue_number}")
    lines.append("")
    lines.append(f"- **Issue URL:** {report.issue_url}")
    lines.append(f"- **Generated At:** {report.generated_at}")
    lines.append(f"- **Type:** {report.classification.type}")
    lines.append(f"- **Severity:** {report.classification.severity}")
    lines.append(f"- **Complexity:** {report.classification.complexity}")
    lines.append(f"- **Risk Level:** {report.classification.risk_level}")
    lines.append("")

    lines.extend(["## Executive Summary", "", report.executive_summary, ""])

    lines.extend(["## Root Cause Hypotheses", ""])
    for hypothesis in report.root_cause_hypotheses:
        lines.extend([f"### {hypothesis.title} ({hypothesis.confidence})", "", hypothesis.description, ""])
        lines.append("Impacted paths:")
        lines.extend(f"- `{path}`" for path in hypothesis.impacted_paths)
        lines.append("")

    lines.extend(["## Evidence", ""])
    for item in report.evidence:
        lines.extend([f"### `{item.file_path}` ({item.confidence})", ""])
        lines.append(f"- Rationale: {item.rationale}")
        if item.excerpt:
            lines.extend(["- Excerpt:", "", "```text", item.excerpt, "```"])
        lines.append("")

    lines.extend(["## Implementation Plan", ""])
    for step in report.implementation_plan:
        lines.extend([f"### {step.order}. {step.step}", ""])
        lines.append(f"- Detail: {step.detail}")
        lines.append(f"- Verification: {step.verification}")
        lines.append("")

    lines.extend(["## Testing Checklist", ""])
    lines.extend(f"- [ ] {test}" for test in report.testing_checklist)
    lines.append("")

    lines.extend(["## Open Questions", ""])
    lines.extend(_bullets_or_none(report.open_questions))
    lines.append("")

    lines.extend(["## Artifacts", ""])
    lines.append(f"- Issue Snapshot: `{report.artifacts.issue_snapshot_path}`")
    lines.append(f"- JSON Report: `{report.artifacts.report_json_path}`")
    lines.append(f"- Markdown Report: `{report.artifacts.report_markdown_path}`")

    return "\n".join(lines)


def _bullets_or_none(items: List[str]) -> List[str]:
    if not items:
        return ["- None."]
    return [f"- {item}" for item in items]
