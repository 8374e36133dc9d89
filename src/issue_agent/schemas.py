"""Structured artifacts produced by the analysis agents."""
from __future__ import annotations

from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

IssueType = Literal["bug", "feature", "refactor", "documentation", "question", "other"]
Severity = Literal["low", "medium", "high", "critical"]
Confidence = Literal["low", "medium", "high"]
Complexity = Literal["S", "M", "L", "XL"]

ISSUE_TYPES = ("bug", "feature", "refactor", "documentation", "question", "other")
SEVERITIES = ("low", "medium", "high", "critical")


class ArtifactModel(BaseModel):
    """Base model: camelCase on the wire, snake_case in Python."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_json_dict(self) -> dict:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class IssueUnderstanding(ArtifactModel):
    """Triage of the issue as read from its title, body and comments."""

    issue_type: IssueType = Field(..., description="Kind of work the issue asks for.")
    severity: Severity = Field(..., description="Impact on users if left unresolved.")
    summary: str = Field(..., description="One-paragraph restatement of the issue.")
    key_symptoms: List[str] = Field(..., min_length=1)
    acceptance_signals: List[str] = Field(..., min_length=1)
    search_keywords: List[str] = Field(..., min_length=3, max_length=12)


class EvidenceItem(ArtifactModel):
    file_path: str
    rationale: str
    confidence: Confidence
    excerpt: Optional[str] = None


class Hypothesis(ArtifactModel):
    title: str
    description: str
    confidence: Confidence
    evidence: List[EvidenceItem] = Field(..., min_length=1)
    impacted_paths: List[str] = Field(..., min_length=1)


class CodeInvestigation(ArtifactModel):
    """Root-cause hypotheses grounded in collected evidence files."""

    hypotheses: List[Hypothesis] = Field(..., min_length=1)
    missing_evidence: List[str] = Field(default_factory=list)
    additional_files_to_inspect: List[str] = Field(default_factory=list)


class ImplementationStep(ArtifactModel):
    step: str
    detail: str
    verification: str


class ExecutionPlan(ArtifactModel):
    """Ordered, verifiable plan for resolving the issue."""

    complexity: Complexity
    estimated_effort: str
    risk_level: Confidence
    risks: List[str] = Field(default_factory=list)
    unknowns: List[str] = Field(default_factory=list)
    implementation_steps: List[ImplementationStep] = Field(..., min_length=3)
    test_plan: List[str] = Field(..., min_length=3)


class ReportClassification(ArtifactModel):
    type: str
    severity: str
    complexity: str
    risk_level: str


class ReportHypothesis(ArtifactModel):
    title: str
    description: str
    confidence: str
    impacted_paths: List[str] = Field(default_factory=list)


class PlanItem(ArtifactModel):
    order: int = Field(..., gt=0)
    step: str
    detail: str
    verification: str


class ReportArtifacts(ArtifactModel):
    issue_snapshot_path: str
    report_json_path: str
    report_markdown_path: str


class IssueReport(ArtifactModel):
    """Final implementation-ready analysis report."""

    title: str
    repository: str
    issue_number: int = Field(..., gt=0)
    issue_url: str
    generated_at: str
    classification: ReportClassification
    executive_summary: str
    root_cause_hypotheses: List[ReportHypothesis] = Field(default_factory=list)
    evidence: List[EvidenceItem] = Field(default_factory=list)
    implementation_plan: List[PlanItem] = Field(default_factory=list)
    testing_checklist: List[str] = Field(default_factory=list)
    open_questions: List[str] = Field(default_factory=list)
    artifacts: ReportArtifacts


__all__ = [
    "ArtifactModel",
    "CodeInvestigation",
    "Complexity",
    "Confidence",
    "EvidenceItem",
    "ExecutionPlan",
    "Hypothesis",
    "ISSUE_TYPES",
    "ImplementationStep",
    "IssueReport",
    "IssueType",
    "IssueUnderstanding",
    "PlanItem",
    "ReportArtifacts",
    "ReportClassification",
    "ReportHypothesis",
    "SEVERITIES",
    "Severity",
]
