from __future__ import annotations

import logging
import re
import time
from contextlib import closing
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple, TypeVar

from .agents import AgentContext, AgentSuite, build_agents
from .config import Settings, get_settings
from .evidence import EvidenceCollection, collect_evidence
from .files import create_run_output_dir, write_json_file, write_text_file
from .generation import DeltaSink, Provider, ProviderOptions, build_provider
from .github import GitHubClient, fetch_issue_bundle, parse_issue_reference
from .schemas import IssueReport, ReportArtifacts


LOGGER = logging.getLogger("issue_agent.orchestrator")

T = TypeVar("T")

EXTRA_KEYWORD_SPLIT = re.compile(r"[^a-zA-Z0-9_]+")

TraceSink = Callable[["TraceEvent"], None]
ProviderFactory = Callable[[str, str, ProviderOptions], Provider]
GitHubClientFactory = Callable[[Optional[str]], GitHubClient]


def utc_timestamp() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


@dataclass
class TraceEvent:
    """One progress record: a stage starting, succeeding, or failing."""

    timestamp: str
    stage: str
    status: str
    duration_ms: Optional[int] = None
    detail: Optional[Dict[str, Any]] = None

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"timestamp": self.timestamp, "stage": self.stage, "status": self.status}
        if self.duration_ms is not None:
            payload["durationMs"] = self.duration_ms
        if self.detail is not None:
            payload["detail"] = self.detail
        return payload


@dataclass
class AnalyzeRequest:
    """Inputs for one analysis run; unset fields fall back to settings."""

    issue_url: Optional[str] = None
    repository: Optional[str] = None
    issue_number: Optional[int] = None
    github_token: Optional[str] = None
    language: Optional[str] = None
    model: Optional[str] = None
    api_type: Optional[str] = None
    mode: Optional[str] = None
    output_dir: Optional[Path] = None
    provider: ProviderOptions = field(default_factory=ProviderOptions)


@dataclass
class AnalysisResult:
    output_dir: Path
    issue_snapshot_path: Path
    issue_understanding_path: Path
    code_investigation_path: Path
    execution_plan_path: Path
    report_json_path: Path
    report_markdown_path: Path
    trace_path: Path
    report_markdown: str
    report: Optional[IssueReport] = None
    trace: List[TraceEvent] = field(default_factory=list)

    def paths(self) -> Dict[str, str]:
        return {
            "outputDir": str(self.output_dir),
            "issueSnapshotPath": str(self.issue_snapshot_path),
            "issueUnderstandingPath": str(self.issue_understanding_path),
            "codeInvestigationPath": str(self.code_investigation_path),
            "executionPlanPath": str(self.execution_plan_path),
            "reportJsonPath": str(self.report_json_path),
            "reportMarkdownPath": str(self.report_markdown_path),
            "tracePath": str(self.trace_path),
        }

    def to_dict(self) -> Dict[str, Any]:
        return {
            **self.paths(),
            "markdown": self.report_markdown,
            "report": self.report.to_json_dict() if self.report is not None else None,
            "trace": [event.to_dict() for event in self.trace],
        }


def mask_secret(value: Optional[str]) -> str:
    if not value:
        return "unset"
    return f"set(len={len(value)})"


def derive_extra_keywords(title: str) -> List[str]:
    tokens = [token.strip() for token in EXTRA_KEYWORD_SPLIT.split(title or "")]
    return [token for token in tokens if len(token) >= 4][:6]


def run_stage(
    trace: List[TraceEvent],
    emit: TraceSink,
    stage: str,
    fn: Callable[[], T],
    start_detail: Optional[Dict[str, Any]] = None,
    success_detail: Optional[Callable[[T], Optional[Dict[str, Any]]]] = None,
) -> T:
    """
    Run *fn* as a named stage, recording ``start`` then ``success`` or ``error``.

    The error event carries the failure message and the exception is
    re-raised unchanged.
    """

    def record(event: TraceEvent) -> None:
        trace.append(event)
        emit(event)

    started = time.perf_counter()
    record(TraceEvent(timestamp=utc_timestamp(), stage=stage, status="start", detail=start_detail))
    try:
        result = fn()
    except Exception as exc:
        duration_ms = int((time.perf_counter() - started) * 1000)
        LOGGER.error("Stage %s failed after %sms: %s", stage, duration_ms, exc)
        record(
            TraceEvent(
                timestamp=utc_timestamp(),
                stage=stage,
                status="error",
                duration_ms=duration_ms,
                detail={"message": str(exc) or exc.__class__.__name__},
            )
        )
        raise

    duration_ms = int((time.perf_counter() - started) * 1000)
    LOGGER.info("Stage %s completed in %sms", stage, duration_ms)
    record(
        TraceEvent(
            timestamp=utc_timestamp(),
            stage=stage,
            status="success",
            duration_ms=duration_ms,
            detail=success_detail(result) if success_detail else None,
        )
    )
    return result


class IssueAnalyzer:
    """Coordinate issue fetching, evidence collection, the four agents, and artifact persistence."""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        provider_factory: Optional[ProviderFactory] = None,
        github_client_factory: Optional[GitHubClientFactory] = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._provider_factory = provider_factory or build_provider
        self._github_client_factory = github_client_factory or self._default_github_client
        self._logger = LOGGER

    def _default_github_client(self, token: Optional[str]) -> GitHubClient:
        return GitHubClient(
            token=token,
            base_url=self._settings.github_api_url,
            timeout=self._settings.github_timeout,
        )

    def analyze(
        self,
        request: AnalyzeRequest,
        on_trace: Optional[TraceSink] = None,
        on_report_delta: Optional[DeltaSink] = None,
    ) -> AnalysisResult:
        """Run every stage in order; the first failing stage aborts the run and its error propagates."""
        settings = self._settings
        trace: List[TraceEvent] = []
        emit: TraceSink = on_trace or (lambda event: None)

        language = request.language or settings.language
        model_id = request.model or settings.model
        api_type = request.api_type or settings.openai_api_type
        mode = request.mode or settings.mode
        output_base = Path(request.output_dir or settings.output_dir)

        reference = run_stage(
            trace,
            emit,
            "parse-reference",
            lambda: parse_issue_reference(
                issue_url=request.issue_url,
                repository=request.repository,
                issue_number=request.issue_number,
            ),
        )
        self._logger.info("Analyzing %s (mode=%s, model=%s)", reference.issue_url, mode, model_id)

        with closing(self._github_client_factory(request.github_token)) as client:
            bundle = run_stage(
                trace,
                emit,
                "fetch-issue",
                lambda: fetch_issue_bundle(client, reference),
                {"repository": reference.repository, "issueNumber": reference.issue_number},
                lambda value: {
                    "title": value.issue.title,
                    "commentCount": len(value.comments),
                    "labels": value.issue.labels[:10],
                },
            )

            def create_output_dir() -> Path:
                target = create_run_output_dir(output_base, reference)
                write_json_file(target / "issue-snapshot.json", bundle.to_dict())
                return target

            output_dir = run_stage(trace, emit, "create-output-dir", create_output_dir)
            issue_snapshot_path = output_dir / "issue-snapshot.json"
            issue_understanding_path = output_dir / "issue-understanding.md"
            code_investigation_path = output_dir / "code-investigation.md"
            execution_plan_path = output_dir / "execution-plan.md"
            report_json_path = output_dir / "analysis-report.json"
            report_markdown_path = output_dir / "analysis-report.md"
            trace_path = output_dir / "analysis-trace.json"

            def build_model() -> Tuple[AgentContext, AgentSuite]:
                suite = build_agents(mode)
                provider = self._provider_factory(model_id, api_type, request.provider)
                agent_context = AgentContext(
                    provider=provider,
                    bundle=bundle,
                    language=language,
                    skills_dir=settings.skills_dir,
                )
                return agent_context, suite

            context, agents = run_stage(
                trace,
                emit,
                "build-model",
                build_model,
                {
                    "model": model_id,
                    "apiType": api_type,
                    "baseURL": request.provider.base_url or "default",
                    "providerName": request.provider.provider_name or "openai",
                    "apiKey": mask_secret(request.provider.api_key),
                    "githubToken": mask_secret(request.github_token),
                    "mode": mode,
                },
            )

            def understand():
                result = agents.understand(context)
                write_text_file(issue_understanding_path, result.markdown)
                return result

            issue = bundle.issue
            understanding = run_stage(
                trace,
                emit,
                "issue-understanding",
                understand,
                {
                    "issueTitleLength": len(issue.title),
                    "issueBodyLength": len(issue.body or ""),
                    "commentCount": len(bundle.comments),
                },
                lambda value: {"markdownLength": len(value.markdown), "keywordCount": len(value.search_keywords)},
            )

            keywords = [*understanding.search_keywords, *derive_extra_keywords(issue.title)]
            evidence: EvidenceCollection = run_stage(
                trace,
                emit,
                "collect-evidence",
                lambda: collect_evidence(client, reference, keywords, settings.evidence),
                {"requestedKeywords": keywords[:12]},
                lambda value: {
                    "queryCount": len(value.queries),
                    "evidenceFileCount": len(value.files),
                    "skippedFileCount": len(value.skipped_files),
                    "failedQueryCount": len(value.failed_queries),
                },
            )

        def investigate():
            document = agents.investigate(context, understanding, evidence.files)
            write_text_file(code_investigation_path, document.markdown)
            return document

        investigation = run_stage(
            trace,
            emit,
            "code-investigation",
            investigate,
            {"evidenceFileCount": len(evidence.files), "searchQueryCount": len(evidence.queries)},
            lambda value: {"markdownLength": len(value.markdown)},
        )

        def plan_execution():
            document = agents.plan(context, understanding, investigation)
            write_text_file(execution_plan_path, document.markdown)
            return document

        plan = run_stage(
            trace,
            emit,
            "execution-plan",
            plan_execution,
            {"investigationLength": len(investigation.markdown)},
            lambda value: {"markdownLength": len(value.markdown)},
        )

        artifacts = ReportArtifacts(
            issue_snapshot_path=str(issue_snapshot_path),
            report_json_path=str(report_json_path),
            report_markdown_path=str(report_markdown_path),
        )
        report = run_stage(
            trace,
            emit,
            "report-writer",
            lambda: agents.write_report(
                context, understanding, investigation, plan, artifacts, utc_timestamp(), on_report_delta
            ),
            {
                "understandingLength": len(understanding.markdown),
                "investigationLength": len(investigation.markdown),
                "planLength": len(plan.markdown),
            },
            lambda value: {"markdownLength": len(value.markdown)},
        )
        issue_report = report.artifact if isinstance(report.artifact, IssueReport) else None

        def write_report_files() -> int:
            envelope: Dict[str, Any] = {
                "repository": reference.repository,
                "issueNumber": reference.issue_number,
                "issueUrl": reference.issue_url,
                "generatedAt": utc_timestamp(),
                "artifacts": {
                    "issueSnapshotPath": str(issue_snapshot_path),
                    "issueUnderstandingPath": str(issue_understanding_path),
                    "codeInvestigationPath": str(code_investigation_path),
                    "executionPlanPath": str(execution_plan_path),
                    "reportMarkdownPath": str(report_markdown_path),
                },
                "searchedQueries": evidence.queries,
                "skippedFiles": evidence.skipped_files,
                "failedQueries": evidence.failed_queries,
                "reportMarkdown": report.markdown,
                "report": issue_report.to_json_dict() if issue_report is not None else None,
            }
            write_json_file(report_json_path, envelope)
            write_text_file(report_markdown_path, report.markdown)
            # The dumped trace ends with this stage's start event.
            write_json_file(trace_path, [event.to_dict() for event in trace])
            return 2

        run_stage(
            trace,
            emit,
            "write-report-files",
            write_report_files,
            success_detail=lambda count: {"artifactCount": count},
        )

        return AnalysisResult(
            output_dir=output_dir,
            issue_snapshot_path=issue_snapshot_path,
            issue_understanding_path=issue_understanding_path,
            code_investigation_path=code_investigation_path,
            execution_plan_path=execution_plan_path,
            report_json_path=report_json_path,
            report_markdown_path=report_markdown_path,
            trace_path=trace_path,
            report_markdown=report.markdown,
            report=issue_report,
            trace=trace,
        )


__all__ = [
    "AnalysisResult",
    "AnalyzeRequest",
    "IssueAnalyzer",
    "TraceEvent",
    "derive_extra_keywords",
    "mask_secret",
    "run_stage",
]
