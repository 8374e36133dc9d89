from __future__ import annotations

import json
import sys
from pathlib import Path
from typing import List, NoReturn, Optional

import click
import uvicorn
from rich.console import Console
from rich.table import Table

from . import __version__
from .config import Settings, get_settings
from .errors import IssueAgentError
from .generation import ProviderOptions
from .logging_config import configure_logging
from .orchestrator import AnalysisResult, AnalyzeRequest, IssueAnalyzer, TraceEvent


@click.group(context_settings={"help_option_names": ["-h", "--help"]})
@click.version_option(version=__version__, message="Issue Agent CLI %(version)s")
def main() -> None:
    """Grounded analysis of GitHub issues."""


@main.command()
@click.option("--issue-url", type=str, default=None, help="Full GitHub issue URL.")
@click.option("--repo", type=str, default=None, help="Repository as owner/repo (with --issue-number).")
@click.option("--issue-number", type=click.IntRange(min=1), default=None)
@click.option("--lang", type=str, default=None, help="Report language (default from settings).")
@click.option("--model", type=str, default=None, help="Model id; vendor/model prefixes are stripped.")
@click.option("--api-type", type=click.Choice(["responses", "chat"]), default=None)
@click.option("--mode", type=click.Choice(["markdown", "structured"]), default=None)
@click.option("--out-dir", type=click.Path(file_okay=False, path_type=Path), default=None)
@click.option("--verbose", is_flag=True, default=False, help="Increase logging verbosity.")
def analyze(
    issue_url: Optional[str],
    repo: Optional[str],
    issue_number: Optional[int],
    lang: Optional[str],
    model: Optional[str],
    api_type: Optional[str],
    mode: Optional[str],
    out_dir: Optional[Path],
    verbose: bool,
) -> None:
    """Analyze one issue and write the report artifacts."""

    logger = configure_logging(verbose=verbose, logger_name="issue_agent.cli")
    settings = get_settings()

    if not issue_url and not (repo and issue_number):
        raise click.UsageError("Provide --issue-url, or --repo together with --issue-number.")
    if not settings.openai_api_key:
        _fail("OPENAI_API_KEY is required.")
    if not settings.github_token:
        _fail("GITHUB_TOKEN (or GH_TOKEN) is required.")

    request = AnalyzeRequest(
        issue_url=issue_url,
        repository=repo,
        issue_number=issue_number,
        github_token=settings.github_token,
        language=lang,
        model=model,
        api_type=api_type,
        mode=mode,
        output_dir=out_dir,
        provider=ProviderOptions(
            api_key=settings.openai_api_key,
            base_url=settings.openai_base_url,
            organization=settings.openai_organization,
            project=settings.openai_project,
            provider_name=settings.openai_provider_name,
            timeout=settings.provider_timeout,
            max_attempts=settings.provider_max_attempts,
        ),
    )

    trace: List[TraceEvent] = []
    analyzer = build_analyzer(settings)
    try:
        result = analyzer.analyze(request, on_trace=trace.append)
    except IssueAgentError as exc:
        logger.error("Analysis failed: %s", exc)
        _print_trace(trace)
        _fail(f"Analysis failed: {exc}")

    _print_summary(result)


@main.command()
@click.option("--host", type=str, default="127.0.0.1", show_default=True)
@click.option("--port", type=int, default=8000, show_default=True)
@click.option("--verbose", is_flag=True, default=False, help="Increase logging verbosity.")
def serve(host: str, port: int, verbose: bool) -> None:  # pragma: no cover - blocks on the server loop
    """Serve the HTTP API with uvicorn."""
    configure_logging(verbose=verbose, logger_name="issue_agent.cli")
    uvicorn.run("issue_agent.api.main:app", host=host, port=port, log_level="debug" if verbose else "info")


def build_analyzer(settings: Settings) -> IssueAnalyzer:
    return IssueAnalyzer(settings=settings)


def _fail(message: str) -> NoReturn:
    click.echo(click.style(message, fg="red"), err=True)
    sys.exit(1)


def _print_trace(trace: List[TraceEvent]) -> None:
    if not trace:
        return
    table = Table(title="Trace")
    table.add_column("Stage")
    table.add_column("Status")
    table.add_column("Duration", justify="right")
    table.add_column("Detail", overflow="fold")
    styles = {"start": "dim", "success": "green", "error": "red"}
    for event in trace:
        table.add_row(
            event.stage,
            f"[{styles.get(event.status, 'white')}]{event.status}[/]",
            f"{event.duration_ms}ms" if event.duration_ms is not None else "-",
            json.dumps(event.detail, ensure_ascii=False) if event.detail else "",
        )
    Console().print(table)


def _print_summary(result: AnalysisResult) -> None:
    click.echo("")
    click.echo(click.style("Analysis complete", fg="green"))
    click.echo(f"Output directory: {result.output_dir}")
    click.echo(f"Issue snapshot: {result.issue_snapshot_path}")
    click.echo(f"Issue understanding: {result.issue_understanding_path}")
    click.echo(f"Code investigation: {result.code_investigation_path}")
    click.echo(f"Execution plan: {result.execution_plan_path}")
    click.echo(f"Report JSON: {result.report_json_path}")
    click.echo(f"Report Markdown: {result.report_markdown_path}")
    click.echo(f"Trace: {result.trace_path}")
    _print_trace(result.trace)


if __name__ == "__main__":  # pragma: no cover
    main()
