import json
from pathlib import Path

import pytest

from issue_agent import orchestrator
from issue_agent.errors import GitHostError, IssueReferenceError, PersistenceError, ProviderCallError
from issue_agent.generation import ProviderOptions
from issue_agent.orchestrator import (
    AnalyzeRequest,
    IssueAnalyzer,
    derive_extra_keywords,
    mask_secret,
    run_stage,
)

from conftest import (
    FakeGitHubClient,
    FakeProvider,
    hit,
    investigation_json,
    plan_json,
    report_json,
    understanding_json,
)


STAGES = [
    "parse-reference",
    "fetch-issue",
    "create-output-dir",
    "build-model",
    "issue-understanding",
    "collect-evidence",
    "code-investigation",
    "execution-plan",
    "report-writer",
    "write-report-files",
]


def _analyzer(settings, provider, github):
    built = {}

    def provider_factory(model, api_type, options):
        built.update(model=model, api_type=api_type, options=options)
        return provider

    analyzer = IssueAnalyzer(settings, provider_factory=provider_factory, github_client_factory=lambda token: github)
    return analyzer, built


def _request(**overrides):
    values = dict(
        issue_url="https://github.com/octo/widgets/issues/42",
        github_token="gh-secret",
        provider=ProviderOptions(api_key="sk-secret"),
    )
    values.update(overrides)
    return AnalyzeRequest(**values)


def _assert_alternates(trace, stages):
    assert [(event.stage, event.status) for event in trace[::2]] == [(stage, "start") for stage in stages]
    for start, end in zip(trace[::2], trace[1::2]):
        assert end.stage == start.stage
        assert end.status in {"success", "error"}
        assert end.duration_ms is not None and end.duration_ms >= 0


def test_mask_secret_and_extra_keywords():
    assert mask_secret(None) == "unset"
    assert mask_secret("") == "unset"
    assert mask_secret("abcd") == "set(len=4)"
    assert derive_extra_keywords("Crash when saving: a-large_file (v2)") == ["Crash", "when", "saving", "large_file"]


def test_run_stage_records_error_and_reraises():
    trace, emitted = [], []

    def explode():
        raise GitHostError("no access", status_code=403)

    with pytest.raises(GitHostError):
        run_stage(trace, emitted.append, "fetch-issue", explode, {"repository": "octo/widgets"})

    assert [event.status for event in trace] == ["start", "error"]
    assert trace[1].detail == {"message": "no access"}
    assert emitted == trace


def test_markdown_pipeline_writes_artifacts_and_traces(settings):
    provider = FakeProvider(
        completions=["## Suggested Search Keywords\n- SaveHandler\n- autosave", "## Root Cause", "## Plan"],
        streams=[["# Report\n", "Stream writes."]],
    )
    github = FakeGitHubClient(
        search={"SaveHandler": [hit("src/save.py", 3.0)], "autosave": GitHostError("search failed")},
        files={"src/save.py": "def save():\n    data = fh.read()\n"},
    )
    analyzer, built = _analyzer(settings, provider, github)
    emitted, deltas = [], []

    result = analyzer.analyze(_request(model="openrouter/gpt-x"), on_trace=emitted.append, on_report_delta=deltas.append)

    _assert_alternates(result.trace, STAGES)
    assert emitted == result.trace
    assert all(event.status == "success" for event in result.trace[1::2])
    assert deltas == ["# Report\n", "Stream writes."]
    assert result.report_markdown == "# Report\nStream writes."
    assert result.report is None
    assert github.closed is True
    assert built["model"] == "openrouter/gpt-x"
    assert built["api_type"] == "responses"

    output_dir = result.output_dir
    assert output_dir.parent == Path(settings.output_dir) / "octo__widgets" / "issue-42"
    for name in [
        "issue-snapshot.json",
        "issue-understanding.md",
        "code-investigation.md",
        "execution-plan.md",
        "analysis-report.json",
        "analysis-report.md",
        "analysis-trace.json",
    ]:
        assert (output_dir / name).is_file(), name

    envelope = json.loads(result.report_json_path.read_text(encoding="utf-8"))
    assert envelope["repository"] == "octo/widgets"
    assert envelope["issueNumber"] == 42
    assert envelope["failedQueries"] == ["autosave"]
    assert envelope["searchedQueries"][:2] == ["SaveHandler", "autosave"]
    assert envelope["reportMarkdown"] == result.report_markdown
    assert envelope["report"] is None

    snapshot = json.loads(result.issue_snapshot_path.read_text(encoding="utf-8"))
    assert snapshot["issue"]["title"] == "Crash when saving large files"
    dumped_trace = json.loads(result.trace_path.read_text(encoding="utf-8"))
    assert [event["stage"] for event in dumped_trace[::2]] == STAGES
    assert (dumped_trace[-1]["stage"], dumped_trace[-1]["status"]) == ("write-report-files", "start")

    by_stage = {(event.stage, event.status): event.detail for event in result.trace}
    build_detail = by_stage[("build-model", "start")]
    assert build_detail["apiKey"] == "set(len=9)"
    assert build_detail["githubToken"] == "set(len=9)"
    assert build_detail["baseURL"] == "default"
    assert build_detail["providerName"] == "openai"
    assert build_detail["mode"] == "markdown"
    assert "sk-secret" not in json.dumps(dumped_trace)
    assert by_stage[("collect-evidence", "success")] == {
        "queryCount": len(envelope["searchedQueries"]),
        "evidenceFileCount": 1,
        "skippedFileCount": 0,
        "failedQueryCount": 1,
    }
    assert by_stage[("fetch-issue", "success")]["labels"] == ["bug", "p1"]
    assert by_stage[("write-report-files", "success")] == {"artifactCount": 2}
    assert "src/save.py" in provider.calls[1]["prompt"]


def test_structured_pipeline_embeds_validated_report(settings):
    provider = FakeProvider(completions=[understanding_json(), investigation_json(), plan_json(), report_json()])
    analyzer, _ = _analyzer(settings, provider, FakeGitHubClient())
    deltas = []

    result = analyzer.analyze(_request(mode="structured"), on_report_delta=deltas.append)

    assert result.report is not None
    assert result.report.repository == "octo/widgets"
    assert result.report.artifacts.report_json_path == str(result.report_json_path)
    assert deltas == [result.report_markdown]
    assert result.report_markdown.startswith("# Issue Analysis Report: octo/widgets#42")
    envelope = json.loads(result.report_json_path.read_text(encoding="utf-8"))
    assert envelope["report"]["issueNumber"] == 42
    assert envelope["report"]["artifacts"]["reportMarkdownPath"] == str(result.report_markdown_path)
    understanding_md = result.issue_understanding_path.read_text(encoding="utf-8")
    assert "- **Severity:** high" in understanding_md
    assert provider.kinds() == ["complete"] * 4


def test_invalid_reference_fails_first_stage(settings):
    analyzer, _ = _analyzer(settings, FakeProvider(), FakeGitHubClient())
    emitted = []

    with pytest.raises(IssueReferenceError):
        analyzer.analyze(_request(issue_url=None, repository="bad"), on_trace=emitted.append)

    assert [(event.stage, event.status) for event in emitted] == [
        ("parse-reference", "start"),
        ("parse-reference", "error"),
    ]


def test_provider_failure_aborts_at_stage_boundary(settings):
    provider = FakeProvider(completions=[ProviderCallError("invalid api key", status_code=401)])
    github = FakeGitHubClient()
    analyzer, _ = _analyzer(settings, provider, github)
    emitted = []

    with pytest.raises(ProviderCallError):
        analyzer.analyze(_request(), on_trace=emitted.append)

    _assert_alternates(emitted, STAGES[:5])
    assert emitted[-1].status == "error"
    assert emitted[-1].detail == {"message": "invalid api key"}
    assert github.closed is True
    assert not list(Path(settings.output_dir).rglob("analysis-report.json"))


def test_unknown_mode_fails_build_model(settings):
    analyzer, _ = _analyzer(settings, FakeProvider(), FakeGitHubClient())
    emitted = []

    with pytest.raises(ValueError):
        analyzer.analyze(_request(mode="html"), on_trace=emitted.append)

    assert (emitted[-1].stage, emitted[-1].status) == ("build-model", "error")


@pytest.mark.parametrize(
    ("failing_name", "failing_stage"),
    [("issue-snapshot.json", "create-output-dir"), ("analysis-trace.json", "write-report-files")],
)
def test_persistence_failure_ends_trace_with_stage_error(monkeypatch, settings, failing_name, failing_stage):
    real_write_json = orchestrator.write_json_file

    def write_json(path, data):
        if Path(path).name == failing_name:
            raise PersistenceError(f"Could not write {path}: disk full", path=Path(path))
        return real_write_json(path, data)

    monkeypatch.setattr(orchestrator, "write_json_file", write_json)
    analyzer, _ = _analyzer(settings, FakeProvider(), FakeGitHubClient())
    emitted = []

    with pytest.raises(PersistenceError):
        analyzer.analyze(_request(), on_trace=emitted.append)

    assert (emitted[-2].stage, emitted[-2].status) == (failing_stage, "start")
    assert (emitted[-1].stage, emitted[-1].status) == (failing_stage, "error")
    assert "disk full" in emitted[-1].detail["message"]
