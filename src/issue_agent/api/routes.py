from __future__ import annotations

import logging
import threading
import uuid
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, BackgroundTasks, Depends, Query
from fastapi.responses import JSONResponse, StreamingResponse

from ..config import Settings, get_settings
from ..generation import DeltaBuffer
from ..orchestrator import AnalyzeRequest, IssueAnalyzer, TraceEvent, utc_timestamp
from ..run_store import RunStore, get_run_store
from .models import AnalyzeRequestBody
from .shared import build_analyze_request, error_body, resolve_effective_settings, to_api_error_payload
from .streaming import SSE_HEADERS, EventChannel


LOGGER = logging.getLogger("issue_agent.api")

STREAM_BUFFER_CHARS = 2_000_000

router = APIRouter(tags=["analyze"])


def get_analyzer(settings: Settings = Depends(get_settings)) -> IssueAnalyzer:
    return IssueAnalyzer(settings=settings)


def _log_trace(run_id: str, event: TraceEvent) -> None:
    duration = f"{event.duration_ms}ms" if event.duration_ms is not None else "-"
    LOGGER.info("[%s] %s %s %s", run_id, event.stage, event.status, duration)


def _parse_after(raw: Optional[str]) -> int:
    if raw is None:
        return 0
    try:
        value = int(float(raw))
    except (TypeError, ValueError, OverflowError):
        return 0
    return value if value > 0 else 0


def execute_run(analyzer: IssueAnalyzer, store: RunStore, run_id: str, request: AnalyzeRequest) -> None:
    """Run the pipeline for a registered run, feeding trace events and the outcome into *store*."""

    def on_trace(event: TraceEvent) -> None:
        store.append_trace(run_id, event.to_dict())
        _log_trace(run_id, event)

    try:
        result = analyzer.analyze(request, on_trace=on_trace)
    except Exception as exc:
        LOGGER.exception("Run %s failed", run_id)
        payload = to_api_error_payload(exc)
        if payload is None:
            store.mark_failed(run_id, str(exc) or exc.__class__.__name__)
        else:
            store.mark_failed(run_id, payload.message, payload.detail)
        return
    store.mark_completed(run_id, result.to_dict())


@router.post("/analyze")
def analyze(
    body: AnalyzeRequestBody,
    settings: Settings = Depends(get_settings),
    analyzer: IssueAnalyzer = Depends(get_analyzer),
) -> JSONResponse:
    """Run a complete analysis and answer with its result."""
    effective = resolve_effective_settings(body, settings)
    missing = effective.missing_credential()
    if missing:
        return JSONResponse(status_code=400, content={"error": missing})

    trace: List[Dict[str, Any]] = []
    run_id = uuid.uuid4().hex[:8]

    def on_trace(event: TraceEvent) -> None:
        trace.append(event.to_dict())
        _log_trace(run_id, event)

    try:
        result = analyzer.analyze(build_analyze_request(body, effective, settings), on_trace=on_trace)
    except Exception as exc:
        LOGGER.exception("Analysis failed")
        status, content = error_body(exc, trace)
        return JSONResponse(status_code=status, content=content)
    return JSONResponse(content=result.to_dict())


@router.post("/analyze/start")
def start_analysis(
    body: AnalyzeRequestBody,
    background_tasks: BackgroundTasks,
    settings: Settings = Depends(get_settings),
    store: RunStore = Depends(get_run_store),
    analyzer: IssueAnalyzer = Depends(get_analyzer),
) -> JSONResponse:
    """Register a run and execute it in the background; progress is read from ``/analyze/status``."""
    effective = resolve_effective_settings(body, settings)
    missing = effective.missing_credential()
    if missing:
        return JSONResponse(status_code=400, content={"error": missing})

    record = store.create(body.run_meta(effective.language, effective.model, effective.api_type))
    background_tasks.add_task(
        execute_run, analyzer, store, record.id, build_analyze_request(body, effective, settings)
    )
    return JSONResponse(content={"runId": record.id, "status": record.status, "createdAt": record.created_at})


@router.get("/analyze/status")
def analysis_status(
    run_id: Optional[str] = Query(default=None, alias="runId"),
    after: Optional[str] = Query(default=None),
    store: RunStore = Depends(get_run_store),
) -> JSONResponse:
    if not run_id:
        return JSONResponse(status_code=400, content={"error": "runId is required."})
    snapshot = store.status(run_id, _parse_after(after))
    if snapshot is None:
        return JSONResponse(status_code=404, content={"error": "Run not found or expired."})
    return JSONResponse(content=snapshot)


@router.post("/analyze/stream")
def stream_analysis(
    body: AnalyzeRequestBody,
    settings: Settings = Depends(get_settings),
    analyzer: IssueAnalyzer = Depends(get_analyzer),
):
    """
    Run an analysis and stream its progress as server-sent events.

    Events arrive as ``ready``, ``trace``*, ``report-delta``*, then ``result``
    or ``error``, and finally ``done``. The pipeline keeps running when the
    client disconnects; its remaining events are dropped.
    """
    effective = resolve_effective_settings(body, settings)
    missing = effective.missing_credential()
    if missing:
        return JSONResponse(status_code=400, content={"error": missing})

    request = build_analyze_request(body, effective, settings)
    channel = EventChannel()
    run_id = str(uuid.uuid4())
    channel.send("ready", {"runId": run_id, "startedAt": utc_timestamp()})

    def worker() -> None:
        trace: List[Dict[str, Any]] = []
        deltas = DeltaBuffer(
            forward=lambda delta: channel.send("report-delta", {"delta": delta}),
            max_chars=STREAM_BUFFER_CHARS,
        )

        def on_trace(event: TraceEvent) -> None:
            trace.append(event.to_dict())
            _log_trace(run_id, event)
            channel.send("trace", event.to_dict())

        try:
            result = analyzer.analyze(request, on_trace=on_trace, on_report_delta=deltas)
            payload = result.to_dict()
            streamed = deltas.text
            if not deltas.overflowed and streamed.strip():
                payload["markdown"] = streamed
            channel.send("result", payload)
        except Exception as exc:
            LOGGER.exception("Streaming run %s failed", run_id)
            _, content = error_body(exc, trace)
            channel.send("error", content)
        finally:
            channel.send("done", {"finishedAt": utc_timestamp()})
            channel.finish()

    threading.Thread(target=worker, name=f"issue-agent-stream-{run_id[:8]}", daemon=True).start()
    return StreamingResponse(
        channel.iter_events(),
        media_type="text/event-stream",
        headers=SSE_HEADERS,
    )


@router.get("/health")
def health() -> Dict[str, str]:
    return {"status": "ok", "timestamp": utc_timestamp()}


__all__ = ["execute_run", "get_analyzer", "router"]
