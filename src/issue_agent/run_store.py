"""In-memory registry of analysis runs that can be polled or streamed."""

from __future__ import annotations

import logging
import threading
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from functools import lru_cache
from typing import Any, Callable, Dict, List, Optional

from .config import get_settings


LOGGER = logging.getLogger("issue_agent.run_store")

RUNNING = "running"
COMPLETED = "completed"
FAILED = "failed"


@dataclass
class RunRecord:
    id: str
    created_at: str
    started_at: str
    updated_at: str
    updated_at_ts: float
    status: str = RUNNING
    finished_at: Optional[str] = None
    trace: List[Dict[str, Any]] = field(default_factory=list)
    result: Optional[Dict[str, Any]] = None
    error: str = ""
    detail: Optional[Dict[str, Any]] = None
    meta: Dict[str, Any] = field(default_factory=dict)


class RunStore:
    """
    Thread-safe, bounded store of run records.

    Records expire ``ttl_seconds`` after their last update, and at most
    ``max_runs`` records are kept; the least recently updated go first. A record
    accepts trace events only while running and finishes exactly once.
    """

    def __init__(
        self,
        ttl_seconds: float = 60 * 60,
        max_runs: int = 60,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._ttl_seconds = ttl_seconds
        self._max_runs = max_runs
        self._clock = clock
        self._runs: Dict[str, RunRecord] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._runs)

    def create(self, meta: Optional[Dict[str, Any]] = None) -> RunRecord:
        with self._lock:
            self._prune_locked()
            now = self._clock()
            stamp = self._iso(now)
            record = RunRecord(
                id=str(uuid.uuid4()),
                created_at=stamp,
                started_at=stamp,
                updated_at=stamp,
                updated_at_ts=now,
                meta=dict(meta or {}),
            )
            self._runs[record.id] = record
            LOGGER.debug("Registered run %s", record.id)
            return record

    def append_trace(self, run_id: str, event: Dict[str, Any]) -> None:
        with self._lock:
            record = self._runs.get(run_id)
            if record is None or record.status != RUNNING:
                return
            record.trace.append(event)
            self._touch(record)

    def mark_completed(self, run_id: str, result: Dict[str, Any]) -> None:
        with self._lock:
            record = self._runs.get(run_id)
            if record is None or record.status != RUNNING:
                return
            record.status = COMPLETED
            record.result = result
            record.error = ""
            record.detail = None
            self._finish(record)

    def mark_failed(self, run_id: str, error: str, detail: Optional[Dict[str, Any]] = None) -> None:
        with self._lock:
            record = self._runs.get(run_id)
            if record is None or record.status != RUNNING:
                return
            record.status = FAILED
            record.result = None
            record.error = error
            record.detail = detail
            self._finish(record)

    def status(self, run_id: str, after_index: int = 0) -> Optional[Dict[str, Any]]:
        """Snapshot of a run with trace events from *after_index* on, or ``None`` when unknown or expired."""
        with self._lock:
            self._prune_locked()
            record = self._runs.get(run_id)
            if record is None:
                return None
            start = after_index if after_index > 0 else 0
            return {
                "runId": record.id,
                "status": record.status,
                "createdAt": record.created_at,
                "startedAt": record.started_at,
                "finishedAt": record.finished_at,
                "updatedAt": record.updated_at,
                "trace": list(record.trace[start:]),
                "traceIndex": len(record.trace),
                "result": record.result if record.status == COMPLETED else None,
                "error": record.error if record.status == FAILED else "",
                "detail": record.detail if record.status == FAILED else None,
                "meta": dict(record.meta),
            }

    def prune(self) -> None:
        with self._lock:
            self._prune_locked()

    def _prune_locked(self) -> None:
        now = self._clock()
        expired = [run_id for run_id, record in self._runs.items() if now - record.updated_at_ts > self._ttl_seconds]
        for run_id in expired:
            del self._runs[run_id]

        overflow = len(self._runs) - self._max_runs
        if overflow > 0:
            oldest = sorted(self._runs.values(), key=lambda record: record.updated_at_ts)[:overflow]
            for record in oldest:
                del self._runs[record.id]
            expired.extend(record.id for record in oldest)

        if expired:
            LOGGER.debug("Evicted %s runs", len(expired))

    def _touch(self, record: RunRecord) -> None:
        now = self._clock()
        record.updated_at = self._iso(now)
        record.updated_at_ts = now

    def _finish(self, record: RunRecord) -> None:
        self._touch(record)
        record.finished_at = record.updated_at

    @staticmethod
    def _iso(timestamp: float) -> str:
        moment = datetime.fromtimestamp(timestamp, tz=timezone.utc)
        return moment.isoformat(timespec="milliseconds").replace("+00:00", "Z")


@lru_cache(maxsize=1)
def get_run_store() -> RunStore:
    """Process-wide run store configured from settings."""
    settings = get_settings()
    return RunStore(ttl_seconds=settings.runs.ttl_seconds, max_runs=settings.runs.max_runs)


__all__ = ["COMPLETED", "FAILED", "RUNNING", "RunRecord", "RunStore", "get_run_store"]
