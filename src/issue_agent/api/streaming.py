"""Server-sent-event channel between a pipeline thread and a streaming response."""

from __future__ import annotations

import json
import logging
import queue
import threading
from typing import Any, Iterator


LOGGER = logging.getLogger("issue_agent.api.streaming")

SSE_HEADERS = {
    "Cache-Control": "no-cache, no-transform",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}

_END = object()


def format_sse(event: str, payload: Any) -> str:
    return f"event: {event}\ndata: {json.dumps(payload, ensure_ascii=False)}\n\n"


class EventChannel:
    """
    Unbounded queue of SSE chunks written by one producer and drained by one response.

    ``send`` never blocks. After ``close`` (client gone) or ``finish`` (producer
    done) further sends are dropped.
    """

    def __init__(self) -> None:
        self._queue: "queue.Queue[object]" = queue.Queue()
        self._lock = threading.Lock()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def send(self, event: str, payload: Any) -> bool:
        with self._lock:
            if self._closed:
                return False
            self._queue.put(format_sse(event, payload))
            return True

    def finish(self) -> None:
        with self._lock:
            if self._closed:
                return
            self._closed = True
            self._queue.put(_END)

    def close(self) -> None:
        with self._lock:
            if not self._closed:
                LOGGER.info("Stream consumer went away; dropping further events")
            self._closed = True
            self._queue.put(_END)

    def iter_events(self) -> Iterator[str]:
        try:
            while True:
                item = self._queue.get()
                if item is _END:
                    return
                yield item
        finally:
            self.close()


__all__ = ["EventChannel", "SSE_HEADERS", "format_sse"]
