from __future__ import annotations

import logging
from typing import Callable, List, Optional

from ..errors import IssueAgentError
from .classify import Fallback, fallback_for
from .provider import Provider


LOGGER = logging.getLogger("issue_agent.generation")

DeltaSink = Callable[[str], None]


class DeltaBuffer:
    """
    Sink that keeps delivered deltas and optionally forwards each one.

    At most ``max_chars`` characters are retained; past that the buffer stops
    keeping text and ``overflowed`` is set, while forwarding continues.
    """

    def __init__(self, forward: Optional[DeltaSink] = None, max_chars: Optional[int] = None) -> None:
        self._forward = forward
        self._max_chars = max_chars
        self._chunks: List[str] = []
        self._size = 0
        self.overflowed = False

    def __call__(self, delta: str) -> None:
        if not self.overflowed:
            if self._max_chars is not None and self._size + len(delta) > self._max_chars:
                self.overflowed = True
            else:
                self._chunks.append(delta)
                self._size += len(delta)
        if self._forward is not None:
            self._forward(delta)

    def __len__(self) -> int:
        return self._size

    @property
    def text(self) -> str:
        return "".join(self._chunks)


def generate_text(provider: Provider, system: str, prompt: str, sink: Optional[DeltaSink] = None) -> str:
    """
    Generate free-form text and return it trimmed.

    Without a sink the call is made non-streaming and repeated once in
    streaming mode when the provider insists on it. With a sink, deltas are
    streamed to it in emission order; if the stream fails before any delta, the
    non-streaming path above runs instead and its text is delivered as a single
    delta.
    """
    if sink is not None:
        return _generate_with_sink(provider, system, prompt, sink)
    return _generate_once(provider, system, prompt)


def _generate_once(provider: Provider, system: str, prompt: str) -> str:
    try:
        completion = provider.complete(system, prompt)
    except IssueAgentError as exc:
        if fallback_for(exc) is not Fallback.STREAM:
            raise
        LOGGER.info("Model %s requires streaming; retrying with a stream", provider.model)
        return "".join(provider.stream(system, prompt)).strip()
    return completion.text.strip()


def _generate_with_sink(provider: Provider, system: str, prompt: str, sink: DeltaSink) -> str:
    delivered: List[str] = []
    try:
        for delta in provider.stream(system, prompt):
            delivered.append(delta)
            sink(delta)
    except IssueAgentError as exc:
        # Once deltas reached the sink, a replacement text would no longer match them.
        if delivered:
            raise
        if fallback_for(exc) is Fallback.STREAM:
            LOGGER.info("Streaming call to %s rejected as stream-required; using the unary path", provider.model)
            text = _generate_once(provider, system, prompt)
        else:
            LOGGER.warning("Streaming call to %s failed (%s); falling back to a single call", provider.model, exc)
            text = provider.complete(system, prompt).text.strip()
        if text:
            sink(text)
        return text
    return "".join(delivered).strip()


__all__ = ["DeltaBuffer", "DeltaSink", "generate_text"]
