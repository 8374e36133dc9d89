from dataclasses import dataclass
from typing import Callable

from . import investigation, planning, report, understanding
from .base import AgentContext, Document
from .understanding import UnderstandingResult


@dataclass(frozen=True)
class AgentSuite:
    """The four generation steps of one analysis mode, in pipeline order."""

    mode: str
    understand: Callable[..., UnderstandingResult]
    investigate: Callable[..., Document]
    plan: Callable[..., Document]
    write_report: Callable[..., Document]


MARKDOWN_AGENTS = AgentSuite(
    mode="markdown",
    understand=understanding.run_markdown,
    investigate=investigation.run_markdown,
    plan=planning.run_markdown,
    write_report=report.run_markdown,
)

STRUCTURED_AGENTS = AgentSuite(
    mode="structured",
    understand=understanding.run_structured,
    investigate=investigation.run_structured,
    plan=planning.run_structured,
    write_report=report.run_structured,
)


def build_agents(mode: str = "markdown") -> AgentSuite:
    """Factory returning the agent suite for *mode* (``markdown`` or ``structured``)."""
    if mode == "structured":
        return STRUCTURED_AGENTS
    if mode == "markdown":
        return MARKDOWN_AGENTS
    raise ValueError(f"Unknown analysis mode: {mode!r}")


__all__ = [
    "AgentContext",
    "AgentSuite",
    "Document",
    "MARKDOWN_AGENTS",
    "STRUCTURED_AGENTS",
    "UnderstandingResult",
    "build_agents",
]
