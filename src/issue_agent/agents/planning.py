from __future__ import annotations

from ..generation import generate_structured, generate_text
from ..markdown import render_plan_markdown
from ..schemas import ExecutionPlan
from ..skills import EXECUTION_PLANNING
from .base import AgentContext, Document, dump_artifact
from .understanding import UnderstandingResult


ROLE = "You are a technical lead creating an implementation plan for a GitHub issue."


def _prompt(context: AgentContext, understanding: str, investigation: str) -> str:
    return "\n".join(
        [
            *context.issue_header(),
            "",
            "Issue understanding:",
            understanding,
            "",
            "Root cause investigation:",
            investigation,
        ]
    )


def run_markdown(context: AgentContext, understanding: UnderstandingResult, investigation: Document) -> Document:
    system = context.instructions(
        [
            f"{ROLE} Reply in {context.language}.",
            "Return a markdown document with sections:",
            "- Complexity and Risk",
            "- Implementation Plan (ordered list)",
            "- Test Plan",
            "- Rollout Notes",
            "",
            "Each implementation step must include a concrete verification method.",
        ],
        EXECUTION_PLANNING,
    )
    prompt = _prompt(context, understanding.markdown, investigation.markdown)
    return Document(markdown=generate_text(context.provider, system, prompt))


def run_structured(context: AgentContext, understanding: UnderstandingResult, investigation: Document) -> Document:
    system = context.instructions(
        [f"{ROLE} Reply in {context.language}. Keep steps concrete and testable."],
        EXECUTION_PLANNING,
    )
    prompt = _prompt(context, dump_artifact(understanding.artifact), dump_artifact(investigation.artifact))
    plan = generate_structured(context.provider, ExecutionPlan, system, prompt)
    return Document(markdown=render_plan_markdown(plan), artifact=plan)
