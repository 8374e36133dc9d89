"""Prompt guidance documents ("skills") merged into agent instructions."""

from __future__ import annotations

import logging
from functools import lru_cache
from pathlib import Path
from typing import Union


LOGGER = logging.getLogger("issue_agent.skills")

ISSUE_TRIAGE = "issue-triage"
CODE_ROOT_CAUSE = "code-root-cause"
EXECUTION_PLANNING = "execution-planning"
REPORT_WRITING = "report-writing"


def load_skill(name: str, skills_dir: Union[str, Path]) -> str:
    """Return the trimmed text of ``{skills_dir}/{name}.md``, or an empty string when absent."""
    return _read_skill(name, str(Path(skills_dir).resolve()))


@lru_cache(maxsize=64)
def _read_skill(name: str, skills_dir: str) -> str:
    path = Path(skills_dir) / f"{name}.md"
    try:
        return path.read_text(encoding="utf-8").strip()
    except FileNotFoundError:
        LOGGER.warning("Skill %s not found at %s; continuing without guidance", name, path)
        return ""


def merge_instructions(base: str, skill_text: str) -> str:
    base = base.strip()
    if not skill_text.strip():
        return base
    return f"{base}\n\n---\nSkill Guidance:\n{skill_text.strip()}"


def clear_skill_cache() -> None:
    _read_skill.cache_clear()
