from __future__ import annotations

import json
import os
import tempfile
from datetime import datetime
from pathlib import Path
from typing import Any, Optional

from .errors import PersistenceError
from .github import IssueReference


def timestamp_for_folder(now: Optional[datetime] = None) -> str:
    return (now or datetime.now()).strftime("%Y%m%d-%H%M%S")


def create_run_output_dir(base_dir: Path, reference: IssueReference, now: Optional[datetime] = None) -> Path:
    """Create ``{base}/{owner}__{repo}/issue-{n}/{YYYYMMDD-HHMMSS}`` and return it."""
    target = (
        Path(base_dir)
        / f"{reference.owner}__{reference.repo}"
        / f"issue-{reference.issue_number}"
        / timestamp_for_folder(now)
    )
    try:
        target.mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        raise PersistenceError(f"Could not create output directory {target}: {exc}", path=target) from exc
    return target


def write_text_file(path: Path, content: str) -> Path:
    """Write *content* atomically: a sibling temp file is renamed over *path*."""
    path = Path(path)
    tmp_name: Optional[str] = None
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        with tempfile.NamedTemporaryFile(
            "w", encoding="utf-8", dir=path.parent, prefix=f".{path.name}.", suffix=".tmp", delete=False
        ) as handle:
            tmp_name = handle.name
            handle.write(content)
        os.replace(tmp_name, path)
    except OSError as exc:
        if tmp_name and os.path.exists(tmp_name):
            os.unlink(tmp_name)
        raise PersistenceError(f"Could not write {path}: {exc}", path=path) from exc
    return path


def write_json_file(path: Path, data: Any) -> Path:
    return write_text_file(path, json.dumps(data, indent=2, ensure_ascii=False) + "\n")
