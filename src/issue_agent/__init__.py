"""
Issue Agent - grounded GitHub issue analysis.

The package exposes the analysis pipeline, the run registry used by the HTTP
API, and the CLI entrypoint.
"""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("issue-analysis-agent")
except PackageNotFoundError:  # pragma: no cover - fallback for editable installs
    __version__ = "0.0.0"

__all__ = ["__version__"]
