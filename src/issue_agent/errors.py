"""Failure taxonomy shared by the pipeline, the generation adapter, and the API."""

from __future__ import annotations

from enum import Enum
from pathlib import Path
from typing import List, Optional, Sequence


class FailureKind(str, Enum):
    """Tag carried by every pipeline failure so callers can branch without type checks."""

    REFERENCE = "reference"
    GIT_HOST = "git-host"
    PROVIDER_CALL = "provider-call"
    NO_STRUCTURED_OUTPUT = "no-structured-output"
    RETRY_EXHAUSTED = "retry-exhausted"
    PERSISTENCE = "persistence"


class IssueAgentError(Exception):
    """Base class for all errors raised by the issue agent."""

    kind: FailureKind


class IssueReferenceError(IssueAgentError, ValueError):
    """The issue identifier is malformed or incomplete."""

    kind = FailureKind.REFERENCE


class GitHostError(IssueAgentError):
    """GitHub refused or could not satisfy a request."""

    kind = FailureKind.GIT_HOST

    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class ProviderCallError(IssueAgentError):
    """A call to the model provider failed at the transport or API level."""

    kind = FailureKind.PROVIDER_CALL

    def __init__(
        self,
        message: str,
        *,
        status_code: Optional[int] = None,
        is_retryable: bool = False,
        url: Optional[str] = None,
        response_body: Optional[str] = None,
        provider_message: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.is_retryable = is_retryable
        self.url = url
        self.response_body = response_body
        self.provider_message = provider_message


class NoStructuredOutputError(IssueAgentError):
    """The provider answered, but the answer did not validate against the target shape."""

    kind = FailureKind.NO_STRUCTURED_OUTPUT

    def __init__(
        self,
        message: str,
        *,
        text: Optional[str] = None,
        finish_reason: Optional[str] = None,
        cause: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.text = text
        self.finish_reason = finish_reason
        self.cause = cause


class RetryExhaustedError(IssueAgentError):
    """Repeated provider attempts all failed."""

    kind = FailureKind.RETRY_EXHAUSTED

    def __init__(
        self,
        message: str,
        *,
        errors: Sequence[IssueAgentError],
        reason: str = "maxRetriesExceeded",
    ) -> None:
        super().__init__(message)
        self.errors: List[IssueAgentError] = list(errors)
        self.reason = reason

    @property
    def attempts(self) -> int:
        return len(self.errors)


class PersistenceError(IssueAgentError):
    """An artifact could not be written."""

    kind = FailureKind.PERSISTENCE

    def __init__(self, message: str, path: Optional[Path] = None) -> None:
        super().__init__(message)
        self.path = path


__all__ = [
    "FailureKind",
    "GitHostError",
    "IssueAgentError",
    "IssueReferenceError",
    "NoStructuredOutputError",
    "PersistenceError",
    "ProviderCallError",
    "RetryExhaustedError",
]
