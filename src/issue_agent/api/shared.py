"""Helpers shared by the analyze endpoints: settings resolution and error payloads."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

from fastapi import Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from ..config import Settings
from ..errors import FailureKind
from ..generation import ProviderOptions
from ..generation.classify import extract_provider_message
from ..orchestrator import AnalyzeRequest
from .models import AnalyzeRequestBody

PREVIEW_CHARS = 1200
PROVIDER_MESSAGE_CHARS = 800


@dataclass
class EffectiveSettings:
    """Values a run will actually use: request fields first, then settings and environment."""

    api_key: Optional[str]
    base_url: Optional[str]
    organization: Optional[str]
    project: Optional[str]
    provider_name: Optional[str]
    github_token: Optional[str]
    language: str
    model: str
    api_type: str
    mode: str

    def missing_credential(self) -> Optional[str]:
        if not self.api_key:
            return "OPENAI_API_KEY is required (from settings or server environment)."
        if not self.github_token:
            return "GITHUB_TOKEN is required (from settings or server environment)."
        return None


@dataclass
class ApiErrorPayload:
    status: int
    message: str
    detail: Dict[str, Any]


def _first(*values: Optional[str]) -> Optional[str]:
    for value in values:
        if value and value.strip():
            return value.strip()
    return None


def resolve_effective_settings(body: AnalyzeRequestBody, settings: Settings) -> EffectiveSettings:
    provider = body.provider
    return EffectiveSettings(
        api_key=_first(provider.api_key if provider else None, settings.openai_api_key),
        base_url=_first(provider.base_url if provider else None, settings.openai_base_url),
        organization=_first(provider.organization if provider else None, settings.openai_organization),
        project=_first(provider.project if provider else None, settings.openai_project),
        provider_name=_first(provider.name if provider else None, settings.openai_provider_name),
        github_token=_first(body.github_token, settings.github_token),
        language=body.lang or settings.language,
        model=body.model or settings.model,
        api_type=body.api_type or settings.openai_api_type,
        mode=body.mode or settings.mode,
    )


def build_analyze_request(body: AnalyzeRequestBody, effective: EffectiveSettings, settings: Settings) -> AnalyzeRequest:
    return AnalyzeRequest(
        issue_url=str(body.issue_url) if body.issue_url is not None else None,
        repository=body.repo,
        issue_number=body.issue_number,
        github_token=effective.github_token,
        language=effective.language,
        model=effective.model,
        api_type=effective.api_type,
        mode=effective.mode,
        output_dir=settings.output_dir,
        provider=ProviderOptions(
            api_key=effective.api_key,
            base_url=effective.base_url,
            organization=effective.organization,
            project=effective.project,
            provider_name=effective.provider_name,
            timeout=settings.provider_timeout,
            max_attempts=settings.provider_max_attempts,
        ),
    )


def to_api_error_payload(error: BaseException) -> Optional[ApiErrorPayload]:
    """
    Map a provider-related failure to an HTTP status, a user message and a structured detail.

    Returns ``None`` for anything that is not a provider call, structured
    output, or retry failure; callers then answer 500 with the plain message.
    """
    kind = getattr(error, "kind", None)

    if kind is FailureKind.PROVIDER_CALL:
        provider_message = error.provider_message or extract_provider_message(error.response_body)
        if provider_message:
            provider_message = provider_message.strip()[:PROVIDER_MESSAGE_CHARS]
        return ApiErrorPayload(
            status=error.status_code or 500,
            message=provider_message
            or str(error)
            or "Provider request failed. Please check model/baseURL/apiType configuration.",
            detail={
                "url": error.url,
                "statusCode": error.status_code,
                "isRetryable": error.is_retryable,
                "providerMessage": provider_message,
            },
        )

    if kind is FailureKind.NO_STRUCTURED_OUTPUT:
        return ApiErrorPayload(
            status=422,
            message=str(error)
            or "No object generated: could not parse the response. Try switching apiType/model or prompt settings.",
            detail={
                "finishReason": error.finish_reason,
                "generatedTextPreview": error.text[:PREVIEW_CHARS] if isinstance(error.text, str) else None,
                "cause": error.cause,
            },
        )

    if kind is FailureKind.RETRY_EXHAUSTED:
        nested = next(
            (
                item
                for item in reversed(error.errors)
                if getattr(item, "kind", None) in (FailureKind.PROVIDER_CALL, FailureKind.NO_STRUCTURED_OUTPUT)
            ),
            None,
        )
        retry_detail = {"retryReason": error.reason, "attempts": error.attempts}
        if nested is not None:
            payload = to_api_error_payload(nested)
            return ApiErrorPayload(
                status=payload.status,
                message=f"{payload.message} (after {error.attempts} attempts)",
                detail={**payload.detail, **retry_detail},
            )
        return ApiErrorPayload(status=500, message=str(error), detail=retry_detail)

    return None


def error_body(error: BaseException, trace: List[Dict[str, Any]]) -> Tuple[int, Dict[str, Any]]:
    """Status and JSON body for a failed run, including the trace recorded so far."""
    payload = to_api_error_payload(error)
    if payload is None:
        return 500, {"error": str(error) or error.__class__.__name__, "trace": trace}
    return payload.status, {"error": payload.message, "detail": payload.detail, "trace": trace}


async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    messages = [str(item.get("msg", "")) for item in exc.errors()]
    return JSONResponse(status_code=400, content={"error": "; ".join(message for message in messages if message)})


__all__ = [
    "ApiErrorPayload",
    "EffectiveSettings",
    "build_analyze_request",
    "error_body",
    "resolve_effective_settings",
    "to_api_error_payload",
    "validation_error_handler",
]
