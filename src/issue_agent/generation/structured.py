from __future__ import annotations

import logging
from typing import Any, Optional, Type, TypeVar

from pydantic import TypeAdapter, ValidationError

from ..errors import IssueAgentError, NoStructuredOutputError
from .classify import Fallback, fallback_for
from .provider import Provider, ResponseSchema
from .recovery import recover


LOGGER = logging.getLogger("issue_agent.generation")

T = TypeVar("T")

STRICT_SYSTEM_RULES = "\n".join(
    [
        "CRITICAL OUTPUT RULES:",
        "- Return ONLY raw JSON.",
        "- Do not include markdown fences.",
        "- Do not include any explanation text.",
        "- Ensure JSON is strictly valid and matches the schema.",
    ]
)
STRICT_PROMPT_SUFFIX = "Return only a strict JSON object that matches the schema."


def generate_structured(provider: Provider, target: Type[T], system: str, prompt: str) -> T:
    """
    Generate a value of type *target*.

    When the model's answer does not validate, candidate JSON fragments are
    recovered from its text. If that fails the call is repeated once with
    strict output rules, and recovery is tried again on the second answer
    before its failure is raised.
    """
    adapter: TypeAdapter[Any] = TypeAdapter(target)
    schema = ResponseSchema(name=getattr(target, "__name__", "output"), schema=adapter.json_schema(by_alias=True))

    try:
        return _run_structured(provider, adapter, schema, system, prompt)
    except NoStructuredOutputError as exc:
        first_failure = exc

    recovered = _try_recover(first_failure, adapter, schema.name)
    if recovered is not None:
        return recovered

    LOGGER.warning("Structured output for %s did not validate; retrying with strict rules", schema.name)
    strict_system = f"{system}\n{STRICT_SYSTEM_RULES}"
    strict_prompt = f"{prompt}\n\n{STRICT_PROMPT_SUFFIX}"
    try:
        return _run_structured(provider, adapter, schema, strict_system, strict_prompt)
    except NoStructuredOutputError as retry_failure:
        recovered = _try_recover(retry_failure, adapter, schema.name)
        if recovered is not None:
            return recovered
        raise


def _run_structured(
    provider: Provider,
    adapter: TypeAdapter[Any],
    schema: ResponseSchema,
    system: str,
    prompt: str,
) -> Any:
    finish_reason: Optional[str] = None
    try:
        completion = provider.complete(system, prompt, response_schema=schema)
        text, finish_reason = completion.text, completion.finish_reason
    except IssueAgentError as exc:
        if fallback_for(exc) is not Fallback.STREAM:
            raise
        LOGGER.info("Model %s requires streaming; retrying %s with a stream", provider.model, schema.name)
        text = "".join(provider.stream(system, prompt, response_schema=schema))
    return _validate(adapter, schema.name, text, finish_reason)


def _validate(adapter: TypeAdapter[Any], name: str, text: str, finish_reason: Optional[str]) -> Any:
    if not text or not text.strip():
        raise NoStructuredOutputError(
            f"No object generated: the model returned no text for {name}.",
            text=text,
            finish_reason=finish_reason,
        )
    try:
        return adapter.validate_json(text)
    except ValidationError as exc:
        raise NoStructuredOutputError(
            f"No object generated: response did not match the {name} schema.",
            text=text,
            finish_reason=finish_reason,
            cause=str(exc),
        ) from exc


def _try_recover(failure: NoStructuredOutputError, adapter: TypeAdapter[Any], name: str) -> Optional[Any]:
    outcome = recover(failure.text, adapter)
    accepted = outcome.accepted
    if accepted is None:
        LOGGER.debug("Recovery for %s failed after %s candidate(s)", name, len(outcome.attempts))
        return None
    LOGGER.info("Recovered %s from model text via %s", name, accepted.strategy)
    return accepted.value


__all__ = ["STRICT_PROMPT_SUFFIX", "STRICT_SYSTEM_RULES", "generate_structured"]
