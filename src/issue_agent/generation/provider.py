from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterator, List, Optional, Protocol, TypeVar

import httpx
import openai
from tenacity import RetryError, Retrying, retry_if_exception, stop_after_attempt, wait_exponential

from ..config import ApiType
from ..errors import ProviderCallError, RetryExhaustedError
from .classify import extract_provider_message


LOGGER = logging.getLogger("issue_agent.provider")

RETRYABLE_STATUS_CODES = {408, 409, 429}

T = TypeVar("T")


@dataclass(frozen=True)
class Completion:
    text: str
    finish_reason: Optional[str] = None


@dataclass(frozen=True)
class ResponseSchema:
    """JSON schema the provider is asked to follow for structured output."""

    name: str
    schema: Dict[str, Any]


class Provider(Protocol):
    """Call shape shared by `ProviderClient` and test doubles."""

    model: str

    def complete(
        self, system: str, prompt: str, response_schema: Optional[ResponseSchema] = None
    ) -> Completion:  # pragma: no cover - protocol
        ...

    def stream(
        self, system: str, prompt: str, response_schema: Optional[ResponseSchema] = None
    ) -> Iterator[str]:  # pragma: no cover - protocol
        ...


@dataclass
class ProviderOptions:
    """Connection settings resolved from the request, settings and environment."""

    api_key: Optional[str] = None
    base_url: Optional[str] = None
    organization: Optional[str] = None
    project: Optional[str] = None
    provider_name: Optional[str] = None
    timeout: float = 120.0
    max_attempts: int = 3
    retry_wait: float = 1.0


@dataclass
class ProviderClient:
    """Thin wrapper around OpenAI's Responses and Chat Completions APIs."""

    model: str
    api_type: ApiType = "responses"
    options: ProviderOptions = field(default_factory=ProviderOptions)
    _client: Optional[Any] = field(default=None, init=False, repr=False)

    def complete(self, system: str, prompt: str, response_schema: Optional[ResponseSchema] = None) -> Completion:
        """Run one non-streaming call and return the generated text."""
        return self._with_retries(lambda: self._complete_once(system, prompt, response_schema))

    def stream(self, system: str, prompt: str, response_schema: Optional[ResponseSchema] = None) -> Iterator[str]:
        """
        Open a streaming call and return an iterator over text deltas.

        Opening the stream is retried like `complete`; once deltas flow, a
        failure is raised from the iterator without further retries.
        """
        events = self._with_retries(lambda: self._open_stream(system, prompt, response_schema))
        return self._iter_deltas(events)

    def _complete_once(self, system: str, prompt: str, response_schema: Optional[ResponseSchema]) -> Completion:
        client = self._ensure_client()
        LOGGER.debug("Invoking %s API with model %s", self.api_type, self.model)
        try:
            if self.api_type == "chat":
                response = client.chat.completions.create(**self._chat_params(system, prompt, response_schema))
                choice = response.choices[0] if response.choices else None
                if choice is None:
                    return Completion(text="")
                return Completion(text=choice.message.content or "", finish_reason=choice.finish_reason)
            response = client.responses.create(**self._responses_params(system, prompt, response_schema))
        except openai.APIError as exc:
            raise translate_openai_error(exc) from exc
        return Completion(text=self._extract_text(response), finish_reason=self._finish_reason(response))

    def _open_stream(self, system: str, prompt: str, response_schema: Optional[ResponseSchema]) -> Any:
        client = self._ensure_client()
        LOGGER.debug("Opening %s stream with model %s", self.api_type, self.model)
        try:
            if self.api_type == "chat":
                return client.chat.completions.create(
                    stream=True, **self._chat_params(system, prompt, response_schema)
                )
            return client.responses.create(stream=True, **self._responses_params(system, prompt, response_schema))
        except openai.APIError as exc:
            raise translate_openai_error(exc) from exc

    def _iter_deltas(self, events: Any) -> Iterator[str]:
        try:
            for event in events:
                delta = self._delta_from_event(event)
                if delta:
                    yield delta
        except openai.APIError as exc:
            raise translate_openai_error(exc) from exc

    def _delta_from_event(self, event: Any) -> str:
        if self.api_type == "chat":
            choices = getattr(event, "choices", None) or []
            if not choices:
                return ""
            delta = getattr(choices[0], "delta", None)
            return getattr(delta, "content", None) or ""

        event_type = getattr(event, "type", "")
        if event_type == "response.output_text.delta":
            return getattr(event, "delta", "") or ""
        if event_type == "error":
            raise ProviderCallError(getattr(event, "message", None) or "Provider stream reported an error.")
        if event_type == "response.failed":
            error = getattr(getattr(event, "response", None), "error", None)
            message = getattr(error, "message", None) or "Provider stream failed."
            raise ProviderCallError(message, provider_message=message)
        return ""

    def _responses_params(
        self, system: str, prompt: str, response_schema: Optional[ResponseSchema]
    ) -> Dict[str, Any]:
        params: Dict[str, Any] = {"model": self.model, "instructions": system, "input": prompt}
        if response_schema is not None:
            params["text"] = {
                "format": {
                    "type": "json_schema",
                    "name": response_schema.name,
                    "schema": response_schema.schema,
                    "strict": False,
                }
            }
        return params

    def _chat_params(self, system: str, prompt: str, response_schema: Optional[ResponseSchema]) -> Dict[str, Any]:
        params: Dict[str, Any] = {
            "model": self.model,
            "messages": [
                {"role": "system", "content": system},
                {"role": "user", "content": prompt},
            ],
        }
        if response_schema is not None:
            params["response_format"] = {
                "type": "json_schema",
                "json_schema": {
                    "name": response_schema.name,
                    "schema": response_schema.schema,
                    "strict": False,
                },
            }
        return params

    def _with_retries(self, call: Callable[[], T]) -> T:
        errors: List[ProviderCallError] = []

        def _attempt() -> T:
            try:
                return call()
            except ProviderCallError as exc:
                errors.append(exc)
                raise

        retrying = Retrying(
            stop=stop_after_attempt(max(1, self.options.max_attempts)),
            wait=wait_exponential(multiplier=self.options.retry_wait, max=20),
            retry=retry_if_exception(lambda exc: isinstance(exc, ProviderCallError) and exc.is_retryable),
            reraise=False,
        )
        try:
            return retrying(_attempt)
        except RetryError as exc:
            if len(errors) == 1:
                raise errors[0] from None
            LOGGER.warning("Provider call failed after %s attempts: %s", len(errors), errors[-1])
            raise RetryExhaustedError(
                f"Failed after {len(errors)} attempts. Last error: {errors[-1]}",
                errors=errors,
                reason="maxRetriesExceeded",
            ) from exc
        except ProviderCallError as exc:
            if len(errors) > 1:
                raise RetryExhaustedError(
                    f"Failed after {len(errors)} attempts with non-retryable error. Last error: {exc}",
                    errors=errors,
                    reason="errorNotRetryable",
                ) from exc
            raise

    def _ensure_client(self) -> Any:
        if self._client is not None:
            return self._client
        kwargs: Dict[str, Any] = {"max_retries": 0}
        for key, value in (
            ("api_key", self.options.api_key),
            ("base_url", self.options.base_url),
            ("organization", self.options.organization),
            ("project", self.options.project),
        ):
            if value and value.strip():
                kwargs[key] = value.strip()
        try:
            client = openai.OpenAI(**kwargs)
        except openai.OpenAIError as exc:
            raise ProviderCallError(f"Could not configure the OpenAI client: {exc}") from exc
        if self.options.timeout:
            client = client.with_options(timeout=self.options.timeout)
        self._client = client
        return self._client

    @staticmethod
    def _extract_text(response: Any) -> str:
        if response is None:
            return ""
        output_text = getattr(response, "output_text", None)
        if isinstance(output_text, str) and output_text:
            return output_text

        chunks = []
        for item in getattr(response, "output", None) or []:
            if getattr(item, "type", None) != "message":
                continue
            for content in getattr(item, "content", None) or []:
                text = getattr(content, "text", None)
                if isinstance(text, str):
                    chunks.append(text)
        return "".join(chunks)

    @staticmethod
    def _finish_reason(response: Any) -> Optional[str]:
        details = getattr(response, "incomplete_details", None)
        reason = getattr(details, "reason", None)
        if reason:
            return str(reason)
        status = getattr(response, "status", None)
        return str(status) if status else None


def build_provider(model_id: str, api_type: ApiType, options: Optional[ProviderOptions] = None) -> ProviderClient:
    """Create a provider client; a ``vendor/model`` id keeps only the part after the last slash."""
    normalized = model_id.strip().rsplit("/", 1)[-1] if "/" in model_id else model_id.strip()
    return ProviderClient(model=normalized, api_type=api_type, options=options or ProviderOptions())


def translate_openai_error(exc: openai.APIError) -> ProviderCallError:
    request = getattr(exc, "request", None)
    url = str(request.url) if request is not None else None

    if isinstance(exc, openai.APIStatusError):
        try:
            body: Optional[str] = exc.response.text
        except httpx.ResponseNotRead:
            body = None
        status = exc.status_code
        return ProviderCallError(
            exc.message,
            status_code=status,
            is_retryable=status in RETRYABLE_STATUS_CODES or status >= 500,
            url=url,
            response_body=body,
            provider_message=extract_provider_message(body),
        )

    if isinstance(exc, openai.APIConnectionError):
        return ProviderCallError(str(exc) or "Connection error.", is_retryable=True, url=url)

    return ProviderCallError(str(exc), url=url)


__all__ = [
    "Completion",
    "Provider",
    "ProviderClient",
    "ProviderOptions",
    "ResponseSchema",
    "build_provider",
    "translate_openai_error",
]
