import json

import httpx
import openai
import pytest
from pydantic import BaseModel

from issue_agent.errors import NoStructuredOutputError, ProviderCallError, RetryExhaustedError
from issue_agent.generation import (
    Completion,
    DeltaBuffer,
    Fallback,
    ProviderOptions,
    ResponseSchema,
    build_provider,
    fallback_for,
    generate_structured,
    generate_text,
)
from issue_agent.generation.provider import translate_openai_error
from issue_agent.generation.structured import STRICT_PROMPT_SUFFIX, STRICT_SYSTEM_RULES

from conftest import FakeProvider


STREAM_REQUIRED = ProviderCallError(
    "Bad request",
    status_code=400,
    response_body=json.dumps({"error": {"message": "Stream must be set to true"}}),
)


class Verdict(BaseModel):
    answer: str
    confidence: float


def test_fallback_classification():
    assert fallback_for(STREAM_REQUIRED) is Fallback.STREAM
    assert fallback_for(ProviderCallError("stream must be set to true")) is Fallback.STREAM
    assert fallback_for(ProviderCallError("x", provider_message="Stream must  be set to TRUE")) is Fallback.STREAM
    assert fallback_for(ProviderCallError("rate limited", status_code=429)) is Fallback.PROPAGATE
    assert fallback_for(NoStructuredOutputError("no object")) is Fallback.PROPAGATE
    nested = RetryExhaustedError("gave up", errors=[ProviderCallError("boom"), STREAM_REQUIRED])
    assert fallback_for(nested) is Fallback.STREAM


def test_generate_text_without_sink_uses_single_call():
    provider = FakeProvider(completions=["  hello  "])

    assert generate_text(provider, "sys", "prompt") == "hello"
    assert provider.kinds() == ["complete"]


def test_generate_text_retries_in_streaming_mode_when_required():
    provider = FakeProvider(completions=[STREAM_REQUIRED], streams=[["hel", "lo "]])

    assert generate_text(provider, "sys", "prompt") == "hello"
    assert provider.kinds() == ["complete", "stream"]


def test_generate_text_propagates_other_failures():
    provider = FakeProvider(completions=[ProviderCallError("unauthorized", status_code=401)])

    with pytest.raises(ProviderCallError, match="unauthorized"):
        generate_text(provider, "sys", "prompt")
    assert provider.kinds() == ["complete"]


def test_sink_receives_deltas_in_order():
    provider = FakeProvider(streams=[["a", "b", "c "]])
    deltas = []

    assert generate_text(provider, "sys", "prompt", sink=deltas.append) == "abc"
    assert deltas == ["a", "b", "c "]


def test_sink_falls_back_to_single_call_when_stream_cannot_open():
    provider = FakeProvider(completions=["full text"], streams=[ProviderCallError("streaming unsupported")])
    deltas = []

    assert generate_text(provider, "sys", "prompt", sink=deltas.append) == "full text"
    assert deltas == ["full text"]
    assert provider.kinds() == ["stream", "complete"]


def test_sink_failure_after_deltas_is_not_replayed():
    provider = FakeProvider(streams=[["partial", ProviderCallError("connection reset")]])
    deltas = []

    with pytest.raises(ProviderCallError, match="connection reset"):
        generate_text(provider, "sys", "prompt", sink=deltas.append)
    assert deltas == ["partial"]
    assert provider.kinds() == ["stream"]


def test_structured_first_answer_validates():
    provider = FakeProvider(completions=['{"answer": "yes", "confidence": 0.9}'])

    assert generate_structured(provider, Verdict, "sys", "prompt") == Verdict(answer="yes", confidence=0.9)
    schema = provider.calls[0]["schema"]
    assert isinstance(schema, ResponseSchema)
    assert schema.name == "Verdict"
    assert "answer" in schema.schema["properties"]


def test_structured_recovers_fenced_answer_without_retry():
    provider = FakeProvider(completions=['Sure!\n```json\n{"answer": "no", "confidence": 0.1}\n```'])

    assert generate_structured(provider, Verdict, "sys", "prompt").answer == "no"
    assert provider.kinds() == ["complete"]


def test_structured_strict_retry_appends_rules():
    provider = FakeProvider(completions=["I cannot comply", '{"answer": "ok", "confidence": 1}'])

    assert generate_structured(provider, Verdict, "sys", "prompt").answer == "ok"
    retry = provider.calls[1]
    assert retry["system"] == f"sys\n{STRICT_SYSTEM_RULES}"
    assert retry["prompt"] == f"prompt\n\n{STRICT_PROMPT_SUFFIX}"


def test_structured_raises_after_strict_retry_fails():
    provider = FakeProvider(completions=["nope", Completion(text='{"answer": 1}', finish_reason="length")])

    with pytest.raises(NoStructuredOutputError) as excinfo:
        generate_structured(provider, Verdict, "sys", "prompt")
    assert excinfo.value.finish_reason == "length"
    assert excinfo.value.text == '{"answer": 1}'
    assert provider.kinds() == ["complete", "complete"]


def test_structured_empty_answer_is_no_object():
    provider = FakeProvider(completions=["", "   "])

    with pytest.raises(NoStructuredOutputError, match="no text"):
        generate_structured(provider, Verdict, "sys", "prompt")


def test_structured_streams_when_provider_requires_it():
    provider = FakeProvider(completions=[STREAM_REQUIRED], streams=[['{"answer": "s', 'treamed", "confidence": 0.5}']])

    assert generate_structured(provider, Verdict, "sys", "prompt").answer == "streamed"
    assert provider.kinds() == ["complete", "stream"]


def test_sink_uses_unary_path_when_stream_is_rejected_as_required():
    provider = FakeProvider(completions=["unary answer "], streams=[STREAM_REQUIRED])
    deltas = []

    assert generate_text(provider, "sys", "prompt", sink=deltas.append) == "unary answer"
    assert deltas == ["unary answer"]
    assert provider.kinds() == ["stream", "complete"]


def test_sink_stream_required_everywhere_streams_again():
    provider = FakeProvider(completions=[STREAM_REQUIRED], streams=[STREAM_REQUIRED, ["fin", "al"]])
    deltas = []

    assert generate_text(provider, "sys", "prompt", sink=deltas.append) == "final"
    assert deltas == ["final"]
    assert provider.kinds() == ["stream", "complete", "stream"]


def test_delta_buffer_keeps_and_forwards_deltas():
    forwarded = []
    buffer = DeltaBuffer(forward=forwarded.append, max_chars=5)

    for delta in ["ab", "cd", "efg", "h"]:
        buffer(delta)

    assert forwarded == ["ab", "cd", "efg", "h"]
    assert buffer.text == "abcd"
    assert len(buffer) == 4
    assert buffer.overflowed is True


def test_delta_buffer_as_generation_sink():
    provider = FakeProvider(streams=[["Hel", "lo ", "world "]])
    buffer = DeltaBuffer()

    assert generate_text(provider, "sys", "prompt", sink=buffer) == buffer.text.strip()
    assert buffer.overflowed is False


class _Recorder:
    def __init__(self, outcomes):
        self.outcomes = list(outcomes)
        self.kwargs = []

    def create(self, **kwargs):
        self.kwargs.append(kwargs)
        outcome = self.outcomes.pop(0)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


class _DummyOpenAI:
    def __init__(self, responses=None, chat=None):
        self.responses = _Recorder(responses or [])
        self.chat = type("Chat", (), {"completions": _Recorder(chat or [])})()


class _Obj:
    def __init__(self, **kwargs):
        self.__dict__.update(kwargs)


def _client(api_type="responses", max_attempts=3, **dummy):
    client = build_provider("openai/gpt-test", api_type, ProviderOptions(max_attempts=max_attempts, retry_wait=0))
    client._client = _DummyOpenAI(**dummy)
    return client


def test_build_provider_strips_vendor_prefix():
    assert build_provider("openrouter/openai/gpt-4.1", "chat").model == "gpt-4.1"
    assert build_provider("gpt-4.1", "responses").model == "gpt-4.1"


def test_responses_call_shape_and_text():
    client = _client(responses=[_Obj(output_text="done", incomplete_details=None, status="completed")])

    completion = client.complete("sys", "hi", ResponseSchema(name="Verdict", schema={"type": "object"}))

    assert completion == Completion(text="done", finish_reason="completed")
    kwargs = client._client.responses.kwargs[0]
    assert kwargs["model"] == "gpt-test"
    assert kwargs["instructions"] == "sys"
    assert kwargs["input"] == "hi"
    assert kwargs["text"]["format"]["type"] == "json_schema"
    assert kwargs["text"]["format"]["name"] == "Verdict"


def test_chat_stream_yields_content_deltas():
    events = [
        _Obj(choices=[_Obj(delta=_Obj(content="Hel"))]),
        _Obj(choices=[]),
        _Obj(choices=[_Obj(delta=_Obj(content=None))]),
        _Obj(choices=[_Obj(delta=_Obj(content="lo"))]),
    ]
    client = _client(api_type="chat", chat=[iter(events)])

    assert list(client.stream("sys", "hi")) == ["Hel", "lo"]
    kwargs = client._client.chat.completions.kwargs[0]
    assert kwargs["stream"] is True
    assert kwargs["messages"][0] == {"role": "system", "content": "sys"}


def test_responses_stream_failure_event_raises():
    events = [
        _Obj(type="response.output_text.delta", delta="par"),
        _Obj(type="response.failed", response=_Obj(error=_Obj(message="server overloaded"))),
    ]
    client = _client(responses=[iter(events)])
    stream = client.stream("sys", "hi")

    assert next(stream) == "par"
    with pytest.raises(ProviderCallError, match="server overloaded"):
        next(stream)


def test_retryable_failures_are_retried_until_success():
    client = _client(
        responses=[
            ProviderCallError("overloaded", status_code=503, is_retryable=True),
            _Obj(output_text="ok", incomplete_details=None, status=None),
        ]
    )

    assert client.complete("sys", "hi").text == "ok"
    assert len(client._client.responses.kwargs) == 2


def test_single_failure_is_raised_unwrapped():
    client = _client(responses=[ProviderCallError("bad key", status_code=401)])

    with pytest.raises(ProviderCallError, match="bad key"):
        client.complete("sys", "hi")
    assert len(client._client.responses.kwargs) == 1


def test_exhausted_retries_raise_retry_exhausted():
    failures = [ProviderCallError(f"overloaded {index}", status_code=503, is_retryable=True) for index in range(3)]
    client = _client(responses=failures)

    with pytest.raises(RetryExhaustedError) as excinfo:
        client.complete("sys", "hi")
    assert excinfo.value.attempts == 3
    assert excinfo.value.reason == "maxRetriesExceeded"


def test_non_retryable_after_retryable_reports_reason():
    client = _client(
        responses=[
            ProviderCallError("overloaded", status_code=503, is_retryable=True),
            ProviderCallError("bad request", status_code=400),
        ]
    )

    with pytest.raises(RetryExhaustedError) as excinfo:
        client.complete("sys", "hi")
    assert excinfo.value.reason == "errorNotRetryable"
    assert excinfo.value.attempts == 2


def test_translate_openai_status_error():
    request = httpx.Request("POST", "https://api.openai.test/v1/responses")
    response = httpx.Response(429, request=request, json={"error": {"message": "Rate limit reached"}})
    exc = openai.APIStatusError("Error code: 429", response=response, body=None)

    translated = translate_openai_error(exc)

    assert translated.status_code == 429
    assert translated.is_retryable is True
    assert translated.url == "https://api.openai.test/v1/responses"
    assert translated.provider_message == "Rate limit reached"
