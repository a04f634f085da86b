from types import SimpleNamespace

import pytest

from dialectic_worker.errors import ContextWindowExceededError, ContinuationInvariantError
from dialectic_worker.executor.context_compression import compress_prompt
from dialectic_worker.executor.continuation import (
    CONTINUE_PROMPT,
    MAX_CONTINUATIONS,
    combine_responses,
    continuation_request,
    handle_continuation_loop,
)
from dialectic_worker.llm.anthropic_adapter import AnthropicAdapter
from dialectic_worker.llm.schemas import (
    AdapterResponsePayload,
    AiModelExtendedConfig,
    ChatApiRequest,
    ChatMessage,
    FinishReason,
    TokenizationStrategy,
    TokenUsage,
)


def _response(content, finish, prompt=10, completion=5):
    return AdapterResponsePayload(
        content=content,
        finish_reason=finish,
        token_usage=TokenUsage(prompt_tokens=prompt, completion_tokens=completion,
                               total_tokens=prompt + completion),
    )


class FakeAdapter:
    """Returns queued responses and records every request it was sent."""

    def __init__(self, responses):
        self.responses = list(responses)
        self.requests = []

    def send_message(self, request, model_identifier):
        self.requests.append(request)
        return self.responses.pop(0)

    def list_models(self):
        return []


REQUEST = ChatApiRequest(message="Write the thesis.", system_prompt="You are a dialectician.")


def test_single_stop_response_is_returned_as_is():
    adapter = FakeAdapter([_response("done", FinishReason.STOP)])
    result = handle_continuation_loop(adapter, REQUEST, "dummy-alpha")
    assert result.calls == 1
    assert result.continuation_count == 0
    assert not result.hit_continuation_cap
    assert result.response.content == "done"
    assert result.response.finish_reason == FinishReason.STOP


def test_loop_stops_at_cap_and_reports_it():
    adapter = FakeAdapter([_response(f"part{i} ", FinishReason.LENGTH) for i in range(10)])
    result = handle_continuation_loop(adapter, REQUEST, "dummy-alpha")

    assert result.calls == MAX_CONTINUATIONS + 1
    assert len(adapter.requests) == 5
    assert result.hit_continuation_cap
    assert result.response.finish_reason == FinishReason.STOP
    assert result.response.content == "part0 part1 part2 part3 part4 "


def test_loop_stops_as_soon_as_model_finishes():
    adapter = FakeAdapter([
        _response("a", FinishReason.LENGTH, 10, 5),
        _response("b", FinishReason.STOP, 12, 7),
    ])
    result = handle_continuation_loop(adapter, REQUEST, "dummy-alpha")

    assert result.calls == 2
    assert not result.hit_continuation_cap
    assert result.response.content == "ab"
    usage = result.response.token_usage
    assert (usage.prompt_tokens, usage.completion_tokens, usage.total_tokens) == (22, 12, 34)


def test_continuation_requests_carry_partial_reply_in_history():
    adapter = FakeAdapter([
        _response("first half", FinishReason.LENGTH),
        _response(" second half", FinishReason.STOP),
    ])
    handle_continuation_loop(adapter, REQUEST, "dummy-alpha")

    follow_up = adapter.requests[1]
    assert follow_up.message == CONTINUE_PROMPT
    assert [(m.role, m.content) for m in follow_up.messages] == [
        ("user", "Write the thesis."),
        ("assistant", "first half"),
    ]
    assert follow_up.system_prompt == REQUEST.system_prompt


def test_prepare_request_hook_runs_before_every_call():
    seen = []

    def hook(request):
        seen.append(request.message)
        return request

    adapter = FakeAdapter([_response("a", FinishReason.LENGTH), _response("b", FinishReason.STOP)])
    handle_continuation_loop(adapter, REQUEST, "dummy-alpha", prepare_request=hook)
    assert seen == ["Write the thesis.", CONTINUE_PROMPT]


def test_continuation_request_keeps_roles_alternating():
    request = continuation_request(REQUEST, "one")
    request = continuation_request(request, "two")
    assert [m.role for m in request.messages] == ["user", "assistant", "user", "assistant"]
    assert request.messages[2].content == CONTINUE_PROMPT


def test_combine_without_responses_is_an_invariant_violation():
    with pytest.raises(ContinuationInvariantError):
        combine_responses([])


# --- context compression ---

def _model(limit):
    return AiModelExtendedConfig(
        api_identifier="dummy-small",
        provider="dummy",
        context_window_tokens=limit,
        tokenization_strategy=TokenizationStrategy(chars_per_token_ratio=1.0),
    )


def _long_request():
    return ChatApiRequest(
        system_prompt="S" * 10,
        messages=[
            ChatMessage(role="user", content="u" * 100),
            ChatMessage(role="assistant", content="a" * 100),
            ChatMessage(role="user", content="U" * 100),
            ChatMessage(role="assistant", content="A" * 100),
        ],
        message="m" * 10,
    )


def test_fitting_prompt_is_untouched():
    request = _long_request()
    assert compress_prompt(_model(1000), request) is request


def test_compression_drops_oldest_turns_after_first():
    compressed = compress_prompt(_model(320), _long_request())
    assert [m.content[0] for m in compressed.messages] == ["u", "A"]
    assert compressed.message == "m" * 10
    assert compressed.system_prompt == "S" * 10


def _continuation_chain():
    """History of a loop two continuations in: [u, p, C, q, C, r] + C."""
    request = ChatApiRequest(system_prompt="S" * 10, messages=[], message="u" * 100)
    for partial in ("p" * 100, "q" * 100, "r" * 40):
        request = continuation_request(request, partial)
    return request


class _AnthropicClient:
    def __init__(self):
        self.sent = []
        self.messages = SimpleNamespace(create=self._create)

    def _create(self, **kwargs):
        self.sent.append(kwargs)
        return SimpleNamespace(
            content=[SimpleNamespace(type="text", text="resumed")],
            usage=SimpleNamespace(input_tokens=10, output_tokens=5),
            stop_reason="end_turn",
        )


def test_compressed_continuation_keeps_the_partial_and_alternation():
    protected = 10 + 100 + 40 + len(CONTINUE_PROMPT)
    model = _model(protected + 50)
    compressed = compress_prompt(model, _continuation_chain())

    assert [(m.role, m.content[0]) for m in compressed.messages] == [("user", "u"), ("assistant", "r")]
    assert compressed.message == CONTINUE_PROMPT

    client = _AnthropicClient()
    reply = AnthropicAdapter("key", None, model, client=client).send_message(compressed, "anthropic-small")
    assert reply.content == "resumed"
    [sent] = client.sent
    assert [(m["role"], m["content"]) for m in sent["messages"]] == [
        ("user", "u" * 100),
        ("assistant", "r" * 40),
        ("user", CONTINUE_PROMPT),
    ]
    assert sent["system"] == "S" * 10


def test_compression_never_drops_the_last_partial():
    # Only [user, assistant] remain; dropping the partial would restart the answer
    request = continuation_request(
        ChatApiRequest(messages=[], message="u" * 100), "PARTIAL" * 20,
    )
    with pytest.raises(ContextWindowExceededError):
        compress_prompt(_model(100 + 140 + len(CONTINUE_PROMPT) - 1), request)


def test_compression_fails_when_only_the_first_turn_and_last_partial_remain():
    with pytest.raises(ContextWindowExceededError) as exc_info:
        compress_prompt(_model(215), _long_request())
    assert exc_info.value.estimated_tokens == 220


def test_compression_fails_when_protected_parts_do_not_fit():
    with pytest.raises(ContextWindowExceededError) as exc_info:
        compress_prompt(_model(100), _long_request())
    assert exc_info.value.limit == 100
    assert exc_info.value.to_error_details()["kind"] == "context_window_exceeded"
