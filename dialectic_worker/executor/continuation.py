"""Bounded continuation loop around a provider adapter.

When a call stops because it ran out of output tokens (finish_reason
'length'), the partial reply goes into the history and the model is asked
to continue. At most MAX_CONTINUATIONS extra calls are made. The combined
response always reports finish_reason 'stop'; hit_continuation_cap tells
callers whether that 'stop' actually means "gave up continuing".
"""

import logging
from dataclasses import dataclass
from typing import Callable, Optional

from dialectic_worker.errors import ContinuationInvariantError
from dialectic_worker.llm.base import AiProviderAdapter
from dialectic_worker.llm.schemas import (
    AdapterResponsePayload,
    ChatApiRequest,
    ChatMessage,
    FinishReason,
    TokenUsage,
)

logger = logging.getLogger(__name__)

MAX_CONTINUATIONS = 4

CONTINUE_PROMPT = (
    "Your previous response was cut off. Continue exactly where you left off, "
    "without repeating anything you already wrote."
)

RequestHook = Callable[[ChatApiRequest], ChatApiRequest]


@dataclass
class ContinuationResult:
    """Combined outcome of one continuation loop."""
    response: AdapterResponsePayload
    calls: int
    hit_continuation_cap: bool

    @property
    def continuation_count(self) -> int:
        return self.calls - 1


def continuation_request(request: ChatApiRequest, partial: str) -> ChatApiRequest:
    """Next request in the loop: previous message and partial reply move into history."""
    history = list(request.messages)
    if request.message:
        history.append(ChatMessage(role="user", content=request.message))
    history.append(ChatMessage(role="assistant", content=partial))
    return request.model_copy(update={"messages": history, "message": CONTINUE_PROMPT})


def combine_responses(responses: list[AdapterResponsePayload]) -> AdapterResponsePayload:
    """Concatenate content in order and sum token usage. Finish reason is 'stop'."""
    if not responses:
        raise ContinuationInvariantError("Continuation loop produced no provider response")

    prompt_tokens = 0
    completion_tokens = 0
    for response in responses:
        if response.token_usage:
            prompt_tokens += response.token_usage.prompt_tokens
            completion_tokens += response.token_usage.completion_tokens

    last = responses[-1]
    return AdapterResponsePayload(
        content="".join(response.content for response in responses),
        ai_provider_id=last.ai_provider_id,
        system_prompt_id=last.system_prompt_id,
        token_usage=TokenUsage(
            prompt_tokens=prompt_tokens,
            completion_tokens=completion_tokens,
            total_tokens=prompt_tokens + completion_tokens,
        ),
        finish_reason=FinishReason.STOP,
    )


def handle_continuation_loop(
    adapter: AiProviderAdapter,
    request: ChatApiRequest,
    model_identifier: str,
    *,
    prepare_request: Optional[RequestHook] = None,
    label: str = "",
) -> ContinuationResult:
    """Call the adapter until it stops for a reason other than 'length', or the cap.

    Args:
        adapter: Provider adapter to call
        request: First request
        model_identifier: Catalog identifier passed to send_message()
        prepare_request: Applied to every request right before it is sent
            (context compression)
        label: Log prefix, usually the job id

    Returns:
        ContinuationResult with the combined response

    Raises:
        ContinuationInvariantError: If no response was collected
        ProviderError / ContextWindowExceededError: From the adapter, unchanged
    """
    responses: list[AdapterResponsePayload] = []
    current = request
    hit_cap = False

    while True:
        outgoing = prepare_request(current) if prepare_request else current
        response = adapter.send_message(outgoing, model_identifier)
        responses.append(response)

        if response.finish_reason != FinishReason.LENGTH:
            break
        if len(responses) > MAX_CONTINUATIONS:
            hit_cap = True
            logger.warning(
                f"[{label or model_identifier}] Continuation cap reached after "
                f"{len(responses)} calls; output may be incomplete"
            )
            break

        logger.info(
            f"[{label or model_identifier}] Output cut at length, "
            f"continuing ({len(responses)}/{MAX_CONTINUATIONS})"
        )
        current = continuation_request(current, response.content)

    combined = combine_responses(responses)
    if len(responses) > 1:
        logger.info(
            f"[{label or model_identifier}] Combined {len(responses)} responses: "
            f"{len(combined.content)} chars, {combined.token_usage.total_tokens} tokens"
        )
    return ContinuationResult(response=combined, calls=len(responses), hit_continuation_cap=hit_cap)
