"""Context compression for prompts that outgrow the model's input budget.

Strategy: drop the oldest (assistant, user) pairs from the history that
sits between the first user turn and the last assistant turn. Protected
and never touched:

- the system prompt
- the first user turn (the stage prompt with its source documents)
- the last assistant turn (the partial a continuation builds on)
- the new message

Dropping whole pairs keeps user/assistant alternation intact. If the
prompt still does not fit once nothing droppable is left, fail with
ContextWindowExceededError. Nothing is ever truncated mid-text.
"""

import logging

from dialectic_worker.errors import ContextWindowExceededError
from dialectic_worker.llm.base import estimate_input_tokens
from dialectic_worker.llm.schemas import AiModelExtendedConfig, ChatApiRequest, ChatMessage

logger = logging.getLogger(__name__)


def _estimate(model_config: AiModelExtendedConfig, request: ChatApiRequest) -> int:
    turns = [m for m in request.messages if m.role != "system"]
    system = request.system_prompt or "".join(m.content for m in request.messages if m.role == "system")
    if request.message:
        turns = turns + [ChatMessage(role="user", content=request.message)]
    return estimate_input_tokens(model_config, system, turns)


def _split_history(turns: list[ChatMessage]) -> tuple[list[ChatMessage], list[ChatMessage], list[ChatMessage]]:
    """Split turns into (protected head, droppable middle, protected tail)."""
    head, rest = turns[:1], turns[1:]
    if rest and rest[-1].role == "assistant":
        return head, rest[:-1], rest[-1:]
    return head, rest, []


def compress_prompt(model_config: AiModelExtendedConfig, request: ChatApiRequest) -> ChatApiRequest:
    """Return request unchanged if it fits, else a copy with older history dropped.

    Raises:
        ContextWindowExceededError: If the protected parts alone exceed the budget
    """
    limit = model_config.input_token_limit
    estimated = _estimate(model_config, request)
    if limit is None or estimated <= limit:
        return request

    system_messages = [m for m in request.messages if m.role == "system"]
    head, middle, tail = _split_history([m for m in request.messages if m.role != "system"])

    dropped = 0
    compressed = request
    while len(middle) >= 2 and estimated > limit:
        middle = middle[2:]
        dropped += 2
        compressed = request.model_copy(update={"messages": system_messages + head + middle + tail})
        estimated = _estimate(model_config, compressed)

    if estimated > limit:
        logger.error(
            f"[compression] {model_config.api_identifier}: ~{estimated:,} tokens after "
            f"dropping {dropped} turn(s), limit {limit:,}; nothing left to drop"
        )
        raise ContextWindowExceededError(estimated, limit, model=model_config.api_identifier)

    logger.info(
        f"[compression] {model_config.api_identifier}: dropped {dropped} history turn(s), "
        f"~{estimated:,}/{limit:,} tokens"
    )
    return compressed
