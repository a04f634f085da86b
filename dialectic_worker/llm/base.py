"""AI provider adapter contract.

Provides a uniform interface for calling different providers (OpenAI,
Anthropic, Google, and a no-network dummy) with a consistent response
format.

BaseAdapter handles the provider-agnostic parts of send_message():
- Merging history + new message without duplicating the new message
- Pre-flight input budget check (fails, never truncates)
- Max output tokens resolution against the model's caps
- Finish reason normalization to stop | length | tool_calls | unknown

Each concrete adapter handles provider-specific concerns:
- Client creation (SDK clients are built with retries disabled)
- Structural constraints (role alternation, system prompt placement)
- Response parsing and token counting
- Mapping SDK exceptions to ProviderError

Retry policy does not live here; adapters make exactly one call.
"""

import logging
import math
import re
from typing import Any, Optional, Protocol, runtime_checkable

import httpx

from dialectic_worker.errors import ContextWindowExceededError, ProviderError
from dialectic_worker.llm.schemas import (
    AdapterResponsePayload,
    AiModelExtendedConfig,
    ChatApiRequest,
    ChatMessage,
    FinishReason,
    ProviderModelInfo,
    TokenUsage,
)

DEFAULT_MAX_OUTPUT_TOKENS = 4096

# HTTP timeouts for SDK clients. Long reads cover large non-streaming outputs.
PROVIDER_TIMEOUT = httpx.Timeout(
    connect=60.0,
    read=1200.0,
    write=120.0,
    pool=60.0,
)


@runtime_checkable
class AiProviderAdapter(Protocol):
    """Protocol every provider adapter implements."""

    def send_message(
        self,
        request: ChatApiRequest,
        model_identifier: str,
    ) -> AdapterResponsePayload: ...

    def list_models(self) -> list[ProviderModelInfo]: ...


class ProviderCallResult:
    """Raw result of one provider call, before normalization."""

    __slots__ = ("content", "prompt_tokens", "completion_tokens", "native_finish_reason")

    def __init__(
        self,
        content: str,
        prompt_tokens: int,
        completion_tokens: int,
        native_finish_reason: Any,
    ):
        self.content = content
        self.prompt_tokens = prompt_tokens
        self.completion_tokens = completion_tokens
        self.native_finish_reason = native_finish_reason


def estimate_input_tokens(
    model_config: AiModelExtendedConfig,
    system_prompt: str,
    turns: list[ChatMessage],
) -> int:
    """Estimate input tokens for a fully assembled prompt."""
    total_chars = len(system_prompt) + sum(len(turn.content) for turn in turns)
    ratio = model_config.tokenization_strategy.chars_per_token_ratio
    return math.ceil(total_chars / ratio)


def estimate_text_tokens(model_config: AiModelExtendedConfig, text: str) -> int:
    ratio = model_config.tokenization_strategy.chars_per_token_ratio
    return math.ceil(len(text) / ratio)


class BaseAdapter:
    """Shared send_message() pipeline. Subclasses implement _call_provider()."""

    provider: str = ""
    api_identifier_prefix: str = ""
    finish_reason_map: dict[str, FinishReason] = {}

    def __init__(
        self,
        api_key: str,
        logger: Optional[logging.Logger],
        model_config: AiModelExtendedConfig,
        *,
        client: Any = None,
    ):
        self.api_key = api_key
        self.logger = logger or logging.getLogger(__name__)
        self.model_config = model_config
        self._client = client

    # --- hooks for subclasses ---

    def _call_provider(
        self,
        system_prompt: str,
        turns: list[ChatMessage],
        max_tokens: int,
        model_api_name: str,
    ) -> ProviderCallResult:
        raise NotImplementedError

    def _prepare_turns(self, turns: list[ChatMessage]) -> list[ChatMessage]:
        """Apply provider structural constraints. Default: unchanged."""
        return turns

    def list_models(self) -> list[ProviderModelInfo]:
        raise NotImplementedError

    # --- shared pipeline ---

    def model_api_name(self, model_identifier: str) -> str:
        """Strip the catalog prefix ('anthropic-', 'openai-', ...) from an identifier."""
        if not self.api_identifier_prefix:
            return model_identifier
        return re.sub(f"^{re.escape(self.api_identifier_prefix)}", "", model_identifier, flags=re.IGNORECASE)

    def combine_messages(self, request: ChatApiRequest) -> tuple[str, list[ChatMessage]]:
        """Merge history and the new message into (system_prompt, turns).

        System messages in the history are lifted out (the last one wins
        unless request.system_prompt is set). The new message is appended
        only if it is not already the last user turn in the history.
        """
        system_prompt = request.system_prompt or ""
        turns: list[ChatMessage] = []
        for message in request.messages:
            if message.role == "system":
                if not request.system_prompt and message.content:
                    system_prompt = message.content
                continue
            if message.content:
                turns.append(message)

        if request.message:
            last = turns[-1] if turns else None
            if not (last and last.role == "user" and last.content == request.message):
                turns.append(ChatMessage(role="user", content=request.message))

        return system_prompt, turns

    def resolve_max_tokens(self, request: ChatApiRequest) -> int:
        requested = request.max_tokens_to_generate
        max_tokens = requested if requested and requested > 0 else DEFAULT_MAX_OUTPUT_TOKENS
        for cap in (self.model_config.hard_cap_output_tokens, self.model_config.provider_max_output_tokens):
            if cap and cap < max_tokens:
                max_tokens = cap
        return max_tokens

    def assert_within_input_budget(
        self,
        system_prompt: str,
        turns: list[ChatMessage],
        model_identifier: str,
    ) -> int:
        """Fail before sending if the assembled prompt exceeds the input budget.

        Returns the estimated input token count.
        """
        estimated = estimate_input_tokens(self.model_config, system_prompt, turns)
        limit = self.model_config.input_token_limit
        if limit is not None and estimated > limit:
            self.logger.error(
                f"[{self.provider}] Prompt for {model_identifier} exceeds input budget: "
                f"~{estimated:,} tokens > {limit:,}. Request not sent."
            )
            raise ContextWindowExceededError(estimated, limit, model=model_identifier)
        return estimated

    def normalize_finish_reason(self, native: Any) -> FinishReason:
        if native is None:
            return FinishReason.UNKNOWN
        key = getattr(native, "name", None) or str(native)
        return self.finish_reason_map.get(key, self.finish_reason_map.get(key.lower(), FinishReason.UNKNOWN))

    def send_message(
        self,
        request: ChatApiRequest,
        model_identifier: str,
    ) -> AdapterResponsePayload:
        """Send one chat request and return the normalized assistant reply.

        Raises:
            ContextWindowExceededError: If the prompt exceeds the input budget
                (no request is sent)
            ProviderError: On provider failure or an empty response
        """
        model_api_name = self.model_api_name(model_identifier)
        system_prompt, turns = self.combine_messages(request)
        turns = self._prepare_turns(turns)
        if not turns:
            raise ProviderError(
                f"Cannot send request to {self.provider}: no user/assistant messages",
                provider=self.provider,
            )

        estimated = self.assert_within_input_budget(system_prompt, turns, model_identifier)
        max_tokens = self.resolve_max_tokens(request)

        self.logger.info(
            f"[{self.provider}] Sending {model_api_name}: {len(turns)} turns, "
            f"~{estimated:,} input tokens, max_tokens={max_tokens}"
        )

        result = self._call_provider(system_prompt, turns, max_tokens, model_api_name)

        if not result.content or not result.content.strip():
            self.logger.error(f"[{self.provider}] Empty response from {model_api_name}")
            raise ProviderError(
                f"Received empty response from {self.provider} ({model_api_name})",
                provider=self.provider,
            )

        finish_reason = self.normalize_finish_reason(result.native_finish_reason)
        self.logger.info(
            f"[{self.provider}] {model_api_name} completed: "
            f"{result.prompt_tokens}+{result.completion_tokens} tokens, "
            f"finish_reason={finish_reason.value} (native: {result.native_finish_reason})"
        )

        return AdapterResponsePayload(
            content=result.content,
            ai_provider_id=request.provider_id,
            system_prompt_id=request.prompt_id if request.prompt_id != "__none__" else None,
            token_usage=TokenUsage(
                prompt_tokens=result.prompt_tokens,
                completion_tokens=result.completion_tokens,
                total_tokens=result.prompt_tokens + result.completion_tokens,
            ),
            finish_reason=finish_reason,
        )
