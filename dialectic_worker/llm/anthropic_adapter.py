"""Anthropic Claude adapter.

Handles:
- System prompt as a separate 'system' field, not a message
- Strict user/assistant alternation starting and ending with 'user'
  (out-of-order messages are dropped with a warning)
- stop_reason mapping: end_turn/stop_sequence -> stop, max_tokens -> length,
  tool_use -> tool_calls

Requires the anthropic package and ANTHROPIC_API_KEY (or an explicit api_key).
"""

import logging
from typing import Any, Optional

import anthropic

from dialectic_worker.errors import ProviderError
from dialectic_worker.llm.base import PROVIDER_TIMEOUT, BaseAdapter, ProviderCallResult
from dialectic_worker.llm.schemas import (
    AiModelExtendedConfig,
    ChatMessage,
    FinishReason,
    ProviderModelInfo,
)


class AnthropicAdapter(BaseAdapter):
    """Adapter for Anthropic Claude models."""

    provider = "anthropic"
    api_identifier_prefix = "anthropic-"
    finish_reason_map = {
        "end_turn": FinishReason.STOP,
        "stop_sequence": FinishReason.STOP,
        "max_tokens": FinishReason.LENGTH,
        "tool_use": FinishReason.TOOL_CALLS,
    }

    def __init__(
        self,
        api_key: str,
        logger: Optional[logging.Logger],
        model_config: AiModelExtendedConfig,
        *,
        client: Any = None,
    ):
        super().__init__(api_key, logger, model_config, client=client)
        if self._client is None:
            self._client = anthropic.Anthropic(api_key=api_key, max_retries=0, timeout=PROVIDER_TIMEOUT)

    def _prepare_turns(self, turns: list[ChatMessage]) -> list[ChatMessage]:
        alternating: list[ChatMessage] = []
        expected = "user"
        for turn in turns:
            if turn.role == expected:
                alternating.append(turn)
                expected = "assistant" if expected == "user" else "user"
            else:
                self.logger.warning(
                    f"[anthropic] Skipping '{turn.role}' message, '{expected}' was expected"
                )

        if alternating and alternating[-1].role != "user":
            raise ProviderError(
                "Cannot send request to Anthropic: last message must be from user",
                provider=self.provider,
            )
        return alternating

    def _call_provider(
        self,
        system_prompt: str,
        turns: list[ChatMessage],
        max_tokens: int,
        model_api_name: str,
    ) -> ProviderCallResult:
        kwargs: dict[str, Any] = {
            "model": model_api_name,
            "max_tokens": max_tokens,
            "messages": [{"role": turn.role, "content": turn.content} for turn in turns],
        }
        if system_prompt:
            kwargs["system"] = system_prompt

        try:
            response = self._client.messages.create(**kwargs)
        except anthropic.APIError as e:
            status_code = getattr(e, "status_code", None)
            self.logger.error(f"[anthropic] API error ({status_code}) for {model_api_name}: {e}")
            raise ProviderError(
                f"Anthropic API request failed: {e}",
                provider=self.provider,
                status_code=status_code,
            ) from e

        raw_text = ""
        for block in response.content:
            if getattr(block, "type", None) == "text":
                raw_text += block.text

        usage = response.usage
        return ProviderCallResult(
            content=raw_text.strip(),
            prompt_tokens=usage.input_tokens if usage else 0,
            completion_tokens=usage.output_tokens if usage else 0,
            native_finish_reason=response.stop_reason,
        )

    def list_models(self) -> list[ProviderModelInfo]:
        self.logger.info("[anthropic] Fetching models")
        try:
            items = list(self._client.models.list())
        except anthropic.APIError as e:
            raise ProviderError(
                f"Anthropic API request failed fetching models: {e}",
                provider=self.provider,
                status_code=getattr(e, "status_code", None),
            ) from e

        models = [
            ProviderModelInfo(
                api_identifier=f"{self.api_identifier_prefix}{item.id}",
                name=getattr(item, "display_name", None) or item.id,
            )
            for item in items
        ]
        self.logger.info(f"[anthropic] Found {len(models)} models")
        return models
