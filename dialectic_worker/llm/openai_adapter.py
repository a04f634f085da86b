"""OpenAI chat completions adapter.

Handles:
- System prompt sent as the first message with role 'system'
- finish_reason values: stop, length, tool_calls, function_call, content_filter
- Model listing via the models endpoint

Requires the openai package and OPENAI_API_KEY (or an explicit api_key).
"""

import logging
from typing import Any, Optional

import openai

from dialectic_worker.errors import ProviderError
from dialectic_worker.llm.base import PROVIDER_TIMEOUT, BaseAdapter, ProviderCallResult
from dialectic_worker.llm.schemas import (
    AiModelExtendedConfig,
    ChatMessage,
    FinishReason,
    ProviderModelInfo,
)


class OpenAIAdapter(BaseAdapter):
    """Adapter for OpenAI chat models."""

    provider = "openai"
    api_identifier_prefix = "openai-"
    finish_reason_map = {
        "stop": FinishReason.STOP,
        "length": FinishReason.LENGTH,
        "tool_calls": FinishReason.TOOL_CALLS,
        "function_call": FinishReason.TOOL_CALLS,
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
            self._client = openai.OpenAI(api_key=api_key, max_retries=0, timeout=PROVIDER_TIMEOUT)

    def _call_provider(
        self,
        system_prompt: str,
        turns: list[ChatMessage],
        max_tokens: int,
        model_api_name: str,
    ) -> ProviderCallResult:
        messages: list[dict[str, str]] = []
        if system_prompt:
            messages.append({"role": "system", "content": system_prompt})
        messages.extend({"role": turn.role, "content": turn.content} for turn in turns)

        try:
            response = self._client.chat.completions.create(
                model=model_api_name,
                messages=messages,
                max_completion_tokens=max_tokens,
            )
        except openai.APIError as e:
            status_code = getattr(e, "status_code", None)
            self.logger.error(f"[openai] API error ({status_code}) for {model_api_name}: {e}")
            raise ProviderError(
                f"OpenAI API request failed: {e}",
                provider=self.provider,
                status_code=status_code,
            ) from e

        if not response.choices:
            raise ProviderError(
                f"OpenAI response for {model_api_name} has no choices",
                provider=self.provider,
            )

        choice = response.choices[0]
        usage = response.usage
        return ProviderCallResult(
            content=(choice.message.content or "").strip(),
            prompt_tokens=usage.prompt_tokens if usage else 0,
            completion_tokens=usage.completion_tokens if usage else 0,
            native_finish_reason=choice.finish_reason,
        )

    def list_models(self) -> list[ProviderModelInfo]:
        self.logger.info("[openai] Fetching models")
        try:
            items = list(self._client.models.list())
        except openai.APIError as e:
            raise ProviderError(
                f"OpenAI API request failed fetching models: {e}",
                provider=self.provider,
                status_code=getattr(e, "status_code", None),
            ) from e

        models = [
            ProviderModelInfo(api_identifier=f"{self.api_identifier_prefix}{item.id}", name=item.id)
            for item in items
        ]
        self.logger.info(f"[openai] Found {len(models)} models")
        return models
