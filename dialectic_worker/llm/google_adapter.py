"""Google Gemini adapter.

Handles:
- System prompt passed as system_instruction in the generation config
- 'assistant' turns renamed to Gemini's 'model' role
- Thought parts excluded from the returned content
- finish_reason enum names: STOP -> stop, MAX_TOKENS -> length,
  function-call parts -> tool_calls

Requires the google-genai package and GEMINI_API_KEY (or an explicit api_key).
"""

import logging
from typing import Any, Optional

from google import genai
from google.genai import errors as genai_errors
from google.genai import types as genai_types

from dialectic_worker.errors import ProviderError
from dialectic_worker.llm.base import BaseAdapter, ProviderCallResult
from dialectic_worker.llm.schemas import (
    AiModelExtendedConfig,
    ChatMessage,
    FinishReason,
    ProviderModelInfo,
)

_FUNCTION_CALL = "FUNCTION_CALL"


class GoogleAdapter(BaseAdapter):
    """Adapter for Google Gemini models."""

    provider = "google"
    api_identifier_prefix = "google-"
    finish_reason_map = {
        "STOP": FinishReason.STOP,
        "MAX_TOKENS": FinishReason.LENGTH,
        _FUNCTION_CALL: FinishReason.TOOL_CALLS,
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
            self._client = genai.Client(api_key=api_key)

    def _call_provider(
        self,
        system_prompt: str,
        turns: list[ChatMessage],
        max_tokens: int,
        model_api_name: str,
    ) -> ProviderCallResult:
        contents = [
            {
                "role": "model" if turn.role == "assistant" else "user",
                "parts": [{"text": turn.content}],
            }
            for turn in turns
        ]
        config = genai_types.GenerateContentConfig(
            system_instruction=system_prompt or None,
            max_output_tokens=max_tokens,
        )

        try:
            response = self._client.models.generate_content(
                model=model_api_name,
                contents=contents,
                config=config,
            )
        except genai_errors.APIError as e:
            status_code = getattr(e, "code", None)
            self.logger.error(f"[google] API error ({status_code}) for {model_api_name}: {e}")
            raise ProviderError(
                f"Google API request failed: {e}",
                provider=self.provider,
                status_code=status_code,
            ) from e

        if not response.candidates:
            raise ProviderError(
                f"Google response for {model_api_name} has no candidates",
                provider=self.provider,
            )

        candidate = response.candidates[0]
        raw_text = ""
        has_function_call = False
        if candidate.content and candidate.content.parts:
            for part in candidate.content.parts:
                if getattr(part, "function_call", None):
                    has_function_call = True
                    continue
                if getattr(part, "thought", False):
                    continue
                raw_text += getattr(part, "text", "") or ""

        usage = getattr(response, "usage_metadata", None)
        return ProviderCallResult(
            content=raw_text.strip(),
            prompt_tokens=(getattr(usage, "prompt_token_count", None) or 0) if usage else 0,
            completion_tokens=(getattr(usage, "candidates_token_count", None) or 0) if usage else 0,
            native_finish_reason=_FUNCTION_CALL if has_function_call else candidate.finish_reason,
        )

    def list_models(self) -> list[ProviderModelInfo]:
        self.logger.info("[google] Fetching models")
        try:
            items = list(self._client.models.list())
        except genai_errors.APIError as e:
            raise ProviderError(
                f"Google API request failed fetching models: {e}",
                provider=self.provider,
                status_code=getattr(e, "code", None),
            ) from e

        models = []
        for item in items:
            model_id = (item.name or "").split("/")[-1]
            if not model_id:
                continue
            models.append(
                ProviderModelInfo(
                    api_identifier=f"{self.api_identifier_prefix}{model_id}",
                    name=getattr(item, "display_name", None) or model_id,
                    description=getattr(item, "description", None),
                    config={
                        "context_window_tokens": getattr(item, "input_token_limit", None),
                        "provider_max_output_tokens": getattr(item, "output_token_limit", None),
                    },
                )
            )
        self.logger.info(f"[google] Found {len(models)} models")
        return models
