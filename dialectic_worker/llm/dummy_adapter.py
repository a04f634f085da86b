"""No-network dummy adapter for tests and local runs.

Behaviour comes from model_config.provider_settings:
- mode: 'echo' (default), 'fixed_response' or 'error'
- fixed_content / finish_reason: used by 'fixed_response'
- models: optional list of api identifiers returned by list_models()

Output longer than max_tokens is cut at the token budget and reported
with finish_reason 'length', so continuation logic can run offline.
A custom transport callable can replace the built-in behaviour.
"""

import logging
from typing import Any, Callable, Optional

from dialectic_worker.errors import ProviderError
from dialectic_worker.llm.base import (
    BaseAdapter,
    ProviderCallResult,
    estimate_input_tokens,
    estimate_text_tokens,
)
from dialectic_worker.llm.schemas import (
    AiModelExtendedConfig,
    ChatMessage,
    FinishReason,
    ProviderModelInfo,
)

# (system_prompt, turns, max_tokens, model_api_name) -> {"content", "finish_reason", ...}
DummyTransport = Callable[[str, list[ChatMessage], int, str], dict[str, Any]]


class DummyAdapter(BaseAdapter):
    """Adapter that never touches the network."""

    provider = "dummy"
    api_identifier_prefix = "dummy-"
    finish_reason_map = {reason.value: reason for reason in FinishReason}

    def __init__(
        self,
        api_key: str,
        logger: Optional[logging.Logger],
        model_config: AiModelExtendedConfig,
        *,
        client: Optional[DummyTransport] = None,
    ):
        super().__init__(api_key, logger, model_config, client=client)
        self.settings = dict(model_config.provider_settings)
        self.calls: list[dict[str, Any]] = []

    def _builtin_reply(
        self,
        system_prompt: str,
        turns: list[ChatMessage],
        max_tokens: int,
        model_api_name: str,
    ) -> dict[str, Any]:
        mode = self.settings.get("mode", "echo")
        if mode == "error":
            raise ProviderError(
                self.settings.get("error_message", "Dummy provider configured to fail"),
                provider=self.provider,
                status_code=self.settings.get("status_code", 500),
            )
        if mode == "fixed_response":
            content = self.settings.get("fixed_content", "")
            finish_reason = self.settings.get("finish_reason", "stop")
        else:
            last_user = next((t.content for t in reversed(turns) if t.role == "user"), "")
            content = f"Echo from {model_api_name}: {last_user}"
            finish_reason = "stop"

        ratio = self.model_config.tokenization_strategy.chars_per_token_ratio
        max_chars = int(max_tokens * ratio)
        if len(content) > max_chars:
            content = content[:max_chars]
            finish_reason = "length"
        return {"content": content, "finish_reason": finish_reason}

    def _call_provider(
        self,
        system_prompt: str,
        turns: list[ChatMessage],
        max_tokens: int,
        model_api_name: str,
    ) -> ProviderCallResult:
        self.calls.append({
            "model": model_api_name,
            "system": system_prompt,
            "messages": [turn.model_dump() for turn in turns],
            "max_tokens": max_tokens,
        })
        transport = self._client or self._builtin_reply
        reply = transport(system_prompt, turns, max_tokens, model_api_name)

        content = reply.get("content", "")
        prompt_tokens = reply.get("prompt_tokens")
        if prompt_tokens is None:
            prompt_tokens = estimate_input_tokens(self.model_config, system_prompt, turns)
        completion_tokens = reply.get("completion_tokens")
        if completion_tokens is None:
            completion_tokens = estimate_text_tokens(self.model_config, content)

        return ProviderCallResult(
            content=content,
            prompt_tokens=prompt_tokens,
            completion_tokens=completion_tokens,
            native_finish_reason=reply.get("finish_reason", "stop"),
        )

    def list_models(self) -> list[ProviderModelInfo]:
        identifiers = self.settings.get("models") or [self.model_config.api_identifier]
        return [
            ProviderModelInfo(
                api_identifier=identifier,
                name=identifier,
                description="Dummy model (no network)",
            )
            for identifier in identifiers
        ]
