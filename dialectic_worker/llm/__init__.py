"""AI provider adapters.

Provides a uniform interface over the OpenAI, Anthropic and Google APIs
(plus a no-network dummy), used by the execute engine's continuation loop.
"""

from dialectic_worker.llm.base import AiProviderAdapter, BaseAdapter
from dialectic_worker.llm.factory import (
    ADAPTER_REGISTRY,
    get_adapter_for_model,
    get_ai_provider_adapter,
    provider_for_identifier,
)
from dialectic_worker.llm.schemas import (
    AdapterResponsePayload,
    AiModelExtendedConfig,
    ChatApiRequest,
    ChatMessage,
    FinishReason,
    ProviderModelInfo,
    TokenUsage,
)

__all__ = [
    "ADAPTER_REGISTRY",
    "AdapterResponsePayload",
    "AiModelExtendedConfig",
    "AiProviderAdapter",
    "BaseAdapter",
    "ChatApiRequest",
    "ChatMessage",
    "FinishReason",
    "ProviderModelInfo",
    "TokenUsage",
    "get_adapter_for_model",
    "get_ai_provider_adapter",
    "provider_for_identifier",
]
