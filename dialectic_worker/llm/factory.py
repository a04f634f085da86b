"""AI provider adapter factory.

Resolves a provider identifier to its adapter class and constructs it with
the standard (api_key, logger, model_config) bundle. Adding a provider
means one new ADAPTER_REGISTRY entry plus an adapter class.
"""

import logging
import os
from typing import Any, Optional

from dialectic_worker.errors import ContractViolationError, UnknownProviderError
from dialectic_worker.llm.anthropic_adapter import AnthropicAdapter
from dialectic_worker.llm.base import BaseAdapter
from dialectic_worker.llm.dummy_adapter import DummyAdapter
from dialectic_worker.llm.google_adapter import GoogleAdapter
from dialectic_worker.llm.openai_adapter import OpenAIAdapter
from dialectic_worker.llm.schemas import AiModelExtendedConfig

logger = logging.getLogger(__name__)

ADAPTER_REGISTRY: dict[str, type[BaseAdapter]] = {
    "openai": OpenAIAdapter,
    "anthropic": AnthropicAdapter,
    "google": GoogleAdapter,
    "dummy": DummyAdapter,
}

API_KEY_ENV_VARS = {
    "openai": "OPENAI_API_KEY",
    "anthropic": "ANTHROPIC_API_KEY",
    "google": "GEMINI_API_KEY",
}


def provider_for_identifier(model_identifier: str) -> str:
    """Infer the provider from a catalog identifier like 'anthropic-claude-...'.

    Raises:
        UnknownProviderError: If no registered provider prefix matches
    """
    lowered = model_identifier.lower()
    for provider, adapter_cls in ADAPTER_REGISTRY.items():
        if lowered.startswith(adapter_cls.api_identifier_prefix):
            return provider
    raise UnknownProviderError(
        f"Unknown model identifier: '{model_identifier}'. "
        f"Expected a prefix from: {', '.join(c.api_identifier_prefix for c in ADAPTER_REGISTRY.values())}"
    )


def resolve_api_key(provider: str) -> str:
    """Read the provider's API key from the environment."""
    if provider == "dummy":
        return "dummy-key"
    env_var = API_KEY_ENV_VARS.get(provider)
    if env_var is None:
        raise UnknownProviderError(f"Unknown provider: '{provider}'")
    api_key = os.environ.get(env_var)
    if not api_key:
        raise ContractViolationError(
            f"{env_var} not set. Set the environment variable to use {provider} models."
        )
    return api_key


def get_ai_provider_adapter(
    provider: str,
    api_key: str,
    adapter_logger: Optional[logging.Logger],
    model_config: AiModelExtendedConfig,
    *,
    client: Any = None,
) -> BaseAdapter:
    """Construct the adapter registered for provider.

    Args:
        provider: Provider id ('openai', 'anthropic', 'google', 'dummy')
        api_key: Provider API key
        adapter_logger: Logger handed to the adapter
        model_config: Catalog entry for the model being called
        client: Optional pre-built SDK client / transport (tests)

    Raises:
        UnknownProviderError: If provider is not registered
    """
    adapter_cls = ADAPTER_REGISTRY.get(provider.lower())
    if adapter_cls is None:
        raise UnknownProviderError(
            f"No adapter registered for provider '{provider}'. "
            f"Known providers: {', '.join(sorted(ADAPTER_REGISTRY))}"
        )
    logger.debug(f"Creating {adapter_cls.__name__} for {model_config.api_identifier}")
    return adapter_cls(api_key, adapter_logger, model_config, client=client)


def get_adapter_for_model(
    model_config: AiModelExtendedConfig,
    adapter_logger: Optional[logging.Logger] = None,
) -> BaseAdapter:
    """Construct the adapter for a catalog model, reading its API key from the environment."""
    provider = model_config.provider or provider_for_identifier(model_config.api_identifier)
    return get_ai_provider_adapter(
        provider,
        resolve_api_key(provider),
        adapter_logger or logging.getLogger(f"dialectic_worker.llm.{provider}"),
        model_config,
    )
