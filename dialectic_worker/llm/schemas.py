"""Provider-independent request/response shapes for AI adapters.

Every adapter takes a ChatApiRequest and returns an AdapterResponsePayload,
whatever its provider's wire format looks like.
"""

from enum import Enum
from typing import Any, Literal, Optional

from pydantic import BaseModel, Field


class FinishReason(str, Enum):
    """Normalized reason a provider stopped generating."""
    STOP = "stop"
    LENGTH = "length"
    TOOL_CALLS = "tool_calls"
    UNKNOWN = "unknown"


class ChatMessage(BaseModel):
    role: Literal["system", "user", "assistant"]
    content: str


class ChatApiRequest(BaseModel):
    """A chat request: prior history plus the new user message."""

    message: str = Field(default="", description="The new user message")
    messages: list[ChatMessage] = Field(
        default_factory=list,
        description="Prior history, oldest first. May contain system messages.",
    )
    system_prompt: Optional[str] = None
    max_tokens_to_generate: Optional[int] = None
    provider_id: Optional[str] = None
    prompt_id: Optional[str] = None


class TokenUsage(BaseModel):
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0


class AdapterResponsePayload(BaseModel):
    role: Literal["assistant"] = "assistant"
    content: str
    ai_provider_id: Optional[str] = None
    system_prompt_id: Optional[str] = None
    token_usage: Optional[TokenUsage] = None
    finish_reason: FinishReason = FinishReason.UNKNOWN


class TokenizationStrategy(BaseModel):
    """How input tokens are estimated before a call is sent."""

    type: Literal["rough_char_count"] = "rough_char_count"
    chars_per_token_ratio: float = Field(default=4.0, gt=0)


class AiModelExtendedConfig(BaseModel):
    """Model catalog entry: limits, tokenization and cost rates for one model."""

    api_identifier: str
    provider: str
    name: str = ""
    description: Optional[str] = None
    context_window_tokens: Optional[int] = None
    provider_max_input_tokens: Optional[int] = None
    provider_max_output_tokens: Optional[int] = None
    hard_cap_output_tokens: Optional[int] = None
    tokenization_strategy: TokenizationStrategy = Field(default_factory=TokenizationStrategy)
    input_token_cost_rate: float = 0.0
    output_token_cost_rate: float = 0.0
    provider_settings: dict[str, Any] = Field(
        default_factory=dict,
        description="Provider-specific knobs (e.g. dummy adapter behaviour)",
    )

    @property
    def input_token_limit(self) -> Optional[int]:
        """Smallest declared input budget, or None if the model declares none."""
        limits = [
            limit for limit in (self.provider_max_input_tokens, self.context_window_tokens)
            if limit
        ]
        return min(limits) if limits else None


class ProviderModelInfo(BaseModel):
    api_identifier: str
    name: str
    description: Optional[str] = None
    config: Optional[dict[str, Any]] = None
