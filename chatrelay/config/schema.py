"""Configuration schema using Pydantic."""

from typing import Literal
from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings


class PriorityWeightsConfig(BaseModel):
    """Scoring weights for the priority-ranked context policy."""
    recency_weight: int = 10
    attachment_bonus: int = 5
    user_bonus: int = 2
    length_bonus: int = 3
    length_threshold: int = 200  # chars
    system_bonus: int = 8


class ContextConfig(BaseModel):
    """Context selection configuration."""
    policy: Literal["auto", "recency", "priority", "summarized"] = "auto"
    max_tokens: int = 4000
    max_messages: int = 50
    min_recent_messages: int = 4  # Always kept, even over budget
    priority_min_messages: int = 10
    priority_leeway_max_tokens: int | None = None  # None keeps the overflow allowance unbounded
    summary_threshold: int = 100  # History size that switches to the summarized policy
    summary_user_messages: int = 20
    summary_max_length: int = 1000
    summary_budget_ratio: float = 0.7
    summary_max_messages: int = 15
    fallback_messages: int = 10  # Basic recency query after a failed history read
    weights: PriorityWeightsConfig = Field(default_factory=PriorityWeightsConfig)


class StreamConfig(BaseModel):
    """Response streaming configuration."""
    open_tag: str = "<think>"
    close_tag: str = "</think>"
    timeout_seconds: float = 60.0  # Whole-stream limit
    drain_on_disconnect: bool = True  # Keep consuming the model stream after the client leaves
    token_accounting: Literal["estimate", "tiktoken"] = "estimate"  # How finished replies are counted


class ChatDefaults(BaseModel):
    """Default chat model configuration."""
    model: str = "novita/deepseek/deepseek-r1"
    max_tokens: int = 2048
    temperature: float = 0.7
    system_prompt: str | None = None


class ProviderConfig(BaseModel):
    """LLM provider configuration."""
    api_key: str = ""
    api_base: str | None = None


class ProvidersConfig(BaseModel):
    """Configuration for LLM providers."""
    novita: ProviderConfig = Field(default_factory=ProviderConfig)
    openrouter: ProviderConfig = Field(default_factory=ProviderConfig)
    anthropic: ProviderConfig = Field(default_factory=ProviderConfig)
    openai: ProviderConfig = Field(default_factory=ProviderConfig)


class GatewayConfig(BaseModel):
    """Gateway/server configuration."""
    host: str = "0.0.0.0"
    port: int = 18790


class LoggingConfig(BaseModel):
    """Logging configuration."""
    level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"


class Config(BaseSettings):
    """Root configuration for chatrelay."""
    chat: ChatDefaults = Field(default_factory=ChatDefaults)
    context: ContextConfig = Field(default_factory=ContextConfig)
    stream: StreamConfig = Field(default_factory=StreamConfig)
    providers: ProvidersConfig = Field(default_factory=ProvidersConfig)
    gateway: GatewayConfig = Field(default_factory=GatewayConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    def get_api_key(self) -> str | None:
        """Get API key in priority order: Novita > OpenRouter > Anthropic > OpenAI."""
        return (
            self.providers.novita.api_key or
            self.providers.openrouter.api_key or
            self.providers.anthropic.api_key or
            self.providers.openai.api_key or
            None
        )

    def get_api_base(self) -> str | None:
        """Get API base URL for providers that need one."""
        if self.providers.novita.api_key:
            return self.providers.novita.api_base or "https://api.novita.ai/v3/openai"
        if self.providers.openrouter.api_key:
            return self.providers.openrouter.api_base or "https://openrouter.ai/api/v1"
        return None

    class Config:
        env_prefix = "CHATRELAY_"
        env_nested_delimiter = "__"
