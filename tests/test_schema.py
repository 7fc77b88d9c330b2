"""Tests for configuration schema validation."""

import pytest
from pydantic import ValidationError

from chatrelay.config.schema import (
    ChatDefaults,
    Config,
    ContextConfig,
    PriorityWeightsConfig,
    ProviderConfig,
    ProvidersConfig,
    StreamConfig,
)


class TestConfig:
    def test_defaults(self):
        config = Config()
        assert config.gateway.port == 18790
        assert config.chat.model == "novita/deepseek/deepseek-r1"
        assert config.chat.temperature == 0.7
        assert config.chat.max_tokens == 2048
        assert config.logging.level == "INFO"

    def test_get_api_key_priority(self):
        """Novita > OpenRouter > Anthropic > OpenAI."""
        config = Config()
        assert config.get_api_key() is None

        config.providers.openai.api_key = "openai-key"
        assert config.get_api_key() == "openai-key"

        config.providers.anthropic.api_key = "anthropic-key"
        assert config.get_api_key() == "anthropic-key"

        config.providers.openrouter.api_key = "openrouter-key"
        assert config.get_api_key() == "openrouter-key"

        config.providers.novita.api_key = "novita-key"
        assert config.get_api_key() == "novita-key"

    def test_get_api_base_novita(self):
        config = Config()
        config.providers.novita.api_key = "key"
        assert config.get_api_base() == "https://api.novita.ai/v3/openai"

    def test_get_api_base_openrouter(self):
        config = Config()
        config.providers.openrouter.api_key = "key"
        assert config.get_api_base() == "https://openrouter.ai/api/v1"

    def test_get_api_base_none(self):
        config = Config()
        assert config.get_api_base() is None

    def test_get_api_base_custom(self):
        config = Config()
        config.providers.novita.api_key = "key"
        config.providers.novita.api_base = "https://custom.api/v1"
        assert config.get_api_base() == "https://custom.api/v1"


class TestContextConfig:
    def test_defaults(self):
        ctx = ContextConfig()
        assert ctx.policy == "auto"
        assert ctx.max_tokens == 4000
        assert ctx.max_messages == 50
        assert ctx.min_recent_messages == 4
        assert ctx.priority_min_messages == 10
        assert ctx.priority_leeway_max_tokens is None
        assert ctx.summary_threshold == 100
        assert ctx.fallback_messages == 10

    def test_summary_defaults(self):
        ctx = ContextConfig()
        assert ctx.summary_user_messages == 20
        assert ctx.summary_max_length == 1000
        assert ctx.summary_budget_ratio == 0.7
        assert ctx.summary_max_messages == 15

    def test_weights(self):
        weights = PriorityWeightsConfig()
        assert weights.recency_weight == 10
        assert weights.attachment_bonus == 5
        assert weights.user_bonus == 2
        assert weights.length_bonus == 3
        assert weights.length_threshold == 200
        assert weights.system_bonus == 8

    def test_unknown_policy_rejected(self):
        with pytest.raises(ValidationError):
            ContextConfig(policy="random")


class TestStreamConfig:
    def test_defaults(self):
        stream = StreamConfig()
        assert stream.open_tag == "<think>"
        assert stream.close_tag == "</think>"
        assert stream.timeout_seconds == 60.0
        assert stream.drain_on_disconnect is True
        assert stream.token_accounting == "estimate"

    def test_custom_values(self):
        stream = StreamConfig(open_tag="<reasoning>", close_tag="</reasoning>", timeout_seconds=5)
        assert stream.open_tag == "<reasoning>"
        assert stream.timeout_seconds == 5.0


class TestChatDefaults:
    def test_no_system_prompt_by_default(self):
        assert ChatDefaults().system_prompt is None


class TestProviderConfig:
    def test_empty_by_default(self):
        p = ProviderConfig()
        assert p.api_key == ""
        assert p.api_base is None

    def test_all_providers_exist(self):
        providers = ProvidersConfig()
        for name in ("novita", "openrouter", "anthropic", "openai"):
            assert hasattr(providers, name)
            provider = getattr(providers, name)
            assert isinstance(provider, ProviderConfig)
