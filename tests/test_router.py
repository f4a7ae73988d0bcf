"""Tests for provider routing"""

import pytest


class TestModelRouter:
    def test_every_kind_has_an_adapter(self):
        from taskmaster.provider.router import ModelRouter, ProviderKind

        assert set(ModelRouter.PROVIDERS) == set(ProviderKind)

    @pytest.mark.parametrize("name,class_name", [
        ("anthropic", "AnthropicProvider"),
        ("openai", "OpenAIProvider"),
        ("openrouter", "OpenRouterProvider"),
        ("perplexity", "PerplexityProvider"),
        ("xai", "XAIProvider"),
        ("mistral", "MistralProvider"),
        ("ollama", "OllamaProvider"),
        ("difyagent", "DifyAgentProvider"),
        ("DifyAgent", "DifyAgentProvider"),
    ])
    def test_get_provider(self, name, class_name):
        from taskmaster.provider.router import ModelRouter

        assert type(ModelRouter.get_provider(name)).__name__ == class_name

    def test_catalog_providers_are_routable(self):
        from taskmaster.config.catalog import load_model_catalog
        from taskmaster.provider.router import ModelRouter

        for provider in load_model_catalog().providers():
            ModelRouter.resolve_kind(provider)

    @pytest.mark.parametrize("name", ["bogus", "", None])
    def test_unknown_provider(self, name):
        from taskmaster.errors import UnsupportedProviderError
        from taskmaster.provider.router import ModelRouter

        with pytest.raises(UnsupportedProviderError) as exc:
            ModelRouter.get_provider(name)

        assert "anthropic" in str(exc.value)

    def test_kwargs_reach_adapter(self):
        import httpx

        from taskmaster.provider.router import ModelRouter

        transport = httpx.MockTransport(lambda request: httpx.Response(200))

        provider = ModelRouter.get_provider("anthropic", transport=transport)

        assert provider._transport is transport

    @pytest.mark.parametrize("model_string,expected", [
        ("openai/gpt-4o", ("openai", "gpt-4o")),
        ("OpenRouter/deepseek/deepseek-chat", ("openrouter", "deepseek/deepseek-chat")),
        ("meta-llama/llama-3-70b", ("anthropic", "meta-llama/llama-3-70b")),
        ("claude-3-5-sonnet", ("anthropic", "claude-3-5-sonnet")),
    ])
    def test_resolve_model(self, model_string, expected):
        from taskmaster.provider.router import ModelRouter

        assert ModelRouter.resolve_model(model_string) == expected
