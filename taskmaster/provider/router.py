"""Model routing and provider selection"""

import logging
from enum import Enum
from typing import Dict, Type

from taskmaster.errors import UnsupportedProviderError

from .anthropic import AnthropicProvider
from .base import BaseAIProvider
from .dify import DifyAgentProvider
from .openai import MistralProvider, OllamaProvider, OpenAIProvider, PerplexityProvider, XAIProvider
from .openrouter import OpenRouterProvider

logger = logging.getLogger(__name__)


class ProviderKind(str, Enum):
    """Every provider an adapter exists for"""

    ANTHROPIC = "anthropic"
    OPENAI = "openai"
    OPENROUTER = "openrouter"
    PERPLEXITY = "perplexity"
    XAI = "xai"
    MISTRAL = "mistral"
    OLLAMA = "ollama"
    DIFYAGENT = "difyagent"


class ModelRouter:
    """Routes provider names to adapters"""

    # One adapter per kind; tests check this stays exhaustive
    PROVIDERS: Dict[ProviderKind, Type[BaseAIProvider]] = {
        ProviderKind.ANTHROPIC: AnthropicProvider,
        ProviderKind.OPENAI: OpenAIProvider,
        ProviderKind.OPENROUTER: OpenRouterProvider,
        ProviderKind.PERPLEXITY: PerplexityProvider,
        ProviderKind.XAI: XAIProvider,
        ProviderKind.MISTRAL: MistralProvider,
        ProviderKind.OLLAMA: OllamaProvider,
        ProviderKind.DIFYAGENT: DifyAgentProvider,
    }

    @classmethod
    def resolve_kind(cls, provider_name: str | None) -> ProviderKind:
        try:
            return ProviderKind((provider_name or "").lower())
        except ValueError:
            raise UnsupportedProviderError(provider_name, [kind.value for kind in ProviderKind]) from None

    @classmethod
    def resolve_model(cls, model_string: str, default_provider: str = "anthropic") -> tuple[str, str]:
        """Resolve 'provider/model' to (provider, model_id)"""
        if "/" in model_string:
            provider, model_id = model_string.split("/", 1)
            if provider.lower() in {kind.value for kind in ProviderKind}:
                return provider.lower(), model_id
        # OpenRouter style ids ("meta-llama/...") keep their slash
        return default_provider, model_string

    @classmethod
    def get_provider(cls, provider_name: str | None, **kwargs) -> BaseAIProvider:
        """Instantiate the adapter for a provider name"""
        kind = cls.resolve_kind(provider_name)
        provider_class = cls.PROVIDERS[kind]
        logger.debug(f"Using {provider_class.__name__} for provider '{kind.value}'")
        return provider_class(**kwargs)
