"""OpenRouter provider implementation - unified access to multiple models"""

import logging

from .openai import OpenAIProvider
from .types import InvocationParams

logger = logging.getLogger(__name__)


class OpenRouterProvider(OpenAIProvider):
    """Provider for OpenRouter API - access Claude, GPT, Gemini, and more with one key"""

    name = "OpenRouter"
    API_KEY_NAME = "OPENROUTER_API_KEY"
    BASE_URL = "https://openrouter.ai/api/v1"

    def default_headers(self) -> dict[str, str]:
        return {
            "HTTP-Referer": "https://github.com/eyaltoledano/claude-task-master",
            "X-Title": "Task Master",
        }

    def get_client(self, params: InvocationParams):
        logger.info(f"Creating OpenRouter client for model: {params.model_id}")
        return super().get_client(params)
