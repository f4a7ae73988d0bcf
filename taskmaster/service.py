"""Role-based AI service

Resolves a role to its provider, model and limits, checks the provider's
key, runs the call on the matching adapter and falls back to the next role
when a provider fails. Every successful blocking call yields telemetry.
"""

import logging
from dataclasses import dataclass
from typing import Any, Callable

from taskmaster.config.config import ConfigManager
from taskmaster.errors import (
    ConfigurationError,
    ProviderAPIError,
    ProviderValidationError,
    StepLimitExceededError,
    ToolCallError,
    UnsupportedProviderError,
)
from taskmaster.provider.base import BaseAIProvider
from taskmaster.provider.router import ModelRouter
from taskmaster.provider.types import InvocationParams, Message, Usage
from taskmaster.telemetry import TelemetryData

logger = logging.getLogger(__name__)

ROLE_SEQUENCES = {
    "main": ["main", "fallback", "research"],
    "research": ["research", "fallback", "main"],
    "fallback": ["fallback", "research"],
}

# Failures that make the next role worth trying
_RETRYABLE = (ProviderAPIError, ProviderValidationError, ToolCallError, StepLimitExceededError)


@dataclass
class ServiceResult:
    main_result: Any
    telemetry_data: TelemetryData | None
    provider_name: str
    model_id: str
    role: str


class AIService:
    def __init__(
        self,
        config: ConfigManager,
        tools=None,
        provider_factory: Callable[[str], BaseAIProvider] = ModelRouter.get_provider,
    ):
        self.config = config
        self.tools = tools
        self._provider_factory = provider_factory

    @staticmethod
    def role_sequence(role: str) -> list[str]:
        if role in ROLE_SEQUENCES:
            return list(ROLE_SEQUENCES[role])
        logger.warning(f"Unknown initial role: {role}. Defaulting to main -> fallback -> research.")
        return list(ROLE_SEQUENCES["main"])

    def build_params(
        self,
        role: str,
        adapter: BaseAIProvider,
        messages: list[Message],
        session=None,
        project_root: str | None = None,
        **options,
    ) -> InvocationParams:
        role_config = self.config.get_model_config_for_role(role, project_root)
        limits = self.config.get_parameters_for_role(role, project_root)
        key_name = adapter.get_required_api_key_name()
        api_key = self.config.resolve_env_variable(key_name, session, project_root) if key_name else None
        return InvocationParams(
            model_id=role_config.model_id,
            messages=messages,
            api_key=api_key,
            max_tokens=limits.max_tokens,
            temperature=limits.temperature,
            base_url=self.config.get_base_url_for_role(role, project_root),
            tools=self.tools,
            session=session,
            project_root=str(project_root) if project_root else None,
            **options,
        )

    async def _run(
        self,
        service_type: str,
        role: str,
        system_prompt: str | None,
        prompt: str,
        session=None,
        project_root: str | None = None,
        command_name: str | None = None,
        output_type: str | None = None,
        **options,
    ) -> ServiceResult:
        messages: list[Message] = []
        if system_prompt:
            messages.append({"role": "system", "content": system_prompt})
        messages.append({"role": "user", "content": prompt})

        last_error: Exception | None = None
        for current_role in self.role_sequence(role):
            provider_name = self.config.get_provider(current_role, project_root)
            model_id = self.config.get_model_id(current_role, project_root)
            if not provider_name or not model_id:
                logger.warning(f"Skipping role '{current_role}': provider or model not configured")
                last_error = last_error or ConfigurationError(f"No provider/model configured for role '{current_role}'")
                continue

            if not self.config.is_api_key_set(provider_name, session, project_root):
                logger.warning(f"Skipping role '{current_role}' (provider: {provider_name}): API key not set or invalid")
                last_error = last_error or ConfigurationError(
                    f"API key for provider '{provider_name}' (role: {current_role}) is not set or invalid"
                )
                continue

            try:
                adapter = self._provider_factory(provider_name)
            except UnsupportedProviderError as e:
                logger.warning(f"Skipping role '{current_role}': {e}")
                last_error = e
                continue

            params = self.build_params(
                current_role,
                adapter,
                messages,
                session=session,
                project_root=project_root,
                command_name=command_name,
                output_type=output_type,
                **options,
            )
            logger.info(f"New AI service call with role: {current_role} ({provider_name}/{model_id})")

            try:
                if service_type == "generate_text":
                    result = await adapter.generate_text(params)
                elif service_type == "stream_text":
                    result = await adapter.stream_text(params)
                elif service_type == "generate_object":
                    result = await adapter.generate_object(params)
                else:
                    raise ValueError(f"Unknown service type: {service_type}")
            except _RETRYABLE as e:
                logger.error(f"Service call '{service_type}' failed for role {current_role} ({provider_name}): {e}")
                last_error = e
                continue

            usage = getattr(result, "usage", None)
            telemetry = None
            if isinstance(usage, Usage):
                telemetry = TelemetryData.from_usage(
                    self.config.catalog,
                    provider_name,
                    model_id,
                    usage,
                    user_id=self.config.get_user_id(project_root),
                    command_name=command_name,
                    output_type=output_type,
                )
            return ServiceResult(
                main_result=result,
                telemetry_data=telemetry,
                provider_name=provider_name,
                model_id=model_id,
                role=current_role,
            )

        logger.error(f"All roles in the sequence [{', '.join(self.role_sequence(role))}] failed.")
        raise last_error or ConfigurationError("No AI role could be used")

    async def generate_text(self, role: str, system_prompt: str | None, prompt: str, **kwargs) -> ServiceResult:
        return await self._run("generate_text", role, system_prompt, prompt, **kwargs)

    async def stream_text(self, role: str, system_prompt: str | None, prompt: str, **kwargs) -> ServiceResult:
        """The stream is returned once started; failures after that do not fall back"""
        return await self._run("stream_text", role, system_prompt, prompt, **kwargs)

    async def generate_object(
        self, role: str, system_prompt: str | None, prompt: str, schema, object_name: str, **kwargs
    ) -> ServiceResult:
        return await self._run(
            "generate_object", role, system_prompt, prompt, schema=schema, object_name=object_name, **kwargs
        )
