"""Configuration schemas using Pydantic"""

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

ROLES: tuple[str, ...] = ("main", "research", "fallback")

Role = Literal["main", "research", "fallback"]


class RoleConfig(BaseModel):
    """Provider/model selection and generation limits for one role"""

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    provider: str | None = None
    model_id: str | None = Field(default=None, alias="modelId")
    max_tokens: int = Field(default=64000, alias="maxTokens", gt=0)
    temperature: float = Field(default=0.2, ge=0.0, le=1.0)
    base_url: str | None = Field(default=None, alias="baseURL")


class ModelsConfig(BaseModel):
    """Role configurations"""

    model_config = ConfigDict(populate_by_name=True)

    main: RoleConfig
    research: RoleConfig
    fallback: RoleConfig

    def for_role(self, role: str) -> RoleConfig | None:
        if role not in ROLES:
            return None
        return getattr(self, role)


class GlobalSettings(BaseModel):
    """Project-wide settings"""

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    log_level: str = Field(default="info", alias="logLevel")
    debug: bool = False
    # Kept loose so a hand-edited "5" still resolves; getters coerce.
    default_subtasks: int | str = Field(default=5, alias="defaultSubtasks")
    default_num_tasks: int | str = Field(default=10, alias="defaultNumTasks")
    default_priority: str = Field(default="medium", alias="defaultPriority")
    project_name: str = Field(default="Task Master", alias="projectName")
    ollama_base_url: str = Field(default="http://localhost:11434/api", alias="ollamaBaseURL")
    bedrock_base_url: str = Field(
        default="https://bedrock.us-east-1.amazonaws.com", alias="bedrockBaseURL"
    )
    azure_base_url: str | None = Field(default=None, alias="azureBaseURL")
    response_language: str = Field(default="English", alias="responseLanguage")
    use_default_configuration: bool = Field(default=True, alias="useDefaultConfiguration")
    user_id: str | None = Field(default=None, alias="userId")


class TaskmasterConfig(BaseModel):
    """Main configuration, as stored in .taskmaster/config.json"""

    model_config = ConfigDict(populate_by_name=True)

    models: ModelsConfig
    global_: GlobalSettings = Field(default_factory=GlobalSettings, alias="global")

    def to_json_dict(self) -> dict[str, Any]:
        """Dump using the on-disk camelCase keys"""
        return self.model_dump(by_alias=True, exclude_none=True)


DEFAULTS: dict[str, Any] = {
    "models": {
        "main": {
            "provider": "anthropic",
            "modelId": "claude-3-7-sonnet-20250219",
            "maxTokens": 64000,
            "temperature": 0.2,
        },
        "research": {
            "provider": "perplexity",
            "modelId": "sonar-pro",
            "maxTokens": 8700,
            "temperature": 0.1,
        },
        "fallback": {
            "provider": "anthropic",
            "modelId": "claude-3-5-sonnet",
            "maxTokens": 64000,
            "temperature": 0.2,
        },
    },
    "global": GlobalSettings().model_dump(by_alias=True, exclude_none=True),
}


def default_role_config(role: str) -> RoleConfig:
    """Compiled-in configuration for a role"""
    return RoleConfig.model_validate(DEFAULTS["models"][role])
