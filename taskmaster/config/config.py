"""Configuration management

Resolution order for the effective configuration of a project root:

1. ``.taskmaster/config.json`` (or the legacy ``.taskmasterconfig``) merged
   over the compiled-in defaults, unless ``useDefaultConfiguration`` is true;
2. the master default template shipped with the package, merged over the
   compiled-in defaults, when no file was found or the flag is set;
3. the compiled-in defaults verbatim when the template is unavailable too.

Anything wrong past catalog loading degrades to defaults with a warning.
"""

import copy
import json
import logging
import re
import secrets
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from .catalog import ModelCatalog, load_model_catalog
from .env import EnvironmentChain, dotenv_file, process_env, session_env
from .paths import TASKMASTER_DIR, config_path_for, find_config_path, find_project_root
from .schema import (
    DEFAULTS,
    ROLES,
    GlobalSettings,
    ModelsConfig,
    RoleConfig,
    TaskmasterConfig,
    default_role_config,
)

logger = logging.getLogger(__name__)

MASTER_CONFIG_TEMPLATE_PATH = Path(__file__).parent / "config_default.json"
MASTER_ENV_TEMPLATE_PATH = Path(__file__).parent / "env_default"

# Accepted without a catalog entry
CUSTOM_PROVIDERS = frozenset({"ollama", "openrouter"})

# Usable without any credential
NO_API_KEY_PROVIDERS = frozenset({"ollama"})

KEY_MAP = {
    "openai": "OPENAI_API_KEY",
    "anthropic": "ANTHROPIC_API_KEY",
    "google": "GOOGLE_API_KEY",
    "perplexity": "PERPLEXITY_API_KEY",
    "mistral": "MISTRAL_API_KEY",
    "azure": "AZURE_OPENAI_API_KEY",
    "openrouter": "OPENROUTER_API_KEY",
    "xai": "XAI_API_KEY",
    "vertex": "GOOGLE_API_KEY",
    "difyagent": "DIFY_AGENT_API_KEY",
}

_PLACEHOLDER_RE = re.compile(r"YOUR_.*_API_KEY_HERE")


@dataclass
class ConfigState:
    """Everything resolved for one project root"""

    effective_config: TaskmasterConfig
    effective_env: dict[str, str]
    env_chain: EnvironmentChain
    is_using_default_system: bool
    project_root: Path
    config_file_loaded: bool
    source: str


@dataclass(frozen=True)
class RoleParameters:
    max_tokens: int
    temperature: float


def merge_deep(target: dict, source: dict) -> dict:
    """Recursively merge source over target without mutating either"""
    output = copy.deepcopy(target)
    for key, value in source.items():
        if isinstance(value, dict) and isinstance(output.get(key), dict):
            output[key] = merge_deep(output[key], value)
        else:
            output[key] = copy.deepcopy(value)
    return output


def _read_json(path: Path | None) -> tuple[dict | None, str | None]:
    if path is None or not path.is_file():
        return None, "not_found"
    try:
        raw = path.read_text(encoding="utf-8")
    except OSError:
        return None, "read_error"
    if not raw.strip():
        return None, "empty"
    try:
        data = json.loads(raw)
    except json.JSONDecodeError:
        return None, "parse_error"
    if not isinstance(data, dict):
        return None, "parse_error"
    return data, None


def is_valid_api_key(value: str | None) -> bool:
    """Reject empty values and the placeholders shipped in env templates"""
    if not value or not value.strip():
        return False
    if _PLACEHOLDER_RE.search(value):
        return False
    return "KEY_HERE" not in value


def _generate_user_id() -> str:
    return f"{int(time.time() * 1000):x}{secrets.token_hex(6)}"


class ConfigManager:
    """Resolves and caches the effective configuration for a project root.

    One instance is meant to be created at start-up and passed to whatever
    needs configuration. The cache holds a single root; asking for another
    root, or passing ``force_reload``, rebuilds it.
    """

    def __init__(
        self,
        catalog: ModelCatalog | None = None,
        *,
        environ: dict[str, str] | None = None,
        master_config_path: Path | str = MASTER_CONFIG_TEMPLATE_PATH,
        master_env_path: Path | str = MASTER_ENV_TEMPLATE_PATH,
        cwd: Path | str | None = None,
    ):
        self.catalog = catalog if catalog is not None else load_model_catalog()
        self._environ = environ
        self._master_config_path = Path(master_config_path)
        self._master_env_path = Path(master_env_path)
        self._cwd = Path(cwd) if cwd else None
        self._state: ConfigState | None = None
        self._legacy_warning_shown = False

    # --- Loading ---

    def _resolve_root(self, explicit_root: Path | str | None) -> tuple[Path, bool]:
        """Return (root, warn_if_config_missing)"""
        if explicit_root:
            return Path(explicit_root).resolve(), True
        found = find_project_root(self._cwd)
        if found is not None:
            return found, True
        # Fresh init: nothing to find yet, so stay quiet about it
        return (self._cwd or Path.cwd()).resolve(), False

    def get_config(self, explicit_root: Path | str | None = None, force_reload: bool = False) -> ConfigState:
        root, warn_missing = self._resolve_root(explicit_root)
        if self._state is not None and not force_reload and self._state.project_root == root:
            return self._state
        self._state = self._load(root, warn_missing)
        return self._state

    resolve = get_config

    def _load(self, root: Path, warn_missing: bool) -> ConfigState:
        config_path, is_legacy = find_config_path(root)
        content, error = _read_json(config_path)

        if content is not None and is_legacy and not self._legacy_warning_shown:
            logger.warning(
                f"Using legacy config file {config_path}. "
                f"Move it to {TASKMASTER_DIR}/config.json; the legacy location is deprecated."
            )
            self._legacy_warning_shown = True

        if content is None and warn_missing:
            if error == "not_found":
                logger.warning(f"No configuration file found in {root}. Using default configuration.")
            else:
                logger.warning(f"Configuration file {config_path} is unusable ({error}). Using default configuration.")

        use_default = DEFAULTS["global"]["useDefaultConfiguration"]
        if content is not None:
            flag = (content.get("global") or {}).get("useDefaultConfiguration")
            if isinstance(flag, bool):
                use_default = flag
        else:
            use_default = True

        if use_default:
            template, template_error = _read_json(self._master_config_path)
            if template is not None:
                merged = merge_deep(DEFAULTS, template)
                source = f"Master Default Config Template ({self._master_config_path})"
                loaded = True
                logger.debug("Using default configuration system (master templates)")
            else:
                merged = copy.deepcopy(DEFAULTS)
                source = "Application DEFAULTS"
                loaded = False
                logger.warning(
                    f"Failed to load {self._master_config_path} (reason: {template_error}). "
                    "Using application DEFAULTS."
                )
            # The user id belongs to the project, whichever template is in use
            user_id = (content.get("global") or {}).get("userId") if content else None
            if user_id:
                merged["global"]["userId"] = user_id
        else:
            merged = merge_deep(DEFAULTS, content)
            source = f"Main config.json ({config_path})"
            loaded = True

        config = self._validate(merged, source)
        env_chain = self._build_env_chain(root, use_default)
        logger.debug(f"Config loaded from {source} for {root}")
        return ConfigState(
            effective_config=config,
            effective_env=env_chain.merged(),
            env_chain=env_chain,
            is_using_default_system=use_default,
            project_root=root,
            config_file_loaded=loaded,
            source=source,
        )

    def _validate(self, merged: dict[str, Any], source: str) -> TaskmasterConfig:
        models_raw = merged.get("models") or {}
        models: dict[str, RoleConfig] = {}
        for role in ROLES:
            raw = models_raw.get(role)
            role_config = None
            if isinstance(raw, dict):
                try:
                    role_config = RoleConfig.model_validate(raw)
                except ValidationError as e:
                    logger.warning(
                        f"Invalid {role} model settings from {source} ({e.error_count()} errors). "
                        f"Falling back to default {role} model."
                    )
            if role_config is not None and not self.validate_provider(role_config.provider):
                logger.warning(
                    f'Invalid {role} provider "{role_config.provider}" from {source}. '
                    f"Falling back to default {role} model."
                )
                role_config = None
            models[role] = role_config or default_role_config(role)

        global_raw = merge_deep(DEFAULTS["global"], merged.get("global") or {})
        try:
            global_settings = GlobalSettings.model_validate(global_raw)
        except ValidationError as e:
            bad_keys = {err["loc"][0] for err in e.errors() if err.get("loc")}
            logger.warning(f"Invalid global settings {sorted(bad_keys)} from {source}. Using defaults for them.")
            for key in bad_keys:
                if key in DEFAULTS["global"]:
                    global_raw[key] = DEFAULTS["global"][key]
                else:
                    global_raw.pop(key, None)
            global_settings = GlobalSettings.model_validate(global_raw)

        return TaskmasterConfig(models=ModelsConfig(**models), global_=global_settings)

    def _build_env_chain(self, root: Path, use_default: bool) -> EnvironmentChain:
        if use_default:
            file_source = dotenv_file(self._master_env_path)
            if file_source is None:
                logger.warning(
                    f"Master default ENV template ({self._master_env_path}) not found. "
                    "Using process environment only."
                )
        else:
            env_path = root / ".env"
            file_source = dotenv_file(env_path)
            if file_source is None:
                logger.debug(f"No project .env at {env_path}; using process environment only.")
        # Process environment overlays anything read from files
        return EnvironmentChain([process_env(self._environ), file_source])

    # --- Validation ---

    def validate_provider(self, provider: str | None) -> bool:
        if not provider:
            return False
        return provider in CUSTOM_PROVIDERS or self.catalog.has_provider(provider)

    def validate_provider_model_combination(self, provider: str, model_id: str) -> bool:
        return self.catalog.validate_provider_model_combination(provider, model_id)

    # --- Role-specific getters ---

    def get_model_config_for_role(self, role: str, explicit_root: Path | str | None = None) -> RoleConfig:
        config = self.get_config(explicit_root).effective_config
        role_config = config.models.for_role(role)
        if role_config is None:
            logger.warning(f"No model configuration found for role: {role}. Returning default.")
            return default_role_config(role) if role in ROLES else RoleConfig()
        return role_config

    def get_provider(self, role: str, explicit_root: Path | str | None = None) -> str | None:
        return self.get_model_config_for_role(role, explicit_root).provider

    def get_model_id(self, role: str, explicit_root: Path | str | None = None) -> str | None:
        return self.get_model_config_for_role(role, explicit_root).model_id

    def get_max_tokens(self, role: str, explicit_root: Path | str | None = None) -> int:
        return self.get_model_config_for_role(role, explicit_root).max_tokens

    def get_temperature(self, role: str, explicit_root: Path | str | None = None) -> float:
        return self.get_model_config_for_role(role, explicit_root).temperature

    def get_parameters_for_role(self, role: str, explicit_root: Path | str | None = None) -> RoleParameters:
        """Role limits, tightened by the catalog entry for the role's model.

        The effective max tokens never exceeds either the role setting or a
        positive catalog ``max_tokens``; a catalog temperature in [0, 1]
        replaces the role temperature. Lookup problems fall back to the role.
        """
        role_config = self.get_model_config_for_role(role, explicit_root)
        max_tokens = role_config.max_tokens
        temperature = role_config.temperature
        try:
            model = self.catalog.find(role_config.provider, role_config.model_id)
            if model is None:
                logger.debug(
                    f"No catalog entry for {role_config.provider}/{role_config.model_id}. "
                    f"Using role default maxTokens: {max_tokens}"
                )
            else:
                if isinstance(model.max_tokens, int) and model.max_tokens > 0:
                    max_tokens = min(role_config.max_tokens, model.max_tokens)
                    logger.debug(
                        f"Applying model-specific max_tokens ({model.max_tokens}) for "
                        f"{role_config.model_id}. Effective limit: {max_tokens}"
                    )
                if model.temperature is not None and 0 <= model.temperature <= 1:
                    temperature = model.temperature
        except (AttributeError, TypeError, ValueError) as e:
            logger.warning(
                f"Error looking up catalog limits for {role_config.model_id}: {e}. Using role defaults."
            )
            max_tokens = role_config.max_tokens
            temperature = role_config.temperature
        return RoleParameters(max_tokens=max_tokens, temperature=temperature)

    def get_base_url_for_role(self, role: str, explicit_root: Path | str | None = None) -> str | None:
        role_config = self.get_model_config_for_role(role, explicit_root)
        if role_config.base_url:
            return role_config.base_url
        provider = role_config.provider or ""
        if not provider:
            return None
        settings = self.get_global_config(explicit_root).model_dump(by_alias=True)
        configured = settings.get(f"{provider}BaseURL")
        if configured:
            return configured
        return self.resolve_env_variable(f"{provider.upper()}_BASE_URL", project_root=explicit_root)

    # --- Global settings getters ---

    def get_global_config(self, explicit_root: Path | str | None = None) -> GlobalSettings:
        return self.get_config(explicit_root).effective_config.global_

    def get_log_level(self, explicit_root: Path | str | None = None) -> str:
        return self.get_global_config(explicit_root).log_level.lower()

    def get_debug_flag(self, explicit_root: Path | str | None = None) -> bool:
        return self.get_global_config(explicit_root).debug is True

    def get_default_subtasks(self, explicit_root: Path | str | None = None) -> int:
        return _to_int(self.get_global_config(explicit_root).default_subtasks, DEFAULTS["global"]["defaultSubtasks"])

    def get_default_num_tasks(self, explicit_root: Path | str | None = None) -> int:
        return _to_int(self.get_global_config(explicit_root).default_num_tasks, DEFAULTS["global"]["defaultNumTasks"])

    def get_default_priority(self, explicit_root: Path | str | None = None) -> str:
        return self.get_global_config(explicit_root).default_priority

    def get_project_name(self, explicit_root: Path | str | None = None) -> str:
        return self.get_global_config(explicit_root).project_name

    def get_ollama_base_url(self, explicit_root: Path | str | None = None) -> str:
        return self.get_global_config(explicit_root).ollama_base_url

    def get_bedrock_base_url(self, explicit_root: Path | str | None = None) -> str:
        return self.get_global_config(explicit_root).bedrock_base_url

    def get_response_language(self, explicit_root: Path | str | None = None) -> str:
        return self.get_global_config(explicit_root).response_language

    # --- Environment and API keys ---

    def resolve_env_variable(
        self, name: str, session=None, project_root: Path | str | None = None
    ) -> str | None:
        """Look a variable up: session env, then process env, then the .env file"""
        chain = self.get_config(project_root).env_chain
        if session is not None:
            chain = chain.prepend(session_env(session))
        return chain.get(name)

    def is_api_key_set(self, provider: str | None, session=None, project_root: Path | str | None = None) -> bool:
        key = (provider or "").lower()
        if key in NO_API_KEY_PROVIDERS:
            return True
        env_var = KEY_MAP.get(key)
        if env_var is None:
            logger.warning(f"Unknown provider name: {provider} in API key check.")
            return False
        return is_valid_api_key(self.resolve_env_variable(env_var, session, project_root))

    def get_mcp_api_key_status(self, provider: str | None, project_root: Path | str | None = None) -> bool:
        """Check the key configured for the taskmaster-ai server in .cursor/mcp.json"""
        root = Path(project_root) if project_root else find_project_root(self._cwd)
        if root is None:
            return self.is_api_key_set(provider)
        mcp_path = root / ".cursor" / "mcp.json"
        if not mcp_path.is_file():
            return self.is_api_key_set(provider, None, root)
        try:
            mcp_config = json.loads(mcp_path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            logger.error(f"Error reading or parsing {mcp_path}: {e}. API key status may be incorrect.")
            return self.is_api_key_set(provider, None, root)

        servers = mcp_config.get("mcpServers") if isinstance(mcp_config, dict) else None
        env = ((servers or {}).get("taskmaster-ai") or {}).get("env")
        if not env:
            return self.is_api_key_set(provider, None, root)

        key = (provider or "").lower()
        if key in NO_API_KEY_PROVIDERS:
            return True
        env_var = KEY_MAP.get(key)
        if env_var is None:
            return False
        value = env.get(env_var)
        return bool(value) and value.strip() != "" and not value.endswith("KEY_HERE")

    # --- Catalog ---

    def get_available_models(self) -> list[dict[str, Any]]:
        return self.catalog.available_models()

    def get_all_providers(self) -> list[str]:
        return self.catalog.providers()

    # --- Persistence ---

    def is_config_file_present(self, explicit_root: Path | str | None = None) -> bool:
        root, _ = self._resolve_root(explicit_root)
        return find_config_path(root)[0] is not None

    def write_config(self, config: TaskmasterConfig | dict, explicit_root: Path | str | None = None) -> bool:
        """Persist config to <root>/.taskmaster/config.json; False on failure"""
        root = Path(explicit_root) if explicit_root else find_project_root(self._cwd)
        if root is None:
            logger.error("Could not determine project root. Configuration not saved.")
            return False

        if isinstance(config, TaskmasterConfig):
            data = config.to_json_dict()
        else:
            data = copy.deepcopy(config)
        global_ = data.get("global")
        if isinstance(global_, dict):
            if global_.get("useDefaultConfiguration") == DEFAULTS["global"]["useDefaultConfiguration"]:
                global_.pop("useDefaultConfiguration")
            if not global_:
                data.pop("global")

        path = config_path_for(root)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(json.dumps(data, indent=2), encoding="utf-8")
        except OSError as e:
            logger.error(f"Error writing configuration to {path}: {e}")
            return False

        if self._state is not None and self._state.project_root == root.resolve():
            if isinstance(config, TaskmasterConfig):
                self._state.effective_config = config
            else:
                self._state.effective_config = self._validate(merge_deep(DEFAULTS, data), str(path))
        return True

    def get_user_id(self, explicit_root: Path | str | None = None) -> str:
        """Return the project's user id, generating and saving one if missing"""
        state = self.get_config(explicit_root)
        settings = state.effective_config.global_
        if not settings.user_id:
            settings.user_id = _generate_user_id()
            logger.info(f"Generated new User ID: {settings.user_id}")
            if not self.write_config(state.effective_config, state.project_root):
                logger.warning("Failed to write updated configuration with new userId.")
        return settings.user_id


def _to_int(value: Any, default: int) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return default
