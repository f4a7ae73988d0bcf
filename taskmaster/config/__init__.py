from .catalog import ModelCatalog, load_model_catalog
from .config import CUSTOM_PROVIDERS, KEY_MAP, NO_API_KEY_PROVIDERS, ConfigManager, ConfigState
from .schema import DEFAULTS, ROLES, GlobalSettings, RoleConfig, TaskmasterConfig

__all__ = [
    "ModelCatalog",
    "load_model_catalog",
    "CUSTOM_PROVIDERS",
    "KEY_MAP",
    "NO_API_KEY_PROVIDERS",
    "ConfigManager",
    "ConfigState",
    "DEFAULTS",
    "ROLES",
    "GlobalSettings",
    "RoleConfig",
    "TaskmasterConfig",
]
