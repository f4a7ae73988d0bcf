"""Supported-models catalog

The catalog is a JSON object keyed by provider name; each value is a list of
model entries with optional token/temperature overrides, cost and role data.
It is loaded once and never mutated afterwards.
"""

import json
import logging
from functools import lru_cache
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict, ValidationError

from taskmaster.errors import ModelCatalogError

logger = logging.getLogger(__name__)

DEFAULT_CATALOG_PATH = Path(__file__).parent / "supported_models.json"

DEFAULT_ALLOWED_ROLES = ["main", "fallback"]

# Display names that the generic "split on dashes" rule gets wrong
_DISPLAY_NAMES = {
    "claude-3.5-sonnet-20240620": "Claude 3.5 Sonnet",
    "claude-3-7-sonnet-20250219": "Claude 3.7 Sonnet",
    "gpt-4o": "GPT-4o",
    "gpt-4-turbo": "GPT-4 Turbo",
    "sonar-pro": "Perplexity Sonar Pro",
    "sonar-mini": "Perplexity Sonar Mini",
}


class ModelCost(BaseModel):
    """USD per million tokens"""

    model_config = ConfigDict(frozen=True)

    input: float | None = None
    output: float | None = None
    currency: str = "USD"


class CatalogModel(BaseModel):
    model_config = ConfigDict(frozen=True, extra="ignore")

    id: str
    max_tokens: int | None = None
    temperature: float | None = None
    swe_score: float | None = None
    cost_per_1m_tokens: ModelCost | None = None
    allowed_roles: list[str] | None = None
    supported: bool = True


class ModelCatalog:
    """Read-only view over the supported models"""

    def __init__(self, providers: dict[str, list[CatalogModel]]):
        self._providers = {name: tuple(models) for name, models in providers.items()}

    @classmethod
    def from_dict(cls, data: Any) -> "ModelCatalog":
        if not isinstance(data, dict):
            raise ModelCatalogError("Model catalog must be a JSON object keyed by provider")
        providers: dict[str, list[CatalogModel]] = {}
        for provider, models in data.items():
            if not isinstance(models, list):
                raise ModelCatalogError(f"Catalog entry for '{provider}' must be a list")
            try:
                providers[provider] = [CatalogModel.model_validate(m) for m in models]
            except ValidationError as e:
                raise ModelCatalogError(f"Invalid model entry for '{provider}': {e}") from e
        return cls(providers)

    @classmethod
    def load(cls, path: Path | str) -> "ModelCatalog":
        """Load the catalog from a JSON file.

        Raises:
            ModelCatalogError: if the file is missing or is not valid JSON.
                There is no degraded mode; role defaults depend on the catalog.
        """
        path = Path(path)
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except FileNotFoundError as e:
            raise ModelCatalogError(f"Could not load supported models from {path}: file not found") from e
        except (OSError, json.JSONDecodeError) as e:
            raise ModelCatalogError(
                f"Could not load supported models from {path}: {type(e).__name__}: {e}"
            ) from e
        catalog = cls.from_dict(data)
        logger.debug(f"Loaded {len(catalog.providers())} providers from {path}")
        return catalog

    def providers(self) -> list[str]:
        return list(self._providers)

    def has_provider(self, provider: str | None) -> bool:
        return provider in self._providers

    def models_for(self, provider: str) -> tuple[CatalogModel, ...]:
        return self._providers.get(provider, ())

    def find(self, provider: str | None, model_id: str | None) -> CatalogModel | None:
        for model in self._providers.get(provider, ()):
            if model.id == model_id:
                return model
        return None

    def validate_provider_model_combination(self, provider: str, model_id: str) -> bool:
        """Non-strict check: unknown providers and empty model lists accept any model"""
        if provider not in self._providers:
            return True
        models = self._providers[provider]
        return len(models) == 0 or any(m.id == model_id for m in models)

    def available_models(self) -> list[dict[str, Any]]:
        available = []
        for provider, models in self._providers.items():
            if not models:
                available.append({
                    "id": f"[{provider}-any]",
                    "name": f"Any ({provider})",
                    "provider": provider,
                })
                continue
            for model in models:
                cost = model.cost_per_1m_tokens
                available.append({
                    "id": model.id,
                    "name": display_name(model.id),
                    "provider": provider,
                    "swe_score": model.swe_score,
                    "cost_per_1m_tokens": cost.model_dump() if cost else None,
                    "allowed_roles": list(model.allowed_roles or DEFAULT_ALLOWED_ROLES),
                })
        return available

    def calculate_cost(
        self, provider: str, model_id: str, input_tokens: int, output_tokens: int
    ) -> tuple[float, str]:
        """Return (cost, currency) for a call; unknown models cost 0"""
        model = self.find(provider, model_id)
        cost = model.cost_per_1m_tokens if model else None
        if cost is None:
            return 0.0, "USD"
        input_cost = (input_tokens / 1_000_000) * (cost.input or 0)
        output_cost = (output_tokens / 1_000_000) * (cost.output or 0)
        return round(input_cost + output_cost, 6), cost.currency


def display_name(model_id: str) -> str:
    if model_id in _DISPLAY_NAMES:
        return _DISPLAY_NAMES[model_id]
    return " ".join(part[:1].upper() + part[1:] for part in model_id.split("-"))


@lru_cache(maxsize=8)
def load_model_catalog(path: str | None = None) -> ModelCatalog:
    """Load (and memoize) a catalog; defaults to the bundled supported_models.json"""
    return ModelCatalog.load(path or DEFAULT_CATALOG_PATH)
