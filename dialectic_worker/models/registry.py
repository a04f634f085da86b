"""Registry for the AI model catalog.

Loads model definitions from YAML and provides lookup by api identifier.
"""

import logging
from pathlib import Path
from typing import Optional

import yaml

from dialectic_worker.errors import ContractViolationError
from dialectic_worker.llm.schemas import AiModelExtendedConfig

logger = logging.getLogger(__name__)

DEFINITIONS_DIR = Path(__file__).parent / "definitions"


class ModelRegistry:
    """Loads and serves model catalog entries."""

    def __init__(self, definitions_file: Optional[Path] = None) -> None:
        self.definitions_file = definitions_file or DEFINITIONS_DIR / "models.yaml"
        self._models: dict[str, AiModelExtendedConfig] = {}
        self._load_models()

    def _load_models(self) -> None:
        """Load models from the YAML catalog."""
        if not self.definitions_file.exists():
            logger.warning(f"Model catalog not found: {self.definitions_file}")
            return

        with open(self.definitions_file) as f:
            data = yaml.safe_load(f) or {}

        for model_data in data.get("models", []):
            try:
                model = AiModelExtendedConfig(**model_data)
                self._models[model.api_identifier] = model
                logger.debug(f"Loaded model: {model.api_identifier}")
            except Exception as e:
                logger.error(f"Failed to load model definition: {e}")

        logger.info(f"Loaded {len(self._models)} model definitions")

    def get(self, api_identifier: str) -> Optional[AiModelExtendedConfig]:
        return self._models.get(api_identifier)

    def require(self, api_identifier: str) -> AiModelExtendedConfig:
        """Get a model or raise a contract violation naming the identifier."""
        model = self._models.get(api_identifier)
        if model is None:
            raise ContractViolationError(
                f"Model '{api_identifier}' is not in the model catalog",
                fields=["modelId"],
            )
        return model

    def register(self, model: AiModelExtendedConfig) -> None:
        self._models[model.api_identifier] = model

    def list_all(self, provider: Optional[str] = None) -> list[AiModelExtendedConfig]:
        models = list(self._models.values())
        if provider:
            models = [m for m in models if m.provider == provider]
        return models

    @property
    def count(self) -> int:
        return len(self._models)

    def reload(self) -> None:
        """Reload models from disk."""
        self._models.clear()
        self._load_models()


# Global registry instance
_registry: Optional[ModelRegistry] = None


def get_model_registry() -> ModelRegistry:
    """Get the global model registry instance."""
    global _registry
    if _registry is None:
        _registry = ModelRegistry()
    return _registry
