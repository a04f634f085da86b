"""AI model catalog."""

from dialectic_worker.models.registry import ModelRegistry, get_model_registry

__all__ = ["ModelRegistry", "get_model_registry"]
