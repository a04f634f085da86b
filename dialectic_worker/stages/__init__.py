"""Dialectic stage catalog."""

from dialectic_worker.stages.registry import StageRegistry, get_stage_registry
from dialectic_worker.stages.schemas import GranularityStrategy, StageDefinition

__all__ = ["GranularityStrategy", "StageDefinition", "StageRegistry", "get_stage_registry"]
