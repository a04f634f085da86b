"""Registry for dialectic stage definitions.

Loads stage definitions from YAML and provides lookup methods.
"""

import logging
from pathlib import Path
from typing import Optional

import yaml

from dialectic_worker.errors import ContractViolationError
from dialectic_worker.stages.schemas import StageDefinition

logger = logging.getLogger(__name__)

DEFINITIONS_DIR = Path(__file__).parent / "definitions"


class StageRegistry:
    """Loads and serves dialectic stage definitions."""

    def __init__(self, definitions_file: Optional[Path] = None) -> None:
        self.definitions_file = definitions_file or DEFINITIONS_DIR / "stages.yaml"
        self._stages: dict[str, StageDefinition] = {}
        self._load_stages()

    def _load_stages(self) -> None:
        """Load stages from YAML file."""
        if not self.definitions_file.exists():
            logger.warning(f"Stages file not found: {self.definitions_file}")
            return

        with open(self.definitions_file) as f:
            data = yaml.safe_load(f) or {}

        for stage_data in data.get("stages", []):
            try:
                stage = StageDefinition(**stage_data)
                self._stages[stage.slug] = stage
                logger.debug(f"Loaded stage: {stage.slug}")
            except Exception as e:
                logger.error(f"Failed to load stage: {e}")

        logger.info(f"Loaded {len(self._stages)} dialectic stages")

    def get(self, slug: str) -> Optional[StageDefinition]:
        """Get a stage by slug."""
        return self._stages.get(slug)

    def require(self, slug: str) -> StageDefinition:
        stage = self._stages.get(slug)
        if stage is None:
            raise ContractViolationError(
                f"Stage '{slug}' is not defined",
                stage_slug=slug,
                fields=["stageSlug"],
            )
        return stage

    def list_all(self) -> list[StageDefinition]:
        """List stages in dialectic order."""
        return sorted(self._stages.values(), key=lambda s: s.stage_order)

    def next_stage(self, slug: str) -> Optional[StageDefinition]:
        """The stage that follows slug, or None for the last stage."""
        current = self.require(slug)
        later = [s for s in self.list_all() if s.stage_order > current.stage_order]
        return later[0] if later else None

    @property
    def count(self) -> int:
        return len(self._stages)

    def reload(self) -> None:
        """Reload stages from disk."""
        self._stages.clear()
        self._load_stages()


# Global registry instance
_registry: Optional[StageRegistry] = None


def get_stage_registry() -> StageRegistry:
    """Get the global stage registry instance."""
    global _registry
    if _registry is None:
        _registry = StageRegistry()
    return _registry
