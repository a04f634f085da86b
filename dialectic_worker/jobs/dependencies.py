"""Collaborators a job needs to run: catalogs, storage and the adapter factory."""

from dataclasses import dataclass, field
from typing import Callable, Optional

from dialectic_worker.executor.storage import FileStorage
from dialectic_worker.llm.base import AiProviderAdapter
from dialectic_worker.llm.factory import get_adapter_for_model
from dialectic_worker.llm.schemas import AiModelExtendedConfig
from dialectic_worker.models.registry import ModelRegistry, get_model_registry
from dialectic_worker.stages.registry import StageRegistry, get_stage_registry

AdapterFactory = Callable[[AiModelExtendedConfig], AiProviderAdapter]


@dataclass
class JobDependencies:
    stages: StageRegistry = field(default_factory=get_stage_registry)
    models: ModelRegistry = field(default_factory=get_model_registry)
    storage: FileStorage = field(default_factory=FileStorage)
    adapter_factory: AdapterFactory = get_adapter_for_model

    @classmethod
    def default(cls, storage_root: Optional[str] = None) -> "JobDependencies":
        return cls(storage=FileStorage(storage_root))
