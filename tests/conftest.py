import threading
from pathlib import Path
from typing import Any, Optional

import pytest

from dialectic_worker.contributions.schemas import DocumentRelationships, SourceDocument
from dialectic_worker.errors import ProviderError
from dialectic_worker.executor import db
from dialectic_worker.executor.storage import FileStorage
from dialectic_worker.jobs.dependencies import JobDependencies
from dialectic_worker.llm.dummy_adapter import DummyAdapter
from dialectic_worker.llm.schemas import AiModelExtendedConfig, ChatMessage
from dialectic_worker.models.registry import ModelRegistry
from dialectic_worker.stages.registry import StageRegistry


@pytest.fixture(autouse=True)
def database(tmp_path: Path):
    db.configure(database_url="", sqlite_path=tmp_path / "dialectic.db")
    db.init_db()


@pytest.fixture
def storage(tmp_path: Path) -> FileStorage:
    return FileStorage(str(tmp_path / "storage"))


def make_model(api_identifier: str, name: str, **overrides: Any) -> AiModelExtendedConfig:
    data = {
        "api_identifier": api_identifier,
        "provider": "dummy",
        "name": name,
        "context_window_tokens": 200000,
        "provider_max_output_tokens": 50000,
    }
    data.update(overrides)
    return AiModelExtendedConfig(**data)


class ScriptedTransport:
    """Dummy adapter transport replaying scripted replies, then a default one."""

    def __init__(self, replies: Optional[list[dict]] = None, default: Optional[dict] = None):
        self.replies = list(replies or [])
        self.default = default
        self.calls: list[dict] = []
        self._lock = threading.Lock()

    def __call__(self, system_prompt: str, turns: list[ChatMessage], max_tokens: int, model: str) -> dict:
        with self._lock:
            self.calls.append({
                "system": system_prompt,
                "messages": [(t.role, t.content) for t in turns],
                "max_tokens": max_tokens,
                "model": model,
            })
            reply = self.replies.pop(0) if self.replies else self.default
        if reply is None:
            last_user = next((t.content for t in reversed(turns) if t.role == "user"), "")
            return {"content": f"{model} on: {last_user[:200]}", "finish_reason": "stop"}
        if isinstance(reply, Exception):
            raise reply
        return reply


@pytest.fixture
def transport() -> ScriptedTransport:
    return ScriptedTransport()


@pytest.fixture
def models() -> ModelRegistry:
    registry = ModelRegistry()
    registry.register(make_model("dummy-alpha", "Dummy Alpha"))
    registry.register(make_model("dummy-beta", "Dummy Beta"))
    return registry


@pytest.fixture
def deps(storage: FileStorage, models: ModelRegistry, transport: ScriptedTransport) -> JobDependencies:
    return JobDependencies(
        stages=StageRegistry(),
        models=models,
        storage=storage,
        adapter_factory=lambda config: DummyAdapter("dummy-key", None, config, client=transport),
    )


def provider_failure(status_code: int = 503) -> ProviderError:
    return ProviderError("upstream unavailable", provider="dummy", status_code=status_code)


def make_doc(doc_id: str, contribution_type: str, model_name: str, **relationships: str) -> SourceDocument:
    return SourceDocument(
        id=doc_id,
        contribution_type=contribution_type,
        model_name=model_name,
        document_relationships=DocumentRelationships(**relationships),
        content=f"{contribution_type} by {model_name}",
    )
