import pytest

from conftest import make_doc
from dialectic_worker.errors import (
    InvalidJobPayloadError,
    MissingSourceDocumentError,
    PlannerConfigurationError,
)
from dialectic_worker.jobs import job_manager
from dialectic_worker.jobs.planners import plan_pairwise_by_origin
from dialectic_worker.jobs.processor import (
    process_job,
    transform_execute_to_continuation,
    transform_plan_to_planned_execute,
    transform_simple_plan_to_execute,
)
from dialectic_worker.jobs.schemas import (
    DialecticPlanJobPayload,
    JobStatus,
    JobType,
)
from dialectic_worker.jobs.task_isolator import isolate_task
from dialectic_worker.paths.schemas import FileType
from dialectic_worker.stages import StageRegistry


def _plan(**overrides) -> DialecticPlanJobPayload:
    data = dict(
        project_id="proj-1",
        session_id="sess-1",
        stage_slug="thesis",
        model_id="dummy-alpha",
        model_slug="dummy-alpha",
    )
    data.update(overrides)
    return DialecticPlanJobPayload(**data)


@pytest.fixture
def stages() -> StageRegistry:
    return StageRegistry()


@pytest.mark.parametrize("stale_id", [None, "dc-stale", "dc-123456789abc"])
def test_simple_plan_to_execute_always_clears_target_contribution_id(stages, stale_id):
    plan = _plan(target_contribution_id=stale_id)
    execute = transform_simple_plan_to_execute(plan, stages.require("thesis"))
    assert execute.target_contribution_id is None
    assert "target_contribution_id" not in execute.to_payload()


def test_simple_plan_to_execute_builds_minimal_canonical_params(stages):
    execute = transform_simple_plan_to_execute(_plan(user_feedback="more detail"), stages.require("thesis"))
    assert execute.canonical_path_params.to_payload() == {"contributionType": "thesis"}
    assert execute.continuation_count == 0
    assert execute.output_type == FileType.MODEL_CONTRIBUTION_MAIN
    assert execute.user_feedback == "more detail"
    assert execute.model_slug == "dummy-alpha"


def test_planned_execute_takes_context_from_planner(stages):
    stage = stages.require("synthesis")
    docs = [
        make_doc("t-1", "thesis", "gpt-x"),
        make_doc("a-1", "antithesis", "claude-y", thesis="t-1"),
    ]
    [planned] = plan_pairwise_by_origin(docs, stage)
    execute = transform_plan_to_planned_execute(
        _plan(stage_slug="synthesis", target_contribution_id="dc-stale"), planned, stage,
    )
    assert execute.target_contribution_id is None
    assert execute.output_type == FileType.PAIRWISE_SYNTHESIS_CHUNK
    assert execute.canonical_path_params == planned.canonical_path_params
    assert execute.inputs.anchor == "t-1"
    assert execute.inputs.paired == "a-1"
    assert execute.to_payload()["canonicalPathParams"]["pairedModelSlug"] == "claude-y"


def test_execute_to_continuation_carries_everything(stages):
    execute = transform_simple_plan_to_execute(_plan(), stages.require("thesis"))
    continuation = transform_execute_to_continuation(execute, "dc-1")
    assert continuation.target_contribution_id == "dc-1"
    assert continuation.continuation_count == 1
    assert continuation.canonical_path_params == execute.canonical_path_params
    assert continuation.model_id == execute.model_id
    again = transform_execute_to_continuation(continuation, "dc-1")
    assert again.continuation_count == 2


def test_process_simple_plan_creates_one_fresh_execute_child(deps):
    plan_job = job_manager.create_job(JobType.PLAN, _plan(target_contribution_id="dc-stale"))
    result = process_job(plan_job, deps=deps)

    assert result.next_status == JobStatus.WAITING_FOR_CHILDREN
    assert len(result.child_job_ids) == 1
    child = job_manager.get_job(result.child_job_ids[0])
    assert child.job_type == JobType.EXECUTE
    assert child.parent_job_id == plan_job.id
    assert child.payload.target_contribution_id is None
    assert child.status == JobStatus.PENDING


def test_process_complex_plan_without_inputs_fails_loudly(deps):
    plan_job = job_manager.create_job(JobType.PLAN, _plan(stage_slug="antithesis"))
    with pytest.raises(PlannerConfigurationError):
        process_job(plan_job, deps=deps)
    assert job_manager.get_child_jobs(plan_job.id) == []


class FakeStore:
    def __init__(self, docs=(), contributions=None):
        self.docs = {d.id: d for d in docs}
        self.contributions = contributions or {}

    def get_source_document(self, doc_id):
        return self.docs.get(doc_id)

    def get_contribution(self, contribution_id):
        return self.contributions.get(contribution_id)


def _execute_job(stages, docs, **plan_overrides):
    stage = stages.require("synthesis")
    [planned] = plan_pairwise_by_origin(docs, stage)
    payload = transform_plan_to_planned_execute(_plan(stage_slug="synthesis", **plan_overrides), planned, stage)
    return job_manager.create_job(JobType.EXECUTE, payload)


def test_isolator_resolves_anchor_paired_and_final_params(stages):
    docs = [make_doc("t-1", "thesis", "gpt-x"), make_doc("a-1", "antithesis", "claude-y", thesis="t-1")]
    job = _execute_job(stages, docs)

    task = isolate_task(job, store=FakeStore(docs))

    assert task.anchor.id == "t-1"
    assert task.paired.id == "a-1"
    assert [d.id for d in task.source_documents] == ["t-1", "a-1"]
    assert task.canonical_path_params.source_anchor_model_slug == "gpt-x"
    assert task.canonical_path_params.paired_model_slug == "claude-y"
    assert task.document_relationships.thesis == "t-1"
    assert not task.is_continuation
    with pytest.raises(Exception):
        task.anchor = None


def test_isolator_missing_source_document(stages):
    docs = [make_doc("t-1", "thesis", "gpt-x"), make_doc("a-1", "antithesis", "claude-y", thesis="t-1")]
    job = _execute_job(stages, docs)
    with pytest.raises(MissingSourceDocumentError) as exc_info:
        isolate_task(job, store=FakeStore(docs[:1]))
    assert exc_info.value.job_id == job.id
    assert exc_info.value.fields == ["sourceDocumentIds"]


def test_isolator_loads_prior_contribution_for_continuations(stages):
    docs = [make_doc("t-1", "thesis", "gpt-x"), make_doc("a-1", "antithesis", "claude-y", thesis="t-1")]
    job = _execute_job(stages, docs)
    continuation = job_manager.create_job(
        JobType.EXECUTE, transform_execute_to_continuation(job.payload, "dc-1"),
    )
    prior = {"id": "dc-1", "content": "so far", "status": "continuing", "continuation_count": 0,
             "prompt_tokens": 10, "completion_tokens": 5}

    task = isolate_task(continuation, store=FakeStore(docs, {"dc-1": prior}))
    assert task.is_continuation
    assert task.prior_contribution.content == "so far"

    finished = dict(prior, status="completed")
    with pytest.raises(InvalidJobPayloadError):
        isolate_task(continuation, store=FakeStore(docs, {"dc-1": finished}))
    with pytest.raises(MissingSourceDocumentError):
        isolate_task(continuation, store=FakeStore(docs))


def test_isolator_rejects_plan_jobs():
    plan_job = job_manager.create_job(JobType.PLAN, _plan())
    with pytest.raises(InvalidJobPayloadError):
        isolate_task(plan_job, store=FakeStore())
