"""Job processor.

Turns a plan job into execute jobs, or runs an execute job.

Payload hand-offs between job kinds go through explicit transition
functions. Each one lists the fields it carries; anything not listed is
reset. Whether a plan is simple or planned is decided by the stage's
granularity strategy, never by which fields the plan payload happens to
carry.

    plan (simple stage)   → transform_simple_plan_to_execute
    plan (complex stage)  → planner → transform_plan_to_planned_execute (per job)
    execute (cap reached) → transform_execute_to_continuation
"""

import logging
from dataclasses import dataclass, field
from typing import Optional

from dialectic_worker.contributions.schemas import SourceDocument
from dialectic_worker.errors import PlannerConfigurationError
from dialectic_worker.executor import contribution_store
from dialectic_worker.executor.execute import execute_model_call_and_save
from dialectic_worker.jobs import job_manager
from dialectic_worker.jobs.dependencies import JobDependencies
from dialectic_worker.jobs.planners import PlannedJob, get_planner
from dialectic_worker.jobs.schemas import (
    DialecticExecuteJobPayload,
    DialecticJob,
    DialecticPlanJobPayload,
    JobStatus,
    JobType,
)
from dialectic_worker.paths.schemas import CanonicalPathParams
from dialectic_worker.stages.schemas import GranularityStrategy, StageDefinition

logger = logging.getLogger(__name__)

# Fields a fresh execute job inherits from its plan job. Everything else,
# target_contribution_id included, starts from its default.
_PLAN_CARRIED_FIELDS = (
    "project_id",
    "session_id",
    "stage_slug",
    "iteration_number",
    "model_id",
    "model_slug",
    "continue_until_complete",
    "max_retries",
    "user_feedback",
)


@dataclass
class ProcessResult:
    """What processing a job produced, and the status the job moves to."""
    job_id: str
    next_status: JobStatus
    child_job_ids: list[str] = field(default_factory=list)
    results: dict = field(default_factory=dict)


def _carry_from_plan(plan: DialecticPlanJobPayload, stage: StageDefinition) -> dict:
    carried = {name: getattr(plan, name) for name in _PLAN_CARRIED_FIELDS}
    carried["output_type"] = plan.output_type or stage.output_file_type
    return carried


def transform_simple_plan_to_execute(
    plan: DialecticPlanJobPayload,
    stage: StageDefinition,
) -> DialecticExecuteJobPayload:
    """Execute payload for a simple stage.

    target_contribution_id is always cleared: a simple plan starts a new
    contribution, it never continues one. canonicalPathParams holds only the
    contribution type since there is no document ancestry yet.
    """
    if plan.target_contribution_id:
        logger.warning(
            f"[processor:{stage.slug}] Plan payload carried target_contribution_id="
            f"{plan.target_contribution_id}; cleared for the new execute job"
        )
    return DialecticExecuteJobPayload(
        **_carry_from_plan(plan, stage),
        target_contribution_id=None,
        canonical_path_params=CanonicalPathParams(contribution_type=stage.contribution_type.value),
        continuation_count=0,
        sequence_index=0,
    )


def transform_plan_to_planned_execute(
    plan: DialecticPlanJobPayload,
    planned: PlannedJob,
    stage: StageDefinition,
) -> DialecticExecuteJobPayload:
    """Execute payload for one planner-produced job of a complex stage."""
    return DialecticExecuteJobPayload(
        **_carry_from_plan(plan, stage),
        target_contribution_id=None,
        canonical_path_params=planned.canonical_path_params,
        document_relationships=planned.document_relationships,
        inputs=planned.inputs,
        source_document_ids=list(planned.source_document_ids),
        sequence_index=planned.sequence_index,
        continuation_count=0,
    )


def transform_execute_to_continuation(
    execute: DialecticExecuteJobPayload,
    contribution_id: str,
) -> DialecticExecuteJobPayload:
    """Payload re-entering an in-progress contribution. Carries every field."""
    data = execute.model_dump()
    data["target_contribution_id"] = contribution_id
    data["continuation_count"] = execute.continuation_count + 1
    return DialecticExecuteJobPayload.model_validate(data)


def _anchor_stage(stage: StageDefinition, deps: JobDependencies) -> Optional[StageDefinition]:
    """Stage producing a pairwise stage's anchors, if it is not the input stage itself."""
    if stage.anchor_type is None:
        return None
    for candidate in deps.stages.list_all():
        if candidate.contribution_type == stage.anchor_type and candidate.slug != stage.input_stage:
            return candidate
    return None


def load_stage_inputs(
    plan: DialecticPlanJobPayload,
    stage: StageDefinition,
    deps: JobDependencies,
) -> list[SourceDocument]:
    """Latest source documents a complex stage plans over."""
    if not stage.input_stage:
        raise PlannerConfigurationError(
            f"Stage '{stage.slug}' uses {stage.granularity_strategy.value} but has no input_stage",
            stage_slug=stage.slug,
            fields=["input_stage"],
        )

    docs = contribution_store.load_source_documents(
        plan.session_id, stage.input_stage, plan.iteration_number,
    )
    if stage.granularity_strategy == GranularityStrategy.PAIRWISE_BY_ORIGIN:
        anchor_stage = _anchor_stage(stage, deps)
        if anchor_stage is not None:
            anchors = contribution_store.load_source_documents(
                plan.session_id, anchor_stage.slug, plan.iteration_number,
            )
            seen = {d.id for d in docs}
            docs = docs + [d for d in anchors if d.id not in seen]
    return docs


def _process_plan_job(job: DialecticJob, stage: StageDefinition, deps: JobDependencies) -> ProcessResult:
    plan = job.payload

    if stage.is_simple:
        payloads = [transform_simple_plan_to_execute(plan, stage)]
    else:
        docs = load_stage_inputs(plan, stage, deps)
        planned = get_planner(stage)(docs, stage)
        if not planned:
            raise PlannerConfigurationError(
                f"Planner for stage '{stage.slug}' produced no jobs from {len(docs)} document(s)",
                job_id=job.id,
                stage_slug=stage.slug,
            )
        payloads = [transform_plan_to_planned_execute(plan, p, stage) for p in planned]

    child_ids = [
        job_manager.create_job(JobType.EXECUTE, payload, parent_job_id=job.id).id
        for payload in payloads
    ]
    logger.info(f"{job.label} Planned {len(child_ids)} execute job(s)")
    return ProcessResult(
        job_id=job.id,
        next_status=JobStatus.WAITING_FOR_CHILDREN,
        child_job_ids=child_ids,
    )


def process_job(job: DialecticJob, *, deps: JobDependencies) -> ProcessResult:
    """Process one claimed job.

    Plan jobs fan out into execute jobs and wait for them. Execute jobs run
    the model call and save their contribution.

    Raises:
        DialecticError subclasses: Propagated to the worker, which decides
            between retry and failure
    """
    stage = deps.stages.require(job.stage_slug)

    if job.job_type == JobType.PLAN:
        return _process_plan_job(job, stage, deps)

    outcome = execute_model_call_and_save(job, deps=deps)
    return ProcessResult(
        job_id=job.id,
        next_status=JobStatus.COMPLETED,
        child_job_ids=[outcome.continuation_job_id] if outcome.continuation_job_id else [],
        results=outcome.to_results(),
    )
