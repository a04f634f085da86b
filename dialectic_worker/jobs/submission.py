"""Submitting a stage: seed artifacts plus one plan job per model."""

import logging
from typing import Optional

from dialectic_worker.contributions.schemas import slugify_model_name
from dialectic_worker.errors import StageAlreadySubmittedError
from dialectic_worker.executor import contribution_store
from dialectic_worker.jobs import job_manager
from dialectic_worker.jobs.dependencies import JobDependencies
from dialectic_worker.jobs.schemas import DialecticJob, DialecticPlanJobPayload, JobStatus, JobType
from dialectic_worker.llm.schemas import AiModelExtendedConfig
from dialectic_worker.paths.constructor import construct_storage_path
from dialectic_worker.paths.schemas import FileType, PathContext

logger = logging.getLogger(__name__)


def _write_once(deps: JobDependencies, path: str, text: str) -> None:
    """Write a session artifact unless an identical one is already there."""
    if deps.storage.exists(path):
        if deps.storage.download(path).decode("utf-8") != text:
            logger.warning(f"[submit] {path} already exists with different content; keeping it")
        return
    deps.storage.upload(path, text.encode("utf-8"))


def _assert_not_submitted(
    session_id: str,
    stage_slug: str,
    iteration_number: int,
    models: list[AiModelExtendedConfig],
) -> None:
    """Refuse models that already ran (or are running) this stage iteration.

    Artifact names carry no generation marker, so a second run would
    collide with the first. A failed plan job with no contribution left
    behind does not count; that model may be submitted again.
    """
    model_ids = {model.api_identifier for model in models}
    taken = {
        row["model_id"]
        for row in contribution_store.list_contributions(session_id, stage_slug, iteration_number)
        if row["model_id"] in model_ids
    }
    taken.update(
        job.payload.model_id
        for job in job_manager.get_stage_jobs(session_id, stage_slug, iteration_number, JobType.PLAN)
        if job.payload.model_id in model_ids and job.status != JobStatus.FAILED
    )
    if taken:
        raise StageAlreadySubmittedError(
            f"Stage {stage_slug} iteration {iteration_number} of session {session_id} "
            f"was already submitted for {', '.join(sorted(taken))}; use a new iteration",
            stage_slug=stage_slug,
            fields=["modelIds"],
        )


def submit_stage(
    *,
    project_id: str,
    session_id: str,
    stage_slug: str,
    model_ids: list[str],
    seed_prompt: str,
    iteration_number: int = 1,
    user_feedback: Optional[str] = None,
    continue_until_complete: bool = True,
    max_retries: int = 3,
    deps: JobDependencies,
) -> list[DialecticJob]:
    """Write the stage's seed prompt (and feedback) and create a plan job per model.

    Raises:
        ContractViolationError: Unknown stage or model
        StageAlreadySubmittedError: A model already has jobs or contributions
            for this stage iteration (nothing is written)
    """
    stage = deps.stages.require(stage_slug)
    models = [deps.models.require(model_id) for model_id in model_ids]
    _assert_not_submitted(session_id, stage.slug, iteration_number, models)

    base = dict(
        project_id=project_id,
        session_id=session_id,
        iteration=iteration_number,
        stage_slug=stage.slug,
    )
    _write_once(deps, construct_storage_path(PathContext(file_type=FileType.SEED_PROMPT, **base)), seed_prompt)
    if user_feedback:
        _write_once(
            deps,
            construct_storage_path(PathContext(file_type=FileType.USER_FEEDBACK, **base)),
            user_feedback,
        )

    jobs = []
    for model in models:
        payload = DialecticPlanJobPayload(
            project_id=project_id,
            session_id=session_id,
            stage_slug=stage.slug,
            iteration_number=iteration_number,
            model_id=model.api_identifier,
            model_slug=slugify_model_name(model.name or model.api_identifier),
            continue_until_complete=continue_until_complete,
            max_retries=max_retries,
            user_feedback=user_feedback,
        )
        jobs.append(job_manager.create_job(JobType.PLAN, payload))

    logger.info(
        f"[submit] Stage {stage.slug} for session {session_id}: "
        f"{len(jobs)} plan job(s) ({', '.join(model_ids)})"
    )
    return jobs
