"""Execute an execute job: one model call (with continuations) and its saved contribution.

Flow:
    isolate task → load seed prompt → assemble prompt → continuation loop
    (context compression before every call) → compute storage path →
    write artifacts → persist contribution (written files are removed if
    this fails) → maybe enqueue a continuation job

A job whose loop hit the continuation cap, and that is allowed to keep
going, writes its partial output as a continuation chunk and hands the
contribution on to a continuation job. The last job in the chain writes
the combined content to the main path and completes the contribution.
"""

import json
import logging
from dataclasses import dataclass
from functools import partial
from typing import Optional

from dialectic_worker.errors import InvalidJobPayloadError, MissingSourceDocumentError
from dialectic_worker.executor import contribution_store
from dialectic_worker.executor.context_compression import compress_prompt
from dialectic_worker.executor.continuation import ContinuationResult, handle_continuation_loop
from dialectic_worker.executor.prompt_assembler import assemble_prompt
from dialectic_worker.jobs import job_manager
from dialectic_worker.jobs.dependencies import JobDependencies
from dialectic_worker.jobs.schemas import DialecticExecuteJobPayload, DialecticJob, JobType
from dialectic_worker.jobs.task_isolator import IsolatedTask, isolate_task
from dialectic_worker.paths.constructor import construct_storage_path
from dialectic_worker.paths.schemas import FileType, PathContext

logger = logging.getLogger(__name__)

# Continuation jobs one contribution may chain through before it is closed as-is
MAX_JOB_CONTINUATIONS = 5


@dataclass
class ExecuteOutcome:
    contribution_id: str
    storage_path: str
    status: str
    prompt_tokens: int
    completion_tokens: int
    calls: int
    hit_continuation_cap: bool
    continuation_job_id: Optional[str] = None

    def to_results(self) -> dict:
        return {
            "contribution_id": self.contribution_id,
            "storage_path": self.storage_path,
            "contribution_status": self.status,
            "prompt_tokens": self.prompt_tokens,
            "completion_tokens": self.completion_tokens,
            "provider_calls": self.calls,
            "hit_continuation_cap": self.hit_continuation_cap,
            "continuation_job_id": self.continuation_job_id,
        }


def seed_prompt_path(payload: DialecticExecuteJobPayload) -> str:
    return construct_storage_path(PathContext(
        file_type=FileType.SEED_PROMPT,
        project_id=payload.project_id,
        session_id=payload.session_id,
        iteration=payload.iteration_number,
        stage_slug=payload.stage_slug,
    ))


def load_seed_prompt(job: DialecticJob, deps: JobDependencies) -> str:
    path = seed_prompt_path(job.payload)
    if not deps.storage.exists(path):
        raise MissingSourceDocumentError(
            f"Seed prompt not found at {path}",
            job_id=job.id,
            stage_slug=job.stage_slug,
            fields=["seedPrompt"],
        )
    return deps.storage.download(path).decode("utf-8")


def _path_context(task: IsolatedTask, job: DialecticJob, file_type: FileType) -> PathContext:
    payload = task.payload
    return PathContext.from_canonical(
        task.canonical_path_params,
        file_type=file_type,
        project_id=payload.project_id,
        session_id=payload.session_id,
        iteration=payload.iteration_number,
        stage_slug=payload.stage_slug,
        model_slug=payload.model_slug,
        attempt_count=job.attempt_count,
        sequence_index=payload.sequence_index,
        continuation_count=payload.continuation_count,
    )


def _should_continue(result: ContinuationResult, payload: DialecticExecuteJobPayload) -> bool:
    return (
        result.hit_continuation_cap
        and payload.continue_until_complete
        and payload.continuation_count < MAX_JOB_CONTINUATIONS
    )


def execute_model_call_and_save(job: DialecticJob, *, deps: JobDependencies) -> ExecuteOutcome:
    """Run an execute job end to end.

    Raises:
        ContractViolationError subclasses: Bad payload, missing documents or
            path fields (nothing is written)
        ContextWindowExceededError: Prompt does not fit even after compression
        ProviderError: Provider call failed
        StorageConflictError: The computed path already exists
    """
    # Import here to avoid circular (processor dispatches to this module)
    from dialectic_worker.jobs.processor import transform_execute_to_continuation

    payload = job.payload
    if not isinstance(payload, DialecticExecuteJobPayload):
        raise InvalidJobPayloadError(
            f"Job {job.id} is not an execute job",
            job_id=job.id,
            stage_slug=job.stage_slug,
        )

    stage = deps.stages.require(payload.stage_slug)
    model = deps.models.require(payload.model_id)

    # Source identity is settled before any prompt text is built or compressed
    task = isolate_task(job, store=contribution_store)
    prompt = assemble_prompt(stage, task, load_seed_prompt(job, deps))
    request = prompt.to_request(
        max_tokens=model.hard_cap_output_tokens or model.provider_max_output_tokens,
        provider_id=model.provider,
        prompt_id=stage.slug,
    )

    adapter = deps.adapter_factory(model)
    result = handle_continuation_loop(
        adapter,
        request,
        model.api_identifier,
        prepare_request=partial(compress_prompt, model),
        label=job.id,
    )

    prior = task.prior_contribution
    usage = result.response.token_usage
    prompt_tokens = usage.prompt_tokens + (prior.prompt_tokens if prior else 0)
    completion_tokens = usage.completion_tokens + (prior.completion_tokens if prior else 0)
    content = (prior.content if prior else "") + result.response.content
    contribution_id = prior.id if prior else contribution_store.new_contribution_id()
    relationships = task.document_relationships.with_roles(
        **{stage.contribution_type.value: contribution_id}
    )

    continuing = _should_continue(result, payload)
    written: list[str] = []
    try:
        if continuing:
            status = contribution_store.STATUS_CONTINUING
            path = construct_storage_path(_path_context(task, job, FileType.CONTINUATION_CHUNK))
            written.append(deps.storage.upload(path, result.response.content.encode("utf-8")))
        else:
            status = contribution_store.STATUS_COMPLETED
            output_type = payload.output_type or stage.output_file_type
            path = construct_storage_path(_path_context(task, job, output_type))
            written.append(deps.storage.upload(path, content.encode("utf-8")))
            if output_type == FileType.MODEL_CONTRIBUTION_MAIN:
                raw_path = construct_storage_path(
                    _path_context(task, job, FileType.MODEL_CONTRIBUTION_RAW_JSON)
                )
                raw = {
                    "response": result.response.model_dump(mode="json"),
                    "provider_calls": result.calls,
                    "hit_continuation_cap": result.hit_continuation_cap,
                    "job_continuations": payload.continuation_count,
                }
                written.append(deps.storage.upload(raw_path, json.dumps(raw, indent=2).encode("utf-8")))

        if prior is None:
            contribution_store.save_contribution(
                contribution_id=contribution_id,
                session_id=payload.session_id,
                stage_slug=payload.stage_slug,
                iteration_number=payload.iteration_number,
                contribution_type=stage.contribution_type.value,
                model_id=model.api_identifier,
                model_name=model.name or model.api_identifier,
                model_slug=payload.model_slug,
                content=content,
                storage_path=path,
                document_relationships=relationships,
                canonical_path_params=task.canonical_path_params.to_payload(),
                prompt_tokens=prompt_tokens,
                completion_tokens=completion_tokens,
                status=status,
                continuation_count=payload.continuation_count,
                hit_continuation_cap=result.hit_continuation_cap,
                job_id=job.id,
            )
        else:
            contribution_store.update_contribution(
                contribution_id,
                content=content,
                storage_path=path,
                status=status,
                continuation_count=payload.continuation_count,
                hit_continuation_cap=result.hit_continuation_cap,
                prompt_tokens=prompt_tokens,
                completion_tokens=completion_tokens,
            )
    except Exception:
        # No artifact outlives a failed save
        for orphan in written:
            logger.warning(f"[{job.id}] Removing {orphan} after a failed save")
            deps.storage.delete(orphan)
        raise

    continuation_job_id = None
    if continuing:
        continuation = job_manager.create_job(
            JobType.EXECUTE,
            transform_execute_to_continuation(payload, contribution_id),
            parent_job_id=job.parent_job_id,
        )
        continuation_job_id = continuation.id
        logger.info(
            f"[{job.id}] Contribution {contribution_id} continues in {continuation_job_id} "
            f"({payload.continuation_count + 1}/{MAX_JOB_CONTINUATIONS})"
        )
    elif result.hit_continuation_cap:
        logger.warning(
            f"[{job.id}] Contribution {contribution_id} closed at the continuation cap; "
            f"content may be incomplete"
        )

    return ExecuteOutcome(
        contribution_id=contribution_id,
        storage_path=path,
        status=status,
        prompt_tokens=prompt_tokens,
        completion_tokens=completion_tokens,
        calls=result.calls,
        hit_continuation_cap=result.hit_continuation_cap,
        continuation_job_id=continuation_job_id,
    )
