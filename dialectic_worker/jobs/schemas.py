"""Job and job-payload schemas.

Payloads are persisted as JSON with the camelCase keys of the naming
contract; unknown keys are rejected so no ad hoc field (such as a
free-text filename) can ride along.
"""

from enum import Enum
from typing import Any, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from dialectic_worker.contributions.schemas import DocumentRelationships
from dialectic_worker.errors import InvalidJobPayloadError
from dialectic_worker.paths.schemas import CanonicalPathParams, FileType


class JobType(str, Enum):
    """What kind of node a job is in the pipeline."""
    PLAN = "plan"
    EXECUTE = "execute"


class JobStatus(str, Enum):
    """Where a job is in its lifecycle."""
    PENDING = "pending"
    PROCESSING = "processing"
    RETRYING = "retrying"
    WAITING_FOR_CHILDREN = "waiting_for_children"
    COMPLETED = "completed"
    FAILED = "failed"


CLAIMABLE_STATUSES = (JobStatus.PENDING, JobStatus.RETRYING)
TERMINAL_STATUSES = (JobStatus.COMPLETED, JobStatus.FAILED)


class DialecticPlanJobPayload(BaseModel):
    """Payload of a plan job: which stage to run, for which model."""

    model_config = ConfigDict(populate_by_name=True, extra="forbid")

    project_id: str = Field(..., alias="projectId")
    session_id: str = Field(..., alias="sessionId")
    stage_slug: str = Field(..., alias="stageSlug")
    iteration_number: int = Field(default=1, alias="iterationNumber", ge=1)
    model_id: str = Field(..., alias="modelId", description="Model catalog api_identifier")
    model_slug: str = Field(..., alias="modelSlug", description="Slug of the producing model")
    output_type: Optional[FileType] = Field(
        default=None,
        alias="outputType",
        description="Artifact kind to produce; the stage's output_file_type when unset",
    )
    continue_until_complete: bool = Field(default=True, alias="continueUntilComplete")
    max_retries: int = Field(default=3, alias="maxRetries", ge=0)
    target_contribution_id: Optional[str] = Field(
        default=None,
        description="Set only on continuations of an existing contribution",
    )
    user_feedback: Optional[str] = Field(default=None, alias="userFeedback")

    def to_payload(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class DialecticExecuteJobPayload(DialecticPlanJobPayload):
    """Payload of an execute job: one model call and the contribution it saves."""

    canonical_path_params: CanonicalPathParams = Field(..., alias="canonicalPathParams")
    document_relationships: DocumentRelationships = Field(default_factory=DocumentRelationships)
    inputs: DocumentRelationships = Field(
        default_factory=DocumentRelationships,
        description="Role -> source document id (anchor, paired, ...)",
    )
    source_document_ids: list[str] = Field(
        default_factory=list,
        alias="sourceDocumentIds",
        description="Every source document the job consumes, anchor included",
    )
    sequence_index: int = Field(default=0, alias="sequenceIndex", ge=0)
    continuation_count: int = Field(default=0, alias="continuationCount", ge=0)


JobPayload = Union[DialecticPlanJobPayload, DialecticExecuteJobPayload]

PAYLOAD_TYPES: dict[JobType, type[DialecticPlanJobPayload]] = {
    JobType.PLAN: DialecticPlanJobPayload,
    JobType.EXECUTE: DialecticExecuteJobPayload,
}


def parse_payload(job_type: JobType, data: dict) -> JobPayload:
    """Validate a raw payload dict against the contract for job_type."""
    try:
        return PAYLOAD_TYPES[JobType(job_type)].model_validate(data)
    except ValidationError as e:
        fields = [".".join(str(p) for p in err["loc"]) for err in e.errors()]
        raise InvalidJobPayloadError(
            f"Invalid {JobType(job_type).value} job payload: {e.error_count()} error(s)",
            stage_slug=data.get("stageSlug") if isinstance(data, dict) else None,
            fields=fields,
        ) from e


class DialecticJob(BaseModel):
    """A job row."""

    id: str
    job_type: JobType
    status: JobStatus
    payload: JobPayload
    parent_job_id: Optional[str] = None
    session_id: str
    stage_slug: str
    iteration_number: int = 1
    attempt_count: int = 0
    max_retries: int = 3
    results: Optional[dict[str, Any]] = None
    error_details: Optional[dict[str, Any]] = None
    created_at: Optional[str] = None
    started_at: Optional[str] = None
    completed_at: Optional[str] = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def label(self) -> str:
        return f"[{self.id} {self.job_type.value}:{self.stage_slug}]"
