"""Naming-contract schemas: canonical path params, path context, file types.

Field aliases keep the camelCase names used in persisted job payloads.
"""

from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class FileType(str, Enum):
    """Closed set of artifact kinds the path constructor knows how to name."""
    SEED_PROMPT = "seed_prompt"
    USER_FEEDBACK = "user_feedback"
    MODEL_CONTRIBUTION_MAIN = "model_contribution_main"
    MODEL_CONTRIBUTION_RAW_JSON = "model_contribution_raw_json"
    PAIRWISE_SYNTHESIS_CHUNK = "pairwise_synthesis_chunk"
    REDUCED_SYNTHESIS = "reduced_synthesis"
    FINAL_SYNTHESIS = "final_synthesis"
    CONTINUATION_CHUNK = "continuation_chunk"


class CanonicalPathParams(BaseModel):
    """Structured context a storage filename is derived from."""

    model_config = ConfigDict(populate_by_name=True, extra="forbid", frozen=True)

    contribution_type: str = Field(..., alias="contributionType")
    source_model_slugs: Optional[list[str]] = Field(default=None, alias="sourceModelSlugs")
    source_anchor_type: Optional[str] = Field(default=None, alias="sourceAnchorType")
    source_anchor_model_slug: Optional[str] = Field(default=None, alias="sourceAnchorModelSlug")
    paired_model_slug: Optional[str] = Field(default=None, alias="pairedModelSlug")

    @field_validator("source_model_slugs")
    @classmethod
    def _sorted_unique(cls, value: Optional[list[str]]) -> Optional[list[str]]:
        if value is None:
            return None
        return sorted(set(value))

    def to_payload(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


class PathContext(CanonicalPathParams):
    """Everything the path constructor may read. Nothing else is accepted."""

    contribution_type: Optional[str] = Field(default=None, alias="contributionType")
    file_type: FileType = Field(..., alias="fileType")
    project_id: str = Field(..., alias="projectId")
    session_id: str = Field(..., alias="sessionId")
    iteration: int = Field(..., alias="iteration", ge=0)
    stage_slug: Optional[str] = Field(default=None, alias="stageSlug")
    model_slug: Optional[str] = Field(default=None, alias="modelSlug")
    attempt_count: Optional[int] = Field(default=None, alias="attemptCount", ge=0)
    sequence_index: Optional[int] = Field(default=None, alias="sequenceIndex", ge=0)
    continuation_count: Optional[int] = Field(default=None, alias="continuationCount", ge=0)

    @classmethod
    def from_canonical(cls, params: Optional[CanonicalPathParams], **fields: Any) -> "PathContext":
        """Build a context from canonical params plus snake_case path fields."""
        data: dict[str, Any] = params.model_dump(exclude_none=True) if params else {}
        data.update({k: v for k, v in fields.items() if v is not None})
        return cls.model_validate(data)
