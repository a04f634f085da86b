"""Stage definition schemas.

A stage is one step of the dialectic (thesis, antithesis, ...). Its
definition says which contributions it consumes, how its jobs are planned,
what it produces and the prompt templates used to ask for it.
"""

from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field

from dialectic_worker.contributions.schemas import ContributionType
from dialectic_worker.paths.schemas import FileType


class GranularityStrategy(str, Enum):
    """How a stage's plan job fans out into execute jobs."""
    SIMPLE = "simple"  # One execute job, no source documents
    PER_SOURCE_DOCUMENT = "per_source_document"  # One job per input, self-anchored
    PAIRWISE_BY_ORIGIN = "pairwise_by_origin"  # One job per (anchor, related doc) pair
    ALL_TO_ONE = "all_to_one"  # One job over every input


class StageDefinition(BaseModel):
    """Definition of one dialectic stage."""

    slug: str = Field(..., description="Stage identifier (snake_case)")
    display_name: str
    stage_order: int = Field(..., ge=1)
    contribution_type: ContributionType
    granularity_strategy: GranularityStrategy
    output_file_type: FileType = FileType.MODEL_CONTRIBUTION_MAIN
    input_stage: Optional[str] = Field(
        default=None,
        description="Stage whose latest contributions this stage consumes",
    )
    anchor_type: Optional[ContributionType] = Field(
        default=None,
        description="Contribution type of the anchor document (pairwise planning)",
    )
    paired_type: Optional[ContributionType] = Field(
        default=None,
        description="Contribution type of documents paired with each anchor",
    )
    system_prompt: str = ""
    user_prompt_template: str = Field(..., description="Jinja2 template for the user message")

    @property
    def is_simple(self) -> bool:
        return self.granularity_strategy == GranularityStrategy.SIMPLE
