"""Job planners.

A planner answers one question for a stage: given the contributions the
previous stage produced, which execute jobs must run, and what is each
job's naming and relationship context?

Planners resolve anchors from the relationship graph themselves and pass
them explicitly to the canonical path builder. A source document whose
anchor cannot be resolved is a configuration error, never skipped.
"""

import logging
from typing import Callable, Optional, Sequence

from pydantic import BaseModel, ConfigDict, Field

from dialectic_worker.contributions.schemas import DocumentRelationships, SourceDocument
from dialectic_worker.errors import PlannerConfigurationError
from dialectic_worker.paths.canonical import create_canonical_path_params
from dialectic_worker.paths.schemas import CanonicalPathParams
from dialectic_worker.stages.schemas import GranularityStrategy, StageDefinition

logger = logging.getLogger(__name__)


class PlannedJob(BaseModel):
    """Execute-specific context of one planned job."""

    model_config = ConfigDict(frozen=True)

    canonical_path_params: CanonicalPathParams
    document_relationships: DocumentRelationships
    inputs: DocumentRelationships
    source_document_ids: list[str] = Field(default_factory=list)
    sequence_index: int = 0

    @property
    def sort_key(self) -> tuple[str, str, str]:
        params = self.canonical_path_params
        return (
            params.source_anchor_model_slug or "",
            params.paired_model_slug or "",
            self.inputs.paired or self.inputs.anchor or "",
        )


Planner = Callable[[Sequence[SourceDocument], StageDefinition], list[PlannedJob]]


def _require_inputs(source_docs: Sequence[SourceDocument], stage: StageDefinition) -> None:
    if not source_docs:
        raise PlannerConfigurationError(
            f"Stage '{stage.slug}' has no source documents from "
            f"'{stage.input_stage}' to plan over",
            stage_slug=stage.slug,
            fields=["sourceDocuments"],
        )


def _require_slug(doc: SourceDocument, stage: StageDefinition) -> None:
    if not doc.model_slug:
        raise PlannerConfigurationError(
            f"Source document {doc.id} has no model slug",
            stage_slug=stage.slug,
            fields=["model_slug"],
        )


def _ordered(planned: list[PlannedJob]) -> list[PlannedJob]:
    """Sort by (anchor slug, paired slug, id) and number the jobs in that order."""
    planned = sorted(planned, key=lambda p: p.sort_key)
    return [p.model_copy(update={"sequence_index": i}) for i, p in enumerate(planned)]


def plan_per_source_document(
    source_docs: Sequence[SourceDocument],
    stage: StageDefinition,
) -> list[PlannedJob]:
    """One job per source document, each document anchoring its own job."""
    _require_inputs(source_docs, stage)
    output_type = stage.contribution_type.value

    planned = []
    for doc in source_docs:
        _require_slug(doc, stage)
        planned.append(PlannedJob(
            canonical_path_params=create_canonical_path_params([doc], output_type, doc),
            document_relationships=DocumentRelationships().with_roles(
                **{doc.contribution_type.value: doc.id, "source_group": doc.id}
            ),
            inputs=DocumentRelationships(anchor=doc.id),
            source_document_ids=[doc.id],
        ))

    logger.info(f"[planner:{stage.slug}] per_source_document → {len(planned)} job(s)")
    return _ordered(planned)


def plan_pairwise_by_origin(
    source_docs: Sequence[SourceDocument],
    stage: StageDefinition,
) -> list[PlannedJob]:
    """One job per (anchor, related document) pair.

    source_docs holds both the anchors (contribution type == stage.anchor_type)
    and the documents related to them. Each related document names its
    anchor through document_relationships[stage.anchor_type].
    """
    if stage.anchor_type is None:
        raise PlannerConfigurationError(
            f"Stage '{stage.slug}' uses pairwise_by_origin but defines no anchor_type",
            stage_slug=stage.slug,
            fields=["anchor_type"],
        )
    _require_inputs(source_docs, stage)

    anchor_type = stage.anchor_type
    output_type = stage.contribution_type.value
    anchors = {d.id: d for d in source_docs if d.contribution_type == anchor_type}
    related = [
        d for d in source_docs
        if d.contribution_type != anchor_type
        and (stage.paired_type is None or d.contribution_type == stage.paired_type)
    ]

    planned = []
    for doc in related:
        _require_slug(doc, stage)
        anchor_id = doc.document_relationships.get(anchor_type)
        anchor = anchors.get(anchor_id) if anchor_id else None
        if anchor is None:
            raise PlannerConfigurationError(
                f"Document {doc.id} ({doc.contribution_type.value}) does not resolve "
                f"to a {anchor_type.value} anchor"
                + (f" (references missing {anchor_id})" if anchor_id else ""),
                stage_slug=stage.slug,
                fields=[f"document_relationships.{anchor_type.value}"],
            )
        _require_slug(anchor, stage)

        planned.append(PlannedJob(
            canonical_path_params=create_canonical_path_params([anchor, doc], output_type, anchor),
            document_relationships=DocumentRelationships().with_roles(**{
                anchor_type.value: anchor.id,
                doc.contribution_type.value: doc.id,
                "source_group": anchor.id,
            }),
            inputs=DocumentRelationships(anchor=anchor.id, paired=doc.id),
            source_document_ids=[anchor.id, doc.id],
        ))

    unpaired = set(anchors) - {p.inputs.anchor for p in planned}
    if unpaired:
        logger.warning(
            f"[planner:{stage.slug}] {len(unpaired)} anchor(s) have no related documents: "
            f"{sorted(unpaired)}"
        )

    logger.info(f"[planner:{stage.slug}] pairwise_by_origin → {len(planned)} job(s)")
    return _ordered(planned)


def plan_all_to_one(
    source_docs: Sequence[SourceDocument],
    stage: StageDefinition,
) -> list[PlannedJob]:
    """A single job over every source document, anchored on the first in slug order."""
    _require_inputs(source_docs, stage)
    docs = sorted(source_docs, key=lambda d: (d.model_slug, d.id))
    for doc in docs:
        _require_slug(doc, stage)

    anchor = docs[0]
    params = create_canonical_path_params(docs, stage.contribution_type.value, anchor)
    paired_id: Optional[str] = docs[1].id if len(docs) == 2 else None

    planned = PlannedJob(
        canonical_path_params=params,
        document_relationships=DocumentRelationships().with_roles(**{
            anchor.contribution_type.value: anchor.id,
            "source_group": anchor.id,
        }),
        inputs=DocumentRelationships(anchor=anchor.id, paired=paired_id),
        source_document_ids=[d.id for d in docs],
    )

    logger.info(f"[planner:{stage.slug}] all_to_one over {len(docs)} document(s)")
    return [planned]


PLANNER_REGISTRY: dict[GranularityStrategy, Planner] = {
    GranularityStrategy.PER_SOURCE_DOCUMENT: plan_per_source_document,
    GranularityStrategy.PAIRWISE_BY_ORIGIN: plan_pairwise_by_origin,
    GranularityStrategy.ALL_TO_ONE: plan_all_to_one,
}


def get_planner(stage: StageDefinition) -> Planner:
    """Planner for a complex stage's granularity strategy."""
    planner = PLANNER_REGISTRY.get(stage.granularity_strategy)
    if planner is None:
        raise PlannerConfigurationError(
            f"No planner for granularity strategy '{stage.granularity_strategy.value}'",
            stage_slug=stage.slug,
            fields=["granularity_strategy"],
        )
    return planner
