"""Task isolator.

Resolves everything an execute job depends on (anchor, paired document,
every other source document and, for continuations, the contribution
being extended) right before execution, and fixes the job's final
canonical path params and document relationships.

This runs before prompt assembly and context compression, so those steps
can only ever see an IsolatedTask whose source identity is already
settled. IsolatedTask is frozen.
"""

import logging
from types import ModuleType
from typing import Any, Optional, Union

from pydantic import BaseModel, ConfigDict

from dialectic_worker.contributions.schemas import DocumentRelationships, SourceDocument
from dialectic_worker.errors import InvalidJobPayloadError, MissingSourceDocumentError
from dialectic_worker.executor import contribution_store
from dialectic_worker.executor.contribution_store import STATUS_CONTINUING
from dialectic_worker.jobs.schemas import DialecticExecuteJobPayload, DialecticJob
from dialectic_worker.paths.canonical import create_canonical_path_params
from dialectic_worker.paths.schemas import CanonicalPathParams

logger = logging.getLogger(__name__)


class PriorContribution(BaseModel):
    """State of the in-progress contribution a continuation job extends."""

    model_config = ConfigDict(frozen=True)

    id: str
    content: str
    storage_path: Optional[str] = None
    continuation_count: int = 0
    prompt_tokens: int = 0
    completion_tokens: int = 0


class IsolatedTask(BaseModel):
    """Fully resolved context of one execute job."""

    model_config = ConfigDict(frozen=True)

    job_id: str
    payload: DialecticExecuteJobPayload
    anchor: Optional[SourceDocument] = None
    paired: Optional[SourceDocument] = None
    source_documents: tuple[SourceDocument, ...] = ()
    prior_contribution: Optional[PriorContribution] = None
    canonical_path_params: CanonicalPathParams
    document_relationships: DocumentRelationships

    @property
    def is_continuation(self) -> bool:
        return self.prior_contribution is not None


def _load_documents(job: DialecticJob, ids: list[str], store: Any) -> dict[str, SourceDocument]:
    docs: dict[str, SourceDocument] = {}
    missing = []
    for doc_id in ids:
        doc = store.get_source_document(doc_id)
        if doc is None:
            missing.append(doc_id)
        else:
            docs[doc_id] = doc
    if missing:
        raise MissingSourceDocumentError(
            f"Source document(s) not found: {', '.join(missing)}",
            job_id=job.id,
            stage_slug=job.stage_slug,
            fields=["sourceDocumentIds"],
        )
    return docs


def _pick(job: DialecticJob, docs: dict[str, SourceDocument], doc_id: Optional[str], role: str) -> Optional[SourceDocument]:
    if doc_id is None:
        return None
    doc = docs.get(doc_id)
    if doc is None:
        raise MissingSourceDocumentError(
            f"{role.capitalize()} document {doc_id} is not among the job's source documents",
            job_id=job.id,
            stage_slug=job.stage_slug,
            fields=[f"inputs.{role}"],
        )
    return doc


def _load_prior(job: DialecticJob, contribution_id: str, store: Any) -> PriorContribution:
    row = store.get_contribution(contribution_id)
    if row is None:
        raise MissingSourceDocumentError(
            f"Target contribution {contribution_id} not found",
            job_id=job.id,
            stage_slug=job.stage_slug,
            fields=["target_contribution_id"],
        )
    if row.get("status") != STATUS_CONTINUING:
        raise InvalidJobPayloadError(
            f"Target contribution {contribution_id} is '{row.get('status')}', not in progress",
            job_id=job.id,
            stage_slug=job.stage_slug,
            fields=["target_contribution_id"],
        )
    return PriorContribution(
        id=row["id"],
        content=row.get("content") or "",
        storage_path=row.get("storage_path"),
        continuation_count=row.get("continuation_count") or 0,
        prompt_tokens=row.get("prompt_tokens") or 0,
        completion_tokens=row.get("completion_tokens") or 0,
    )


def isolate_task(
    job: DialecticJob,
    *,
    store: Union[ModuleType, Any] = contribution_store,
) -> IsolatedTask:
    """Resolve an execute job's dependency context.

    Args:
        job: An execute job
        store: Object exposing get_source_document(id) and get_contribution(id)

    Raises:
        InvalidJobPayloadError: If job is not an execute job
        MissingSourceDocumentError: If a referenced document or contribution
            does not exist
    """
    payload = job.payload
    if not isinstance(payload, DialecticExecuteJobPayload):
        raise InvalidJobPayloadError(
            f"Job {job.id} is not an execute job",
            job_id=job.id,
            stage_slug=job.stage_slug,
        )

    docs = _load_documents(job, payload.source_document_ids, store)
    anchor = _pick(job, docs, payload.inputs.anchor, "anchor")
    paired = _pick(job, docs, payload.inputs.paired, "paired")
    ordered = tuple(docs[doc_id] for doc_id in payload.source_document_ids)

    planned = payload.canonical_path_params
    if ordered:
        canonical = create_canonical_path_params(ordered, planned.contribution_type, anchor)
        if canonical != planned:
            logger.warning(
                f"[isolator:{job.id}] Canonical params drifted since planning: "
                f"planned={planned.to_payload()} resolved={canonical.to_payload()}"
            )
    else:
        canonical = planned

    prior = None
    if payload.target_contribution_id:
        prior = _load_prior(job, payload.target_contribution_id, store)

    logger.info(
        f"[isolator:{job.id}] {len(ordered)} source doc(s), "
        f"anchor={anchor.model_slug if anchor else None}, "
        f"paired={paired.model_slug if paired else None}"
        + (f", continuing {prior.id}" if prior else "")
    )

    return IsolatedTask(
        job_id=job.id,
        payload=payload,
        anchor=anchor,
        paired=paired,
        source_documents=ordered,
        prior_contribution=prior,
        canonical_path_params=canonical,
        document_relationships=payload.document_relationships,
    )
