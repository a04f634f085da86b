"""Canonical path params builder.

Pure function: turns the documents a job consumes, plus the anchor the
caller already resolved, into the CanonicalPathParams that name its output.

The builder does not search for an anchor by role. Planners and the task
isolator resolve the anchor from the relationship graph and pass it in.
"""

from typing import Optional, Sequence

from dialectic_worker.contributions.schemas import SourceDocument
from dialectic_worker.paths.schemas import CanonicalPathParams


def create_canonical_path_params(
    source_docs: Sequence[SourceDocument],
    output_type: str,
    anchor_doc: Optional[SourceDocument],
) -> CanonicalPathParams:
    """Build canonical path params for an output derived from source_docs.

    Args:
        source_docs: Every document the operation consumes (anchor included)
        output_type: Contribution type of the artifact being produced
        anchor_doc: The primary document the output responds to

    Returns:
        CanonicalPathParams with sorted unique source slugs, the anchor's
        type/slug, and pairedModelSlug when exactly one other document
        participates besides the anchor. Missing anchor data leaves the
        corresponding fields unset.
    """
    slugs = sorted({doc.model_slug for doc in source_docs if doc.model_slug})

    anchor_type = None
    anchor_slug = None
    paired_slug = None

    if anchor_doc is not None:
        anchor_type = anchor_doc.contribution_type.value
        anchor_slug = anchor_doc.model_slug or None

        others = {doc.id: doc for doc in source_docs if doc.id != anchor_doc.id}
        if len(others) == 1:
            paired_slug = next(iter(others.values())).model_slug or None

    return CanonicalPathParams(
        contribution_type=output_type,
        source_model_slugs=slugs,
        source_anchor_type=anchor_type,
        source_anchor_model_slug=anchor_slug,
        paired_model_slug=paired_slug,
    )
