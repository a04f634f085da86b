"""Contribution and source-document types."""

from dialectic_worker.contributions.schemas import (
    ContributionType,
    DocumentRelationships,
    RelationshipRole,
    SourceDocument,
    slugify_model_name,
)

__all__ = [
    "ContributionType",
    "DocumentRelationships",
    "RelationshipRole",
    "SourceDocument",
    "slugify_model_name",
]
