"""Contribution and source-document schemas.

A contribution is one model's output for one stage. Once persisted it
becomes a SourceDocument for the stages downstream of it.
"""

import re
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

_SLUG_RE = re.compile(r"[^a-z0-9._-]+")


def slugify_model_name(name: str) -> str:
    """Lower-case a model name and collapse anything outside [a-z0-9._-] to '-'."""
    return _SLUG_RE.sub("-", name.strip().lower()).strip("-")


class ContributionType(str, Enum):
    """Role label of a contribution, one per dialectic stage."""
    THESIS = "thesis"
    ANTITHESIS = "antithesis"
    SYNTHESIS = "synthesis"
    PARENTHESIS = "parenthesis"
    PARALYSIS = "paralysis"


class RelationshipRole(str, Enum):
    """Closed set of keys allowed in DocumentRelationships.

    Every contribution type plus the abstract roles used by planners.
    """
    THESIS = "thesis"
    ANTITHESIS = "antithesis"
    SYNTHESIS = "synthesis"
    PARENTHESIS = "parenthesis"
    PARALYSIS = "paralysis"
    SOURCE_GROUP = "source_group"
    ANCHOR = "anchor"
    PAIRED = "paired"


class DocumentRelationships(BaseModel):
    """Mapping from RelationshipRole to a related document id.

    Unknown roles are rejected at construction.
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    thesis: Optional[str] = None
    antithesis: Optional[str] = None
    synthesis: Optional[str] = None
    parenthesis: Optional[str] = None
    paralysis: Optional[str] = None
    source_group: Optional[str] = None
    anchor: Optional[str] = None
    paired: Optional[str] = None

    def get(self, role: RelationshipRole) -> Optional[str]:
        return getattr(self, RelationshipRole(role).value)

    def with_roles(self, **roles: Optional[str]) -> "DocumentRelationships":
        """Return a copy with the given roles set (validated against the closed set)."""
        merged = self.to_dict()
        for key, value in roles.items():
            RelationshipRole(key)
            if value is None:
                merged.pop(key, None)
            else:
                merged[key] = value
        return DocumentRelationships(**merged)

    def to_dict(self) -> dict[str, str]:
        return self.model_dump(exclude_none=True)


class SourceDocument(BaseModel):
    """A prior contribution consumed as input to a stage. Immutable."""

    model_config = ConfigDict(frozen=True)

    id: str
    contribution_type: ContributionType
    model_name: str = ""
    model_slug: str = ""
    document_relationships: DocumentRelationships = Field(default_factory=DocumentRelationships)
    content: str = ""
    storage_path: Optional[str] = None
    session_id: Optional[str] = None
    stage_slug: Optional[str] = None
    iteration_number: int = 1
    edit_version: int = 1
    is_latest_edit: bool = True
    created_at: Optional[str] = None

    @model_validator(mode="before")
    @classmethod
    def _derive_model_slug(cls, data: Any) -> Any:
        if isinstance(data, dict) and not data.get("model_slug") and data.get("model_name"):
            data = dict(data)
            data["model_slug"] = slugify_model_name(data["model_name"])
        return data
