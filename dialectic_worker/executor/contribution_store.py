"""Persist model contributions and read them back as source documents.

Each execute job commits its contribution as soon as the artifact is
written to storage. Downstream stages read the latest completed
contributions of their input stage through load_source_documents().
"""

import logging
import uuid
from datetime import datetime
from typing import Any, Optional

from dialectic_worker.contributions.schemas import DocumentRelationships, SourceDocument
from dialectic_worker.executor.db import execute, _json_dumps, _json_loads

logger = logging.getLogger(__name__)

STATUS_CONTINUING = "continuing"
STATUS_COMPLETED = "completed"

_UPDATABLE_COLUMNS = (
    "content",
    "storage_path",
    "status",
    "continuation_count",
    "hit_continuation_cap",
    "prompt_tokens",
    "completion_tokens",
)


def new_contribution_id() -> str:
    return f"dc-{uuid.uuid4().hex[:12]}"


def save_contribution(
    *,
    contribution_id: Optional[str] = None,
    session_id: str,
    stage_slug: str,
    iteration_number: int,
    contribution_type: str,
    model_id: str,
    model_name: str,
    model_slug: str,
    content: str,
    storage_path: Optional[str],
    document_relationships: Optional[DocumentRelationships] = None,
    canonical_path_params: Optional[dict] = None,
    prompt_tokens: int = 0,
    completion_tokens: int = 0,
    status: str = STATUS_COMPLETED,
    continuation_count: int = 0,
    hit_continuation_cap: bool = False,
    job_id: Optional[str] = None,
) -> str:
    """Insert a contribution row and return its id."""
    contribution_id = contribution_id or new_contribution_id()
    now = datetime.utcnow().isoformat()
    relationships = (document_relationships or DocumentRelationships()).to_dict()

    execute(
        """INSERT INTO dialectic_contributions
           (id, session_id, stage_slug, iteration_number, contribution_type,
            model_id, model_name, model_slug, content, storage_path,
            document_relationships, canonical_path_params,
            prompt_tokens, completion_tokens, total_tokens,
            edit_version, is_latest_edit, status, continuation_count,
            hit_continuation_cap, job_id, created_at, updated_at)
           VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s,
                   %s, %s, %s, %s, %s, %s, %s, %s)""",
        (
            contribution_id, session_id, stage_slug, iteration_number,
            contribution_type, model_id, model_name, model_slug, content,
            storage_path, _json_dumps(relationships),
            _json_dumps(canonical_path_params or {}),
            prompt_tokens, completion_tokens, prompt_tokens + completion_tokens,
            1, 1, status, continuation_count, int(hit_continuation_cap),
            job_id, now, now,
        ),
    )

    logger.info(
        f"Saved contribution {contribution_id}: stage={stage_slug}, "
        f"model={model_slug}, status={status}, "
        f"tokens={prompt_tokens}+{completion_tokens}, chars={len(content)}"
    )
    return contribution_id


def update_contribution(contribution_id: str, **fields: Any) -> None:
    """Update selected columns of a contribution. total_tokens follows the parts."""
    unknown = set(fields) - set(_UPDATABLE_COLUMNS)
    if unknown:
        raise ValueError(f"Cannot update contribution columns: {sorted(unknown)}")

    assignments = []
    params: list = []
    for column in _UPDATABLE_COLUMNS:
        if column in fields:
            value = fields[column]
            if column == "hit_continuation_cap":
                value = int(bool(value))
            assignments.append(f"{column} = %s")
            params.append(value)

    assignments.append("updated_at = %s")
    params.append(datetime.utcnow().isoformat())
    params.append(contribution_id)

    # SET expressions see pre-update values, so total_tokens is a second statement
    execute(
        f"UPDATE dialectic_contributions SET {', '.join(assignments)} WHERE id = %s",
        tuple(params),
    )
    execute(
        "UPDATE dialectic_contributions SET total_tokens = prompt_tokens + completion_tokens WHERE id = %s",
        (contribution_id,),
    )


def get_contribution(contribution_id: str) -> Optional[dict]:
    """Load one contribution row with JSON columns parsed."""
    row = execute(
        "SELECT * FROM dialectic_contributions WHERE id = %s",
        (contribution_id,),
        fetch="one",
    )
    return _parse_row(row) if row else None


def list_contributions(
    session_id: str,
    stage_slug: Optional[str] = None,
    iteration_number: Optional[int] = None,
) -> list[dict]:
    """List contributions for a session, oldest first."""
    conditions = ["session_id = %s"]
    params: list = [session_id]

    if stage_slug is not None:
        conditions.append("stage_slug = %s")
        params.append(stage_slug)
    if iteration_number is not None:
        conditions.append("iteration_number = %s")
        params.append(iteration_number)

    rows = execute(
        f"""SELECT * FROM dialectic_contributions
            WHERE {' AND '.join(conditions)}
            ORDER BY created_at, id""",
        tuple(params),
        fetch="all",
    )
    return [_parse_row(r) for r in rows]


def load_source_documents(session_id: str, stage_slug: str, iteration_number: int) -> list[SourceDocument]:
    """Latest completed contributions of a stage, as SourceDocuments sorted by (model slug, id)."""
    rows = execute(
        """SELECT * FROM dialectic_contributions
           WHERE session_id = %s AND stage_slug = %s AND iteration_number = %s
             AND status = %s AND is_latest_edit = 1""",
        (session_id, stage_slug, iteration_number, STATUS_COMPLETED),
        fetch="all",
    )
    docs = [to_source_document(_parse_row(r)) for r in rows]
    return sorted(docs, key=lambda d: (d.model_slug, d.id))


def get_source_document(contribution_id: str) -> Optional[SourceDocument]:
    row = get_contribution(contribution_id)
    return to_source_document(row) if row else None


def to_source_document(row: dict) -> SourceDocument:
    return SourceDocument(
        id=row["id"],
        contribution_type=row["contribution_type"],
        model_name=row.get("model_name") or "",
        model_slug=row.get("model_slug") or "",
        document_relationships=DocumentRelationships(**(row.get("document_relationships") or {})),
        content=row.get("content") or "",
        storage_path=row.get("storage_path"),
        session_id=row.get("session_id"),
        stage_slug=row.get("stage_slug"),
        iteration_number=row.get("iteration_number") or 1,
        edit_version=row.get("edit_version") or 1,
        is_latest_edit=bool(row.get("is_latest_edit", 1)),
        created_at=str(row["created_at"]) if row.get("created_at") else None,
    )


def _parse_row(row: dict) -> dict:
    row = dict(row)
    row["document_relationships"] = _json_loads(row.get("document_relationships")) or {}
    row["canonical_path_params"] = _json_loads(row.get("canonical_path_params")) or {}
    row["is_latest_edit"] = bool(row.get("is_latest_edit"))
    row["hit_continuation_cap"] = bool(row.get("hit_continuation_cap"))
    return row
