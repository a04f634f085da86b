"""Job lifecycle management.

Handles:
- Job creation and DB persistence (plan, execute and continuation jobs)
- Claiming the next runnable job (compare-and-set on status)
- Status transitions, retry bookkeeping and structured failures
- Parent completion once every child job is terminal

Uses the database for persistence, no in-memory state.
"""

import logging
import uuid
from datetime import datetime
from typing import Any, Optional

from dialectic_worker.errors import InvalidJobPayloadError
from dialectic_worker.executor.db import execute, _json_dumps, _json_loads
from dialectic_worker.jobs.schemas import (
    CLAIMABLE_STATUSES,
    TERMINAL_STATUSES,
    DialecticJob,
    JobPayload,
    JobStatus,
    JobType,
    parse_payload,
)

logger = logging.getLogger(__name__)

# Attempts at claiming before giving up for this poll (another worker won the race)
CLAIM_ATTEMPTS = 5


def create_job(
    job_type: JobType,
    payload: JobPayload,
    *,
    parent_job_id: Optional[str] = None,
) -> DialecticJob:
    """Create a pending job and return it."""
    job_id = f"job-{uuid.uuid4().hex[:12]}"
    now = datetime.utcnow().isoformat()

    execute(
        """INSERT INTO dialectic_jobs
           (id, job_type, status, parent_job_id, session_id, stage_slug,
            iteration_number, payload, attempt_count, max_retries,
            results, error_details, created_at)
           VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)""",
        (
            job_id, JobType(job_type).value, JobStatus.PENDING.value,
            parent_job_id, payload.session_id, payload.stage_slug,
            payload.iteration_number, _json_dumps(payload.to_payload()),
            0, payload.max_retries, None, None, now,
        ),
    )

    logger.info(
        f"Created {JobType(job_type).value} job {job_id} for stage "
        f"{payload.stage_slug} (model={payload.model_slug}"
        + (f", parent={parent_job_id}" if parent_job_id else "")
        + ")"
    )
    return get_job(job_id)


def _normalize_timestamps(row: dict) -> dict:
    """Convert datetime objects to ISO strings (Postgres returns datetimes for TIMESTAMP columns)."""
    for key in ("created_at", "started_at", "completed_at"):
        val = row.get(key)
        if val is not None and isinstance(val, datetime):
            row[key] = val.isoformat()
    return row


def _row_to_job(row: dict) -> DialecticJob:
    _normalize_timestamps(row)
    job_type = JobType(row["job_type"])
    return DialecticJob(
        id=row["id"],
        job_type=job_type,
        status=JobStatus(row["status"]),
        payload=parse_payload(job_type, _json_loads(row["payload"]) or {}),
        parent_job_id=row.get("parent_job_id"),
        session_id=row["session_id"],
        stage_slug=row["stage_slug"],
        iteration_number=row.get("iteration_number") or 1,
        attempt_count=row.get("attempt_count") or 0,
        max_retries=row.get("max_retries") or 0,
        results=_json_loads(row.get("results")),
        error_details=_json_loads(row.get("error_details")),
        created_at=row.get("created_at"),
        started_at=row.get("started_at"),
        completed_at=row.get("completed_at"),
    )


def get_job(job_id: str) -> Optional[DialecticJob]:
    """Get a job by ID."""
    row = execute(
        "SELECT * FROM dialectic_jobs WHERE id = %s",
        (job_id,),
        fetch="one",
    )
    if row is None:
        return None
    return _row_to_job(row)


def claim_job(job_id: str) -> bool:
    """Move a claimable job to processing. False if another worker got it first."""
    claimed = execute(
        """UPDATE dialectic_jobs
           SET status = %s, started_at = %s
           WHERE id = %s AND status IN (%s, %s)""",
        (
            JobStatus.PROCESSING.value, datetime.utcnow().isoformat(), job_id,
            *(s.value for s in CLAIMABLE_STATUSES),
        ),
        fetch="rowcount",
    )
    return claimed == 1


def claim_next_job() -> Optional[DialecticJob]:
    """Claim the oldest pending or retrying job, or return None if the queue is empty."""
    for _ in range(CLAIM_ATTEMPTS):
        row = execute(
            """SELECT id FROM dialectic_jobs
               WHERE status IN (%s, %s)
               ORDER BY created_at, id LIMIT 1""",
            tuple(s.value for s in CLAIMABLE_STATUSES),
            fetch="one",
        )
        if row is None:
            return None
        if not claim_job(row["id"]):
            continue
        try:
            return get_job(row["id"])
        except InvalidJobPayloadError as e:
            mark_failed(row["id"], e.with_job(row["id"], None).to_error_details())
    return None


def update_job_status(
    job_id: str,
    status: JobStatus,
    results: Optional[dict[str, Any]] = None,
) -> None:
    """Update job status and timestamps."""
    status = JobStatus(status)
    now = datetime.utcnow().isoformat()

    if status in TERMINAL_STATUSES:
        execute(
            """UPDATE dialectic_jobs
               SET status = %s, completed_at = %s, results = %s
               WHERE id = %s""",
            (status.value, now, _json_dumps(results), job_id),
        )
    else:
        execute(
            "UPDATE dialectic_jobs SET status = %s WHERE id = %s",
            (status.value, job_id),
        )

    logger.info(f"Job {job_id} status → {status.value}")


def mark_failed(job_id: str, error_details: dict[str, Any]) -> None:
    """Fail a job with a structured error payload."""
    execute(
        """UPDATE dialectic_jobs
           SET status = %s, completed_at = %s, error_details = %s
           WHERE id = %s""",
        (JobStatus.FAILED.value, datetime.utcnow().isoformat(), _json_dumps(error_details), job_id),
    )
    logger.error(
        f"Job {job_id} failed: {error_details.get('kind')}: {error_details.get('message')}"
    )


def requeue_for_retry(job: DialecticJob, error_details: dict[str, Any]) -> bool:
    """Re-queue a job after a retryable failure.

    Returns True if the job was re-queued, False if it ran out of retries
    and was marked failed instead.
    """
    if job.attempt_count >= job.max_retries:
        details = dict(error_details)
        details["attempts"] = job.attempt_count + 1
        mark_failed(job.id, details)
        return False

    execute(
        """UPDATE dialectic_jobs
           SET status = %s, attempt_count = attempt_count + 1, error_details = %s
           WHERE id = %s""",
        (JobStatus.RETRYING.value, _json_dumps(error_details), job.id),
    )
    logger.warning(
        f"Job {job.id} re-queued for retry {job.attempt_count + 1}/{job.max_retries}: "
        f"{error_details.get('message')}"
    )
    return True


def list_jobs(
    status: Optional[JobStatus] = None,
    session_id: Optional[str] = None,
    parent_job_id: Optional[str] = None,
    limit: int = 20,
) -> list[DialecticJob]:
    """List jobs, newest first, optionally filtered."""
    conditions = []
    params: list = []

    if status is not None:
        conditions.append("status = %s")
        params.append(JobStatus(status).value)
    if session_id is not None:
        conditions.append("session_id = %s")
        params.append(session_id)
    if parent_job_id is not None:
        conditions.append("parent_job_id = %s")
        params.append(parent_job_id)

    where = f"WHERE {' AND '.join(conditions)}" if conditions else ""
    params.append(limit)
    rows = execute(
        f"""SELECT * FROM dialectic_jobs {where}
            ORDER BY created_at DESC, id DESC LIMIT %s""",
        tuple(params),
        fetch="all",
    )
    return [_row_to_job(r) for r in rows]


def get_child_jobs(parent_job_id: str) -> list[DialecticJob]:
    rows = execute(
        """SELECT * FROM dialectic_jobs WHERE parent_job_id = %s
           ORDER BY created_at, id""",
        (parent_job_id,),
        fetch="all",
    )
    return [_row_to_job(r) for r in rows]


def get_stage_jobs(
    session_id: str,
    stage_slug: str,
    iteration_number: int,
    job_type: Optional[JobType] = None,
) -> list[DialecticJob]:
    """Every job of one stage iteration in a session, oldest first."""
    conditions = ["session_id = %s", "stage_slug = %s", "iteration_number = %s"]
    params: list = [session_id, stage_slug, iteration_number]
    if job_type is not None:
        conditions.append("job_type = %s")
        params.append(JobType(job_type).value)

    rows = execute(
        f"""SELECT * FROM dialectic_jobs WHERE {' AND '.join(conditions)}
            ORDER BY created_at, id""",
        tuple(params),
        fetch="all",
    )
    return [_row_to_job(r) for r in rows]


def complete_parent_if_done(parent_job_id: str) -> Optional[JobStatus]:
    """Close a waiting parent once all its children are terminal.

    Returns the parent's new status, or None if children are still running.
    """
    parent = get_job(parent_job_id)
    if parent is None or parent.status != JobStatus.WAITING_FOR_CHILDREN:
        return None

    children = get_child_jobs(parent_job_id)
    if any(not child.is_terminal for child in children):
        return None

    failed = [child.id for child in children if child.status == JobStatus.FAILED]
    if failed:
        mark_failed(parent_job_id, {
            "kind": "child_job_failed",
            "message": f"{len(failed)} of {len(children)} child job(s) failed",
            "job_id": parent_job_id,
            "stage_slug": parent.stage_slug,
            "child_job_ids": failed,
        })
        return JobStatus.FAILED

    update_job_status(
        parent_job_id,
        JobStatus.COMPLETED,
        results={"child_job_ids": [child.id for child in children]},
    )
    return JobStatus.COMPLETED
