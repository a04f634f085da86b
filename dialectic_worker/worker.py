"""Job worker.

Claims runnable jobs from the database and processes them on a thread
pool. Each job runs on a single thread; jobs never wait on each other.

Retry policy lives here and nowhere else: a ProviderError re-queues the
job (status 'retrying', attempt_count + 1) until the job's max_retries is
used up. Every other error fails the job immediately with its structured
error payload.
"""

import logging
import os
import threading
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import Optional, Sequence

from dialectic_worker.errors import DialecticError, ProviderError
from dialectic_worker.jobs import job_manager
from dialectic_worker.jobs.dependencies import JobDependencies
from dialectic_worker.jobs.processor import process_job
from dialectic_worker.jobs.schemas import TERMINAL_STATUSES, DialecticJob, JobStatus

logger = logging.getLogger(__name__)

WORKER_CONCURRENCY = int(os.environ.get("DIALECTIC_WORKER_CONCURRENCY", "4"))
POLL_INTERVAL = float(os.environ.get("DIALECTIC_POLL_INTERVAL", "2.0"))

# Delay before re-running attempt n (last value repeats)
RETRY_DELAYS = (2, 5, 15, 30)


def _retry_delay(attempt: int, delays: Sequence[float]) -> float:
    if attempt <= 0 or not delays:
        return 0
    return delays[min(attempt - 1, len(delays) - 1)]


def run_job(
    job: DialecticJob,
    deps: JobDependencies,
    retry_delays: Sequence[float] = RETRY_DELAYS,
) -> JobStatus:
    """Process one claimed job and record its outcome. Returns the job's new status."""
    delay = _retry_delay(job.attempt_count, retry_delays)
    if delay:
        logger.info(f"{job.label} Retry attempt {job.attempt_count}, waiting {delay}s")
        time.sleep(delay)

    logger.info(f"{job.label} Processing (attempt {job.attempt_count + 1})")
    try:
        result = process_job(job, deps=deps)
    except ProviderError as e:
        e.with_job(job.id, job.stage_slug)
        requeued = job_manager.requeue_for_retry(job, e.to_error_details())
        status = JobStatus.RETRYING if requeued else JobStatus.FAILED
    except DialecticError as e:
        e.with_job(job.id, job.stage_slug)
        job_manager.mark_failed(job.id, e.to_error_details())
        status = JobStatus.FAILED
    except Exception as e:
        logger.error(f"{job.label} Unexpected failure: {e}", exc_info=True)
        job_manager.mark_failed(job.id, {
            "kind": "unexpected_error",
            "message": f"{type(e).__name__}: {e}",
            "job_id": job.id,
            "stage_slug": job.stage_slug,
        })
        status = JobStatus.FAILED
    else:
        job_manager.update_job_status(job.id, result.next_status, results=result.results or None)
        status = result.next_status
        if status == JobStatus.WAITING_FOR_CHILDREN:
            # Children may already have finished before this job started waiting
            job_manager.complete_parent_if_done(job.id)

    if status in TERMINAL_STATUSES and job.parent_job_id:
        job_manager.complete_parent_if_done(job.parent_job_id)
    return status


class Worker:
    """Polls the job table and runs claimed jobs concurrently."""

    def __init__(
        self,
        deps: Optional[JobDependencies] = None,
        concurrency: Optional[int] = None,
        poll_interval: Optional[float] = None,
        retry_delays: Sequence[float] = RETRY_DELAYS,
    ):
        self.deps = deps or JobDependencies.default()
        self.concurrency = max(1, concurrency or WORKER_CONCURRENCY)
        self.poll_interval = POLL_INTERVAL if poll_interval is None else poll_interval
        self.retry_delays = retry_delays
        self._stop = threading.Event()

    def _claim_batch(self) -> list[DialecticJob]:
        batch = []
        while len(batch) < self.concurrency:
            job = job_manager.claim_next_job()
            if job is None:
                break
            batch.append(job)
        return batch

    def run_batch(self, batch: list[DialecticJob]) -> dict[str, JobStatus]:
        """Run a batch of claimed jobs in parallel."""
        outcomes: dict[str, JobStatus] = {}
        with ThreadPoolExecutor(max_workers=self.concurrency) as executor:
            futures = {
                executor.submit(run_job, job, self.deps, self.retry_delays): job
                for job in batch
            }
            for future in as_completed(futures):
                job = futures[future]
                outcomes[job.id] = future.result()
        return outcomes

    def run_once(self) -> dict[str, JobStatus]:
        """Process jobs until the queue is empty, including jobs created along the way."""
        outcomes: dict[str, JobStatus] = {}
        while not self._stop.is_set():
            batch = self._claim_batch()
            if not batch:
                break
            outcomes.update(self.run_batch(batch))
        logger.info(f"Queue drained: {len(outcomes)} job run(s)")
        return outcomes

    def run_forever(self) -> None:
        logger.info(
            f"Worker started: concurrency={self.concurrency}, poll_interval={self.poll_interval}s"
        )
        while not self._stop.is_set():
            batch = self._claim_batch()
            if batch:
                self.run_batch(batch)
            else:
                self._stop.wait(self.poll_interval)
        logger.info("Worker stopped")

    def stop(self) -> None:
        self._stop.set()
