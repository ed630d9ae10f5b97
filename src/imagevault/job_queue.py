"""Database-backed job queue: enqueue, claim and finalize."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Iterable, Optional

from sqlalchemy import and_, or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from imagevault.metadata import Job, JobAttempt


logger = logging.getLogger(__name__)

JOB_QUEUED = "queued"
JOB_RUNNING = "running"
JOB_SUCCEEDED = "succeeded"
JOB_DEAD_LETTER = "dead_letter"


class NonRetryableJobError(RuntimeError):
    """Raised by a handler when retrying the job cannot help."""


@dataclass
class ClaimedJob:
    id: str
    name: str
    payload: dict[str, Any]
    max_attempts: int
    attempt_no: int


@dataclass
class ExecutionResult:
    success: bool
    attempt_status: str
    error_text: Optional[str]
    retryable: bool


def _now_utc() -> datetime:
    return datetime.utcnow()


def enqueue_job(
    db: Session,
    *,
    name: str,
    payload: dict[str, Any],
    dedupe_key: str,
    max_attempts: int = 3,
    backoff_ms: int = 3000,
) -> tuple[Job, bool]:
    """Queue a job unless one with ``dedupe_key`` already exists.

    Returns ``(job, created)``. The existing job is returned untouched when the
    key is already taken, whatever its status.
    """
    key = str(dedupe_key or "").strip()
    if not key:
        raise ValueError("dedupe_key is required")
    if not isinstance(payload, dict):
        raise ValueError("Job payload must be a JSON object")

    existing = db.query(Job).filter(Job.dedupe_key == key).first()
    if existing is not None:
        logger.debug("Job %s already queued for key %s (status=%s)", existing.id, key, existing.status)
        return existing, False

    now = _now_utc()
    job = Job(
        name=name,
        status=JOB_QUEUED,
        payload=payload,
        dedupe_key=key,
        scheduled_for=now,
        queued_at=now,
        attempt_count=0,
        max_attempts=max(1, int(max_attempts)),
        backoff_ms=max(0, int(backoff_ms)),
    )
    db.add(job)
    try:
        db.commit()
    except IntegrityError:
        # Another producer inserted the same key between our read and write.
        db.rollback()
        existing = db.query(Job).filter(Job.dedupe_key == key).first()
        if existing is None:
            raise
        return existing, False
    db.refresh(job)
    logger.info("Queued job %s name=%s key=%s", job.id, name, key)
    return job, True


def claim_next_job(
    db: Session,
    *,
    worker_id: str,
    lease_seconds: int,
    names: Optional[Iterable[str]] = None,
) -> Optional[ClaimedJob]:
    """Lock the next runnable job, mark it running and open an attempt row.

    Runnable means queued and due, or running with an expired lease.
    """
    now = _now_utc()
    query = db.query(Job).filter(
        or_(
            and_(Job.status == JOB_QUEUED, Job.scheduled_for <= now),
            and_(Job.status == JOB_RUNNING, Job.lease_expires_at < now),
        )
    )
    allowed = [value for value in (names or []) if value]
    if allowed:
        query = query.filter(Job.name.in_(allowed))
    query = query.order_by(Job.scheduled_for.asc(), Job.queued_at.asc(), Job.id.asc())
    if db.bind and db.bind.dialect.name == "postgresql":
        query = query.with_for_update(skip_locked=True)
    else:
        query = query.with_for_update()

    job = query.first()
    if job is None:
        db.commit()
        return None

    if job.status == JOB_RUNNING:
        logger.warning(
            "Reclaiming job %s from %s after lease expiry", job.id, job.claimed_by_worker
        )
        stale = (
            db.query(JobAttempt)
            .filter(JobAttempt.job_id == job.id, JobAttempt.status == JOB_RUNNING)
            .all()
        )
        for attempt in stale:
            attempt.status = "failed"
            attempt.finished_at = now
            attempt.error_text = "Lease expired"

    attempt_no = int(job.attempt_count or 0) + 1
    job.status = JOB_RUNNING
    if not job.started_at:
        job.started_at = now
    job.lease_expires_at = now + timedelta(seconds=lease_seconds)
    job.claimed_by_worker = worker_id
    job.attempt_count = attempt_no
    db.add(
        JobAttempt(
            job_id=job.id,
            attempt_no=attempt_no,
            worker_id=worker_id,
            started_at=now,
            status=JOB_RUNNING,
        )
    )
    db.commit()

    return ClaimedJob(
        id=str(job.id),
        name=str(job.name or ""),
        payload=dict(job.payload or {}),
        max_attempts=int(job.max_attempts or 1),
        attempt_no=attempt_no,
    )


def retry_delay_ms(backoff_ms: int, attempts_used: int) -> int:
    """Exponential delay: ``backoff_ms * 2^(attempts_used - 1)``."""
    return int(backoff_ms) * (2 ** max(int(attempts_used) - 1, 0))


def finalize_job(
    db: Session,
    *,
    claimed_job: ClaimedJob,
    result: ExecutionResult,
    worker_id: str,
) -> Optional[Job]:
    """Record the attempt outcome; requeue with backoff or dead-letter on failure."""
    query = db.query(Job).filter(Job.id == claimed_job.id)
    if db.bind and db.bind.dialect.name == "postgresql":
        query = query.with_for_update(skip_locked=False)
    else:
        query = query.with_for_update()
    job = query.first()
    if job is None:
        db.rollback()
        logger.warning("Claimed job %s disappeared before finalization", claimed_job.id)
        return None

    if str(job.claimed_by_worker or "").strip() != worker_id:
        db.rollback()
        logger.warning(
            "Job %s is no longer claimed by %s (claimed_by=%s)",
            claimed_job.id,
            worker_id,
            job.claimed_by_worker,
        )
        return None

    now = _now_utc()
    attempt = (
        db.query(JobAttempt)
        .filter(
            JobAttempt.job_id == claimed_job.id,
            JobAttempt.attempt_no == claimed_job.attempt_no,
        )
        .first()
    )

    job.lease_expires_at = None
    job.claimed_by_worker = None
    if result.success:
        job.status = JOB_SUCCEEDED
        job.finished_at = now
        job.last_error = None
        logger.info("Job %s succeeded", claimed_job.id)
    else:
        attempts_used = int(job.attempt_count or 0)
        max_attempts = int(job.max_attempts or claimed_job.max_attempts or 1)
        if result.retryable and attempts_used < max_attempts:
            delay_ms = retry_delay_ms(job.backoff_ms or 0, attempts_used)
            job.status = JOB_QUEUED
            job.scheduled_for = now + timedelta(milliseconds=delay_ms)
            job.started_at = None
            job.finished_at = None
            job.last_error = result.error_text
            logger.warning(
                "Job %s failed (attempt %s/%s), requeued in %sms: %s",
                claimed_job.id,
                attempts_used,
                max_attempts,
                delay_ms,
                result.error_text,
            )
        else:
            job.status = JOB_DEAD_LETTER
            job.finished_at = now
            job.last_error = result.error_text
            logger.error(
                "Job %s (%s) moved to dead_letter after attempt %s/%s: %s",
                claimed_job.id,
                job.name,
                attempts_used,
                max_attempts,
                result.error_text,
            )

    if attempt:
        attempt.status = "succeeded" if result.success else "failed"
        attempt.finished_at = now
        attempt.error_text = None if result.success else result.error_text

    db.commit()
    return job


def requeue_dead_letters(
    db: Session,
    *,
    name: Optional[str] = None,
    limit: Optional[int] = None,
    extra_attempts: int = 1,
) -> int:
    """Move dead-lettered jobs back to the queue.

    Attempt numbering continues; each job gets ``extra_attempts`` more tries.
    """
    query = db.query(Job).filter(Job.status == JOB_DEAD_LETTER)
    if name:
        query = query.filter(Job.name == name)
    query = query.order_by(Job.finished_at.asc(), Job.id.asc())
    if limit:
        query = query.limit(int(limit))

    now = _now_utc()
    count = 0
    for job in query.all():
        job.status = JOB_QUEUED
        job.max_attempts = int(job.attempt_count or 0) + max(1, int(extra_attempts))
        job.scheduled_for = now
        job.started_at = None
        job.finished_at = None
        count += 1
    db.commit()
    if count:
        logger.info("Requeued %s dead-lettered job(s)", count)
    return count
