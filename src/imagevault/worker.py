"""Job worker: claims queued jobs and dispatches them to named handlers.

Run standalone with ``imagevault-worker`` (pass ``--once`` to drain a single
job) or inside the API process when ``WORKER_MODE`` is set.
"""

from __future__ import annotations

import logging
import os
import socket
import sys
import uuid
from threading import Event, Thread
from typing import Any, Callable, Dict, Optional

from imagevault.database import SessionLocal
from imagevault.errors import ImageVaultError
from imagevault.job_queue import (
    ClaimedJob,
    ExecutionResult,
    NonRetryableJobError,
    claim_next_job,
    finalize_job,
)
from imagevault.settings import settings
from imagevault.tagging import handle_tag_image_job


logger = logging.getLogger(__name__)

JobHandler = Callable[[Any, Dict[str, Any]], None]


def default_handlers() -> Dict[str, JobHandler]:
    return {settings.tagging_job_name: handle_tag_image_job}


def _build_worker_id() -> str:
    return f"{socket.gethostname()}:{os.getpid()}:{uuid.uuid4().hex[:8]}"


def execute_claimed_job(
    job: ClaimedJob,
    handlers: Dict[str, JobHandler],
    session_factory: Callable[[], Any] = SessionLocal,
) -> ExecutionResult:
    """Run the handler for ``job`` in its own session and classify the outcome."""
    handler = handlers.get(job.name)
    if handler is None:
        return ExecutionResult(
            success=False,
            attempt_status="failed",
            error_text=f"No handler registered for job {job.name!r}",
            retryable=False,
        )

    db = session_factory()
    try:
        handler(db, job.payload)
        return ExecutionResult(success=True, attempt_status="succeeded", error_text=None, retryable=False)
    except NonRetryableJobError as exc:
        db.rollback()
        return ExecutionResult(success=False, attempt_status="failed", error_text=str(exc), retryable=False)
    except ImageVaultError as exc:
        db.rollback()
        return ExecutionResult(
            success=False,
            attempt_status="failed",
            error_text=f"{exc.kind}: {exc}",
            retryable=bool(exc.retryable),
        )
    except Exception as exc:
        db.rollback()
        logger.exception("Job %s (%s) raised", job.id, job.name)
        return ExecutionResult(
            success=False,
            attempt_status="failed",
            error_text=f"Unhandled worker exception: {exc}",
            retryable=True,
        )
    finally:
        db.close()


def run_loop(
    *,
    stop_event: Optional[Event] = None,
    once: bool = False,
    poll_seconds: Optional[float] = None,
    lease_seconds: Optional[int] = None,
    handlers: Optional[Dict[str, JobHandler]] = None,
    session_factory: Callable[[], Any] = SessionLocal,
) -> int:
    """Claim and execute jobs until stopped. Returns the number of jobs run."""
    stop = stop_event or Event()
    poll = float(settings.job_worker_poll_seconds if poll_seconds is None else poll_seconds)
    lease = int(settings.job_worker_lease_seconds if lease_seconds is None else lease_seconds)
    registry = handlers if handlers is not None else default_handlers()
    worker_id = settings.job_worker_id or _build_worker_id()
    processed = 0

    logger.info("Job worker %s polling for %s (lease %ss)", worker_id, ", ".join(registry), lease)

    while not stop.is_set():
        db = session_factory()
        try:
            claimed_job = claim_next_job(db, worker_id=worker_id, lease_seconds=lease, names=list(registry))
        except Exception:
            db.rollback()
            logger.exception("Worker claim loop failed")
            if once:
                break
            stop.wait(max(1.0, poll))
            continue
        finally:
            db.close()

        if claimed_job is None:
            if once:
                break
            stop.wait(max(0.1, poll))
            continue

        logger.info("Running job %s (%s) attempt %s", claimed_job.id, claimed_job.name, claimed_job.attempt_no)
        result = execute_claimed_job(claimed_job, registry, session_factory)

        db = session_factory()
        try:
            finalize_job(db, claimed_job=claimed_job, result=result, worker_id=worker_id)
        except Exception:
            db.rollback()
            logger.exception("Failed to finalize job %s", claimed_job.id)
        finally:
            db.close()
        processed += 1
        if once:
            break

    logger.info("Job worker %s stopped after %s job(s)", worker_id, processed)
    return processed


class _BackgroundWorker:
    """Runs ``run_loop`` on a daemon thread inside the API process."""

    def __init__(self):
        self.thread: Optional[Thread] = None
        self.stop_event: Optional[Event] = None

    def start(self) -> None:
        if self.thread is not None and self.thread.is_alive():
            return
        self.stop_event = Event()
        self.thread = Thread(
            target=run_loop,
            kwargs={"stop_event": self.stop_event},
            name="imagevault-job-worker",
            daemon=True,
        )
        self.thread.start()
        logger.info("Background job worker started")

    def stop(self, timeout_seconds: float) -> None:
        if self.stop_event is not None:
            self.stop_event.set()
        if self.thread is not None and self.thread.is_alive():
            self.thread.join(timeout=timeout_seconds)
        self.thread = None
        self.stop_event = None
        logger.info("Background job worker stopped")


_background = _BackgroundWorker()


def start_background_worker_thread() -> None:
    _background.start()


def stop_background_worker_thread(timeout_seconds: float = 10.0) -> None:
    _background.stop(timeout_seconds)


def main() -> None:
    logging.basicConfig(
        level=getattr(logging, settings.job_worker_log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    run_loop(once="--once" in sys.argv[1:])


if __name__ == "__main__":
    main()
