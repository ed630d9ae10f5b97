"""Tests for the job worker loop."""

from imagevault.job_queue import ClaimedJob, NonRetryableJobError, enqueue_job
from imagevault.metadata import ImageRecord, Job
from imagevault.tagging import TaggingJobBridge
from imagevault.worker import execute_claimed_job, run_loop

from conftest import FakeCaptioner


def _job(test_db, job_id):
    test_db.expire_all()
    return test_db.query(Job).filter(Job.id == job_id).one()


def test_run_once_executes_handler(test_db, session_factory):
    job, _ = enqueue_job(test_db, name="tag-image", payload={"imageId": "img-1"}, dedupe_key="img-1")
    seen = []

    processed = run_loop(
        once=True,
        handlers={"tag-image": lambda db, payload: seen.append(payload)},
        session_factory=session_factory,
    )

    assert processed == 1
    assert seen == [{"imageId": "img-1"}]
    assert _job(test_db, job.id).status == "succeeded"


def test_run_once_with_empty_queue(session_factory):
    assert run_loop(once=True, handlers={"tag-image": lambda db, payload: None}, session_factory=session_factory) == 0


def test_handler_error_is_retried(test_db, session_factory):
    job, _ = enqueue_job(test_db, name="tag-image", payload={}, dedupe_key="img-1")

    def boom(db, payload):
        raise RuntimeError("caption service unavailable")

    run_loop(once=True, handlers={"tag-image": boom}, session_factory=session_factory)

    job = _job(test_db, job.id)
    assert job.status == "queued"
    assert job.attempt_count == 1
    assert "caption service unavailable" in job.last_error


def test_non_retryable_error_dead_letters(test_db, session_factory):
    job, _ = enqueue_job(test_db, name="tag-image", payload={}, dedupe_key="img-1")

    def missing(db, payload):
        raise NonRetryableJobError("Image img-1 not found")

    run_loop(once=True, handlers={"tag-image": missing}, session_factory=session_factory)

    assert _job(test_db, job.id).status == "dead_letter"


def test_unregistered_job_name_fails_without_retry(session_factory):
    job = ClaimedJob(id="j1", name="mystery", payload={}, max_attempts=3, attempt_no=1)
    result = execute_claimed_job(job, {}, session_factory)
    assert result.success is False
    assert result.retryable is False


def test_tag_image_job_end_to_end(test_db, session_factory, store, make_image, sample_image_data):
    record = make_image("img-1")
    store.put(record.storage_path, sample_image_data, "image/png")
    TaggingJobBridge(test_db, store).enqueue("img-1")

    def handler(db, payload):
        TaggingJobBridge(db, store, captioner=FakeCaptioner("a red square"), index_embeddings=False).consume(
            payload["imageId"]
        )

    run_loop(once=True, handlers={"tag-image": handler}, session_factory=session_factory)

    test_db.expire_all()
    assert test_db.query(ImageRecord).filter(ImageRecord.id == "img-1").one().description == "a red square"
    assert test_db.query(Job).one().status == "succeeded"
