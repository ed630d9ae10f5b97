"""Tests for the caption-tagging job bridge."""

import pytest

from imagevault.embeddings import EmbeddingGateway
from imagevault.job_queue import NonRetryableJobError
from imagevault.metadata import ImageRecord, Job, VectorPoint
from imagevault.tagging import TaggingJobBridge, handle_tag_image_job
from imagevault.vector_index import SqlVectorIndex

from conftest import FakeCaptioner, FakeEmbedder


@pytest.fixture
def gateway(test_db):
    return EmbeddingGateway(SqlVectorIndex(test_db), FakeEmbedder(), collection_name="test", dimension=4)


@pytest.fixture
def stored_image(make_image, store, sample_image_data):
    record = make_image("img-1")
    store.put(record.storage_path, sample_image_data, "image/png")
    return record


def test_enqueue_is_idempotent(test_db, store):
    bridge = TaggingJobBridge(test_db, store)
    first = bridge.enqueue("img-1")
    second = bridge.enqueue("img-1")

    assert first.id == second.id
    assert test_db.query(Job).count() == 1
    assert first.payload == {"imageId": "img-1"}


def test_consume_captions_and_indexes(test_db, store, gateway, stored_image):
    captioner = FakeCaptioner("a red square")
    bridge = TaggingJobBridge(test_db, store, captioner=captioner, gateway=gateway, index_embeddings=True)

    assert bridge.consume("img-1") == "a red square"

    record = test_db.query(ImageRecord).filter(ImageRecord.id == "img-1").one()
    assert record.description == "a red square"
    assert record.updated_at is not None
    assert record.status == "accepted"
    image = captioner.images[0]
    assert max(image.size) <= 1024
    assert image.mode == "RGB"
    point = test_db.query(VectorPoint).one()
    assert point.point_id == "img-1"
    assert point.payload == {"caption": "a red square"}


def test_consume_without_indexing(test_db, store, gateway, stored_image):
    bridge = TaggingJobBridge(
        test_db, store, captioner=FakeCaptioner(), gateway=gateway, index_embeddings=False
    )
    bridge.consume("img-1")
    assert test_db.query(VectorPoint).count() == 0


def test_consume_skips_described_images(test_db, store, make_image):
    make_image("img-2", description="already tagged")
    captioner = FakeCaptioner()
    bridge = TaggingJobBridge(test_db, store, captioner=captioner, index_embeddings=False)

    assert bridge.consume("img-2") is None
    assert captioner.images == []
    record = test_db.query(ImageRecord).filter(ImageRecord.id == "img-2").one()
    assert record.description == "already tagged"


def test_consume_missing_record_is_not_retryable(test_db, store):
    bridge = TaggingJobBridge(test_db, store, captioner=FakeCaptioner())
    with pytest.raises(NonRetryableJobError):
        bridge.consume("ghost")


def test_caption_failure_propagates(test_db, store, stored_image):
    bridge = TaggingJobBridge(
        test_db, store, captioner=FakeCaptioner(error=RuntimeError("OOM")), index_embeddings=False
    )
    with pytest.raises(RuntimeError):
        bridge.consume("img-1")
    test_db.rollback()
    record = test_db.query(ImageRecord).filter(ImageRecord.id == "img-1").one()
    assert record.description is None


def test_empty_caption_is_an_error(test_db, store, stored_image):
    bridge = TaggingJobBridge(test_db, store, captioner=FakeCaptioner(text=""), index_embeddings=False)
    with pytest.raises(RuntimeError):
        bridge.consume("img-1")


def test_handler_requires_image_id(test_db, store):
    with pytest.raises(NonRetryableJobError):
        handle_tag_image_job(test_db, {}, store=store)


def test_handler_reuses_one_object_store(test_db, store, make_image, monkeypatch):
    import imagevault.storage.providers as providers

    created = []

    def fake_create_object_store():
        created.append(store)
        return store

    monkeypatch.setattr(providers, "create_object_store", fake_create_object_store)
    monkeypatch.setattr(providers, "_shared_store", None)
    make_image("img-1", description="already tagged")
    make_image("img-2", description="also tagged")

    handle_tag_image_job(test_db, {"imageId": "img-1"})
    handle_tag_image_job(test_db, {"imageId": "img-2"})

    assert created == [store]
