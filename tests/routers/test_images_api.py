"""HTTP tests for the /images endpoints."""

from datetime import datetime, timedelta

import pytest
from fastapi.testclient import TestClient

from imagevault.api import app
from imagevault.database import get_db
from imagevault.dependencies import (
    get_intake_validator,
    get_object_store,
    get_retrieval_engine,
    get_upload_policy,
)
from imagevault.embeddings import EmbeddingGateway
from imagevault.intake import IntakeValidator, UploadPolicy
from imagevault.metadata import ImageRecord, Job
from imagevault.ratelimit import limiter
from imagevault.retrieval import RetrievalEngine
from imagevault.vector_index import SqlVectorIndex

from conftest import FakeEmbedder


POLICY = UploadPolicy(max_size_bytes=5000, allowed_mime_types=("image/jpeg", "image/png"))


@pytest.fixture
def client(test_db, store, make_poller):
    gateway = EmbeddingGateway(SqlVectorIndex(test_db), FakeEmbedder(), collection_name="test", dimension=4)

    def override_get_db():
        yield test_db

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_object_store] = lambda: store
    app.dependency_overrides[get_upload_policy] = lambda: POLICY
    app.dependency_overrides[get_intake_validator] = lambda: IntakeValidator(
        test_db, store, POLICY, poller=make_poller(store), gateway=gateway
    )
    app.dependency_overrides[get_retrieval_engine] = lambda: RetrievalEngine(test_db, store, gateway=gateway)
    limiter.enabled = False

    yield TestClient(app)

    limiter.enabled = True
    app.dependency_overrides.clear()


def _presign(client, mime_type="image/jpeg", size_bytes=2048):
    response = client.post("/images/presign", json={"mimeType": mime_type, "sizeBytes": size_bytes})
    assert response.status_code == 201
    return response.json()


class TestPresign:
    def test_returns_id_and_upload_url(self, client, test_db, store):
        body = _presign(client)

        record = test_db.query(ImageRecord).filter(ImageRecord.id == body["imageId"]).one()
        assert record.status == "pending"
        assert body["originalUrl"].startswith(f"https://upload.example/originals/{body['imageId']}.jpeg")
        assert store.upload_urls == [record.storage_path]

    def test_oversized_upload_is_rejected(self, client):
        response = client.post("/images/presign", json={"mimeType": "image/jpeg", "sizeBytes": 6000})
        assert response.status_code == 400
        assert response.json()["kind"] == "InvalidInput"

    def test_disallowed_mime(self, client):
        response = client.post("/images/presign", json={"mimeType": "image/webp", "sizeBytes": 10})
        assert response.status_code == 400
        assert response.json()["kind"] == "InvalidInput"

    def test_size_must_be_integer(self, client):
        response = client.post("/images/presign", json={"mimeType": "image/jpeg", "sizeBytes": "12"})
        assert response.status_code == 400
        body = response.json()
        assert body["kind"] == "InvalidInput"
        assert body["retryable"] is False

    def test_missing_body_fields(self, client):
        response = client.post("/images/presign", json={})
        assert response.status_code == 400

    def test_storage_failure_is_bad_gateway(self, client, store):
        store.fail_upload_url = True
        response = client.post("/images/presign", json={"mimeType": "image/png", "sizeBytes": 10})
        assert response.status_code == 502
        assert response.json() == {
            "kind": "DependencyFailure",
            "detail": "Failed to generate upload URL",
            "retryable": True,
        }


class TestVerify:
    def test_accepts_matching_upload(self, client, test_db, store):
        body = _presign(client, size_bytes=2048)
        path = f"originals/{body['imageId']}.jpeg"
        store.put(path, b"", "image/jpeg", size=2048)

        response = client.post("/images/verify", json={"imageId": body["imageId"]})

        assert response.status_code == 200
        assert response.json() == {"id": body["imageId"], "path": path}
        test_db.expire_all()
        record = test_db.query(ImageRecord).filter(ImageRecord.id == body["imageId"]).one()
        assert record.status == "accepted"
        assert record.preview_path == f"thumbnails/{body['imageId']}.jpeg"
        assert test_db.query(Job).count() == 1

    def test_missing_object_is_conflict(self, client):
        body = _presign(client)
        response = client.post("/images/verify", json={"imageId": body["imageId"]})
        assert response.status_code == 409
        assert response.json()["kind"] == "ValidationPending"
        assert response.json()["retryable"] is True

    def test_size_mismatch_reports_reason(self, client, store):
        body = _presign(client, size_bytes=2048)
        store.put(f"originals/{body['imageId']}.jpeg", b"", "image/jpeg", size=100)

        response = client.post("/images/verify", json={"imageId": body["imageId"]})

        assert response.status_code == 422
        assert response.json()["reason"] == "size_mismatch"

        again = client.post("/images/verify", json={"imageId": body["imageId"]})
        assert again.status_code == 404

    def test_unknown_image(self, client):
        response = client.post("/images/verify", json={"imageId": "nope"})
        assert response.status_code == 404
        assert response.json()["kind"] == "NotFound"


class TestPreview:
    def test_lists_newest_first_with_cursor(self, client, make_image):
        base = datetime(2026, 5, 1, 9, 0, 0)
        make_image("a", created_at=base + timedelta(minutes=2))
        make_image("b", created_at=base + timedelta(minutes=1))
        make_image("c", created_at=base)

        first = client.get("/images/preview", params={"limit": 2})
        assert first.status_code == 200
        page = first.json()
        assert [item["id"] for item in page["items"]] == ["a", "b"]
        assert page["items"][0]["previewPath"] == "thumbnails/a.jpeg"
        assert page["items"][0]["signedUrl"].startswith("https://signed.example/thumbnails/a.jpeg")
        assert page["limit"] == 2

        second = client.get("/images/preview", params={"limit": 2, "after": page["nextCursor"]})
        assert [item["id"] for item in second.json()["items"]] == ["c"]
        assert second.json()["nextCursor"] is None

    def test_limit_out_of_range(self, client):
        response = client.get("/images/preview", params={"limit": 0})
        assert response.status_code == 400

    def test_bad_cursor(self, client):
        response = client.get("/images/preview", params={"after": "%%%"})
        assert response.status_code == 400
        assert response.json()["kind"] == "InvalidInput"


class TestOriginalUrl:
    def test_signs_original(self, client):
        response = client.get("/images/original", params={"filename": "abc.jpeg"})
        assert response.status_code == 200
        assert response.json()["signedUrl"].startswith("https://signed.example/originals/abc.jpeg")

    def test_rejects_path_traversal(self, client):
        response = client.get("/images/original", params={"filename": "../secret"})
        assert response.status_code == 400


class TestDelete:
    def test_removes_objects_and_record(self, client, test_db, store, make_image):
        make_image("gone")
        store.put("originals/gone.jpeg", b"data")
        store.put("thumbnails/gone.jpeg", b"thumb")

        response = client.request("DELETE", "/images", json={"imageId": "gone"})

        assert response.status_code == 204
        assert store.removed == ["originals/gone.jpeg", "thumbnails/gone.jpeg"]
        test_db.expire_all()
        assert test_db.query(ImageRecord).filter(ImageRecord.id == "gone").first() is None

    def test_storage_failure_keeps_record(self, client, test_db, store, make_image):
        make_image("kept")
        store.fail_remove = True

        response = client.request("DELETE", "/images", json={"imageId": "kept"})

        assert response.status_code == 502
        assert test_db.query(ImageRecord).filter(ImageRecord.id == "kept").first() is not None

    def test_unknown_image(self, client):
        response = client.request("DELETE", "/images", json={"imageId": "nope"})
        assert response.status_code == 404


class TestEmbed:
    def test_indexes_description(self, client, make_image):
        make_image("tagged", description="a cat on a sofa")
        response = client.post("/images/tagged/embed")
        assert response.status_code == 201
        assert response.json() == {"collection": "test", "id": "tagged", "status": "completed"}

    def test_missing_description(self, client, make_image):
        make_image("untagged")
        response = client.post("/images/untagged/embed")
        assert response.status_code == 400
