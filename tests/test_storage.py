"""Tests for the Google Cloud Storage object store adapter."""

import json

import pytest
from google.api_core import exceptions as gcs_exceptions

from imagevault.errors import DependencyFailure
from imagevault.settings import settings
from imagevault.storage import GcsObjectStore, policy_from_document


class FakeBlob:
    def __init__(self, bucket, name, data=None, content_type=None):
        self.bucket = bucket
        self.name = name
        self.data = data
        self.content_type = content_type
        self.signed = []

    @property
    def size(self):
        return None if self.data is None else len(self.data)

    def generate_signed_url(self, **kwargs):
        self.signed.append(kwargs)
        if self.bucket.sign_error:
            raise self.bucket.sign_error
        return f"https://storage.example/{self.bucket.name}/{self.name}?method={kwargs['method']}"

    def exists(self):
        return self.name in self.bucket.objects

    def download_as_bytes(self):
        if self.name not in self.bucket.objects:
            raise gcs_exceptions.NotFound("missing")
        return self.bucket.objects[self.name].data

    def upload_from_string(self, data, content_type=None):
        self.data = data
        self.content_type = content_type
        self.bucket.objects[self.name] = self


class FakeBucket:
    def __init__(self, name):
        self.name = name
        self.objects = {}
        self.sign_error = None
        self.fail_delete = False
        self.deleted = []

    def blob(self, name):
        return self.objects.get(name) or FakeBlob(self, name)

    def get_blob(self, name):
        return self.objects.get(name)

    def add(self, name, data, content_type=None):
        self.objects[name] = FakeBlob(self, name, data, content_type)

    def delete_blobs(self, blobs, on_error=None):
        if self.fail_delete:
            raise gcs_exceptions.ServiceUnavailable("storage down")
        for blob in blobs:
            if blob.name in self.objects:
                del self.objects[blob.name]
                self.deleted.append(blob.name)
            elif on_error is not None:
                on_error(blob)


class FakeClient:
    def __init__(self):
        self.buckets = {}

    def bucket(self, name):
        return self.buckets.setdefault(name, FakeBucket(name))


@pytest.fixture
def gcs():
    client = FakeClient()
    store = GcsObjectStore(bucket_name="images", client=client)
    return store, client.bucket("images")


class TestPolicyFromDocument:
    def test_reads_limit_and_types(self):
        policy = policy_from_document({"file_size_limit": "1048576", "allowed_mime_types": ["Image/PNG", " "]})
        assert policy.max_size_bytes == 1048576
        assert policy.allowed_mime_types == ["image/png"]

    def test_missing_fields_mean_unrestricted(self):
        policy = policy_from_document({})
        assert policy.max_size_bytes is None
        assert policy.allowed_mime_types == []

    def test_rejects_non_object(self):
        with pytest.raises(ValueError):
            policy_from_document(["image/png"])


class TestGcsObjectStore:
    def test_bucket_policy_from_object(self, gcs):
        store, bucket = gcs
        bucket.add(
            settings.bucket_policy_key,
            json.dumps({"file_size_limit": 2048, "allowed_mime_types": ["image/jpeg"]}).encode(),
        )
        policy = store.get_bucket_policy()
        assert policy.max_size_bytes == 2048
        assert policy.allowed_mime_types == ["image/jpeg"]

    def test_bucket_policy_falls_back_to_settings(self, gcs):
        store, _ = gcs
        policy = store.get_bucket_policy()
        assert policy.max_size_bytes == settings.upload_max_size_bytes

    def test_bucket_policy_invalid_json(self, gcs):
        store, bucket = gcs
        bucket.add(settings.bucket_policy_key, b"not json")
        with pytest.raises(DependencyFailure):
            store.get_bucket_policy()

    def test_head_object(self, gcs):
        store, bucket = gcs
        bucket.add("originals/a.png", b"12345", "image/png")
        info = store.head_object("originals/a.png")
        assert (info.name, info.size, info.content_type) == ("originals/a.png", 5, "image/png")
        assert store.head_object("originals/missing.png") is None

    def test_signed_urls_use_v4(self, gcs):
        store, bucket = gcs
        url = store.create_signed_upload_url("originals/a.png", 120)
        assert url.endswith("method=PUT")
        assert store.create_signed_url("thumbnails/a.png", 60).endswith("method=GET")

    def test_signing_failure_is_dependency_failure(self, gcs):
        store, bucket = gcs
        bucket.sign_error = AttributeError("no private key")
        with pytest.raises(DependencyFailure):
            store.create_signed_url("thumbnails/a.png", 60)
        results = store.create_signed_urls(["thumbnails/a.png"], 60)
        assert results[0].signed_url is None
        assert "a.png" in results[0].error

    def test_upload_download_roundtrip(self, gcs):
        store, _ = gcs
        store.upload("thumbnails/a.jpeg", b"thumb", "image/jpeg")
        assert store.exists("thumbnails/a.jpeg")
        assert store.download("thumbnails/a.jpeg") == b"thumb"

    def test_download_missing_object(self, gcs):
        store, _ = gcs
        with pytest.raises(DependencyFailure):
            store.download("originals/missing.png")

    def test_remove_ignores_missing_objects(self, gcs):
        store, bucket = gcs
        bucket.add("originals/a.png", b"1")
        store.remove(["originals/a.png", "thumbnails/a.png", None])
        assert bucket.deleted == ["originals/a.png"]

    def test_remove_failure(self, gcs):
        store, bucket = gcs
        bucket.fail_delete = True
        with pytest.raises(DependencyFailure):
            store.remove(["originals/a.png"])
