"""Object store abstraction with a Google Cloud Storage implementation."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import timedelta
import json
import logging
import threading
from typing import Any, List, Optional, Sequence

from google.api_core import exceptions as gcs_exceptions

from imagevault.errors import DependencyFailure
from imagevault.settings import settings


logger = logging.getLogger(__name__)


@dataclass
class BucketPolicy:
    """Upload limits published by the bucket."""

    max_size_bytes: Optional[int] = None
    allowed_mime_types: List[str] = field(default_factory=list)


@dataclass
class ObjectInfo:
    """Stored object metadata as reported by the object store."""

    name: str
    size: Optional[int]
    content_type: Optional[str]


@dataclass
class SignedUrlResult:
    """Outcome of signing one path inside a batch."""

    path: str
    signed_url: Optional[str] = None
    error: Optional[str] = None


class ObjectStore(ABC):
    """Abstract object store contract used by intake, retrieval and tagging."""

    bucket_name: str

    @abstractmethod
    def get_bucket_policy(self) -> BucketPolicy:
        """Return size and mime limits for uploads."""

    @abstractmethod
    def create_signed_upload_url(self, path: str, expires_seconds: int) -> str:
        """Return a short-lived URL that lets a client write one object."""

    @abstractmethod
    def head_object(self, path: str) -> Optional[ObjectInfo]:
        """Return object metadata, or None when the object does not exist."""

    @abstractmethod
    def exists(self, path: str) -> bool:
        """Check whether an object exists."""

    @abstractmethod
    def download(self, path: str) -> bytes:
        """Download full object bytes."""

    @abstractmethod
    def upload(self, path: str, data: bytes, content_type: str) -> None:
        """Write (or overwrite) one object."""

    @abstractmethod
    def remove(self, paths: Sequence[str]) -> None:
        """Delete objects in one batch; missing objects are ignored."""

    @abstractmethod
    def create_signed_url(self, path: str, expires_seconds: int) -> str:
        """Return a time-limited read URL for one object."""

    def create_signed_urls(self, paths: Sequence[str], expires_seconds: int) -> List[SignedUrlResult]:
        """Sign many paths; a failure on one path is reported on that item only."""
        results: List[SignedUrlResult] = []
        for path in paths:
            try:
                results.append(SignedUrlResult(path=path, signed_url=self.create_signed_url(path, expires_seconds)))
            except Exception as exc:  # noqa: BLE001
                logger.warning("Signing failed for %s: %s", path, exc)
                results.append(SignedUrlResult(path=path, error=str(exc)))
        return results


def policy_from_document(document: Any) -> BucketPolicy:
    """Translate a stored policy document into a ``BucketPolicy``."""
    if not isinstance(document, dict):
        raise ValueError("Bucket policy document must be a JSON object")
    limit = document.get("file_size_limit")
    mime_types = document.get("allowed_mime_types") or []
    if not isinstance(mime_types, list):
        raise ValueError("allowed_mime_types must be an array")
    return BucketPolicy(
        max_size_bytes=int(limit) if limit not in (None, "") else None,
        allowed_mime_types=[str(value).strip().lower() for value in mime_types if str(value).strip()],
    )


class GcsObjectStore(ObjectStore):
    """Google Cloud Storage backed object store."""

    def __init__(
        self,
        *,
        bucket_name: str,
        project_id: Optional[str] = None,
        client: Optional[Any] = None,
        signing_service_account: Optional[str] = None,
    ):
        if client is None:
            from google.cloud import storage

            client = storage.Client(project=project_id) if project_id else storage.Client()
        self.bucket_name = bucket_name
        self._client = client
        self._bucket = client.bucket(bucket_name)
        self._signing_service_account = signing_service_account
        self._credentials = None
        self._credentials_lock = threading.Lock()

    def _signing_kwargs(self) -> dict:
        """Use IAM signBlob when a signing service account is configured."""
        if not self._signing_service_account:
            return {}
        import google.auth
        from google.auth.transport import requests as google_requests

        with self._credentials_lock:
            if self._credentials is None:
                self._credentials, _ = google.auth.default(
                    scopes=["https://www.googleapis.com/auth/cloud-platform"]
                )
            # Refresh only when token is missing or expired
            if not self._credentials.token or not self._credentials.valid:
                self._credentials.refresh(google_requests.Request())
            token = self._credentials.token
        return {
            "service_account_email": self._signing_service_account,
            "access_token": token,
        }

    def _sign(self, path: str, *, method: str, expires_seconds: int) -> str:
        blob = self._bucket.blob(path)
        return blob.generate_signed_url(
            version="v4",
            expiration=timedelta(seconds=max(1, int(expires_seconds))),
            method=method,
            **self._signing_kwargs(),
        )

    def get_bucket_policy(self) -> BucketPolicy:
        fallback = BucketPolicy(
            max_size_bytes=settings.upload_max_size_bytes,
            allowed_mime_types=[value.lower() for value in settings.upload_allowed_mime_types],
        )
        try:
            blob = self._bucket.get_blob(settings.bucket_policy_key)
            if blob is None:
                logger.info(
                    "No policy object at gs://%s/%s; using configured upload limits",
                    self.bucket_name,
                    settings.bucket_policy_key,
                )
                return fallback
            document = json.loads(blob.download_as_bytes().decode("utf-8"))
        except gcs_exceptions.GoogleAPIError as exc:
            raise DependencyFailure(f"Error accessing storage bucket: {exc}") from exc
        except ValueError as exc:
            raise DependencyFailure(f"Bucket policy object is not valid JSON: {exc}") from exc
        try:
            return policy_from_document(document)
        except (TypeError, ValueError) as exc:
            raise DependencyFailure(f"Bucket policy object is invalid: {exc}") from exc

    def create_signed_upload_url(self, path: str, expires_seconds: int) -> str:
        try:
            return self._sign(path, method="PUT", expires_seconds=expires_seconds)
        except Exception as exc:  # noqa: BLE001
            raise DependencyFailure(f"Failed to generate upload URL: {exc}") from exc

    def head_object(self, path: str) -> Optional[ObjectInfo]:
        try:
            blob = self._bucket.get_blob(path)
        except gcs_exceptions.GoogleAPIError as exc:
            raise DependencyFailure(f"Could not get storage object data: {exc}") from exc
        if blob is None:
            return None
        return ObjectInfo(name=blob.name, size=blob.size, content_type=blob.content_type)

    def exists(self, path: str) -> bool:
        try:
            return bool(self._bucket.blob(path).exists())
        except gcs_exceptions.GoogleAPIError as exc:
            raise DependencyFailure(f"Could not check storage object: {exc}") from exc

    def download(self, path: str) -> bytes:
        try:
            return self._bucket.blob(path).download_as_bytes()
        except gcs_exceptions.GoogleAPIError as exc:
            raise DependencyFailure(f"Could not download {path}: {exc}") from exc

    def upload(self, path: str, data: bytes, content_type: str) -> None:
        try:
            self._bucket.blob(path).upload_from_string(data, content_type=content_type)
        except gcs_exceptions.GoogleAPIError as exc:
            raise DependencyFailure(f"Could not upload {path}: {exc}") from exc

    def remove(self, paths: Sequence[str]) -> None:
        targets = [path for path in paths if path]
        if not targets:
            return

        def _on_missing(blob) -> None:
            logger.info("Object already absent: gs://%s/%s", self.bucket_name, blob.name)

        try:
            self._bucket.delete_blobs([self._bucket.blob(path) for path in targets], on_error=_on_missing)
        except gcs_exceptions.GoogleAPIError as exc:
            raise DependencyFailure(f"Storage delete failed - {exc}") from exc

    def create_signed_url(self, path: str, expires_seconds: int) -> str:
        try:
            return self._sign(path, method="GET", expires_seconds=expires_seconds)
        except Exception as exc:  # noqa: BLE001
            raise DependencyFailure(f"Could not sign URL for {path}: {exc}") from exc


def create_object_store(bucket_name: Optional[str] = None) -> ObjectStore:
    """Create the configured object store."""
    return GcsObjectStore(
        bucket_name=bucket_name or settings.storage_bucket_name,
        project_id=settings.gcp_project_id,
        signing_service_account=settings.signing_service_account,
    )


_shared_store: Optional[ObjectStore] = None
_shared_store_lock = threading.Lock()


def get_shared_object_store() -> ObjectStore:
    """Return the process-wide object store, creating it on first use."""
    global _shared_store
    with _shared_store_lock:
        if _shared_store is None:
            _shared_store = create_object_store()
        return _shared_store
