"""Upload intents, post-upload validation and image lifecycle operations.

All status changes for ``ImageRecord`` go through this module. A transition
out of ``pending`` is a conditional update on ``status = 'pending'``; a caller
that loses that race gets ``NotFound`` and causes no side effects.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from threading import Lock
import uuid
from typing import Any, Dict, List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from imagevault.embeddings import EmbeddingGateway
from imagevault.errors import (
    DependencyFailure,
    InvalidInput,
    NotFound,
    Timeout,
    ValidationFailed,
    ValidationPending,
)
from imagevault.image import extension_for_mime, mime_equals, normalize_mime
from imagevault.metadata import ImageRecord
from imagevault.settings import settings
from imagevault.status import (
    ImageStatus,
    RejectionReason,
    ValidationOutcome,
    check_transition,
    classify_mismatch,
)
from imagevault.storage import BucketPolicy, ObjectStore
from imagevault.tagging import TaggingJobBridge
from imagevault.thumbnails import (
    ThumbnailReadinessPoller,
    ThumbnailTriggerError,
    original_path_for,
    preview_path_for,
)


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class UploadPolicy:
    """Size limit and mime whitelist applied to new upload intents.

    An empty whitelist admits every mime type that has a storage extension.
    """

    max_size_bytes: Optional[int] = None
    allowed_mime_types: tuple = field(default_factory=tuple)

    @classmethod
    def from_bucket_policy(cls, policy: BucketPolicy) -> "UploadPolicy":
        return cls(
            max_size_bytes=policy.max_size_bytes,
            allowed_mime_types=tuple(normalize_mime(value) for value in policy.allowed_mime_types),
        )

    def allows_mime(self, mime_type: str) -> bool:
        if not self.allowed_mime_types:
            return True
        return normalize_mime(mime_type) in self.allowed_mime_types


@dataclass
class UploadIntent:
    image_id: str
    write_url: str


_policy: Optional[UploadPolicy] = None
_policy_lock = Lock()


def load_upload_policy(store: ObjectStore) -> UploadPolicy:
    """Return the process-wide policy, reading the bucket the first time only."""
    global _policy
    with _policy_lock:
        if _policy is None:
            _policy = UploadPolicy.from_bucket_policy(store.get_bucket_policy())
            logger.info(
                "Loaded upload policy: max_size_bytes=%s allowed=%s",
                _policy.max_size_bytes,
                ",".join(_policy.allowed_mime_types) or "*",
            )
        return _policy


def reload_upload_policy(store: ObjectStore) -> UploadPolicy:
    global _policy
    with _policy_lock:
        _policy = None
    return load_upload_policy(store)


class IntakeValidator:
    """Issue upload intents and move images through pending -> accepted/rejected."""

    def __init__(
        self,
        db: Session,
        store: ObjectStore,
        policy: UploadPolicy,
        *,
        poller: Optional[ThumbnailReadinessPoller] = None,
        tagging: Optional[TaggingJobBridge] = None,
        gateway: Optional[EmbeddingGateway] = None,
    ):
        self.db = db
        self.store = store
        self.policy = policy
        self.poller = poller or ThumbnailReadinessPoller(store)
        self.tagging = tagging or TaggingJobBridge(db, store)
        self.gateway = gateway

    def refresh_policy(self) -> UploadPolicy:
        """Re-read the bucket policy and use it for subsequent intents."""
        self.policy = reload_upload_policy(self.store)
        return self.policy

    def _check_intent(self, mime_type: Any, size_bytes: Any) -> str:
        if not isinstance(mime_type, str) or not mime_type.strip():
            raise InvalidInput("mimeType is required")
        if isinstance(size_bytes, bool) or not isinstance(size_bytes, int):
            raise InvalidInput("sizeBytes must be an integer")
        if size_bytes <= 0:
            raise InvalidInput("sizeBytes must be positive")
        if self.policy.max_size_bytes is not None and size_bytes > self.policy.max_size_bytes:
            raise InvalidInput(
                f"File is larger than the {self.policy.max_size_bytes} byte limit"
            )
        normalized = normalize_mime(mime_type)
        if not self.policy.allows_mime(normalized):
            raise InvalidInput(f"Invalid file format: {mime_type}")
        return normalized

    def issue_upload_intent(self, mime_type: str, size_bytes: int) -> UploadIntent:
        normalized = self._check_intent(mime_type, size_bytes)
        ext = extension_for_mime(normalized)

        image_id = str(uuid.uuid4())
        record = ImageRecord(
            id=image_id,
            storage_path=original_path_for(image_id, ext),
            expected_mime_type=normalized,
            expected_size_bytes=size_bytes,
            status=ImageStatus.PENDING.value,
            created_at=datetime.utcnow(),
        )
        try:
            self.db.add(record)
            self.db.commit()
        except SQLAlchemyError as exc:
            self.db.rollback()
            raise DependencyFailure(f"Failed to create image record: {exc}") from exc

        try:
            write_url = self.store.create_signed_upload_url(
                record.storage_path, settings.upload_url_ttl_seconds
            )
        except DependencyFailure:
            logger.warning("Upload URL failed; image %s left pending", record.id)
            raise
        logger.info("Issued upload intent %s (%s, %s bytes)", record.id, normalized, size_bytes)
        return UploadIntent(image_id=record.id, write_url=write_url)

    def _get_record(self, image_id: str, status: Optional[ImageStatus] = None) -> ImageRecord:
        try:
            query = self.db.query(ImageRecord).filter(ImageRecord.id == str(image_id))
            if status is not None:
                query = query.filter(ImageRecord.status == status.value)
            record = query.first()
        except SQLAlchemyError as exc:
            self.db.rollback()
            raise DependencyFailure(f"Image lookup failed: {exc}") from exc
        if record is None:
            if status is not None:
                raise NotFound("Image not found or not pending")
            raise NotFound("Image not found")
        return record

    def get_image(self, image_id: str) -> ImageRecord:
        return self._get_record(image_id)

    def _transition_from_pending(self, image_id: str, target: ImageStatus, values: Dict[str, Any]) -> None:
        check_transition(ImageStatus.PENDING, target)
        now = datetime.utcnow()
        values = dict(values, status=target.value, updated_at=now)
        try:
            updated = (
                self.db.query(ImageRecord)
                .filter(
                    ImageRecord.id == str(image_id),
                    ImageRecord.status == ImageStatus.PENDING.value,
                )
                .update(values, synchronize_session=False)
            )
            if updated != 1:
                self.db.rollback()
                raise NotFound("Image no longer pending")
            self.db.commit()
        except SQLAlchemyError as exc:
            self.db.rollback()
            raise DependencyFailure(f"Could not update image {image_id}: {exc}") from exc
        self.db.expire_all()

    def _reject(self, image_id: str, reason: RejectionReason) -> None:
        self._transition_from_pending(image_id, ImageStatus.REJECTED, {"rejection_reason": reason.value})
        logger.info("Rejected image %s: %s", image_id, reason.value)

    def validate_upload(self, image_id: str) -> Dict[str, str]:
        """Check the stored object against the intent and accept or reject it."""
        record = self._get_record(image_id, ImageStatus.PENDING)
        storage_path = record.storage_path
        expected_size = int(record.expected_size_bytes)
        expected_mime = normalize_mime(record.expected_mime_type)

        info = self.store.head_object(storage_path)
        if info is None:
            raise ValidationPending("File not found in storage (upload not completed yet)")

        outcome = classify_mismatch(
            size_matches=info.size is not None and int(info.size) == expected_size,
            mime_matches=mime_equals(expected_mime, info.content_type),
        )
        if outcome is not ValidationOutcome.OK:
            reason = outcome.rejection_reason
            self._reject(image_id, reason)
            raise ValidationFailed("Uploaded file failed validation", reason=reason.value)

        preview_path = preview_path_for(storage_path)
        try:
            self.poller.trigger(storage_path)
        except ThumbnailTriggerError as exc:
            logger.warning("Thumbnail trigger failed for %s: %s", image_id, exc)
            self._reject(image_id, RejectionReason.THUMBNAIL_FUNCTION_FAILED)
            raise DependencyFailure("Thumbnail generation failed") from exc

        if not self.poller.wait_until_ready(preview_path):
            self._reject(image_id, RejectionReason.THUMBNAIL_NOT_READY)
            raise Timeout("Thumbnail not available yet")

        self._transition_from_pending(
            image_id,
            ImageStatus.ACCEPTED,
            {
                "preview_path": preview_path,
                "mime_type": normalize_mime(info.content_type),
                "size_bytes": int(info.size),
                "validated_at": datetime.utcnow(),
                "rejection_reason": None,
            },
        )
        logger.info("Accepted image %s", image_id)

        self.tagging.enqueue(str(image_id))
        return {"id": str(image_id), "path": storage_path}

    def delete_image(self, image_id: str) -> List[str]:
        """Remove stored objects, then the record. Returns the removed paths."""
        record = self._get_record(image_id)
        paths = [path for path in (record.storage_path, record.preview_path) if path]

        # Storage failure propagates as DependencyFailure with the row kept.
        self.store.remove(paths)

        try:
            self.db.query(ImageRecord).filter(ImageRecord.id == str(image_id)).delete(
                synchronize_session=False
            )
            self.db.commit()
        except SQLAlchemyError as exc:
            self.db.rollback()
            logger.error(
                "Objects removed but image %s row kept: %s", image_id, ", ".join(paths)
            )
            raise DependencyFailure(
                f"DB delete failed after removing {', '.join(paths)}"
            ) from exc
        logger.info("Deleted image %s", image_id)
        return paths

    def get_original_url(self, filename: str) -> Dict[str, str]:
        name = str(filename or "").strip()
        if not name or "/" in name or "\\" in name or name in (".", ".."):
            raise InvalidInput("filename must be a bare file name")
        try:
            signed_url = self.store.create_signed_url(f"originals/{name}", settings.read_url_ttl_seconds)
        except DependencyFailure as exc:
            raise DependencyFailure("Could not get URL of original image") from exc
        return {"signed_url": signed_url}

    def attach_embedding(self, image_id: str) -> Dict[str, Any]:
        """Embed the stored description and index it under ``image_id``."""
        record = self._get_record(image_id)
        if not record.description:
            raise InvalidInput("Could not generate embeddings due to missing image description")
        gateway = self.gateway
        if gateway is None:
            from imagevault.vector_index import SqlVectorIndex

            gateway = self.gateway = EmbeddingGateway(SqlVectorIndex(self.db))
        return gateway.index_caption(str(image_id), record.description)
