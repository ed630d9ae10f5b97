"""Caption-tagging job producer and consumer."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from imagevault.captioning import ImageCaptioner, get_captioner
from imagevault.embeddings import EmbeddingGateway
from imagevault.errors import DependencyFailure
from imagevault.image import ImageProcessor
from imagevault.job_queue import NonRetryableJobError, enqueue_job
from imagevault.metadata import ImageRecord, Job
from imagevault.settings import settings
from imagevault.storage import ObjectStore, get_shared_object_store
from imagevault.vector_index import SqlVectorIndex


logger = logging.getLogger(__name__)


class TaggingJobBridge:
    """Queue caption work for accepted images and run it on the worker side."""

    def __init__(
        self,
        db: Session,
        store: Optional[ObjectStore] = None,
        *,
        captioner: Optional[ImageCaptioner] = None,
        gateway: Optional[EmbeddingGateway] = None,
        processor: Optional[ImageProcessor] = None,
        index_embeddings: Optional[bool] = None,
    ):
        self.db = db
        self.store = store
        self._captioner = captioner
        self.gateway = gateway
        self.processor = processor or ImageProcessor(
            max_size=(settings.caption_max_dimension, settings.caption_max_dimension),
            jpeg_quality=settings.caption_jpeg_quality,
        )
        self.index_embeddings = (
            settings.tagging_index_embeddings if index_embeddings is None else index_embeddings
        )

    @property
    def captioner(self) -> ImageCaptioner:
        if self._captioner is None:
            self._captioner = get_captioner()
        return self._captioner

    def enqueue(self, image_id: str) -> Job:
        """Queue one ``tag-image`` job keyed by ``image_id``; repeats are no-ops."""
        try:
            job, created = enqueue_job(
                self.db,
                name=settings.tagging_job_name,
                payload={"imageId": image_id},
                dedupe_key=image_id,
                max_attempts=settings.tagging_max_attempts,
                backoff_ms=settings.tagging_backoff_ms,
            )
        except SQLAlchemyError as exc:
            self.db.rollback()
            raise DependencyFailure(f"Could not enqueue tagging job for {image_id}: {exc}") from exc
        if not created:
            logger.info("Tagging job for %s already exists (status=%s)", image_id, job.status)
        return job

    def consume(self, image_id: str) -> Optional[str]:
        """Caption one image. Returns the new description, or None when skipped."""
        record = self.db.query(ImageRecord).filter(ImageRecord.id == image_id).first()
        if record is None:
            raise NonRetryableJobError(f"Image {image_id} not found")
        if record.description:
            logger.info("Image %s already has a description, skipping", image_id)
            return None
        if self.store is None:
            raise NonRetryableJobError("Tagging consumer has no object store configured")

        data = self.store.download(record.storage_path)
        image = self.processor.prepare_for_captioning(data)
        description = self.captioner.caption(image)
        if not description:
            raise RuntimeError(f"Caption model returned no text for {image_id}")

        if self.index_embeddings:
            gateway = self.gateway or EmbeddingGateway(SqlVectorIndex(self.db))
            gateway.index_caption(image_id, description)

        record.description = description
        record.updated_at = datetime.utcnow()
        self.db.commit()
        logger.info("Tagged image %s: %s", image_id, description)
        return description


def handle_tag_image_job(db: Session, payload: dict[str, Any], *, store: Optional[ObjectStore] = None) -> None:
    """Worker handler for ``tag-image`` jobs."""
    image_id = str((payload or {}).get("imageId") or "").strip()
    if not image_id:
        raise NonRetryableJobError("tag-image payload requires imageId")
    if store is None:
        store = get_shared_object_store()
    TaggingJobBridge(db, store).consume(image_id)
