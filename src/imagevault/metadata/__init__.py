"""Metadata storage and management."""

from datetime import datetime
import uuid

from sqlalchemy import Column, String, Integer, BigInteger, DateTime, Text, ForeignKey, Index, UniqueConstraint, CheckConstraint
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.ext.compiler import compiles
from sqlalchemy.orm import declarative_base, relationship

from imagevault.status import ImageStatus

@compiles(JSONB, "sqlite")
def compile_jsonb_for_sqlite(element, compiler, **kw):
    return compiler.visit_JSON(element, **kw)


Base = declarative_base()


def _new_id() -> str:
    return str(uuid.uuid4())


class ImageRecord(Base):
    """Uploaded image and its lifecycle state.

    Status changes go through ``imagevault.intake`` only; the tagging worker
    writes ``description`` and nothing else.
    """

    __tablename__ = "images"

    id = Column(String(36), primary_key=True, default=_new_id)
    storage_path = Column(String(512), nullable=False, unique=True)
    preview_path = Column(String(512), nullable=True)

    # Declared at intent issuance; the oracle for verification
    expected_mime_type = Column(String(100), nullable=False)
    expected_size_bytes = Column(BigInteger, nullable=False)

    # Observed values, recorded on acceptance only
    mime_type = Column(String(100), nullable=True)
    size_bytes = Column(BigInteger, nullable=True)

    status = Column(String(16), nullable=False, default=ImageStatus.PENDING.value)
    rejection_reason = Column(String(64), nullable=True)
    description = Column(Text, nullable=True)

    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    validated_at = Column(DateTime, nullable=True)
    updated_at = Column(DateTime, nullable=True)

    __table_args__ = (
        # Serves the accepted-preview listing in (created_at desc, id desc) order.
        Index("idx_images_status_created_id", "status", "created_at", "id"),
        CheckConstraint(
            "status in ('pending','accepted','rejected')",
            name="ck_images_status",
        ),
        CheckConstraint(
            "status <> 'rejected' or rejection_reason is not null",
            name="ck_images_rejected_has_reason",
        ),
        CheckConstraint(
            "status <> 'accepted' or (preview_path is not null and mime_type is not null and size_bytes is not null)",
            name="ck_images_accepted_complete",
        ),
    )

    @property
    def image_status(self) -> ImageStatus:
        return ImageStatus(self.status)


class VectorCollection(Base):
    """Named vector collection with a fixed dimension and distance metric."""

    __tablename__ = "vector_collections"

    name = Column(String(128), primary_key=True)
    dimension = Column(Integer, nullable=False)
    distance = Column(String(16), nullable=False, default="cosine")
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    __table_args__ = (
        CheckConstraint("distance in ('cosine')", name="ck_vector_collections_distance"),
    )


class VectorPoint(Base):
    """One embedding addressed by (collection, point_id)."""

    __tablename__ = "vector_points"

    id = Column(Integer, primary_key=True)
    collection_name = Column(
        String(128),
        ForeignKey("vector_collections.name", ondelete="CASCADE"),
        nullable=False,
    )
    point_id = Column(String(64), nullable=False)
    vector = Column(JSONB, nullable=False)
    payload = Column(JSONB, nullable=False, default=dict)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        UniqueConstraint("collection_name", "point_id", name="uq_vector_points_collection_point"),
        Index("idx_vector_points_collection", "collection_name"),
    )


class Job(Base):
    """A queued/running/completed unit of background work."""

    __tablename__ = "jobs"

    id = Column(String(36), primary_key=True, default=_new_id)
    name = Column(String(128), nullable=False)
    status = Column(Text, nullable=False, default="queued")
    payload = Column(JSONB, nullable=False, default=dict)
    dedupe_key = Column(String(255), nullable=False)
    scheduled_for = Column(DateTime, default=datetime.utcnow, nullable=False)
    queued_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    started_at = Column(DateTime)
    finished_at = Column(DateTime)
    attempt_count = Column(Integer, nullable=False, default=0)
    max_attempts = Column(Integer, nullable=False, default=3)
    backoff_ms = Column(Integer, nullable=False, default=3000)
    lease_expires_at = Column(DateTime)
    claimed_by_worker = Column(Text)
    last_error = Column(Text)

    attempts = relationship("JobAttempt", back_populates="job", cascade="all, delete-orphan")

    __table_args__ = (
        UniqueConstraint("dedupe_key", name="uq_jobs_dedupe_key"),
        Index("idx_jobs_status_scheduled", "status", "scheduled_for"),
        CheckConstraint(
            "status in ('queued','running','succeeded','dead_letter')",
            name="ck_jobs_status",
        ),
    )


class JobAttempt(Base):
    """One execution attempt of a job, kept for inspection."""

    __tablename__ = "job_attempts"

    id = Column(Integer, primary_key=True)
    job_id = Column(String(36), ForeignKey("jobs.id", ondelete="CASCADE"), nullable=False)
    attempt_no = Column(Integer, nullable=False)
    worker_id = Column(Text, nullable=False)
    status = Column(Text, nullable=False, default="running")
    started_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    finished_at = Column(DateTime)
    error_text = Column(Text)

    job = relationship("Job", back_populates="attempts")

    __table_args__ = (
        UniqueConstraint("job_id", "attempt_no", name="uq_job_attempts_job_attempt"),
        CheckConstraint(
            "status in ('running','succeeded','failed')",
            name="ck_job_attempts_status",
        ),
    )
