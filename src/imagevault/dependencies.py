"""Shared dependencies for FastAPI endpoints."""

from fastapi import Depends
from sqlalchemy.orm import Session

from imagevault.database import get_db
from imagevault.intake import IntakeValidator, UploadPolicy, load_upload_policy
from imagevault.retrieval import RetrievalEngine
from imagevault.storage import ObjectStore, get_shared_object_store


def get_object_store() -> ObjectStore:
    """Return the process-wide object store client."""
    return get_shared_object_store()


def get_upload_policy(store: ObjectStore = Depends(get_object_store)) -> UploadPolicy:
    return load_upload_policy(store)


def get_intake_validator(
    db: Session = Depends(get_db),
    store: ObjectStore = Depends(get_object_store),
    policy: UploadPolicy = Depends(get_upload_policy),
) -> IntakeValidator:
    return IntakeValidator(db, store, policy)


def get_retrieval_engine(
    db: Session = Depends(get_db),
    store: ObjectStore = Depends(get_object_store),
) -> RetrievalEngine:
    return RetrievalEngine(db, store)
