"""Object store abstractions."""

from .providers import (
    BucketPolicy,
    GcsObjectStore,
    ObjectInfo,
    ObjectStore,
    SignedUrlResult,
    create_object_store,
    get_shared_object_store,
    policy_from_document,
)

__all__ = [
    "BucketPolicy",
    "GcsObjectStore",
    "ObjectInfo",
    "ObjectStore",
    "SignedUrlResult",
    "create_object_store",
    "get_shared_object_store",
    "policy_from_document",
]
