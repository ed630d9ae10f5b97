"""Error taxonomy shared by the intake, retrieval and tagging paths.

Every error carries a ``kind`` string, a human message and a ``retryable``
flag so callers can tell transient dependency trouble apart from terminal
outcomes. The HTTP layer maps ``status_code`` straight onto the response.
"""

from __future__ import annotations


class ImageVaultError(RuntimeError):
    """Base class for errors surfaced to API and worker callers."""

    kind = "ImageVaultError"
    status_code = 500
    retryable = False

    def __init__(self, message: str, *, retryable: bool | None = None):
        super().__init__(message)
        self.message = message
        if retryable is not None:
            self.retryable = retryable

    def to_dict(self) -> dict:
        return {
            "kind": self.kind,
            "detail": self.message,
            "retryable": bool(self.retryable),
        }


class InvalidInput(ImageVaultError):
    """Bad mime type, size, cursor or request shape."""

    kind = "InvalidInput"
    status_code = 400


class UnsupportedType(ImageVaultError):
    """Mime type has no storage extension mapping."""

    kind = "UnsupportedType"
    status_code = 400


class NotFound(ImageVaultError):
    """Missing record, or a record that is not in the required state."""

    kind = "NotFound"
    status_code = 404


class ValidationPending(ImageVaultError):
    """Verify was called before the object landed in storage."""

    kind = "ValidationPending"
    status_code = 409
    retryable = True


class ValidationFailed(ImageVaultError):
    """Stored object did not match the declared size or mime type."""

    kind = "ValidationFailed"
    status_code = 422

    def __init__(self, message: str, *, reason: str | None = None):
        super().__init__(message)
        self.reason = reason

    def to_dict(self) -> dict:
        payload = super().to_dict()
        if self.reason:
            payload["reason"] = self.reason
        return payload


class DependencyFailure(ImageVaultError):
    """Object store, queue, vector index, metadata store or trigger call failed."""

    kind = "DependencyFailure"
    status_code = 502
    retryable = True


class Timeout(ImageVaultError):
    """Derived thumbnail did not appear within the poll budget."""

    kind = "Timeout"
    status_code = 504
