"""Image lifecycle states, rejection reasons and the transition guard."""

from __future__ import annotations

from enum import Enum


class ImageStatus(str, Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    REJECTED = "rejected"

    @property
    def is_terminal(self) -> bool:
        return self is not ImageStatus.PENDING


class RejectionReason(str, Enum):
    SIZE_MISMATCH = "size_mismatch"
    MIME_MISMATCH = "mime_mismatch"
    SIZE_AND_MIME_MISMATCH = "size_and_mime_mismatch"
    THUMBNAIL_FUNCTION_FAILED = "thumbnail_function_failed"
    THUMBNAIL_NOT_READY = "thumbnail_not_ready"


class ValidationOutcome(str, Enum):
    OK = "ok"
    SIZE_MISMATCH = "size_mismatch"
    MIME_MISMATCH = "mime_mismatch"
    SIZE_AND_MIME_MISMATCH = "size_and_mime_mismatch"

    @property
    def rejection_reason(self) -> RejectionReason | None:
        if self is ValidationOutcome.OK:
            return None
        return RejectionReason(self.value)


_ALLOWED_TRANSITIONS = {
    ImageStatus.PENDING: frozenset({ImageStatus.ACCEPTED, ImageStatus.REJECTED}),
    ImageStatus.ACCEPTED: frozenset(),
    ImageStatus.REJECTED: frozenset(),
}


class InvalidTransition(ValueError):
    """Raised when a status change does not start from an allowed source state."""


def check_transition(source: ImageStatus | str, target: ImageStatus | str) -> ImageStatus:
    """Validate ``source -> target`` and return the target status."""
    source_status = ImageStatus(source)
    target_status = ImageStatus(target)
    if target_status not in _ALLOWED_TRANSITIONS[source_status]:
        raise InvalidTransition(
            f"Cannot move image from {source_status.value} to {target_status.value}"
        )
    return target_status


def classify_mismatch(*, size_matches: bool, mime_matches: bool) -> ValidationOutcome:
    """Collapse the two comparison results into exactly one outcome."""
    if size_matches and mime_matches:
        return ValidationOutcome.OK
    if not size_matches and not mime_matches:
        return ValidationOutcome.SIZE_AND_MIME_MISMATCH
    if not size_matches:
        return ValidationOutcome.SIZE_MISMATCH
    return ValidationOutcome.MIME_MISMATCH
