"""Thumbnail derivation trigger and readiness polling."""

from __future__ import annotations

import logging
import time
from typing import Callable, Optional

import httpx

from imagevault.errors import InvalidInput
from imagevault.retry import BackoffPolicy, poll_with_backoff
from imagevault.settings import settings
from imagevault.storage import ObjectStore


logger = logging.getLogger(__name__)

ORIGINALS_PREFIX = "originals/"
THUMBNAILS_PREFIX = "thumbnails/"


class ThumbnailTriggerError(RuntimeError):
    """The thumbnail function could not be reached or answered non-2xx."""


def original_path_for(image_id: str, extension: str) -> str:
    return f"{ORIGINALS_PREFIX}{image_id}.{extension}"


def preview_path_for(original_path: str) -> str:
    """Map ``originals/<name>`` to the derived ``thumbnails/<name>`` path."""
    path = str(original_path or "")
    if not path.startswith(ORIGINALS_PREFIX) or len(path) == len(ORIGINALS_PREFIX):
        raise InvalidInput(f"Not an original image path: {original_path!r}")
    return THUMBNAILS_PREFIX + path[len(ORIGINALS_PREFIX):]


def default_backoff_policy() -> BackoffPolicy:
    return BackoffPolicy(
        initial_delay=settings.thumbnail_poll_initial_delay_seconds,
        multiplier=2.0,
        max_delay=settings.thumbnail_poll_max_delay_seconds,
        deadline=settings.thumbnail_poll_budget_seconds,
    )


class ThumbnailReadinessPoller:
    """Trigger the thumbnail function and wait for its output to land."""

    def __init__(
        self,
        store: ObjectStore,
        *,
        function_url: Optional[str] = None,
        function_key: Optional[str] = None,
        timeout_seconds: Optional[float] = None,
        policy: Optional[BackoffPolicy] = None,
        transport: Optional[httpx.BaseTransport] = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.store = store
        self.function_url = function_url or settings.thumbnail_function_url
        self.function_key = function_key if function_key is not None else settings.thumbnail_function_key
        self.timeout_seconds = (
            timeout_seconds if timeout_seconds is not None else settings.thumbnail_trigger_timeout_seconds
        )
        self.policy = policy or default_backoff_policy()
        self._transport = transport
        self._sleep = sleep
        self._clock = clock

    def trigger(self, original_path: str) -> None:
        """POST the object event to the thumbnail function.

        Raises ``ThumbnailTriggerError`` on transport failure or non-2xx.
        """
        headers = {"Content-Type": "application/json"}
        if self.function_key:
            headers["Authorization"] = f"Bearer {self.function_key}"
        body = {"record": {"bucket": self.store.bucket_name, "name": original_path}}
        try:
            with httpx.Client(timeout=self.timeout_seconds, transport=self._transport) as client:
                response = client.post(self.function_url, json=body, headers=headers)
        except httpx.HTTPError as exc:
            raise ThumbnailTriggerError(f"Thumbnail function request failed: {exc}") from exc

        if not response.is_success:
            raise ThumbnailTriggerError(
                f"Thumbnail function returned {response.status_code}: {response.text[:500]}"
            )
        logger.debug("Thumbnail function accepted %s", original_path)

    def wait_until_ready(self, preview_path: str) -> bool:
        """Poll until ``preview_path`` exists. False means the budget ran out."""
        ready = poll_with_backoff(
            lambda: self.store.exists(preview_path),
            self.policy,
            sleep=self._sleep,
            clock=self._clock,
        )
        if not ready:
            logger.info("Thumbnail %s not ready after %.1fs", preview_path, self.policy.deadline)
        return ready

    def generate(self, original_path: str) -> tuple[str, bool]:
        """Trigger then wait; returns ``(preview_path, ready)``."""
        preview_path = preview_path_for(original_path)
        self.trigger(original_path)
        return preview_path, self.wait_until_ready(preview_path)
