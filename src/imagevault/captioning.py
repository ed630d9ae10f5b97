"""Image captioning model used by the tagging worker."""

from __future__ import annotations

import logging
from threading import Lock
from typing import Dict, Optional, Protocol

import torch
from PIL import Image

from imagevault.settings import settings


logger = logging.getLogger(__name__)


class ImageCaptioner(Protocol):
    """Protocol for image-to-text models."""

    def caption(self, image: Image.Image) -> str:
        """Return a one-line description of ``image``."""
        ...


class TransformersCaptioner:
    """Caption images with a transformers image-to-text pipeline."""

    def __init__(self, model_name: str = "nlpconnect/vit-gpt2-image-captioning", max_new_tokens: int = 32):
        from transformers import pipeline

        self.model_name = model_name
        self.max_new_tokens = max_new_tokens
        device = 0 if torch.cuda.is_available() else -1
        self._pipeline = pipeline("image-to-text", model=model_name, device=device)

    def caption(self, image: Image.Image) -> str:
        outputs = self._pipeline(image, generate_kwargs={"max_new_tokens": self.max_new_tokens})
        if not outputs:
            return ""
        first = outputs[0] if isinstance(outputs, list) else outputs
        return str(first.get("generated_text") or "").strip()


_captioner_instances: Dict[str, ImageCaptioner] = {}
_captioner_lock = Lock()


def get_captioner(model_name: Optional[str] = None) -> ImageCaptioner:
    """Get or create the shared captioner for ``model_name``."""
    name = model_name or settings.caption_model
    with _captioner_lock:
        if name not in _captioner_instances:
            logger.info("Loading caption model %s", name)
            _captioner_instances[name] = TransformersCaptioner(name)
        return _captioner_instances[name]
