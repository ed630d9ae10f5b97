"""Image type helpers and inference-size preprocessing."""

import io
from typing import Optional, Tuple

from PIL import Image

from imagevault.errors import UnsupportedType


# Storage extension for each uploadable mime type.
MIME_EXTENSIONS = {
    "image/jpeg": "jpeg",
    "image/png": "png",
    "image/webp": "webp",
}

_MIME_ALIASES = {
    "image/jpg": "image/jpeg",
    "image/pjpeg": "image/jpeg",
}


def normalize_mime(value: Optional[str]) -> str:
    """Lower-case, trim, drop parameters and resolve known aliases."""
    text = str(value or "").split(";", 1)[0].strip().lower()
    return _MIME_ALIASES.get(text, text)


def mime_equals(expected: Optional[str], actual: Optional[str]) -> bool:
    """Case-insensitive, alias-aware mime comparison. Empty never matches."""
    left = normalize_mime(expected)
    right = normalize_mime(actual)
    if not left or not right:
        return False
    return left == right


def extension_for_mime(mime_type: str) -> str:
    ext = MIME_EXTENSIONS.get(normalize_mime(mime_type))
    if not ext:
        raise UnsupportedType(f"Unsupported MIME type: {mime_type}")
    return ext


class ImageProcessor:
    """Prepare image bytes for captioning models."""

    def __init__(self, max_size: Tuple[int, int] = (1024, 1024), jpeg_quality: int = 85):
        """Initialize processor."""
        self.max_size = max_size
        self.jpeg_quality = jpeg_quality

    def load_image(self, data: bytes) -> Image.Image:
        """Load image from bytes."""
        return Image.open(io.BytesIO(data))

    def bound_for_inference(self, image: Image.Image) -> Image.Image:
        """Fit the image inside ``max_size`` keeping aspect ratio (contain)."""
        img = image.copy()
        if img.mode not in ("RGB", "L"):
            img = img.convert("RGB")
        img.thumbnail(self.max_size, Image.Resampling.LANCZOS)
        if img.mode != "RGB":
            img = img.convert("RGB")
        return img

    def to_jpeg(self, image: Image.Image) -> bytes:
        buffer = io.BytesIO()
        image.save(buffer, format="JPEG", quality=self.jpeg_quality, optimize=True)
        return buffer.getvalue()

    def prepare_for_captioning(self, data: bytes) -> Image.Image:
        """Decode, bound and re-encode so the model sees a predictable JPEG."""
        bounded = self.bound_for_inference(self.load_image(data))
        return self.load_image(self.to_jpeg(bounded))
