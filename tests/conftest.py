"""Test configuration and fixtures."""

import io
import os
from datetime import datetime
from typing import Dict, Optional, Sequence, Tuple

os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")

import httpx
import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from imagevault.errors import DependencyFailure
from imagevault.metadata import Base, ImageRecord
from imagevault.retry import BackoffPolicy
from imagevault.status import ImageStatus
from imagevault.storage import BucketPolicy, ObjectInfo, ObjectStore
from imagevault.thumbnails import ThumbnailReadinessPoller, preview_path_for


class FakeObjectStore(ObjectStore):
    """In-memory object store with switchable failures."""

    def __init__(self, policy: Optional[BucketPolicy] = None):
        self.bucket_name = "test-bucket"
        self.objects: Dict[str, Tuple[bytes, Optional[str]]] = {}
        self.policy = policy or BucketPolicy(
            max_size_bytes=10485760,
            allowed_mime_types=["image/jpeg", "image/png", "image/webp"],
        )
        self.fail_upload_url = False
        self.fail_remove = False
        self.fail_sign_paths = set()
        self.removed = []
        self.upload_urls = []

    def put(self, path: str, data: bytes, content_type: Optional[str] = "image/jpeg", size: Optional[int] = None):
        if size is not None:
            data = b"x" * size
        self.objects[path] = (data, content_type)

    def get_bucket_policy(self) -> BucketPolicy:
        return self.policy

    def create_signed_upload_url(self, path: str, expires_seconds: int) -> str:
        if self.fail_upload_url:
            raise DependencyFailure("Failed to generate upload URL")
        self.upload_urls.append(path)
        return f"https://upload.example/{path}?ttl={expires_seconds}"

    def head_object(self, path: str) -> Optional[ObjectInfo]:
        if path not in self.objects:
            return None
        data, content_type = self.objects[path]
        return ObjectInfo(name=path, size=len(data), content_type=content_type)

    def exists(self, path: str) -> bool:
        return path in self.objects

    def download(self, path: str) -> bytes:
        if path not in self.objects:
            raise DependencyFailure(f"Could not download {path}")
        return self.objects[path][0]

    def upload(self, path: str, data: bytes, content_type: str) -> None:
        self.objects[path] = (data, content_type)

    def remove(self, paths: Sequence[str]) -> None:
        if self.fail_remove:
            raise DependencyFailure("Storage delete failed - boom")
        for path in paths:
            self.objects.pop(path, None)
            self.removed.append(path)

    def create_signed_url(self, path: str, expires_seconds: int) -> str:
        if path in self.fail_sign_paths:
            raise DependencyFailure(f"Could not sign URL for {path}")
        return f"https://signed.example/{path}?ttl={expires_seconds}"


class FakeClock:
    """Monotonic clock advanced only by ``sleep``."""

    def __init__(self):
        self.now = 0.0
        self.sleeps = []

    def __call__(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


class FakeEmbedder:
    """Deterministic embedder returning vectors from a lookup table."""

    def __init__(self, vectors: Optional[Dict[str, list]] = None, dimension: int = 4):
        self.dimension = dimension
        self.vectors = dict(vectors or {})
        self.calls = []

    def embed(self, text: str):
        self.calls.append(text)
        if text in self.vectors:
            return list(self.vectors[text])
        return [1.0] + [0.0] * (self.dimension - 1)


class FakeCaptioner:
    def __init__(self, text: str = "a red square on a white table", error: Optional[Exception] = None):
        self.text = text
        self.error = error
        self.images = []

    def caption(self, image):
        self.images.append(image)
        if self.error is not None:
            raise self.error
        return self.text


@pytest.fixture(autouse=True)
def reset_upload_policy():
    """Forget the process-wide upload policy between tests."""
    import imagevault.intake as intake

    intake._policy = None
    yield
    intake._policy = None


@pytest.fixture
def test_db():
    """Create test database."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)

    SessionLocal = sessionmaker(bind=engine)
    session = SessionLocal()

    yield session

    session.close()
    Base.metadata.drop_all(engine)


@pytest.fixture
def session_factory(test_db):
    """Session factory sharing the test database connection."""
    return sessionmaker(bind=test_db.get_bind())


@pytest.fixture
def store():
    return FakeObjectStore()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def make_poller(clock):
    """Build a real poller whose HTTP calls hit an in-process handler.

    ``produce`` controls whether the fake thumbnail function writes the
    thumbnail object; ``status_code`` is what it answers with.
    """

    def _make(store: FakeObjectStore, *, status_code: int = 200, produce: bool = True, raise_error: bool = False):
        requests = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            if raise_error:
                raise httpx.ConnectError("connection refused", request=request)
            if produce and status_code < 300:
                import json

                body = json.loads(request.content)
                name = body["record"]["name"]
                store.put(preview_path_for(name), b"thumb", "image/jpeg")
            return httpx.Response(status_code, json={"ok": status_code < 300})

        poller = ThumbnailReadinessPoller(
            store,
            function_url="https://functions.example/generate-thumbnail",
            function_key="test-key",
            timeout_seconds=10.0,
            policy=BackoffPolicy(initial_delay=0.25, multiplier=2.0, max_delay=1.5, deadline=10.0),
            transport=httpx.MockTransport(handler),
            sleep=clock.sleep,
            clock=clock,
        )
        poller.requests = requests
        return poller

    return _make


@pytest.fixture
def make_image(test_db):
    """Insert an image record directly."""

    def _make(
        image_id: str,
        *,
        status: ImageStatus = ImageStatus.ACCEPTED,
        created_at: Optional[datetime] = None,
        description: Optional[str] = None,
        ext: str = "jpeg",
        mime_type: str = "image/jpeg",
        size_bytes: int = 1024,
    ) -> ImageRecord:
        record = ImageRecord(
            id=image_id,
            storage_path=f"originals/{image_id}.{ext}",
            expected_mime_type=mime_type,
            expected_size_bytes=size_bytes,
            status=status.value,
            created_at=created_at or datetime(2026, 1, 1, 12, 0, 0),
            description=description,
        )
        if status is ImageStatus.ACCEPTED:
            record.preview_path = f"thumbnails/{image_id}.{ext}"
            record.mime_type = mime_type
            record.size_bytes = size_bytes
            record.validated_at = record.created_at
        elif status is ImageStatus.REJECTED:
            record.rejection_reason = "size_mismatch"
        test_db.add(record)
        test_db.commit()
        return record

    return _make


@pytest.fixture
def sample_image_data():
    """Generate sample image data for testing."""
    from PIL import Image

    img = Image.new('RGB', (2048, 1024), color='red')
    buffer = io.BytesIO()
    img.save(buffer, format='PNG')
    return buffer.getvalue()
