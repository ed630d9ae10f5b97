"""Cursor-paginated preview listing with optional caption search."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import List, Optional

from sqlalchemy import and_, or_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from imagevault.cursor import Cursor, decode_cursor, encode_cursor
from imagevault.embeddings import EmbeddingGateway
from imagevault.errors import DependencyFailure, InvalidInput
from imagevault.metadata import ImageRecord
from imagevault.settings import settings
from imagevault.status import ImageStatus
from imagevault.storage import ObjectStore
from imagevault.vector_index import SqlVectorIndex


logger = logging.getLogger(__name__)


@dataclass
class PreviewItem:
    id: str
    created_at: datetime
    preview_path: str
    signed_url: Optional[str] = None
    sign_error: Optional[str] = None


@dataclass
class PreviewPage:
    items: List[PreviewItem]
    next_cursor: Optional[str]
    limit: int


def _as_naive_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def validate_limit(limit: Optional[int]) -> int:
    if limit is None:
        return settings.preview_default_limit
    if isinstance(limit, bool) or not isinstance(limit, int):
        raise InvalidInput("limit must be an integer")
    if limit < 1 or limit > settings.preview_max_limit:
        raise InvalidInput(f"limit must be between 1 and {settings.preview_max_limit}")
    return limit


class RetrievalEngine:
    """List accepted previews newest first, optionally filtered by caption similarity."""

    def __init__(
        self,
        db: Session,
        store: ObjectStore,
        *,
        gateway: Optional[EmbeddingGateway] = None,
        similarity_floor: Optional[float] = None,
    ):
        self.db = db
        self.store = store
        self._gateway = gateway
        self.similarity_floor = (
            settings.semantic_similarity_floor if similarity_floor is None else similarity_floor
        )

    @property
    def gateway(self) -> EmbeddingGateway:
        if self._gateway is None:
            self._gateway = EmbeddingGateway(SqlVectorIndex(self.db))
        return self._gateway

    def _fetch_rows(self, cursor: Optional[Cursor], limit: int) -> List[ImageRecord]:
        query = self.db.query(ImageRecord).filter(
            ImageRecord.status == ImageStatus.ACCEPTED.value,
            ImageRecord.preview_path.isnot(None),
        )
        if cursor is not None:
            created_at = _as_naive_utc(cursor.created_at)
            query = query.filter(
                or_(
                    ImageRecord.created_at < created_at,
                    and_(ImageRecord.created_at == created_at, ImageRecord.id < cursor.id),
                )
            )
        query = query.order_by(ImageRecord.created_at.desc(), ImageRecord.id.desc()).limit(limit + 1)
        try:
            return query.all()
        except SQLAlchemyError as exc:
            self.db.rollback()
            raise DependencyFailure(f"Preview listing failed: {exc}") from exc

    def _sign(self, rows: List[ImageRecord]) -> List[PreviewItem]:
        if not rows:
            return []
        paths = [row.preview_path for row in rows]
        try:
            signed = self.store.create_signed_urls(paths, settings.read_url_ttl_seconds)
        except DependencyFailure:
            raise
        except Exception as exc:
            raise DependencyFailure(f"Signing preview URLs failed: {exc}") from exc

        items = []
        for idx, row in enumerate(rows):
            result = signed[idx] if idx < len(signed) else None
            items.append(
                PreviewItem(
                    id=row.id,
                    created_at=row.created_at,
                    preview_path=row.preview_path,
                    signed_url=result.signed_url if result else None,
                    sign_error=result.error if result else "Missing signing result",
                )
            )
        return items

    def filter_by_caption(self, q: str, items: List[PreviewItem], limit: int) -> List[PreviewItem]:
        """Keep page items whose caption is close to ``q``, best match first."""
        gateway = self.gateway
        if not gateway.index.collection_exists(gateway.collection_name):
            logger.info("Vector collection %s missing; search returns nothing", gateway.collection_name)
            return []
        vector = gateway.embed(q)
        matches = gateway.search(vector, limit)
        by_id = {item.id: item for item in items}
        return [
            by_id[match.id]
            for match in matches
            if match.score > self.similarity_floor and match.id in by_id
        ]

    def list_previews(
        self,
        q: Optional[str] = None,
        cursor_token: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> PreviewPage:
        page_limit = validate_limit(limit)
        cursor = decode_cursor(cursor_token) if cursor_token else None

        rows = self._fetch_rows(cursor, page_limit)
        has_more = len(rows) > page_limit
        page = rows[:page_limit]

        next_cursor = None
        if has_more and page:
            last = page[-1]
            next_cursor = encode_cursor(Cursor(created_at=last.created_at, id=last.id))

        items = self._sign(page)
        query_text = (q or "").strip()
        if query_text:
            items = self.filter_by_caption(query_text, items, page_limit)
        return PreviewPage(items=items, next_cursor=next_cursor, limit=page_limit)
