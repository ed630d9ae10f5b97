"""Named vector collections stored in SQL with numpy cosine search."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence

import numpy as np
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from imagevault.errors import DependencyFailure
from imagevault.metadata import VectorCollection, VectorPoint


logger = logging.getLogger(__name__)

COSINE = "cosine"


@dataclass
class VectorMatch:
    id: str
    score: float
    payload: Dict[str, Any] = field(default_factory=dict)


def _unit_vector(values: Sequence[float], dimension: int) -> Optional[np.ndarray]:
    vec = np.asarray(values, dtype=np.float32)
    if vec.ndim != 1 or vec.size != dimension:
        return None
    norm = float(np.linalg.norm(vec))
    if norm <= 1e-12:
        return None
    return vec / norm


class SqlVectorIndex:
    """Vector index bound to one database session."""

    def __init__(self, db: Session):
        self.db = db

    def _get_collection(self, name: str) -> Optional[VectorCollection]:
        try:
            return self.db.query(VectorCollection).filter(VectorCollection.name == name).first()
        except SQLAlchemyError as exc:
            raise DependencyFailure(f"Vector index lookup failed: {exc}") from exc

    def collection_exists(self, name: str) -> bool:
        return self._get_collection(name) is not None

    def create_collection(self, name: str, dimension: int, distance: str = COSINE) -> VectorCollection:
        if distance != COSINE:
            raise ValueError(f"Unsupported distance: {distance}")
        collection = VectorCollection(name=name, dimension=int(dimension), distance=distance)
        try:
            self.db.add(collection)
            self.db.commit()
        except SQLAlchemyError as exc:
            self.db.rollback()
            raise DependencyFailure(f"Could not create vector collection {name}: {exc}") from exc
        logger.info("Created vector collection %s (dim=%s, %s)", name, dimension, distance)
        return collection

    def ensure_collection(self, name: str, dimension: int) -> bool:
        """Create the collection when missing. Returns True if it was created."""
        existing = self._get_collection(name)
        if existing is not None:
            if int(existing.dimension) != int(dimension):
                raise DependencyFailure(
                    f"Vector collection {name} has dimension {existing.dimension}, expected {dimension}"
                )
            return False
        self.create_collection(name, dimension)
        return True

    def upsert(
        self,
        name: str,
        point_id: str,
        vector: Sequence[float],
        payload: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        collection = self._get_collection(name)
        if collection is None:
            raise DependencyFailure(f"Vector collection {name} does not exist")
        values = [float(value) for value in vector]
        if len(values) != int(collection.dimension):
            raise DependencyFailure(
                f"Vector has {len(values)} dimensions, collection {name} expects {collection.dimension}"
            )

        try:
            point = (
                self.db.query(VectorPoint)
                .filter(VectorPoint.collection_name == name, VectorPoint.point_id == str(point_id))
                .first()
            )
            if point is None:
                point = VectorPoint(
                    collection_name=name,
                    point_id=str(point_id),
                    vector=values,
                    payload=dict(payload or {}),
                )
                self.db.add(point)
            else:
                point.vector = values
                point.payload = dict(payload or {})
                point.updated_at = datetime.utcnow()
            self.db.commit()
        except SQLAlchemyError as exc:
            self.db.rollback()
            raise DependencyFailure(f"Vector upsert failed: {exc}") from exc

        return {"collection": name, "id": str(point_id), "status": "completed"}

    def query(self, name: str, vector: Sequence[float], limit: int) -> List[VectorMatch]:
        """Return up to ``limit`` nearest points by cosine similarity, best first."""
        collection = self._get_collection(name)
        if collection is None:
            raise DependencyFailure(f"Vector collection {name} does not exist")
        dimension = int(collection.dimension)
        query_vec = _unit_vector(vector, dimension)
        if query_vec is None:
            raise DependencyFailure(f"Query vector must be non-zero with {dimension} dimensions")
        if limit <= 0:
            return []

        try:
            rows = (
                self.db.query(VectorPoint.point_id, VectorPoint.vector, VectorPoint.payload)
                .filter(VectorPoint.collection_name == name)
                .all()
            )
        except SQLAlchemyError as exc:
            raise DependencyFailure(f"Vector query failed: {exc}") from exc

        point_ids = []
        payloads = []
        vectors = []
        for row in rows:
            vec = _unit_vector(row.vector or [], dimension)
            if vec is None:
                continue
            point_ids.append(str(row.point_id))
            payloads.append(row.payload or {})
            vectors.append(vec)

        if not vectors:
            return []

        matrix = np.vstack(vectors)
        scores = matrix @ query_vec
        top_k = min(int(limit), scores.shape[0])
        # Stable sort keeps insertion order among equal scores.
        order = np.argsort(-scores, kind="stable")[:top_k]
        return [
            VectorMatch(id=point_ids[idx], score=float(scores[idx]), payload=dict(payloads[idx]))
            for idx in order
        ]
