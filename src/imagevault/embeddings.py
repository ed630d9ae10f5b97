"""Text embedding model and the gateway that feeds the vector index."""

from __future__ import annotations

import logging
from threading import Lock
from typing import Any, Dict, List, Optional, Protocol

import numpy as np
import torch

from imagevault.errors import DependencyFailure
from imagevault.settings import settings
from imagevault.vector_index import SqlVectorIndex, VectorMatch


logger = logging.getLogger(__name__)


class TextEmbedder(Protocol):
    """Protocol for sentence embedding models."""

    dimension: int

    def embed(self, text: str) -> List[float]:
        """Return a normalized embedding for ``text``."""
        ...


class TransformersTextEmbedder:
    """Sentence embeddings via mean-pooled transformer hidden states."""

    def __init__(self, model_name: str = "sentence-transformers/all-MiniLM-L6-v2"):
        from transformers import AutoModel, AutoTokenizer

        self.model_name = model_name
        try:
            self.tokenizer = AutoTokenizer.from_pretrained(model_name)
            self.model = AutoModel.from_pretrained(model_name)
        except OSError:
            # Offline hosts: fall back to the local HF cache.
            self.tokenizer = AutoTokenizer.from_pretrained(model_name, local_files_only=True)
            self.model = AutoModel.from_pretrained(model_name, local_files_only=True)
        self.device = "cuda" if torch.cuda.is_available() else "cpu"
        self.model.to(self.device)
        self.model.eval()
        self.dimension = int(self.model.config.hidden_size)

    @staticmethod
    def _mean_pool(last_hidden_state: torch.Tensor, attention_mask: torch.Tensor) -> torch.Tensor:
        mask = attention_mask.unsqueeze(-1).to(last_hidden_state.dtype)
        summed = (last_hidden_state * mask).sum(dim=1)
        counts = mask.sum(dim=1).clamp_min(1e-9)
        return summed / counts

    def embed(self, text: str) -> List[float]:
        with torch.no_grad():
            inputs = self.tokenizer(
                [text],
                padding=True,
                truncation=True,
                max_length=256,
                return_tensors="pt",
            )
            inputs = {k: v.to(self.device) for k, v in inputs.items()}
            outputs = self.model(**inputs)
            pooled = self._mean_pool(outputs.last_hidden_state, inputs["attention_mask"])
            vector = pooled[0].cpu().numpy().astype(np.float32)

        norm = float(np.linalg.norm(vector))
        if norm > 1e-12:
            vector = vector / norm
        return vector.tolist()


# Global instances to avoid reloading models on each request
_embedder_instances: Dict[str, TextEmbedder] = {}
_embedder_lock = Lock()


def get_text_embedder(model_name: Optional[str] = None) -> TextEmbedder:
    """Get or create the shared embedder for ``model_name``."""
    name = model_name or settings.embedding_model
    with _embedder_lock:
        if name not in _embedder_instances:
            logger.info("Loading text embedding model %s", name)
            _embedder_instances[name] = TransformersTextEmbedder(name)
        return _embedder_instances[name]


class EmbeddingGateway:
    """Embed text and read/write one named vector collection."""

    def __init__(
        self,
        index: SqlVectorIndex,
        embedder: Optional[TextEmbedder] = None,
        *,
        collection_name: Optional[str] = None,
        dimension: Optional[int] = None,
    ):
        self.index = index
        self._embedder = embedder
        self.collection_name = collection_name or settings.vector_collection_name
        self.dimension = int(dimension or settings.vector_dimension)

    @property
    def embedder(self) -> TextEmbedder:
        if self._embedder is None:
            self._embedder = get_text_embedder()
        return self._embedder

    def ensure_collection(self) -> bool:
        return self.index.ensure_collection(self.collection_name, self.dimension)

    def embed(self, text: str) -> List[float]:
        try:
            vector = self.embedder.embed(text)
        except DependencyFailure:
            raise
        except Exception as exc:
            raise DependencyFailure(f"Embedding failed: {exc}") from exc
        if len(vector) != self.dimension:
            raise DependencyFailure(
                f"Embedding model returned {len(vector)} dimensions, expected {self.dimension}"
            )
        return list(vector)

    def upsert(self, point_id: str, vector: List[float], payload: Dict[str, Any]) -> Dict[str, Any]:
        return self.index.upsert(self.collection_name, point_id, vector, payload)

    def search(self, vector: List[float], limit: int) -> List[VectorMatch]:
        return self.index.query(self.collection_name, vector, limit)

    def index_caption(self, image_id: str, caption: str) -> Dict[str, Any]:
        """Embed ``caption`` and store it under ``image_id``."""
        vector = self.embed(caption)
        self.ensure_collection()
        return self.upsert(image_id, vector, {"caption": caption})
