"""FAISS-backed vector storage with SQLite metadata."""

from __future__ import annotations

import hashlib
from pathlib import Path
from typing import TYPE_CHECKING

import faiss
import numpy as np

from kbchat.config import config
from kbchat.vector_store.base import BaseSQLiteStore

if TYPE_CHECKING:
    from kbchat.vector_store.base import Embedder

logger = config.get_logger(__name__)


class FaissVectorStore(BaseSQLiteStore):
    """Vector storage using one FAISS index per chatbot scope.

    Keeping a separate ``IndexIDMap`` per scope means a query can only ever
    see vectors of the scope it was issued for. Indexes are written to disk
    after every change and loaded lazily.
    """

    backend = "faiss"

    def __init__(
        self,
        db_path: Path,
        embedding_service: Embedder,
        index_dir: Path = Path("data/faiss"),
    ) -> None:
        """Configure FAISS-backed vector store."""
        self.index_dir = Path(index_dir)
        self.index_dir.mkdir(exist_ok=True, parents=True)
        self.indexes: dict[str, faiss.IndexIDMap] = {}

        super().__init__(db_path, embedding_service)

    @staticmethod
    def _normalize_embedding(embedding: np.ndarray) -> np.ndarray:
        """Normalize embedding for cosine similarity using inner product search.

        Returns:
            Normalized embedding vector.
        """
        vector = np.asarray(embedding, dtype="float32").reshape(1, -1).copy()
        if np.linalg.norm(vector) == 0:
            return vector
        faiss.normalize_L2(vector)
        return vector

    def index_path(self, scope_id: str) -> Path:
        digest = hashlib.sha256(scope_id.encode("utf-8")).hexdigest()[:32]
        return self.index_dir / f"{digest}.faiss"

    def _get_index(
        self,
        scope_id: str,
        dimension: int | None = None,
    ) -> faiss.IndexIDMap | None:
        """Return the scope's index, loading or creating it when needed."""
        index = self.indexes.get(scope_id)
        if index is not None:
            return index

        path = self.index_path(scope_id)
        if path.exists():
            index = faiss.read_index(str(path))
            logger.info(
                "Loaded FAISS index for scope %s with %d vectors", scope_id, index.ntotal
            )
        elif dimension is not None:
            index = faiss.IndexIDMap(faiss.IndexFlatIP(dimension))
            logger.info("Initialized FAISS index for scope %s (d=%d)", scope_id, dimension)
        else:
            return None

        self.indexes[scope_id] = index
        return index

    def _persist(self, scope_id: str) -> None:
        index = self.indexes.get(scope_id)
        if index is not None:
            faiss.write_index(index, str(self.index_path(scope_id)))

    def _write_vector(
        self,
        scope_id: str,
        vector_id: int,
        embedding: np.ndarray,
    ) -> str:
        """Add or replace a vector in the scope's index.

        Raises:
            ValueError: If embedding dimension mismatches the index.

        Returns:
            Path of the index file holding the vector.
        """
        vector = self._normalize_embedding(embedding)
        index = self._get_index(scope_id, dimension=vector.shape[1])
        if vector.shape[1] != index.d:
            msg = (
                f"Embedding dimension {vector.shape[1]} does not match "
                f"FAISS index dimension {index.d}"
            )
            raise ValueError(msg)

        ids = np.asarray([vector_id], dtype="int64")
        index.remove_ids(ids)
        index.add_with_ids(vector, ids)  # pyright: ignore[reportCallIssue]
        self._persist(scope_id)
        return str(self.index_path(scope_id))

    def _remove_vector(self, scope_id: str, vector_id: int) -> None:
        index = self._get_index(scope_id)
        if index is None:
            return
        index.remove_ids(np.asarray([vector_id], dtype="int64"))
        self._persist(scope_id)

    def _nearest(
        self,
        scope_id: str,
        embedding: np.ndarray,
        limit: int,
    ) -> list[tuple[int, float]]:
        index = self._get_index(scope_id)
        if index is None or index.ntotal == 0:
            return []

        query = self._normalize_embedding(embedding)
        if query.shape[1] != index.d:
            msg = (
                f"Query dimension {query.shape[1]} does not match "
                f"FAISS index dimension {index.d}"
            )
            raise ValueError(msg)

        scores, vector_ids = index.search(query, min(limit, index.ntotal))  # pyright: ignore[reportCallIssue]
        return [
            (int(vector_id), float(score))
            for score, vector_id in zip(scores[0], vector_ids[0], strict=True)
            if int(vector_id) != -1  # faiss returns -1 for empty results
        ]

