"""SQLite-based vector storage with numpy file backend."""

from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING

import numpy as np

from kbchat.config import config
from kbchat.vector_store.base import BaseSQLiteStore

if TYPE_CHECKING:
    from kbchat.vector_store.base import Embedder

logger = config.get_logger(__name__)


class SQLiteVectorStore(BaseSQLiteStore):
    """Vector storage using SQLite for metadata and numpy files for embeddings."""

    backend = "sqlite"

    def __init__(
        self,
        db_path: Path,
        embedding_service: Embedder,
        vectors_dir: Path = Path("data/vectors"),
    ) -> None:
        """Initialize the SQLiteVectorStore with database and vector directory paths.

        Args:
            db_path: Path to the SQLite database file.
            embedding_service: Service that turns text into vectors.
            vectors_dir: Directory to store numpy vector files.
        """
        self.vectors_dir = Path(vectors_dir)
        self.vectors_dir.mkdir(exist_ok=True, parents=True)
        self._matrices: dict[str, tuple[list[int], np.ndarray]] = {}

        super().__init__(db_path, embedding_service)

    def _write_vector(
        self,
        scope_id: str,
        vector_id: int,
        embedding: np.ndarray,
    ) -> str:
        vector_filename = f"vec{vector_id:08d}.npy"
        np.save(self.vectors_dir / vector_filename, np.asarray(embedding))
        self._matrices.pop(scope_id, None)
        return vector_filename

    def _remove_vector(self, scope_id: str, vector_id: int) -> None:
        vector_path = self.vectors_dir / f"vec{vector_id:08d}.npy"
        vector_path.unlink(missing_ok=True)
        self._matrices.pop(scope_id, None)

    def _scope_matrix(self, scope_id: str) -> tuple[list[int], np.ndarray | None]:
        """Load (and cache) the embeddings matrix of one scope.

        Returns:
            Vector ids and the matching row-stacked embeddings.
        """
        cached = self._matrices.get(scope_id)
        if cached is not None:
            return cached

        vector_ids: list[int] = []
        embeddings_list = []
        for vector_id, vector_file in self._scope_vectors(scope_id):
            if not vector_file:
                continue
            vector_path = self.vectors_dir / vector_file
            if not vector_path.exists():
                logger.warning("Vector file not found: %s", vector_path)
                continue
            vector_ids.append(vector_id)
            embeddings_list.append(np.load(vector_path))

        if not embeddings_list:
            return [], None

        matrix = np.vstack(embeddings_list)
        self._matrices[scope_id] = (vector_ids, matrix)
        logger.info(
            "Rebuilt embeddings matrix for scope %s with %d vectors",
            scope_id,
            len(vector_ids),
        )
        return vector_ids, matrix

    @staticmethod
    def cosine_similarity(
        query_embedding: np.ndarray,
        embeddings: np.ndarray,
    ) -> np.ndarray:
        """Calculate cosine similarity between query and document embeddings.

        Zero vectors have no direction and score 0 against everything.

        Returns:
            np.ndarray: Array of cosine similarity scores
                    between the query and each document embedding.
        """
        query_norm = np.linalg.norm(query_embedding)
        doc_norms = np.linalg.norm(embeddings, axis=1)
        if query_norm == 0:
            return np.zeros(len(embeddings), dtype="float32")

        scores = np.asarray(np.dot(embeddings, query_embedding), dtype="float64")
        nonzero = doc_norms > 0
        scores[nonzero] = scores[nonzero] / (doc_norms[nonzero] * query_norm)
        scores[~nonzero] = 0.0
        return scores

    def _nearest(
        self,
        scope_id: str,
        embedding: np.ndarray,
        limit: int,
    ) -> list[tuple[int, float]]:
        vector_ids, matrix = self._scope_matrix(scope_id)
        if matrix is None:
            return []

        similarities = self.cosine_similarity(np.asarray(embedding), matrix)
        top_indices = np.argsort(similarities)[::-1][:limit]
        return [(vector_ids[idx], float(similarities[idx])) for idx in top_indices]

