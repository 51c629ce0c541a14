"""Shared SQLite metadata layer for the scoped vector stores."""

from __future__ import annotations

import math
import sqlite3
import threading
from collections.abc import Sequence
from pathlib import Path
from typing import TYPE_CHECKING, Protocol

from kbchat.config import config
from kbchat.errors import InvalidInput, RetrievalUnavailable, StorageUnavailable
from kbchat.models import IndexedPassage, PassageMatch

if TYPE_CHECKING:
    import numpy as np

logger = config.get_logger(__name__)


class Embedder(Protocol):
    def get_embedding(self, text: str) -> np.ndarray: ...

    def get_embeddings_batch(self, texts: list[str]) -> list[np.ndarray]: ...


class BaseSQLiteStore:
    """Passage metadata in SQLite plus a per-backend vector index.

    Every passage row carries exactly one ``scope_id`` (the owning chatbot) and
    nearest-neighbour queries only ever consider vectors of the requested
    scope. Subclasses implement the vector half: ``_write_vector``,
    ``_remove_vector`` and ``_nearest``.
    """

    backend = "base"

    def __init__(self, db_path: Path, embedding_service: Embedder) -> None:
        """Initialize metadata store and ensure schema exists."""
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(exist_ok=True, parents=True)
        self.embedding_service = embedding_service
        self._lock = threading.RLock()
        self._create_tables()

    def _create_tables(self) -> None:
        """Create the passages table if it doesn't exist."""
        with sqlite3.connect(str(self.db_path)) as conn:
            cursor = conn.cursor()

            cursor.execute("""
                CREATE TABLE IF NOT EXISTS passages (
                    vector_id INTEGER PRIMARY KEY AUTOINCREMENT,
                    passage_id TEXT NOT NULL UNIQUE,
                    scope_id TEXT NOT NULL,
                    content TEXT NOT NULL,
                    filename TEXT NOT NULL,
                    vector_file TEXT,
                    created_at DATETIME DEFAULT CURRENT_TIMESTAMP
                )
            """)
            cursor.execute(
                "CREATE INDEX IF NOT EXISTS idx_passages_scope ON passages(scope_id)",
            )
            conn.commit()

    def upsert(
        self,
        scope_id: str,
        passage_id: str,
        content: str,
        filename: str,
    ) -> IndexedPassage:
        """Insert or replace a passage by id and make it queryable.

        Returns:
            The stored passage.

        Raises:
            InvalidInput: If any identifier or the content is empty.
            StorageUnavailable: If embedding or persisting the passage fails.
        """
        self._check_fields(scope_id, passage_id, content, filename)

        try:
            embedding = self.embedding_service.get_embedding(content)
            with self._lock, sqlite3.connect(str(self.db_path)) as conn:
                self._store_passage(
                    conn.cursor(), scope_id, passage_id, content, filename, embedding
                )
                conn.commit()
        except Exception as exc:
            logger.exception("Failed to upsert passage %s", passage_id)
            raise StorageUnavailable from exc

        logger.info("Upserted passage %s into scope %s", passage_id, scope_id)
        return IndexedPassage(
            id=passage_id, chatbot_id=scope_id, content=content, filename=filename
        )

    def upsert_many(
        self,
        scope_id: str,
        passages: Sequence[tuple[str, str]],
        filename: str,
    ) -> list[IndexedPassage]:
        """Store several passages of one file with a single batch embedding call.

        The batch is all or nothing. When a vector cannot be written, the
        vectors already written for the batch are removed and no metadata row
        is committed.

        Args:
            scope_id: Chatbot scope receiving the passages.
            passages: ``(passage_id, content)`` pairs with unique ids.
            filename: Source file name shared by the passages.

        Returns:
            The stored passages, in input order.

        Raises:
            InvalidInput: If a field is empty or a passage id repeats.
            StorageUnavailable: If embedding or persisting the batch fails.
        """
        for passage_id, content in passages:
            self._check_fields(scope_id, passage_id, content, filename)
        passage_ids = [passage_id for passage_id, _ in passages]
        if len(set(passage_ids)) != len(passage_ids):
            msg = "passage ids must be unique within a batch"
            raise InvalidInput(msg)
        if not passages:
            return []

        try:
            embeddings = self.embedding_service.get_embeddings_batch(
                [content for _, content in passages]
            )
            if len(embeddings) != len(passages):
                msg = f"Got {len(embeddings)} embeddings for {len(passages)} passages"
                raise ValueError(msg)
            with self._lock, sqlite3.connect(str(self.db_path)) as conn:
                cursor = conn.cursor()
                written: list[int] = []
                try:
                    for (passage_id, content), embedding in zip(
                        passages, embeddings, strict=True
                    ):
                        vector_id = self._store_passage(
                            cursor, scope_id, passage_id, content, filename, embedding
                        )
                        written.append(vector_id)
                except Exception:
                    for vector_id in written:
                        self._remove_vector(scope_id, vector_id)
                    raise
                conn.commit()
        except Exception as exc:
            logger.exception(
                "Failed to upsert %d passages into scope %s", len(passages), scope_id
            )
            raise StorageUnavailable from exc

        logger.info("Upserted %d passages into scope %s", len(passages), scope_id)
        return [
            IndexedPassage(
                id=passage_id, chatbot_id=scope_id, content=content, filename=filename
            )
            for passage_id, content in passages
        ]

    @staticmethod
    def _check_fields(
        scope_id: str, passage_id: str, content: str, filename: str
    ) -> None:
        if not scope_id or not passage_id or not content.strip() or not filename:
            msg = "scope_id, passage_id, content and filename are required"
            raise InvalidInput(msg)

    def _store_passage(
        self,
        cursor: sqlite3.Cursor,
        scope_id: str,
        passage_id: str,
        content: str,
        filename: str,
        embedding: np.ndarray,
    ) -> int:
        """Write the metadata row and vector of one passage, moving it if needed.

        Returns:
            Vector id of the passage.
        """
        previous = self._find_row(cursor, passage_id)
        if previous is not None and previous[1] != scope_id:
            self._remove_vector(previous[1], previous[0])

        vector_id = self._upsert_row(cursor, scope_id, passage_id, content, filename)
        vector_file = self._write_vector(scope_id, vector_id, embedding)
        cursor.execute(
            "UPDATE passages SET vector_file = ? WHERE vector_id = ?",
            (vector_file, vector_id),
        )
        return vector_id

    def query(
        self,
        scope_id: str,
        query_text: str,
        max_distance: float,
        limit: int = 1,
    ) -> list[PassageMatch]:
        """Return the passages of one scope nearest to ``query_text``.

        Args:
            scope_id: Chatbot scope to search in.
            query_text: Text to embed and compare against stored passages.
            max_distance: Passages with a cosine distance above this are dropped.
            limit: Maximum number of matches.

        Returns:
            Matches ordered by ascending distance.

        Raises:
            RetrievalUnavailable: If the index or the embedding backend fails.
        """
        if limit <= 0:
            return []

        try:
            embedding = self.embedding_service.get_embedding(query_text)
            with self._lock:
                neighbours = self._nearest(scope_id, embedding, limit)
                if not neighbours:
                    return []
                with sqlite3.connect(str(self.db_path)) as conn:
                    passages = self._fetch_passages(
                        conn.cursor(), scope_id, [vid for vid, _ in neighbours]
                    )
        except Exception as exc:
            logger.exception("Vector query failed for scope %s", scope_id)
            raise RetrievalUnavailable from exc

        matches = []
        for vector_id, similarity in neighbours:
            passage = passages.get(vector_id)
            if passage is None:
                continue
            if not math.isfinite(similarity):
                continue
            distance = max(0.0, 1.0 - float(similarity))
            if distance <= max_distance:
                matches.append(PassageMatch(passage=passage, distance=distance))

        matches.sort(key=lambda match: match.distance)
        return matches[:limit]

    def delete(self, scope_id: str, passage_id: str) -> bool:
        """Remove a passage from its scope.

        Returns:
            True if a passage was removed.

        Raises:
            StorageUnavailable: If the index or metadata cannot be updated.
        """
        try:
            with self._lock, sqlite3.connect(str(self.db_path)) as conn:
                cursor = conn.cursor()
                row = self._find_row(cursor, passage_id)
                if row is None or row[1] != scope_id:
                    return False
                self._remove_vector(scope_id, row[0])
                cursor.execute("DELETE FROM passages WHERE vector_id = ?", (row[0],))
                conn.commit()
        except Exception as exc:
            logger.exception("Failed to delete passage %s", passage_id)
            raise StorageUnavailable from exc
        return True

    def count(self, scope_id: str | None = None) -> int:
        """Count stored passages, optionally within one scope.

        Returns:
            Number of passages.
        """
        with sqlite3.connect(str(self.db_path)) as conn:
            cursor = conn.cursor()
            if scope_id is None:
                cursor.execute("SELECT COUNT(*) FROM passages")
            else:
                cursor.execute(
                    "SELECT COUNT(*) FROM passages WHERE scope_id = ?", (scope_id,)
                )
            return int(cursor.fetchone()[0])

    @staticmethod
    def _find_row(cursor: sqlite3.Cursor, passage_id: str) -> tuple[int, str] | None:
        cursor.execute(
            "SELECT vector_id, scope_id FROM passages WHERE passage_id = ?",
            (passage_id,),
        )
        row = cursor.fetchone()
        if row is None:
            return None
        return int(row[0]), str(row[1])

    @staticmethod
    def _upsert_row(
        cursor: sqlite3.Cursor,
        scope_id: str,
        passage_id: str,
        content: str,
        filename: str,
    ) -> int:
        """Insert or update the metadata row and return its vector id.

        Raises:
            RuntimeError: If the vector id cannot be retrieved.

        Returns:
            Vector id of the passage row.
        """
        cursor.execute(
            """
            INSERT INTO passages (passage_id, scope_id, content, filename)
            VALUES (?, ?, ?, ?)
            ON CONFLICT(passage_id) DO UPDATE SET
                scope_id = excluded.scope_id,
                content = excluded.content,
                filename = excluded.filename
            """,
            (passage_id, scope_id, content, filename),
        )
        cursor.execute(
            "SELECT vector_id FROM passages WHERE passage_id = ?", (passage_id,)
        )
        row = cursor.fetchone()
        if row is None:
            msg = f"Failed to upsert passage '{passage_id}'"
            raise RuntimeError(msg)
        return int(row[0])

    @staticmethod
    def _fetch_passages(
        cursor: sqlite3.Cursor,
        scope_id: str,
        vector_ids: list[int],
    ) -> dict[int, IndexedPassage]:
        """Fetch passages by vector id, restricted to one scope.

        Returns:
            Mapping of vector id to passage.
        """
        placeholders = ", ".join("?" for _ in vector_ids)
        cursor.execute(
            f"""
            SELECT vector_id, passage_id, scope_id, content, filename
            FROM passages
            WHERE scope_id = ? AND vector_id IN ({placeholders})
            """,  # noqa: S608
            (scope_id, *vector_ids),
        )
        return {
            int(vector_id): IndexedPassage(
                id=passage_id, chatbot_id=scope, content=content, filename=filename
            )
            for vector_id, passage_id, scope, content, filename in cursor.fetchall()
        }

    def _scope_vectors(self, scope_id: str) -> list[tuple[int, str | None]]:
        """List (vector_id, vector_file) pairs stored under a scope.

        Returns:
            Pairs in insertion order.
        """
        with sqlite3.connect(str(self.db_path)) as conn:
            cursor = conn.cursor()
            cursor.execute(
                """
                SELECT vector_id, vector_file FROM passages
                WHERE scope_id = ?
                ORDER BY vector_id
                """,
                (scope_id,),
            )
            return [(int(row[0]), row[1]) for row in cursor.fetchall()]

    def _write_vector(
        self,
        scope_id: str,
        vector_id: int,
        embedding: np.ndarray,
    ) -> str | None:
        """Store or replace the vector of a passage.

        Returns:
            Backend-specific location recorded in ``vector_file``.
        """
        raise NotImplementedError

    def _remove_vector(self, scope_id: str, vector_id: int) -> None:
        raise NotImplementedError

    def _nearest(
        self,
        scope_id: str,
        embedding: np.ndarray,
        limit: int,
    ) -> list[tuple[int, float]]:
        """Return (vector_id, cosine similarity) pairs of one scope, best first."""
        raise NotImplementedError
