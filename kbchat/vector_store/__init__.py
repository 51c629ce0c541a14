"""Scoped passage stores: FAISS per-scope indexes or SQLite with .npy vectors."""

from __future__ import annotations

from typing import TYPE_CHECKING, Literal

from kbchat.config import config

from .base import BaseSQLiteStore
from .faiss_store import FaissVectorStore
from .sqlite_store import SQLiteVectorStore

if TYPE_CHECKING:
    from pathlib import Path

    from .base import Embedder

VectorBackend = Literal["faiss", "sqlite"]

logger = config.get_logger(__name__)


def get_vector_store(
    store: VectorBackend,
    embedding_service: Embedder,
    *,
    db_path: Path | None = None,
    vectors_dir: Path | None = None,
    index_dir: Path | None = None,
) -> BaseSQLiteStore:
    """Build the passage store named by ``store``.

    Paths left as None come from config. Only the path that the chosen
    backend uses for vectors is read.

    Raises:
        ValueError: If ``store`` names no known backend.
    """
    backend = store.strip().lower()
    metadata_path = db_path or config.VECTOR_STORE_DB_PATH

    if backend == "faiss":
        instance: BaseSQLiteStore = FaissVectorStore(
            db_path=metadata_path,
            embedding_service=embedding_service,
            index_dir=index_dir or config.FAISS_INDEX_DIR,
        )
    elif backend == "sqlite":
        instance = SQLiteVectorStore(
            db_path=metadata_path,
            embedding_service=embedding_service,
            vectors_dir=vectors_dir or config.VECTOR_STORE_DIR,
        )
    else:
        msg = f"Unsupported vector store backend: {store}"
        raise ValueError(msg)

    logger.info("Using %s passage store at %s", backend, metadata_path)
    return instance


__all__ = [
    "BaseSQLiteStore",
    "FaissVectorStore",
    "SQLiteVectorStore",
    "VectorBackend",
    "get_vector_store",
]
