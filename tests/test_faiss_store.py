"""Unit tests for FaissVectorStore."""

import numpy as np
import pytest
from conftest import TestConstants

from kbchat.errors import StorageUnavailable
from kbchat.vector_store import FaissVectorStore

BOT = TestConstants.CHATBOT_ID
OTHER_BOT = TestConstants.OTHER_CHATBOT_ID


def test_faiss_keeps_one_index_per_scope(faiss_store):
    faiss_store.upsert(BOT, "a-1", TestConstants.REFUND_PASSAGE, "a.txt")
    faiss_store.upsert(BOT, "a-2", TestConstants.SHIPPING_PASSAGE, "a.txt")
    faiss_store.upsert(OTHER_BOT, "b-1", TestConstants.REFUND_PASSAGE, "b.txt")

    assert faiss_store.indexes[BOT].ntotal == 2
    assert faiss_store.indexes[OTHER_BOT].ntotal == 1
    assert faiss_store.index_path(BOT) != faiss_store.index_path(OTHER_BOT)
    assert faiss_store.index_path(BOT).exists()
    assert faiss_store.index_path(OTHER_BOT).exists()


def test_faiss_index_path_is_filesystem_safe(faiss_store):
    path = faiss_store.index_path("../../etc/passwd")

    assert path.parent == faiss_store.index_dir
    assert path.suffix == ".faiss"


def test_faiss_loads_indexes_lazily_from_disk(faiss_store):
    faiss_store.upsert(BOT, "a-1", TestConstants.REFUND_PASSAGE, "a.txt")
    reopened = FaissVectorStore(
        faiss_store.db_path,
        faiss_store.embedding_service,
        index_dir=faiss_store.index_dir,
    )
    assert reopened.indexes == {}

    [match] = reopened.query(BOT, TestConstants.REFUND_QUESTION, 0.7)
    assert match.passage.id == "a-1"
    assert reopened.indexes[BOT].ntotal == 1


def test_faiss_delete_updates_index(faiss_store):
    faiss_store.upsert(BOT, "a-1", TestConstants.REFUND_PASSAGE, "a.txt")

    faiss_store.delete(BOT, "a-1")

    assert faiss_store.indexes[BOT].ntotal == 0
    assert faiss_store.query(BOT, TestConstants.REFUND_QUESTION, 2.0) == []


def test_faiss_rejects_dimension_mismatch(faiss_store, monkeypatch):
    faiss_store.upsert(BOT, "a-1", TestConstants.REFUND_PASSAGE, "a.txt")
    monkeypatch.setattr(
        faiss_store.embedding_service,
        "get_embedding",
        lambda text: np.ones(3, dtype=np.float32),
    )

    with pytest.raises(StorageUnavailable):
        faiss_store.upsert(BOT, "a-2", "Password reset", "a.txt")

    assert faiss_store.count(BOT) == 1


def test_faiss_zero_vector_is_stored_unnormalized(faiss_store):
    vector = faiss_store._normalize_embedding(np.zeros(4, dtype=np.float32))

    assert vector.shape == (1, 4)
    assert not vector.any()
