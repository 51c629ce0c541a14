"""Tests for document and inquiry records and the chatbot registry."""

import json
import sqlite3

import pytest

from kbchat.chatbots import ChatbotRegistry
from kbchat.errors import StorageUnavailable
from kbchat.models import ChatbotConfig, Document, Inquiry
from kbchat.records import RecordStore


def _document(doc_id="d1", chatbot_id="bot-a", created_at="2024-01-01T00:00:00"):
    return Document(
        id=doc_id,
        chatbot_id=chatbot_id,
        filename="faq.txt",
        content="Refunds are processed in 5 days.",
        created_at=created_at,
    )


def test_documents_are_listed_per_chatbot(record_store):
    record_store.add_document(_document("d2", created_at="2024-01-02T00:00:00"))
    record_store.add_document(_document("d1"))
    record_store.add_document(_document("d3", chatbot_id="bot-b"))

    documents = record_store.list_documents("bot-a")

    assert [document.id for document in documents] == ["d1", "d2"]
    assert documents[0] == _document("d1")
    assert record_store.list_documents("bot-missing") == []


def test_duplicate_document_raises_storage_unavailable(record_store):
    record_store.add_document(_document())

    with pytest.raises(StorageUnavailable) as exc_info:
        record_store.add_document(_document())

    assert isinstance(exc_info.value.__cause__, sqlite3.IntegrityError)


def test_inquiries_round_trip(record_store):
    inquiry = Inquiry(
        id="i1",
        chatbot_id="bot-a",
        conversation_id="thread-1",
        email="jane@example.com",
        message="Please call me back.",
    )

    record_store.add_inquiry(inquiry)

    assert record_store.list_inquiries("bot-a") == [inquiry]
    assert record_store.list_inquiries("bot-b") == []


def test_record_store_creates_parent_directory(tmp_path):
    store = RecordStore(tmp_path / "nested" / "records.db")

    assert store.db_path.exists()


def test_registry_lookup():
    registry = ChatbotRegistry([ChatbotConfig(id="b"), ChatbotConfig(id="a")])

    assert registry.get("a") == ChatbotConfig(id="a")
    assert registry.get("missing") is None
    assert registry.get("b") == ChatbotConfig(id="b")
    assert len(registry) == 2


def test_registry_from_json(tmp_path):
    path = tmp_path / "chatbots.json"
    path.write_text(
        json.dumps(
            [
                {"id": "bot-a", "name": "Acme", "inquiryEnabled": True},
                {"id": "bot-b", "model": {"name": "gpt-4o-mini"}},
            ]
        ),
        encoding="utf-8",
    )

    registry = ChatbotRegistry.from_json(path)

    assert len(registry) == 2
    assert registry.get("bot-a").inquiry_enabled is True
    assert registry.get("bot-b").model_name == "gpt-4o-mini"


def test_registry_missing_file_is_empty(tmp_path):
    assert len(ChatbotRegistry.from_json(tmp_path / "missing.json")) == 0


def test_registry_rejects_non_list(tmp_path):
    path = tmp_path / "chatbots.json"
    path.write_text('{"id": "bot-a"}', encoding="utf-8")

    with pytest.raises(ValueError, match="must contain a JSON list"):
        ChatbotRegistry.from_json(path)
