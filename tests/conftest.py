"""Test configuration and fixtures for KBChat tests.

This module provides reusable test fixtures organized by functionality:
- Constants and test data
- Deterministic embedding service
- Mock OpenAI API responses
- Vector store and record store fixtures
- Chatbot, service and client fakes
"""

import asyncio
import hashlib
import re
from collections.abc import Sequence
from unittest.mock import Mock, patch

import numpy as np
import pytest

from kbchat import (
    ChatbotConfig,
    ChatMessage,
    ContextRetriever,
    ConversationOrchestrator,
    EmbeddingService,
    FaissVectorStore,
    IngestionPipeline,
    SQLiteVectorStore,
    TextChunker,
)
from kbchat.chatbots import ChatbotRegistry
from kbchat.models import Document, Inquiry, Role
from kbchat.records import RecordStore
from kbchat.service import ChatbotService, TokenAuthenticator
from kbchat.vector_store import get_vector_store


class TestConstants:
    """Centralized test constants to avoid repetition across test files."""

    # API Configuration
    TEST_API_KEY = "test-key"
    TEST_OPENAI_MODEL = "text-embedding-3-small"
    TEST_TOKEN = "test-token"

    # Chatbots
    CHATBOT_ID = "bot-support"
    OTHER_CHATBOT_ID = "bot-sales"
    PERSONA = "You are the support assistant of Acme. Keep it short."

    # Knowledge base
    REFUND_PASSAGE = "Refunds are processed in 5 days."
    REFUND_QUESTION = "How long do refunds take?"
    SHIPPING_PASSAGE = "Orders ship with our courier and arrive within a week."
    HOURS_QUESTION = "What are your opening hours?"

    # Text Chunking Configuration
    SMALL_CHUNK_SIZE = 100
    SMALL_CHUNK_OVERLAP = 20


class KeywordEmbeddingService:
    """Deterministic embeddings built from topic keywords.

    Texts sharing a topic land close together; texts from different topics
    are orthogonal on the topic axes. Words outside every topic add a small
    hashed component so that distinct texts never collapse onto one vector.
    """

    TOPICS: tuple[frozenset[str], ...] = (
        frozenset(
            {"refund", "refunds", "refunded", "processed", "days", "long", "take"}
        ),
        frozenset(
            {"ship", "shipping", "orders", "courier", "arrive", "week", "delivery"}
        ),
        frozenset({"password", "reset", "login", "account", "sign"}),
        frozenset({"opening", "open", "hours", "weekend", "closed"}),
    )
    STOPWORDS = frozenset(
        {
            "a", "an", "and", "are", "at", "can", "do", "does", "for", "how", "i",
            "in", "is", "it", "my", "of", "on", "our", "the", "to", "what", "when",
            "will", "with", "within", "you", "your",
        }
    )
    RESIDUAL_DIMS = 16
    RESIDUAL_WEIGHT = 0.1

    def __init__(self) -> None:
        self.dimension = len(self.TOPICS) + self.RESIDUAL_DIMS
        self.calls: list[str] = []

    def get_embedding(self, text: str) -> np.ndarray:
        self.calls.append(text)
        vector = np.zeros(self.dimension, dtype=np.float32)
        for token in re.findall(r"[a-z0-9]+", text.lower()):
            for idx, topic in enumerate(self.TOPICS):
                if token in topic:
                    vector[idx] += 1.0
                    break
            else:
                if token in self.STOPWORDS:
                    continue
                digest = hashlib.sha256(token.encode("utf-8")).digest()
                slot = len(self.TOPICS) + digest[0] % self.RESIDUAL_DIMS
                vector[slot] += self.RESIDUAL_WEIGHT

        norm = np.linalg.norm(vector)
        if norm == 0:
            vector[-1] = 1.0
            return vector
        return vector / norm

    def get_embeddings_batch(self, texts: list[str]) -> list[np.ndarray]:
        return [self.get_embedding(text) for text in texts]


class FakeGenerator:
    """Records prompts and answers with a canned reply or error."""

    def __init__(self, reply: str = "Refunds take 5 days.", error=None) -> None:
        self.reply = reply
        self.error = error
        self.calls: list[tuple[str, list[ChatMessage]]] = []

    def complete(self, model: str, messages: Sequence[ChatMessage]) -> ChatMessage:
        self.calls.append((model, list(messages)))
        if self.error is not None:
            raise self.error
        return ChatMessage(role=Role.ASSISTANT, content=self.reply)


class FakeChatbotClient:
    """Async client double for the conversation state machine.

    Each operation can be gated with an ``asyncio.Event`` so tests can observe
    the intermediate state while a call is in flight.
    """

    def __init__(self) -> None:
        self.reply = "Refunds take 5 days."
        self.reply_error: BaseException | None = None
        self.upload_error: BaseException | None = None
        self.inquiry_error: BaseException | None = None
        self.reply_gate: asyncio.Event | None = None
        self.upload_gate: asyncio.Event | None = None
        self.inquiry_gate: asyncio.Event | None = None
        self.sent_histories: list[list[ChatMessage]] = []
        self.uploads: list[tuple[str, str, bytes]] = []
        self.inquiries: list[tuple[str, str, str, str]] = []

    @staticmethod
    async def _wait(gate: asyncio.Event | None) -> None:
        if gate is not None:
            await gate.wait()

    async def get_chatbot(self, chatbot_id: str) -> ChatbotConfig:
        return ChatbotConfig(id=chatbot_id)

    async def send_turn(
        self, chatbot_id: str, history: Sequence[ChatMessage]
    ) -> ChatMessage:
        self.sent_histories.append(list(history))
        await self._wait(self.reply_gate)
        if self.reply_error is not None:
            raise self.reply_error
        return ChatMessage(role=Role.ASSISTANT, content=self.reply)

    async def upload_file(self, chatbot_id: str, filename: str, data: bytes) -> str:
        self.uploads.append((chatbot_id, filename, data))
        await self._wait(self.upload_gate)
        if self.upload_error is not None:
            raise self.upload_error
        return "doc-1"

    async def submit_inquiry(
        self, chatbot_id: str, conversation_id: str, email: str, message: str
    ) -> Inquiry:
        self.inquiries.append((chatbot_id, conversation_id, email, message))
        await self._wait(self.inquiry_gate)
        if self.inquiry_error is not None:
            raise self.inquiry_error
        return Inquiry(
            id="inq-1",
            chatbot_id=chatbot_id,
            conversation_id=conversation_id,
            email=email,
            message=message,
        )

    async def list_models(self) -> list[str]:
        return ["gpt-3.5-turbo"]

    async def list_files(self, chatbot_id: str) -> list[Document]:
        return []


def create_mock_openai_response(embeddings: list[list[float]]) -> Mock:
    """Create a mock OpenAI embeddings API response.

    Args:
        embeddings: List of embedding vectors to return.

    Returns:
        Mock object representing OpenAI embeddings API response.
    """
    mock_response = Mock()
    mock_response.data = [Mock(embedding=emb) for emb in embeddings]
    return mock_response


def create_mock_chat_response(
    content: str | None, role: str | None = "assistant"
) -> Mock:
    """Create a mock OpenAI chat completion response.

    Args:
        content: The content for the chat completion response.
        role: Role reported by the completion message.

    Returns:
        Mock object representing OpenAI chat completion response.
    """
    mock_response = Mock()
    mock_response.choices = [Mock(message=Mock(role=role, content=content))]
    return mock_response


@pytest.fixture
def openai_embeddings_api_mock():
    """Base fixture that patches OpenAI embeddings.create method."""
    with patch("openai.resources.embeddings.Embeddings.create") as mock_create:
        yield mock_create


@pytest.fixture
def openai_embeddings_factory(openai_embeddings_api_mock):
    """Factory for creating OpenAI embeddings API mocks with different scenarios."""

    def _create_mock(  # noqa: ANN202
        scenario="single_success",
        embeddings=None,
        error_message="API Error",
    ):
        """Create a mock based on scenario type.

        Args:
            scenario: Type of mock ('single_success', 'batch_success', 'error',
                'multiple_batches', 'partial_failure')
            embeddings: Custom embeddings to return, or None for defaults
            error_message: Custom error message for error scenarios
        """
        openai_embeddings_api_mock.reset_mock()
        openai_embeddings_api_mock.side_effect = None
        openai_embeddings_api_mock.return_value = None

        if scenario == "single_success":
            mock_embedding = embeddings or [0.1, 0.2, 0.3, 0.4, 0.5]
            openai_embeddings_api_mock.return_value = create_mock_openai_response(
                [mock_embedding]
            )
        elif scenario == "batch_success":
            mock_embeddings = embeddings or [
                [0.1, 0.2, 0.3],
                [0.4, 0.5, 0.6],
                [0.7, 0.8, 0.9],
            ]
            openai_embeddings_api_mock.return_value = create_mock_openai_response(
                mock_embeddings
            )
        elif scenario == "error":
            openai_embeddings_api_mock.side_effect = Exception(error_message)
        elif scenario == "multiple_batches":
            openai_embeddings_api_mock.side_effect = [
                create_mock_openai_response([[0.1, 0.2], [0.3, 0.4]]),
                create_mock_openai_response([[0.5, 0.6], [0.7, 0.8]]),
            ]
        elif scenario == "partial_failure":
            openai_embeddings_api_mock.side_effect = [
                create_mock_openai_response([[0.1, 0.2]]),
                Exception("Second batch failed"),
            ]

        return openai_embeddings_api_mock

    return _create_mock


@pytest.fixture
def openai_chat_api_mock():
    """Patches OpenAI chat.completions.create for every client instance."""
    with patch("openai.resources.chat.completions.Completions.create") as mock_create:
        yield mock_create


@pytest.fixture
def embedding_service_factory():
    """Factory for creating EmbeddingService instances with different configurations."""

    def _create_service(api_key=None, model=None):  # noqa: ANN202
        api_key = api_key or TestConstants.TEST_API_KEY
        if model is not None:
            return EmbeddingService(api_key=api_key, model=model)
        return EmbeddingService(api_key=api_key)

    return _create_service


@pytest.fixture
def embedding_service(embedding_service_factory):
    """Default EmbeddingService with test API key for most tests."""
    return embedding_service_factory()


@pytest.fixture
def text_chunker_small():
    """Text chunker configured for small chunks (100/20)."""
    return TextChunker(
        chunk_size=TestConstants.SMALL_CHUNK_SIZE,
        overlap=TestConstants.SMALL_CHUNK_OVERLAP,
    )


@pytest.fixture
def keyword_embedder():
    return KeywordEmbeddingService()


@pytest.fixture
def sqlite_store(tmp_path, keyword_embedder) -> SQLiteVectorStore:
    """Create temporary SQLite vector store for testing."""
    return SQLiteVectorStore(
        tmp_path / "sqlite_store.db",
        keyword_embedder,
        vectors_dir=tmp_path / "vectors",
    )


@pytest.fixture
def faiss_store(tmp_path, keyword_embedder) -> FaissVectorStore:
    """Create temporary FAISS vector store for testing."""
    return FaissVectorStore(
        tmp_path / "faiss_store.db",
        keyword_embedder,
        index_dir=tmp_path / "faiss",
    )


@pytest.fixture(params=["faiss", "sqlite"])
def vector_store(request, tmp_path, keyword_embedder):
    """Each vector store backend, built through the factory."""
    return get_vector_store(
        request.param,
        keyword_embedder,
        db_path=tmp_path / f"{request.param}.db",
        vectors_dir=tmp_path / "vectors",
        index_dir=tmp_path / "faiss",
    )


@pytest.fixture
def record_store(tmp_path) -> RecordStore:
    return RecordStore(tmp_path / "records.db")


@pytest.fixture
def chatbot_factory():
    """Factory for chatbot configurations with sensible test defaults."""

    def _create_chatbot(**overrides) -> ChatbotConfig:  # noqa: ANN003
        values = {
            "id": TestConstants.CHATBOT_ID,
            "name": "Acme Support",
            "prompt": TestConstants.PERSONA,
            "model_name": "gpt-4o-mini",
            "chatbot_error_message": "Something went wrong, please retry.",
            "chat_file_attachment_enabled": True,
            "inquiry_enabled": True,
            "inquiry_display_link_after_x_message": 3,
            "inquiry_automatic_reply_text": "Thanks, our team will email you.",
        }
        values.update(overrides)
        return ChatbotConfig(**values)

    return _create_chatbot


@pytest.fixture
def chatbot(chatbot_factory) -> ChatbotConfig:
    return chatbot_factory()


@pytest.fixture
def fake_generator() -> FakeGenerator:
    return FakeGenerator()


@pytest.fixture
def ingestion_pipeline(vector_store, record_store) -> IngestionPipeline:
    return IngestionPipeline(vector_store, records=record_store)


@pytest.fixture
def retriever(vector_store):
    retriever = ContextRetriever(vector_store, timeout=2.0)
    yield retriever
    retriever.close()


@pytest.fixture
def service_factory(vector_store, record_store, chatbot_factory, fake_generator):
    """Factory for a ChatbotService wired to in-memory fakes and temp stores."""
    retrievers: list[ContextRetriever] = []

    def _create_service(
        chatbots: list[ChatbotConfig] | None = None,
        generator=None,  # noqa: ANN001
    ) -> ChatbotService:
        if chatbots is None:
            chatbots = [
                chatbot_factory(),
                chatbot_factory(
                    id=TestConstants.OTHER_CHATBOT_ID, inquiry_enabled=False
                ),
            ]
        retriever = ContextRetriever(vector_store, timeout=2.0)
        retrievers.append(retriever)
        return ChatbotService(
            registry=ChatbotRegistry(chatbots),
            ingestion=IngestionPipeline(vector_store, records=record_store),
            orchestrator=ConversationOrchestrator(
                retriever=retriever,
                generator=generator or fake_generator,
            ),
            records=record_store,
            authenticator=TokenAuthenticator([TestConstants.TEST_TOKEN]),
            models=["gpt-3.5-turbo", "gpt-4o-mini"],
        )

    yield _create_service
    for retriever in retrievers:
        retriever.close()


@pytest.fixture
def chatbot_service(service_factory) -> ChatbotService:
    return service_factory()


@pytest.fixture
def fake_client() -> FakeChatbotClient:
    return FakeChatbotClient()

