"""Endpoint logic shared by the HTTP layer and the in-process client."""

import re
import uuid
from collections.abc import Iterable
from typing import Any, cast

from .chatbots import ChatbotRegistry
from .config import config
from .conversation import ConversationOrchestrator
from .document_processing import DocumentLoader
from .embeddings import EmbeddingService
from .errors import InvalidInput, InvalidMessage, NotFound, Unauthorized
from .generation import GenerationClient
from .ingestion import IngestionPipeline
from .models import (
    ChatbotConfig,
    ChatMessage,
    Document,
    IngestionResult,
    Inquiry,
    Role,
)
from .records import RecordStore
from .retrieval import ContextRetriever
from .vector_store import VectorBackend, get_vector_store

logger = config.get_logger(__name__)

EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
HISTORY_ROLES = frozenset({Role.USER, Role.ASSISTANT})


class TokenAuthenticator:
    """Validates opaque caller tokens against a configured allow-list."""

    def __init__(self, tokens: Iterable[str] | None = None) -> None:
        self.tokens = frozenset(tokens if tokens is not None else config.API_TOKENS)

    def authenticate(self, token: str | None) -> str:
        """Return the caller identity for ``token``.

        Raises:
            Unauthorized: If the token is missing or unknown.
        """
        if not token or token not in self.tokens:
            raise Unauthorized
        return token


class ChatbotService:
    """Authorization, lookup and validation in front of the core components.

    Every operation checks the caller and the chatbot before any remote work
    is started.
    """

    def __init__(  # noqa: PLR0913
        self,
        registry: ChatbotRegistry,
        ingestion: IngestionPipeline,
        orchestrator: ConversationOrchestrator,
        records: RecordStore,
        authenticator: TokenAuthenticator | None = None,
        models: list[str] | None = None,
    ) -> None:
        self.registry = registry
        self.ingestion = ingestion
        self.orchestrator = orchestrator
        self.records = records
        self.authenticator = authenticator or TokenAuthenticator()
        self.models = list(models if models is not None else config.AVAILABLE_MODELS)

    def authorize(self, token: str | None) -> str:
        return self.authenticator.authenticate(token)

    def get_chatbot(self, token: str | None, chatbot_id: str) -> ChatbotConfig:
        """Return the chatbot configuration for an authorized caller.

        Raises:
            Unauthorized: If the caller token is rejected.
            NotFound: If no chatbot has this id.
        """
        self.authorize(token)
        chatbot = self.registry.get(chatbot_id)
        if chatbot is None:
            raise NotFound
        return chatbot

    def upload(
        self,
        token: str | None,
        chatbot_id: str,
        filename: str | None,
        data: bytes | None,
    ) -> IngestionResult:
        """Decode an uploaded file and ingest it into the chatbot's scope.

        Returns:
            The ingestion result.

        Raises:
            InvalidInput: If no file was sent or it cannot be decoded.
            StorageUnavailable: If the document cannot be stored.
        """
        chatbot = self.get_chatbot(token, chatbot_id)
        if not filename or not data:
            msg = "No file uploaded"
            raise InvalidInput(msg)

        try:
            text = DocumentLoader.load_bytes(filename, data)
        except InvalidInput:
            raise
        except Exception as exc:
            msg = f"Could not read {filename}"
            raise InvalidInput(msg) from exc

        return self.ingestion.ingest(chatbot.id, filename, text)

    def chat(
        self, token: str | None, chatbot_id: str, history: Any
    ) -> ChatMessage:
        """Answer the latest user message of a conversation.

        Args:
            token: Caller identity token.
            chatbot_id: Chatbot to talk to.
            history: Untrusted list of ``{role, content}`` mappings.

        Returns:
            The assistant reply.

        Raises:
            InvalidMessage: If the history is empty or malformed.
            GenerationFailed: If the model backend fails.
        """
        chatbot = self.get_chatbot(token, chatbot_id)
        if not isinstance(history, list) or not history:
            msg = "The conversation history must be a non-empty list"
            raise InvalidMessage(msg)
        messages = [
            ChatMessage.from_dict(item, allowed_roles=HISTORY_ROLES) for item in history
        ]
        return self.orchestrator.respond(chatbot, messages)

    def submit_inquiry(
        self,
        token: str | None,
        chatbot_id: str,
        conversation_id: str,
        email: str,
        message: str,
    ) -> Inquiry:
        """Record a request for a human follow-up.

        Returns:
            The stored inquiry.

        Raises:
            InvalidInput: If inquiries are disabled or a field is invalid.
            StorageUnavailable: If the inquiry cannot be stored.
        """
        chatbot = self.get_chatbot(token, chatbot_id)
        if not chatbot.inquiry_enabled:
            msg = "Inquiries are disabled for this chatbot"
            raise InvalidInput(msg)
        if not conversation_id:
            msg = "threadId is required"
            raise InvalidInput(msg)
        email = (email or "").strip()
        if not EMAIL_PATTERN.match(email):
            msg = "A valid email address is required"
            raise InvalidInput(msg)
        if not message or not message.strip():
            msg = "The inquiry message is empty"
            raise InvalidInput(msg)

        inquiry = Inquiry(
            id=uuid.uuid4().hex,
            chatbot_id=chatbot.id,
            conversation_id=conversation_id,
            email=email,
            message=message.strip(),
        )
        self.records.add_inquiry(inquiry)
        logger.info("Stored inquiry %s for chatbot %s", inquiry.id, chatbot.id)
        return inquiry

    def list_documents(self, token: str | None, chatbot_id: str) -> list[Document]:
        chatbot = self.get_chatbot(token, chatbot_id)
        return self.records.list_documents(chatbot.id)

    def list_inquiries(self, token: str | None, chatbot_id: str) -> list[Inquiry]:
        """Return the follow-up requests left for a chatbot, oldest first."""  # noqa: DOC201
        chatbot = self.get_chatbot(token, chatbot_id)
        return self.records.list_inquiries(chatbot.id)

    def list_models(self, token: str | None) -> list[str]:
        self.authorize(token)
        return list(self.models)


def build_service(
    openai_api_key: str | None = None,
    vector_backend: str | None = None,
) -> ChatbotService:
    """Wire a ``ChatbotService`` from the application configuration.

    Args:
        openai_api_key: OpenAI API key. Falls back to OPENAI_API_KEY.
        vector_backend: "faiss" or "sqlite". Defaults to VECTOR_BACKEND.

    Returns:
        A service backed by the configured stores and OpenAI clients.
    """
    backend = cast("VectorBackend", (vector_backend or config.VECTOR_BACKEND).lower())
    embedding_service = EmbeddingService(api_key=openai_api_key)
    vector_store = get_vector_store(backend, embedding_service)
    records = RecordStore()
    ingestion = IngestionPipeline(vector_store, records=records)
    orchestrator = ConversationOrchestrator(
        retriever=ContextRetriever(vector_store),
        generator=GenerationClient(api_key=openai_api_key),
    )
    logger.info("Service ready with %s vector backend", vector_store.backend)
    return ChatbotService(
        registry=ChatbotRegistry.from_json(),
        ingestion=ingestion,
        orchestrator=orchestrator,
        records=records,
    )
