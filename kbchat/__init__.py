"""KBChat - knowledge-base chatbots with retrieval-augmented replies."""

from .client import HttpChatbotClient, LocalChatbotClient
from .conversation import ConversationOrchestrator, build_prompt
from .document_processing import DocumentLoader, TextChunker, WholeDocumentChunker
from .embeddings import EmbeddingService
from .generation import GenerationClient
from .ingestion import IngestionPipeline
from .models import ChatbotConfig, ChatMessage, ConversationTurn, RetrievalResult
from .retrieval import ContextRetriever
from .service import ChatbotService, build_service
from .state_machine import ConversationStateMachine
from .vector_store import FaissVectorStore, SQLiteVectorStore, get_vector_store

__all__ = [
    "ChatMessage",
    "ChatbotConfig",
    "ChatbotService",
    "ContextRetriever",
    "ConversationOrchestrator",
    "ConversationStateMachine",
    "ConversationTurn",
    "DocumentLoader",
    "EmbeddingService",
    "FaissVectorStore",
    "GenerationClient",
    "HttpChatbotClient",
    "IngestionPipeline",
    "LocalChatbotClient",
    "RetrievalResult",
    "SQLiteVectorStore",
    "TextChunker",
    "WholeDocumentChunker",
    "build_prompt",
    "build_service",
    "get_vector_store",
]
