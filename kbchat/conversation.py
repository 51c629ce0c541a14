"""Conversation orchestration: retrieval, prompt assembly and generation."""

from collections.abc import Sequence
from typing import Protocol

from .config import config
from .errors import InvalidMessage
from .models import ChatbotConfig, ChatMessage, RetrievalResult, Role

logger = config.get_logger(__name__)

CONTEXT_PREFIX = "Relevant context: "


class Retriever(Protocol):
    def retrieve(self, chatbot_id: str, query_text: str) -> RetrievalResult: ...


class Generator(Protocol):
    def complete(self, model: str, messages: Sequence[ChatMessage]) -> ChatMessage: ...


def latest_user_text(history: Sequence[ChatMessage]) -> str:
    """Return the content of the most recent user message.

    Raises:
        InvalidMessage: If the history holds no user message.
    """
    for message in reversed(history):
        if message.role == Role.USER:
            return message.content
    msg = "The conversation has no user message to answer"
    raise InvalidMessage(msg)


def build_prompt(
    persona: str,
    retrieval: RetrievalResult,
    history: Sequence[ChatMessage],
) -> list[ChatMessage]:
    """Assemble the generation prompt.

    The layout is fixed: persona, retrieved context (empty when nothing was
    found), then the conversation history unchanged and in order.

    Returns:
        The ordered prompt messages.
    """
    return [
        ChatMessage(role=Role.SYSTEM, content=persona),
        ChatMessage(role=Role.SYSTEM, content=CONTEXT_PREFIX + retrieval.context_text),
        *history,
    ]


class ConversationOrchestrator:
    """Produces one assistant reply per user turn."""

    def __init__(
        self,
        retriever: Retriever,
        generator: Generator,
        default_model: str | None = None,
    ) -> None:
        self.retriever = retriever
        self.generator = generator
        self.default_model = default_model or config.CHAT_MODEL

    def respond(
        self, chatbot: ChatbotConfig, history: Sequence[ChatMessage]
    ) -> ChatMessage:
        """Answer the latest user message of ``history``.

        Retrieval failures degrade to an answer without context. Generation
        failures are not recovered.

        Args:
            chatbot: Configuration of the chatbot being talked to.
            history: Prior turns, ending with the message to answer.

        Returns:
            The assistant reply.

        Raises:
            InvalidMessage: If the history holds no user message.
            GenerationFailed: If the language model cannot produce a reply.
        """
        query = latest_user_text(history)
        retrieval = self.retriever.retrieve(chatbot.id, query)
        logger.info(
            "Retrieval for chatbot %s: %s (distance=%s)",
            chatbot.id,
            retrieval.status,
            retrieval.distance,
        )

        messages = build_prompt(chatbot.prompt, retrieval, history)
        model = chatbot.model_name or self.default_model
        return self.generator.complete(model, messages)
