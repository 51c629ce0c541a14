"""Client transports used by the conversation state machine."""

import asyncio
from collections.abc import Sequence
from typing import Any, Protocol

import requests

from .config import config
from .errors import (
    EscalationFailed,
    GenerationFailed,
    IngestionFailed,
    InvalidInput,
    KBChatError,
    NotFound,
    Unauthorized,
)
from .models import ChatbotConfig, ChatMessage, Document, Inquiry, Role
from .service import ChatbotService

logger = config.get_logger(__name__)


class ChatbotClient(Protocol):
    """Remote operations a conversation needs, all awaited."""

    async def get_chatbot(self, chatbot_id: str) -> ChatbotConfig: ...

    async def send_turn(
        self, chatbot_id: str, history: Sequence[ChatMessage]
    ) -> ChatMessage: ...

    async def upload_file(self, chatbot_id: str, filename: str, data: bytes) -> str: ...

    async def submit_inquiry(
        self, chatbot_id: str, conversation_id: str, email: str, message: str
    ) -> Inquiry: ...

    async def list_models(self) -> list[str]: ...

    async def list_files(self, chatbot_id: str) -> list[Document]: ...


class LocalChatbotClient:
    """Calls a ``ChatbotService`` in-process, off the event loop."""

    def __init__(self, service: ChatbotService, token: str | None = None) -> None:
        self.service = service
        self.token = token if token is not None else config.API_CLIENT_TOKEN

    async def get_chatbot(self, chatbot_id: str) -> ChatbotConfig:
        return await asyncio.to_thread(self.service.get_chatbot, self.token, chatbot_id)

    async def send_turn(
        self, chatbot_id: str, history: Sequence[ChatMessage]
    ) -> ChatMessage:
        payload = [message.to_dict() for message in history]
        return await asyncio.to_thread(
            self.service.chat, self.token, chatbot_id, payload
        )

    async def upload_file(self, chatbot_id: str, filename: str, data: bytes) -> str:
        """Upload a file for ingestion.

        Returns:
            The stored document id.

        Raises:
            IngestionFailed: If the upload is rejected or cannot be stored.
        """
        try:
            result = await asyncio.to_thread(
                self.service.upload, self.token, chatbot_id, filename, data
            )
        except KBChatError as exc:
            raise IngestionFailed(_upload_error_text(exc)) from exc
        return result.document.id

    async def submit_inquiry(
        self, chatbot_id: str, conversation_id: str, email: str, message: str
    ) -> Inquiry:
        try:
            return await asyncio.to_thread(
                self.service.submit_inquiry,
                self.token,
                chatbot_id,
                conversation_id,
                email,
                message,
            )
        except KBChatError as exc:
            raise EscalationFailed from exc

    async def list_models(self) -> list[str]:
        return await asyncio.to_thread(self.service.list_models, self.token)

    async def list_files(self, chatbot_id: str) -> list[Document]:
        return await asyncio.to_thread(
            self.service.list_documents, self.token, chatbot_id
        )


def _upload_error_text(exc: KBChatError) -> str | None:
    if isinstance(exc, InvalidInput | Unauthorized | NotFound):
        return exc.message
    return None


def error_for_status(status_code: int, message: str | None) -> KBChatError:
    """Map an HTTP error response back onto the error taxonomy.

    Returns:
        The matching error instance.
    """
    if status_code in {401, 403}:
        return Unauthorized(message)
    if status_code == 404:
        return NotFound(message)
    if status_code == 400:
        return InvalidInput(message)
    return KBChatError(message)


class HttpChatbotClient:
    """Talks to the KBChat HTTP API with ``requests``, off the event loop."""

    def __init__(
        self,
        base_url: str | None = None,
        token: str | None = None,
        timeout: float | None = None,
        session: requests.Session | None = None,
    ) -> None:
        self.base_url = (base_url or config.API_BASE_URL).rstrip("/")
        self.timeout = timeout if timeout is not None else config.API_TIMEOUT_SECONDS
        self.session = session or requests.Session()
        self.session.headers.update(config.get_api_headers(token))

    def _request(self, method: str, path: str, **kwargs: Any) -> Any:
        """Send a request and decode the JSON body.

        Returns:
            The decoded response body.

        Raises:
            KBChatError: On transport errors or non-2xx responses.
        """
        url = f"{self.base_url}{path}"
        try:
            response = self.session.request(method, url, timeout=self.timeout, **kwargs)
        except requests.RequestException as exc:
            logger.exception("%s %s failed", method, url)
            raise KBChatError from exc

        if not response.ok:
            try:
                message = response.json().get("error")
            except ValueError:
                message = None
            logger.warning("%s %s returned %s", method, url, response.status_code)
            raise error_for_status(response.status_code, message)

        try:
            return response.json()
        except ValueError as exc:
            msg = f"Invalid JSON from {url}"
            raise KBChatError(msg) from exc

    async def get_chatbot(self, chatbot_id: str) -> ChatbotConfig:
        body = await asyncio.to_thread(
            self._request, "GET", f"/api/chatbots/{chatbot_id}"
        )
        return ChatbotConfig.from_dict(body["chatbot"])

    async def send_turn(
        self, chatbot_id: str, history: Sequence[ChatMessage]
    ) -> ChatMessage:
        """Send the conversation and return the assistant reply.

        Raises:
            GenerationFailed: If the server could not produce a valid reply.
        """
        payload = {"history": [message.to_dict() for message in history]}
        try:
            body = await asyncio.to_thread(
                self._request, "POST", f"/api/chatbots/{chatbot_id}/chat", json=payload
            )
            return ChatMessage.from_dict(
                body.get("message"), allowed_roles=frozenset({Role.ASSISTANT})
            )
        except (Unauthorized, NotFound):
            raise
        except (KBChatError, AttributeError) as exc:
            raise GenerationFailed from exc

    async def upload_file(self, chatbot_id: str, filename: str, data: bytes) -> str:
        try:
            body = await asyncio.to_thread(
                self._request,
                "POST",
                f"/api/chatbots/{chatbot_id}/upload",
                files={"file": (filename, data)},
            )
            return str(body["document_id"])
        except KBChatError as exc:
            raise IngestionFailed(_upload_error_text(exc)) from exc
        except (KeyError, TypeError) as exc:
            raise IngestionFailed from exc

    async def submit_inquiry(
        self, chatbot_id: str, conversation_id: str, email: str, message: str
    ) -> Inquiry:
        payload = {"threadId": conversation_id, "email": email, "inquiry": message}
        try:
            body = await asyncio.to_thread(
                self._request,
                "POST",
                f"/api/chatbots/{chatbot_id}/inquiries",
                json=payload,
            )
            return Inquiry(**body["inquiry"])
        except (KBChatError, KeyError, TypeError) as exc:
            raise EscalationFailed from exc

    async def list_models(self) -> list[str]:
        body = await asyncio.to_thread(self._request, "GET", "/api/models")
        return list(body["models"])

    async def list_files(self, chatbot_id: str) -> list[Document]:
        body = await asyncio.to_thread(
            self._request, "GET", f"/api/chatbots/{chatbot_id}/files"
        )
        return [
            Document(
                id=item["id"],
                chatbot_id=chatbot_id,
                filename=item["filename"],
                content="",
                created_at=item["created_at"],
            )
            for item in body["files"]
        ]

