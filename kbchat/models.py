"""Data models for KBChat."""

import datetime
from dataclasses import dataclass, field, fields
from enum import StrEnum
from typing import Any

from .errors import InvalidInput, InvalidMessage

DEFAULT_WELCOME_MESSAGE = "Hello, how can I help you?"
DEFAULT_PROMPT = (
    "You are an assistant you help users that visit our website, keep it short, "
    "always refer to the documentation provided and never ask for more information."
)
DEFAULT_ERROR_MESSAGE = (
    "Oops! An error has occurred. If the issue persists, feel free to reach out to "
    "our support team for assistance. We're here to help!"
)


def utc_now() -> str:
    return datetime.datetime.now(tz=datetime.UTC).isoformat()


class Role(StrEnum):
    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"


@dataclass(frozen=True)
class ChatMessage:
    """A single message exchanged with the generation backend."""

    role: Role
    content: str

    @classmethod
    def from_dict(
        cls,
        data: Any,
        allowed_roles: frozenset[Role] | None = None,
    ) -> "ChatMessage":
        """Validate an untrusted ``{role, content}`` mapping.

        Args:
            data: Mapping decoded from JSON or returned by a backend.
            allowed_roles: Roles accepted at this boundary. Defaults to all roles.

        Returns:
            The validated message.

        Raises:
            InvalidMessage: If the role is unknown or not allowed, or the content
                is not a string.
        """
        if not isinstance(data, dict):
            msg = "Each message must be an object with 'role' and 'content'"
            raise InvalidMessage(msg)
        try:
            role = Role(data.get("role"))
        except ValueError as exc:
            msg = f"Unsupported message role: {data.get('role')!r}"
            raise InvalidMessage(msg) from exc
        if allowed_roles is not None and role not in allowed_roles:
            msg = f"Message role '{role}' is not allowed here"
            raise InvalidMessage(msg)
        content = data.get("content")
        if not isinstance(content, str):
            msg = "Message content must be a string"
            raise InvalidMessage(msg)
        return cls(role=role, content=content)

    def to_dict(self) -> dict[str, str]:
        return {"role": str(self.role), "content": self.content}


@dataclass(frozen=True)
class ConversationTurn:
    """One visible turn of a conversation.

    ``pending`` marks the transient loading placeholder shown while a reply is
    in flight.
    """

    id: str
    role: Role
    content: str
    pending: bool = False

    def to_message(self) -> ChatMessage:
        return ChatMessage(role=self.role, content=self.content)


# camelCase keys used by the chatbot records of the hosting application
_CHATBOT_ALIASES = {
    "chatbotErrorMessage": "chatbot_error_message",
    "welcomeMessage": "welcome_message",
    "chatTitle": "chat_title",
    "chatMessagePlaceHolder": "chat_message_placeholder",
    "chatFileAttachementEnabled": "chat_file_attachment_enabled",
    "chatFileAttachmentEnabled": "chat_file_attachment_enabled",
    "inquiryEnabled": "inquiry_enabled",
    "inquiryDisplayLinkAfterXMessage": "inquiry_display_link_after_x_message",
    "inquiryLinkText": "inquiry_link_text",
    "inquiryTitle": "inquiry_title",
    "inquirySubtitle": "inquiry_subtitle",
    "inquiryEmailLabel": "inquiry_email_label",
    "inquiryMessageLabel": "inquiry_message_label",
    "inquirySendButtonText": "inquiry_send_button_text",
    "inquiryAutomaticReplyText": "inquiry_automatic_reply_text",
    "modelName": "model_name",
}


@dataclass(frozen=True)
class ChatbotConfig:
    """Read-only chatbot configuration, loaded once per conversation."""

    id: str
    name: str = ""
    prompt: str = DEFAULT_PROMPT
    model_name: str | None = None
    welcome_message: str = DEFAULT_WELCOME_MESSAGE
    chatbot_error_message: str = DEFAULT_ERROR_MESSAGE
    chat_title: str = "Chat"
    chat_message_placeholder: str = "Type your message..."
    chat_file_attachment_enabled: bool = False
    inquiry_enabled: bool = False
    inquiry_display_link_after_x_message: int = 1
    inquiry_link_text: str = "Contact our support team"
    inquiry_title: str = "Contact our support team"
    inquiry_subtitle: str = "Leave your email and we will get back to you."
    inquiry_email_label: str = "Email"
    inquiry_message_label: str = "Message"
    inquiry_send_button_text: str = "Send message"
    inquiry_automatic_reply_text: str = (
        "Thank you for your inquiry. Our team will get back to you shortly."
    )

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ChatbotConfig":
        """Build a config from a stored record.

        Accepts snake_case keys and the camelCase keys of the hosting
        application's records. The nested ``model`` object of those records
        (``{"name": ...}``) is flattened into ``model_name``.

        Returns:
            The chatbot configuration.

        Raises:
            InvalidInput: If the record has no identity.
        """
        known = {f.name for f in fields(cls)}
        values: dict[str, Any] = {}
        for key, value in data.items():
            name = _CHATBOT_ALIASES.get(key, key)
            if name in known and value is not None:
                values[name] = value

        model = data.get("model")
        if "model_name" not in values and isinstance(model, dict) and model.get("name"):
            values["model_name"] = model["name"]

        if not values.get("id"):
            msg = "Chatbot record is missing 'id'"
            raise InvalidInput(msg)
        values["id"] = str(values["id"])
        if "inquiry_display_link_after_x_message" in values:
            values["inquiry_display_link_after_x_message"] = int(
                values["inquiry_display_link_after_x_message"]
            )
        return cls(**values)

    def to_dict(self) -> dict[str, Any]:
        return {f.name: getattr(self, f.name) for f in fields(self)}


@dataclass(frozen=True)
class Document:
    """An uploaded file as stored by ingestion."""

    id: str
    chatbot_id: str
    filename: str
    content: str
    created_at: str = field(default_factory=utc_now)


@dataclass(frozen=True)
class IndexedPassage:
    """A unit of text stored in the vector index under one chatbot scope."""

    id: str
    chatbot_id: str
    content: str
    filename: str


@dataclass(frozen=True)
class PassageMatch:
    """A passage returned by a nearest-neighbour query.

    ``distance`` is the cosine distance (lower is more similar).
    """

    passage: IndexedPassage
    distance: float


@dataclass(frozen=True)
class IngestionResult:
    document: Document
    passages: list[IndexedPassage]

    @property
    def passage_id(self) -> str:
        return self.passages[0].id

    @property
    def passage_ids(self) -> list[str]:
        return [passage.id for passage in self.passages]


class RetrievalStatus(StrEnum):
    HIT = "hit"
    EMPTY = "empty"
    UNAVAILABLE = "unavailable"


@dataclass(frozen=True)
class RetrievalResult:
    """Outcome of a context lookup for one user turn."""

    chatbot_id: str
    status: RetrievalStatus
    passage: str | None = None
    filename: str | None = None
    distance: float | None = None

    @property
    def found(self) -> bool:
        return self.passage is not None

    @property
    def context_text(self) -> str:
        return self.passage or ""


@dataclass(frozen=True)
class Inquiry:
    """A user-initiated request for a human follow-up."""

    id: str
    chatbot_id: str
    conversation_id: str
    email: str
    message: str
    created_at: str = field(default_factory=utc_now)

    def to_dict(self) -> dict[str, str]:
        return {f.name: getattr(self, f.name) for f in fields(self)}
