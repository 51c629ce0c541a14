"""Error taxonomy shared by the server-side core and the client transports."""


class KBChatError(Exception):
    """Base class for all KBChat errors.

    The message is always safe to show to an end user; internal detail is kept
    on the chained ``__cause__``.
    """

    default_message = "An unexpected error occurred."

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.default_message)

    @property
    def message(self) -> str:
        return str(self)


class Unauthorized(KBChatError):
    default_message = "Unauthorized"


class NotFound(KBChatError):
    default_message = "Chatbot not found"


class InvalidInput(KBChatError, ValueError):
    default_message = "Invalid request"


class InvalidMessage(InvalidInput):
    default_message = "Invalid conversation message"


class StorageUnavailable(KBChatError):
    default_message = "The document store is unavailable"


class RetrievalUnavailable(KBChatError):
    default_message = "The document index could not be queried"


class GenerationFailed(KBChatError):
    default_message = "The assistant could not generate a reply"


class IngestionFailed(KBChatError):
    default_message = "Failed to upload file"


class EscalationFailed(KBChatError):
    default_message = "Failed to send inquiry"
