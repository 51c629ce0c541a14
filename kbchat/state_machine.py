"""Client-side conversation state: turns, attachment and escalation flows.

The machine is driven from a single asyncio event loop. Every change to the
turn list goes through ``_apply`` so the list stays append-only, with at most
one loading placeholder kept in last position.
"""

import asyncio
import itertools
import uuid
from collections.abc import Callable
from dataclasses import dataclass, replace
from enum import StrEnum

from .client import ChatbotClient
from .config import config
from .errors import KBChatError
from .models import ChatbotConfig, ChatMessage, ConversationTurn, Role

logger = config.get_logger(__name__)

WELCOME_TURN_ID = "welcome"


class TurnStatus(StrEnum):
    IDLE = "idle"
    COMPOSING = "composing"
    AWAITING_REPLY = "awaiting_reply"
    FAILED = "failed"


class AttachmentStatus(StrEnum):
    UPLOADING = "uploading"
    UPLOADED = "uploaded"
    FAILED = "failed"


class NotificationKind(StrEnum):
    INFO = "info"
    DESTRUCTIVE = "destructive"


@dataclass(frozen=True)
class Attachment:
    filename: str
    status: AttachmentStatus
    document_id: str | None = None


@dataclass(frozen=True)
class EscalationForm:
    open: bool = False
    email: str = ""
    message: str = ""
    submitting: bool = False


@dataclass(frozen=True)
class Notification:
    title: str
    description: str
    kind: NotificationKind = NotificationKind.INFO


# Events accepted by ConversationStateMachine._apply
@dataclass(frozen=True)
class UserTurnSubmitted:
    content: str


@dataclass(frozen=True)
class ReplyReceived:
    message: ChatMessage


@dataclass(frozen=True)
class ReplyFailed:
    error: BaseException


@dataclass(frozen=True)
class ReplyCancelled:
    pass


@dataclass(frozen=True)
class EscalationAccepted:
    reply_text: str


Event = (
    UserTurnSubmitted
    | ReplyReceived
    | ReplyFailed
    | ReplyCancelled
    | EscalationAccepted
)


@dataclass(frozen=True)
class ConversationSnapshot:
    """Immutable view of the conversation handed to the presentation layer."""

    chatbot_id: str
    conversation_id: str
    status: TurnStatus
    welcome_turn: ConversationTurn
    turns: tuple[ConversationTurn, ...]
    input_text: str
    can_submit: bool
    error_text: str | None
    attachment: Attachment | None
    escalation: EscalationForm
    escalation_available: bool


Listener = Callable[[ConversationSnapshot], None]


class ConversationStateMachine:
    """Conversation between one user and one chatbot."""

    def __init__(
        self,
        chatbot: ChatbotConfig,
        client: ChatbotClient,
        default_message: str = "",
        conversation_id: str | None = None,
    ) -> None:
        """Initialize the conversation.

        Args:
            chatbot: Configuration of the chatbot, loaded once.
            client: Transport for replies, uploads and inquiries.
            default_message: Text pre-filled in the input box.
            conversation_id: Thread id sent with inquiries. Generated if omitted.
        """
        self.chatbot = chatbot
        self.client = client
        self.conversation_id = conversation_id or uuid.uuid4().hex

        self._turns: list[ConversationTurn] = []
        self._turn_ids = itertools.count(1)
        self.input_text = default_message
        self.status = TurnStatus.COMPOSING if default_message else TurnStatus.IDLE
        self.error_text: str | None = None
        self.attachment: Attachment | None = None
        self.escalation = EscalationForm()
        self.escalation_hidden = False

        self._notifications: list[Notification] = []
        self._listeners: list[Listener] = []
        self._reply_task: asyncio.Task[ChatMessage] | None = None
        self._cancel_requested = False

    @property
    def turns(self) -> tuple[ConversationTurn, ...]:
        return tuple(self._turns)

    @property
    def welcome_turn(self) -> ConversationTurn:
        return ConversationTurn(
            id=WELCOME_TURN_ID,
            role=Role.ASSISTANT,
            content=self.chatbot.welcome_message,
        )

    @property
    def can_submit(self) -> bool:
        if self.status == TurnStatus.AWAITING_REPLY:
            return False
        return bool(self.input_text.strip())

    @property
    def escalation_available(self) -> bool:
        """Whether the "talk to a human" link should be shown.

        The loading placeholder and the welcome turn do not count towards the
        display threshold.
        """
        if not self.chatbot.inquiry_enabled or self.escalation_hidden:
            return False
        settled = sum(1 for turn in self._turns if not turn.pending)
        return settled >= self.chatbot.inquiry_display_link_after_x_message

    def history(self) -> list[ChatMessage]:
        """Return the settled turns as messages for the backend."""
        return [turn.to_message() for turn in self._turns if not turn.pending]

    def snapshot(self) -> ConversationSnapshot:
        return ConversationSnapshot(
            chatbot_id=self.chatbot.id,
            conversation_id=self.conversation_id,
            status=self.status,
            welcome_turn=self.welcome_turn,
            turns=self.turns,
            input_text=self.input_text,
            can_submit=self.can_submit,
            error_text=self.error_text,
            attachment=self.attachment,
            escalation=self.escalation,
            escalation_available=self.escalation_available,
        )

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register a callback invoked with a snapshot after every change.

        Returns:
            A function that removes the listener.
        """
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def drain_notifications(self) -> list[Notification]:
        notifications, self._notifications = self._notifications, []
        return notifications

    def _notify(self) -> None:
        snapshot = self.snapshot()
        for listener in list(self._listeners):
            try:
                listener(snapshot)
            except Exception:
                logger.exception("Conversation listener failed")

    def _queue(self, notification: Notification) -> None:
        self._notifications.append(notification)

    def _queue_error(self, description: str) -> None:
        self._queue(Notification("Error", description, NotificationKind.DESTRUCTIVE))

    # Main flow

    def set_input(self, text: str) -> None:
        self.input_text = text
        if self.status in {TurnStatus.IDLE, TurnStatus.COMPOSING}:
            self.status = TurnStatus.COMPOSING if text else TurnStatus.IDLE
        self._notify()

    async def submit(self) -> ConversationTurn | None:
        """Send the current input and wait for the assistant reply.

        Returns:
            The assistant turn, or None if nothing was sent, the reply failed
            or it was cancelled.
        """
        if not self.can_submit:
            return None

        text = self.input_text.strip()
        self.input_text = ""
        self.attachment = None
        self._apply(UserTurnSubmitted(text))

        self._cancel_requested = False
        self._reply_task = asyncio.create_task(
            self.client.send_turn(self.chatbot.id, self.history())
        )
        try:
            reply = await self._reply_task
        except asyncio.CancelledError:
            self._apply(ReplyCancelled())
            if not self._cancel_requested:
                raise
            return None
        except Exception as exc:
            logger.warning("Reply failed for chatbot %s: %s", self.chatbot.id, exc)
            self._apply(ReplyFailed(exc))
            return None
        finally:
            self._reply_task = None

        return self._apply(ReplyReceived(reply))

    def cancel(self) -> bool:
        """Abandon the reply in flight. The user turn is kept.

        Returns:
            True if a reply was cancelled.
        """
        if self._reply_task is None or self._reply_task.done():
            return False
        self._cancel_requested = True
        self._reply_task.cancel()
        return True

    def dismiss_error(self) -> None:
        if self.status != TurnStatus.FAILED:
            return
        self.error_text = None
        self.status = self._resting_status()
        self._notify()

    def _resting_status(self) -> TurnStatus:
        return TurnStatus.COMPOSING if self.input_text else TurnStatus.IDLE

    def _next_turn_id(self) -> str:
        return str(next(self._turn_ids))

    def _drop_placeholder(self) -> None:
        if self._turns and self._turns[-1].pending:
            self._turns.pop()

    def _apply(self, event: Event) -> ConversationTurn | None:
        """Apply one event to the turn list and notify listeners.

        Returns:
            The turn appended by the event, if any.
        """
        appended: ConversationTurn | None = None

        match event:
            case UserTurnSubmitted(content=content):
                appended = ConversationTurn(self._next_turn_id(), Role.USER, content)
                self._turns.append(appended)
                placeholder = ConversationTurn(
                    self._next_turn_id(), Role.ASSISTANT, "", pending=True
                )
                self._turns.append(placeholder)
                self.status = TurnStatus.AWAITING_REPLY
                self.error_text = None
            case ReplyReceived(message=message):
                self._drop_placeholder()
                appended = ConversationTurn(
                    self._next_turn_id(), Role.ASSISTANT, message.content
                )
                self._turns.append(appended)
                self.status = self._resting_status()
            case ReplyFailed():
                self._drop_placeholder()
                self.status = TurnStatus.FAILED
                self.error_text = self.chatbot.chatbot_error_message
                self._queue_error(self.chatbot.chatbot_error_message)
            case ReplyCancelled():
                self._drop_placeholder()
                self.status = self._resting_status()
            case EscalationAccepted(reply_text=reply_text):
                appended = ConversationTurn(
                    self._next_turn_id(), Role.ASSISTANT, reply_text
                )
                if self._turns and self._turns[-1].pending:
                    self._turns.insert(len(self._turns) - 1, appended)
                else:
                    self._turns.append(appended)
                self.escalation = EscalationForm()

        self._notify()
        return appended

    # Attachment flow

    async def attach(self, filename: str, data: bytes) -> bool:
        """Upload a file to the chatbot's knowledge base.

        Runs independently of the reply flow and never touches the turns.

        Returns:
            True if the file was stored.
        """
        if not self.chatbot.chat_file_attachment_enabled:
            self._queue_error("File attachments are disabled for this chatbot")
            self._notify()
            return False
        current = self.attachment
        if current is not None and current.status == AttachmentStatus.UPLOADING:
            return False

        pending = Attachment(filename, AttachmentStatus.UPLOADING)
        self.attachment = pending
        self._notify()

        try:
            document_id = await self.client.upload_file(self.chatbot.id, filename, data)
        except KBChatError as exc:
            logger.warning("Upload of %s failed: %s", filename, exc)
            if self.attachment is pending:
                self.attachment = replace(pending, status=AttachmentStatus.FAILED)
            self._queue_error(exc.message)
            self._notify()
            return False

        if self.attachment is pending:
            self.attachment = Attachment(
                filename, AttachmentStatus.UPLOADED, document_id
            )
        self._queue(Notification("Success", "File uploaded successfully"))
        self._notify()
        return True

    def clear_attachment(self) -> None:
        self.attachment = None
        self._notify()

    # Escalation flow

    def open_escalation(self) -> bool:
        if not self.escalation_available:
            return False
        self.escalation = replace(self.escalation, open=True)
        self._notify()
        return True

    def close_escalation(self) -> None:
        self.escalation = replace(self.escalation, open=False)
        self._notify()

    def hide_escalation(self) -> None:
        if self.escalation_hidden and not self.escalation.open:
            return
        self.escalation_hidden = True
        self.escalation = replace(self.escalation, open=False)
        self._notify()

    def update_escalation(
        self, email: str | None = None, message: str | None = None
    ) -> None:
        self.escalation = replace(
            self.escalation,
            email=self.escalation.email if email is None else email,
            message=self.escalation.message if message is None else message,
        )
        self._notify()

    async def submit_escalation(self) -> bool:
        """Send the escalation form as an inquiry.

        On success the automatic reply is appended and the form closes. On
        failure the form stays open with its contents.

        Returns:
            True if the inquiry was accepted.
        """
        if not self.escalation.open or self.escalation.submitting:
            return False

        form = self.escalation
        self.escalation = replace(form, submitting=True)
        self._notify()

        try:
            await self.client.submit_inquiry(
                self.chatbot.id, self.conversation_id, form.email, form.message
            )
        except KBChatError as exc:
            logger.warning("Inquiry for chatbot %s failed: %s", self.chatbot.id, exc)
            self.escalation = replace(self.escalation, submitting=False)
            self._queue_error(exc.message)
            self._notify()
            return False

        self._apply(EscalationAccepted(self.chatbot.inquiry_automatic_reply_text))
        return True
