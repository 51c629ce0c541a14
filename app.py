"""Chat widget using Streamlit."""

import asyncio

import streamlit as st

from kbchat import (
    ChatbotService,
    ConversationStateMachine,
    HttpChatbotClient,
    LocalChatbotClient,
    build_service,
)
from kbchat.client import ChatbotClient
from kbchat.config import config
from kbchat.errors import KBChatError
from kbchat.fetching import gather_isolated
from kbchat.state_machine import AttachmentStatus, NotificationKind, TurnStatus

LOADING_TEXT = "Thinking..."

config.setup_logging()
logger = config.get_logger(__name__)


@st.cache_resource
def get_service() -> ChatbotService:
    return build_service()


class SessionState:
    """Centralized session state management."""

    @staticmethod
    def initialize() -> None:
        defaults = {
            "backend": "In-process",
            "chatbot_id": None,
            "conversation": None,
            "sidebar_data": None,
        }

        for key, default_value in defaults.items():
            if key not in st.session_state:
                st.session_state[key] = default_value

    @staticmethod
    def reset_conversation() -> None:
        """Drop the current conversation so a fresh one is started."""
        st.session_state.conversation = None
        st.session_state.sidebar_data = None


def validate_configuration() -> bool:
    """Validate application configuration and show user feedback.

    Returns:
        bool: True if configuration is valid, False otherwise.
    """
    try:
        config.validate()
    except ValueError as e:
        st.error(f"Configuration Error: {e}")
        return False
    else:
        return True


def build_client() -> ChatbotClient:
    if st.session_state.backend == "HTTP API":
        return HttpChatbotClient()
    return LocalChatbotClient(get_service())


def start_conversation(chatbot_id: str) -> ConversationStateMachine | None:
    """Load the chatbot configuration and open a new conversation.

    Returns:
        The conversation, or None if the chatbot could not be loaded.
    """
    client = build_client()
    try:
        chatbot = asyncio.run(client.get_chatbot(chatbot_id))
    except KBChatError as e:
        logger.exception("Failed to load chatbot %s", chatbot_id)
        st.error(f"Failed to load chatbot: {e}")
        return None
    return ConversationStateMachine(chatbot, client)


def show_notifications(conversation: ConversationStateMachine) -> None:
    for notification in conversation.drain_notifications():
        icon = "⚠️" if notification.kind == NotificationKind.DESTRUCTIVE else "✅"
        st.toast(f"**{notification.title}**: {notification.description}", icon=icon)


def load_sidebar_data(conversation: ConversationStateMachine) -> None:
    """Fetch the model list and the chatbot's files side by side."""
    client = conversation.client
    chatbot_id = conversation.chatbot.id
    st.session_state.sidebar_data = asyncio.run(
        gather_isolated(
            {
                "models": client.list_models,
                "files": lambda: client.list_files(chatbot_id),
            }
        )
    )


def render_sidebar() -> None:
    """Render backend selection, chatbot selection and knowledge base info."""
    with st.sidebar:
        st.header("Chatbot")

        backend = st.radio("Backend", ["In-process", "HTTP API"], horizontal=True)
        if backend != st.session_state.backend:
            st.session_state.backend = backend
            SessionState.reset_conversation()

        chatbot_id = st.text_input("Chatbot ID", value=st.session_state.chatbot_id or "")
        if chatbot_id and chatbot_id != st.session_state.chatbot_id:
            st.session_state.chatbot_id = chatbot_id
            SessionState.reset_conversation()

        if st.button("New chat", use_container_width=True):
            SessionState.reset_conversation()
            st.rerun()

        conversation = st.session_state.conversation
        if conversation is None:
            return

        st.divider()
        st.subheader("Knowledge Base")
        if st.session_state.sidebar_data is None:
            load_sidebar_data(conversation)
        report = st.session_state.sidebar_data

        model = conversation.chatbot.model_name or config.CHAT_MODEL
        st.write(f"**Model:** {model}")
        if "models" in report.errors:
            st.warning("Could not load the model list")
        else:
            st.caption("Available: " + ", ".join(report.get("models", [])))

        if "files" in report.errors:
            st.warning("Could not load the uploaded files")
        else:
            files = report.get("files", [])
            st.write(f"**Files:** {len(files)}")
            for document in files:
                st.caption(document.filename)


def render_attachment(conversation: ConversationStateMachine) -> None:
    if not conversation.chatbot.chat_file_attachment_enabled:
        return

    uploaded_file = st.file_uploader(
        "Attach a document",
        type=["pdf", "txt", "md"],
        key=f"upload-{conversation.conversation_id}",
    )
    attachment = conversation.attachment
    if uploaded_file and (attachment is None or attachment.filename != uploaded_file.name):
        with st.spinner(f"Uploading '{uploaded_file.name}'..."):
            asyncio.run(conversation.attach(uploaded_file.name, uploaded_file.getvalue()))
        st.session_state.sidebar_data = None
        st.rerun()

    if attachment is not None:
        col1, col2 = st.columns([4, 1])
        with col1:
            status = {
                AttachmentStatus.UPLOADING: "uploading",
                AttachmentStatus.UPLOADED: "attached",
                AttachmentStatus.FAILED: "failed",
            }[attachment.status]
            st.caption(f"📎 {attachment.filename} ({status})")
        with col2:
            if st.button("Remove", key="clear-attachment"):
                conversation.clear_attachment()
                st.rerun()


def render_escalation(conversation: ConversationStateMachine) -> None:
    """Render the "talk to a human" link and form."""
    chatbot = conversation.chatbot
    if not conversation.escalation_available:
        return

    col1, col2 = st.columns([4, 1])
    with col1:
        if st.button(chatbot.inquiry_link_text, key="open-inquiry"):
            conversation.open_escalation()
            st.rerun()
    with col2:
        if st.button("✕", key="hide-inquiry"):
            conversation.hide_escalation()
            st.rerun()

    form = conversation.escalation
    if not form.open:
        return

    with st.form("inquiry"):
        st.subheader(chatbot.inquiry_title)
        st.caption(chatbot.inquiry_subtitle)
        email = st.text_input(chatbot.inquiry_email_label, value=form.email)
        message = st.text_area(chatbot.inquiry_message_label, value=form.message)
        submitted = st.form_submit_button(
            chatbot.inquiry_send_button_text, disabled=form.submitting
        )

    if submitted:
        conversation.update_escalation(email=email, message=message)
        with st.spinner("Sending..."):
            asyncio.run(conversation.submit_escalation())
        st.rerun()


def render_conversation(conversation: ConversationStateMachine) -> None:
    chatbot = conversation.chatbot
    st.title(chatbot.chat_title)

    with st.chat_message("assistant"):
        st.write(conversation.welcome_turn.content)

    for turn in conversation.turns:
        with st.chat_message(str(turn.role)):
            st.write(LOADING_TEXT if turn.pending else turn.content)

    if conversation.status == TurnStatus.FAILED and conversation.error_text:
        st.error(conversation.error_text)
        if st.button("Dismiss", key="dismiss-error"):
            conversation.dismiss_error()
            st.rerun()

    render_escalation(conversation)
    render_attachment(conversation)

    prompt = st.chat_input(
        chatbot.chat_message_placeholder,
        disabled=conversation.status == TurnStatus.AWAITING_REPLY,
    )
    if prompt:
        conversation.set_input(prompt)
        with st.chat_message("user"):
            st.write(prompt)
        with st.chat_message("assistant"), st.spinner(LOADING_TEXT):
            asyncio.run(conversation.submit())
        st.rerun()


def main() -> None:
    """Main entry point for the Streamlit chat widget."""
    st.set_page_config(page_title="KBChat", layout="centered")

    SessionState.initialize()
    render_sidebar()

    if st.session_state.backend == "In-process" and not validate_configuration():
        return

    if not st.session_state.chatbot_id:
        st.info("Enter a chatbot ID in the sidebar to start chatting.")
        return

    if st.session_state.conversation is None:
        st.session_state.conversation = start_conversation(st.session_state.chatbot_id)
        if st.session_state.conversation is None:
            return

    conversation = st.session_state.conversation
    show_notifications(conversation)
    render_conversation(conversation)


if __name__ == "__main__":
    main()
