"""SQLite persistence for uploaded documents and escalation inquiries."""

import sqlite3
import threading
from pathlib import Path

from .config import config
from .errors import StorageUnavailable
from .models import Document, Inquiry

logger = config.get_logger(__name__)


class RecordStore:
    """Write-once records owned by the core: documents and inquiries."""

    def __init__(self, db_path: Path | None = None) -> None:
        self.db_path = Path(db_path if db_path is not None else config.RECORDS_DB_PATH)
        self.db_path.parent.mkdir(exist_ok=True, parents=True)
        self._lock = threading.Lock()
        self._create_tables()

    def _create_tables(self) -> None:
        with sqlite3.connect(str(self.db_path)) as conn:
            cursor = conn.cursor()
            cursor.execute("""
                CREATE TABLE IF NOT EXISTS documents (
                    id TEXT PRIMARY KEY,
                    chatbot_id TEXT NOT NULL,
                    filename TEXT NOT NULL,
                    content TEXT NOT NULL,
                    created_at TEXT NOT NULL
                )
            """)
            cursor.execute("""
                CREATE TABLE IF NOT EXISTS inquiries (
                    id TEXT PRIMARY KEY,
                    chatbot_id TEXT NOT NULL,
                    conversation_id TEXT NOT NULL,
                    email TEXT NOT NULL,
                    message TEXT NOT NULL,
                    created_at TEXT NOT NULL
                )
            """)
            cursor.execute(
                "CREATE INDEX IF NOT EXISTS idx_documents_chatbot "
                "ON documents(chatbot_id)"
            )
            cursor.execute(
                "CREATE INDEX IF NOT EXISTS idx_inquiries_chatbot "
                "ON inquiries(chatbot_id)"
            )
            conn.commit()

    def add_document(self, document: Document) -> None:
        """Persist a document record.

        Raises:
            StorageUnavailable: If the record cannot be written.
        """
        try:
            with self._lock, sqlite3.connect(str(self.db_path)) as conn:
                conn.execute(
                    """
                    INSERT INTO documents (id, chatbot_id, filename, content, created_at)
                    VALUES (?, ?, ?, ?, ?)
                    """,
                    (
                        document.id,
                        document.chatbot_id,
                        document.filename,
                        document.content,
                        document.created_at,
                    ),
                )
                conn.commit()
        except sqlite3.Error as exc:
            logger.exception("Failed to store document %s", document.id)
            raise StorageUnavailable from exc

    def list_documents(self, chatbot_id: str) -> list[Document]:
        with sqlite3.connect(str(self.db_path)) as conn:
            cursor = conn.cursor()
            cursor.execute(
                """
                SELECT id, chatbot_id, filename, content, created_at
                FROM documents
                WHERE chatbot_id = ?
                ORDER BY created_at
                """,
                (chatbot_id,),
            )
            return [Document(*row) for row in cursor.fetchall()]

    def add_inquiry(self, inquiry: Inquiry) -> None:
        """Persist an inquiry record.

        Raises:
            StorageUnavailable: If the record cannot be written.
        """
        try:
            with self._lock, sqlite3.connect(str(self.db_path)) as conn:
                conn.execute(
                    """
                    INSERT INTO inquiries
                        (id, chatbot_id, conversation_id, email, message, created_at)
                    VALUES (?, ?, ?, ?, ?, ?)
                    """,
                    (
                        inquiry.id,
                        inquiry.chatbot_id,
                        inquiry.conversation_id,
                        inquiry.email,
                        inquiry.message,
                        inquiry.created_at,
                    ),
                )
                conn.commit()
        except sqlite3.Error as exc:
            logger.exception("Failed to store inquiry %s", inquiry.id)
            raise StorageUnavailable from exc

    def list_inquiries(self, chatbot_id: str) -> list[Inquiry]:
        with sqlite3.connect(str(self.db_path)) as conn:
            cursor = conn.cursor()
            cursor.execute(
                """
                SELECT id, chatbot_id, conversation_id, email, message, created_at
                FROM inquiries
                WHERE chatbot_id = ?
                ORDER BY created_at
                """,
                (chatbot_id,),
            )
            return [Inquiry(*row) for row in cursor.fetchall()]
