"""Document ingestion: raw text -> scoped, queryable passages."""

import uuid
from collections.abc import Sequence
from typing import Protocol

from .config import config
from .document_processing import Chunker, get_chunker
from .errors import InvalidInput, StorageUnavailable
from .models import Document, IndexedPassage, IngestionResult

logger = config.get_logger(__name__)


class PassageWriter(Protocol):
    def upsert_many(
        self, scope_id: str, passages: Sequence[tuple[str, str]], filename: str
    ) -> list[IndexedPassage]: ...

    def delete(self, scope_id: str, passage_id: str) -> bool: ...


class DocumentRecorder(Protocol):
    def add_document(self, document: Document) -> None: ...


class IngestionPipeline:
    """Turns an uploaded document into passages stored under a chatbot scope."""

    def __init__(
        self,
        vector_store: PassageWriter,
        chunker: Chunker | None = None,
        records: DocumentRecorder | None = None,
    ) -> None:
        """Initialize the ingestion pipeline.

        Args:
            vector_store: Store receiving the passages.
            chunker: Chunking policy. Defaults to ``config.CHUNKING_POLICY``.
            records: Optional store receiving the document record.
        """
        self.vector_store = vector_store
        self.chunker = chunker if chunker is not None else get_chunker()
        self.records = records

    @staticmethod
    def new_passage_id(chatbot_id: str, document_key: str, index: int) -> str:
        return f"{chatbot_id}-{document_key}-{index}"

    def ingest(self, chatbot_id: str, filename: str, raw_text: str) -> IngestionResult:
        """Store a document's passages in the chatbot's scope.

        Either every passage of the document becomes queryable or none does.

        Args:
            chatbot_id: Owning chatbot; becomes the passage scope.
            filename: Original file name, kept as passage metadata.
            raw_text: Decoded document text.

        Returns:
            The document record and the passages written.

        Raises:
            InvalidInput: If the chatbot id, filename or text is empty.
            StorageUnavailable: If the vector store or record store fails.
        """
        if not chatbot_id:
            msg = "chatbot_id is required"
            raise InvalidInput(msg)
        if not filename:
            msg = "filename is required"
            raise InvalidInput(msg)
        if not raw_text or not raw_text.strip():
            msg = "The uploaded document is empty"
            raise InvalidInput(msg)

        chunks = self.chunker.chunk_text(raw_text)
        if not chunks:
            msg = "The uploaded document is empty"
            raise InvalidInput(msg)

        document_key = uuid.uuid4().hex
        document = Document(
            id=document_key,
            chatbot_id=chatbot_id,
            filename=filename,
            content=raw_text,
        )

        planned = [
            (self.new_passage_id(chatbot_id, document_key, index), chunk)
            for index, chunk in enumerate(chunks)
        ]
        # upsert_many is all or nothing; only the record step needs a rollback.
        written: list[IndexedPassage] = []
        try:
            written = self.vector_store.upsert_many(chatbot_id, planned, filename)
            if self.records is not None:
                self.records.add_document(document)
        except Exception as exc:
            self._roll_back(chatbot_id, written)
            logger.exception(
                "Ingestion of %s failed for chatbot %s", filename, chatbot_id
            )
            if isinstance(exc, StorageUnavailable):
                raise
            raise StorageUnavailable from exc

        logger.info(
            "Ingested %s for chatbot %s as %d passage(s)",
            filename,
            chatbot_id,
            len(written),
        )
        return IngestionResult(document=document, passages=written)

    def _roll_back(self, chatbot_id: str, passages: list[IndexedPassage]) -> None:
        for passage in passages:
            try:
                self.vector_store.delete(chatbot_id, passage.id)
            except StorageUnavailable:
                logger.exception("Failed to roll back passage %s", passage.id)
