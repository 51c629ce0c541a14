"""Uploaded file decoding and passage chunking policies."""

import io
from typing import Protocol

import pypdf

from .config import config
from .errors import InvalidInput

logger = config.get_logger(__name__)


class DocumentLoader:
    """Turns uploaded file payloads into raw text."""

    @staticmethod
    def load_pdf(data: bytes) -> str:
        """Load text content from PDF bytes.

        Returns:
            The extracted text content from the PDF as a string.
        """
        try:
            pdf_reader = pypdf.PdfReader(io.BytesIO(data))
            text = ""
            for page_num, page in enumerate(pdf_reader.pages):
                page_text = page.extract_text()
                text += f"\n--- Page {page_num + 1} ---\n{page_text}\n"
        except Exception:
            logger.exception("Error loading PDF payload")
            raise
        else:
            return text

    @staticmethod
    def load_text(data: bytes) -> str:
        """Decode a text payload as UTF-8.

        Returns:
            The decoded text.

        Raises:
            InvalidInput: If the payload is not valid UTF-8 text.
        """
        try:
            return data.decode("utf-8-sig")
        except UnicodeDecodeError as exc:
            msg = "Uploaded file is not a UTF-8 text document"
            raise InvalidInput(msg) from exc

    @classmethod
    def load_bytes(cls, filename: str, data: bytes) -> str:
        """Load an uploaded payload based on its file extension.

        PDF files go through pypdf; anything else is read as text.

        Args:
            filename: Original name of the uploaded file.
            data: Raw file payload.

        Returns:
            The text content of the document as a string.
        """
        if filename.lower().endswith(".pdf"):
            return cls.load_pdf(data)
        return cls.load_text(data)


class Chunker(Protocol):
    def chunk_text(self, text: str) -> list[str]: ...


class WholeDocumentChunker:
    """Stores the whole document as a single passage."""

    @staticmethod
    def chunk_text(text: str) -> list[str]:
        stripped = text.strip()
        return [stripped] if stripped else []


class TextChunker:
    """Handles text chunking with fixed length and overlap strategy."""

    def __init__(self, chunk_size: int = 1000, overlap: int = 200) -> None:
        """Initialize the TextChunker with chunk size and overlap.

        Args:
            chunk_size: The size of each text chunk.
            overlap: The number of overlapping characters between chunks.

        Raises:
            ValueError: If overlap is not smaller than chunk_size.
        """
        if chunk_size <= 0 or not 0 <= overlap < chunk_size:
            msg = "chunk_size must be positive and larger than overlap"
            raise ValueError(msg)
        self.chunk_size = chunk_size
        self.overlap = overlap

    def chunk_text(self, text: str) -> list[str]:
        """Split text into overlapping chunks.

        Returns:
            The non-empty chunk texts in document order.
        """
        chunks = []
        start = 0

        while start < len(text):
            end = start + self.chunk_size
            chunk_text = text[start:end]

            # Ensure we don't break in the middle of a word (except for last chunk)
            if end < len(text) and not chunk_text.endswith(" "):
                last_space = chunk_text.rfind(" ")
                # At least half chunk size to prevent too small chunks after adjustment
                if last_space > self.chunk_size // 2:
                    end = start + last_space
                    chunk_text = text[start:end]

            if chunk_text.strip():
                chunks.append(chunk_text.strip())

            if end >= len(text):
                break
            start = end - self.overlap

        logger.info("Text split into %d chunks", len(chunks))
        return chunks


def get_chunker(policy: str | None = None) -> Chunker:
    """Return the chunker for a chunking policy ("whole" | "fixed").

    Raises:
        ValueError: If the policy is unknown.
    """
    policy = (policy or config.CHUNKING_POLICY).lower()
    if policy == "whole":
        return WholeDocumentChunker()
    if policy == "fixed":
        return TextChunker(chunk_size=config.CHUNK_SIZE, overlap=config.CHUNK_OVERLAP)
    msg = f"Unsupported chunking policy: {policy}"
    raise ValueError(msg)
