"""Configuration management for KBChat."""

import logging
import os
from pathlib import Path

from dotenv import load_dotenv

env_path = Path(__file__).parent.parent / ".env"

if env_path.exists():
    load_dotenv(env_path)


def _split_csv(value: str) -> list[str]:
    return [item.strip() for item in value.split(",") if item.strip()]


class Config:
    """Application configuration loaded from environment variables."""

    # OpenAI Configuration
    @classmethod
    def get_openai_api_key(cls) -> str:
        """Get OpenAI API key from environment variables.

        Returns:
            OpenAI API key from environment or empty string if not set.
        """
        return os.getenv("OPENAI_API_KEY", "")

    OPENAI_BASE_URL: str | None = os.getenv("OPENAI_BASE_URL")

    # Logging Configuration
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO").upper()
    OPENAI_LOG_LEVEL: str = os.getenv("OPENAI_LOG_LEVEL", "WARNING").upper()

    # Application Settings
    ENVIRONMENT: str = os.getenv("ENVIRONMENT", "development")

    # Ingestion Configuration
    CHUNKING_POLICY: str = os.getenv("CHUNKING_POLICY", "whole").lower()
    CHUNK_SIZE: int = int(os.getenv("CHUNK_SIZE", "1000"))
    CHUNK_OVERLAP: int = int(os.getenv("CHUNK_OVERLAP", "200"))
    EMBEDDING_MODEL: str = os.getenv("EMBEDDING_MODEL", "text-embedding-3-small")

    # Chat Model Configuration
    CHAT_MODEL: str = os.getenv("CHAT_MODEL", "gpt-3.5-turbo")
    CHAT_MAX_TOKENS: int = int(os.getenv("CHAT_MAX_TOKENS", "500"))
    CHAT_TEMPERATURE: float = float(os.getenv("CHAT_TEMPERATURE", "0.7"))
    CHAT_TIMEOUT_SECONDS: float = float(os.getenv("CHAT_TIMEOUT_SECONDS", "30"))
    AVAILABLE_MODELS: list[str] = _split_csv(
        os.getenv("AVAILABLE_MODELS", "gpt-3.5-turbo,gpt-4o-mini,gpt-4o")
    )

    # Retrieval Configuration
    RETRIEVAL_MAX_DISTANCE: float = float(os.getenv("RETRIEVAL_MAX_DISTANCE", "0.7"))
    RETRIEVAL_TIMEOUT_SECONDS: float = float(
        os.getenv("RETRIEVAL_TIMEOUT_SECONDS", "5")
    )
    RETRIEVAL_MAX_WORKERS: int = int(os.getenv("RETRIEVAL_MAX_WORKERS", "8"))

    # Vector Store Configuration
    VECTOR_BACKEND: str = os.getenv("VECTOR_BACKEND", "faiss").lower()
    VECTOR_STORE_DB_PATH: Path = Path(
        os.getenv("VECTOR_STORE_DB_PATH", "data/vector_store.db")
    )
    VECTOR_STORE_DIR: Path = Path(os.getenv("VECTOR_STORE_DIR", "data/vectors"))
    FAISS_INDEX_DIR: Path = Path(os.getenv("FAISS_INDEX_DIR", "data/faiss"))

    # Records Configuration
    RECORDS_DB_PATH: Path = Path(os.getenv("RECORDS_DB_PATH", "data/records.db"))
    CHATBOTS_PATH: Path = Path(os.getenv("CHATBOTS_PATH", "data/chatbots.json"))

    # API Configuration
    API_USER_AGENT: str = os.getenv("API_USER_AGENT", "KBChat/1.0")
    API_TOKEN_HEADER: str = os.getenv("API_TOKEN_HEADER", "X-KBChat-Token")
    API_TOKENS: list[str] = _split_csv(os.getenv("API_TOKENS", "allow"))
    API_CLIENT_TOKEN: str = os.getenv("API_CLIENT_TOKEN", "allow")
    API_BASE_URL: str = os.getenv("API_BASE_URL", "http://localhost:8000")
    API_TIMEOUT_SECONDS: float = float(os.getenv("API_TIMEOUT_SECONDS", "60"))

    @classmethod
    def validate(cls) -> None:
        """Validate required configuration values.

        Raises:
            ValueError: If OPENAI_API_KEY is not set or a setting is out of range.
        """
        if not cls.get_openai_api_key():
            msg = (
                "OPENAI_API_KEY is required. Please set it in .env file or environment."
            )
            raise ValueError(msg)
        if cls.CHUNKING_POLICY not in {"whole", "fixed"}:
            msg = f"Unsupported CHUNKING_POLICY: {cls.CHUNKING_POLICY}"
            raise ValueError(msg)
        if cls.RETRIEVAL_TIMEOUT_SECONDS <= 0:
            msg = "RETRIEVAL_TIMEOUT_SECONDS must be positive"
            raise ValueError(msg)
        if cls.RETRIEVAL_MAX_WORKERS < 1:
            msg = "RETRIEVAL_MAX_WORKERS must be at least 1"
            raise ValueError(msg)

    @classmethod
    def is_development(cls) -> bool:
        """Check if running in development environment.

        Returns:
            True if environment is development.
        """
        return cls.ENVIRONMENT.lower() == "development"

    @classmethod
    def is_production(cls) -> bool:
        """Check if running in production environment.

        Returns:
            True if environment is production.
        """
        return cls.ENVIRONMENT.lower() == "production"

    @classmethod
    def setup_logging(cls) -> None:
        """Setup basic logging configuration.

        Configure logging once at application startup with:
        - Console output for all levels
        - Simple, readable format
        - Configurable level via environment variable
        """
        logging.basicConfig(
            level=getattr(logging, cls.LOG_LEVEL, logging.INFO),
            format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
            datefmt="%H:%M:%S",
        )

        # Configure third-party library log levels via environment variables
        third_party_level = getattr(logging, cls.OPENAI_LOG_LEVEL, logging.WARNING)
        for name in ("openai", "httpx"):
            logging.getLogger(name).setLevel(third_party_level)

    @classmethod
    def get_logger(cls, name: str) -> logging.Logger:
        """Get a logger with the specified name.

        Args:
            name: Logger name (typically __name__)

        Returns:
            Logger instance
        """
        return logging.getLogger(name)

    @classmethod
    def get_api_headers(cls, token: str | None = None) -> dict[str, str]:
        """Build default headers for outbound API calls.

        Args:
            token: Caller identity token. Falls back to API_CLIENT_TOKEN.

        Returns:
            Mapping of header names to values used on outbound HTTP requests.
        """
        headers: dict[str, str] = {}

        if cls.API_USER_AGENT:
            headers["User-Agent"] = cls.API_USER_AGENT

        identity = token if token is not None else cls.API_CLIENT_TOKEN
        if cls.API_TOKEN_HEADER and identity:
            headers[cls.API_TOKEN_HEADER] = identity

        return headers


config = Config()
