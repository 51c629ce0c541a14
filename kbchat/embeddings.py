"""Passage and query embeddings backed by the OpenAI embeddings endpoint."""

from collections.abc import Sequence

import numpy as np
from openai import OpenAI

from .config import config

logger = config.get_logger(__name__)


class EmbeddingService:
    """Turns passage and query text into float32 vectors.

    The vector stores call ``get_embedding`` once per upserted passage and
    once per query. Requests are never retried automatically so that a slow
    or failing backend surfaces to the store, which decides how to degrade.
    """

    def __init__(
        self,
        api_key: str | None = None,
        model: str | None = None,
        timeout: float | None = None,
    ) -> None:
        """Create the OpenAI client used for embedding requests.

        Args:
            api_key: OpenAI API key. Falls back to OPENAI_API_KEY.
            model: Embedding model name. Falls back to config.EMBEDDING_MODEL.
            timeout: Per-request timeout in seconds. Falls back to
                config.CHAT_TIMEOUT_SECONDS.
        """
        self.client = OpenAI(
            api_key=api_key or config.get_openai_api_key(),
            base_url=config.OPENAI_BASE_URL,
            default_headers={"User-Agent": config.API_USER_AGENT},
            timeout=timeout if timeout is not None else config.CHAT_TIMEOUT_SECONDS,
            max_retries=0,
        )
        self.model = model or config.EMBEDDING_MODEL
        self.dimension: int | None = None

    def _request(self, payload: str | Sequence[str]) -> list[np.ndarray]:
        response = self.client.embeddings.create(model=self.model, input=payload)
        vectors = [np.array(item.embedding, dtype="float32") for item in response.data]
        expected = 1 if isinstance(payload, str) else len(payload)
        if len(vectors) != expected:
            raise ValueError(
                f"Embedding backend returned {len(vectors)} vectors for {expected} inputs"
            )
        if self.dimension is None and vectors:
            self.dimension = vectors[0].shape[0]
        return vectors

    def get_embedding(self, text: str) -> np.ndarray:
        """Embed a single passage or query.

        Returns:
            np.ndarray: A one-dimensional float32 vector.
        """
        try:
            [vector] = self._request(text)
        except Exception:
            logger.exception("Embedding request failed for model %s", self.model)
            raise
        return vector

    def get_embeddings_batch(
        self,
        texts: list[str],
        batch_size: int = 100,
    ) -> list[np.ndarray]:
        """Embed many texts, ``batch_size`` inputs per request.

        A failing batch aborts the whole call; vectors from earlier batches
        are discarded with it.

        Returns:
            list[np.ndarray]: One vector per input text, in input order.
        """
        vectors: list[np.ndarray] = []
        for start in range(0, len(texts), batch_size):
            batch_number = start // batch_size + 1
            try:
                vectors.extend(self._request(texts[start : start + batch_size]))
            except Exception:
                logger.exception("Embedding batch %d failed", batch_number)
                raise
            logger.debug("Embedded batch %d (%d texts)", batch_number, len(vectors))
        return vectors
