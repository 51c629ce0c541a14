"""Fail-open context retrieval scoped to one chatbot."""

import threading
from collections.abc import Callable
from concurrent.futures import Executor, ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from dataclasses import dataclass
from typing import Protocol

from .config import config
from .models import PassageMatch, RetrievalResult, RetrievalStatus

logger = config.get_logger(__name__)


class PassageSearcher(Protocol):
    def query(
        self,
        scope_id: str,
        query_text: str,
        max_distance: float,
        limit: int = 1,
    ) -> list[PassageMatch]: ...


@dataclass(frozen=True)
class RetrievalSnapshot:
    hits: int
    empty: int
    unavailable: int

    @property
    def total(self) -> int:
        return self.hits + self.empty + self.unavailable


class RetrievalStats:
    """Thread-safe counters of retrieval outcomes."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._counts = dict.fromkeys(RetrievalStatus, 0)

    def record(self, status: RetrievalStatus) -> None:
        with self._lock:
            self._counts[status] += 1

    def snapshot(self) -> RetrievalSnapshot:
        with self._lock:
            return RetrievalSnapshot(
                hits=self._counts[RetrievalStatus.HIT],
                empty=self._counts[RetrievalStatus.EMPTY],
                unavailable=self._counts[RetrievalStatus.UNAVAILABLE],
            )


class ContextRetriever:
    """Finds the single most relevant passage for a user turn.

    Retrieval never fails a conversation: store errors, malformed responses
    and timeouts all degrade to an ``unavailable`` result with no passage.
    """

    def __init__(
        self,
        vector_store: PassageSearcher,
        max_distance: float | None = None,
        timeout: float | None = None,
        executor: Executor | None = None,
        max_workers: int | None = None,
        on_unavailable: Callable[[str, BaseException], None] | None = None,
    ) -> None:
        """Initialize the retriever.

        Args:
            vector_store: Store queried within the chatbot scope.
            max_distance: Cosine distance cutoff. Defaults to
                RETRIEVAL_MAX_DISTANCE.
            timeout: Seconds to wait for the store. Defaults to
                RETRIEVAL_TIMEOUT_SECONDS.
            executor: Executor running the store query. A private thread pool
                is created when omitted.
            max_workers: Size of the private pool. Defaults to
                RETRIEVAL_MAX_WORKERS. Ignored when ``executor`` is given.
            on_unavailable: Called with the chatbot id and the error whenever
                retrieval fails open.
        """
        self.vector_store = vector_store
        self.max_distance = (
            max_distance if max_distance is not None else config.RETRIEVAL_MAX_DISTANCE
        )
        self.timeout = (
            timeout if timeout is not None else config.RETRIEVAL_TIMEOUT_SECONDS
        )
        self._owns_executor = executor is None
        self.executor = executor or ThreadPoolExecutor(
            max_workers=max_workers or config.RETRIEVAL_MAX_WORKERS,
            thread_name_prefix="kbchat-retrieval",
        )
        self.on_unavailable = on_unavailable
        self.stats = RetrievalStats()

    def retrieve(self, chatbot_id: str, query_text: str) -> RetrievalResult:
        """Return the nearest passage of ``chatbot_id`` within the cutoff.

        Returns:
            A ``hit`` carrying the passage, ``empty`` when nothing is close
            enough, or ``unavailable`` when the store could not answer in time.
        """
        if not query_text or not query_text.strip():
            return self._finish(RetrievalResult(chatbot_id, RetrievalStatus.EMPTY))

        future = self.executor.submit(
            self.vector_store.query, chatbot_id, query_text, self.max_distance, 1
        )
        try:
            matches = future.result(timeout=self.timeout)
            best = self._best_match(chatbot_id, matches)
        except FutureTimeoutError as exc:
            future.cancel()
            return self._fail_open(chatbot_id, TimeoutError(str(exc) or "timed out"))
        except Exception as exc:  # noqa: BLE001
            return self._fail_open(chatbot_id, exc)

        if best is None:
            logger.debug(
                "No passage within %.2f for chatbot %s", self.max_distance, chatbot_id
            )
            return self._finish(RetrievalResult(chatbot_id, RetrievalStatus.EMPTY))

        return self._finish(
            RetrievalResult(
                chatbot_id=chatbot_id,
                status=RetrievalStatus.HIT,
                passage=best.passage.content,
                filename=best.passage.filename,
                distance=best.distance,
            )
        )

    def _best_match(
        self, chatbot_id: str, matches: list[PassageMatch]
    ) -> PassageMatch | None:
        """Pick the closest valid match.

        Raises:
            TypeError: If the store returned something other than matches.
            ValueError: If a match belongs to another scope.
        """
        if not isinstance(matches, list):
            msg = f"Unexpected vector store response: {type(matches).__name__}"
            raise TypeError(msg)
        candidates = []
        for match in matches:
            if not isinstance(match, PassageMatch):
                msg = f"Unexpected vector store match: {type(match).__name__}"
                raise TypeError(msg)
            if match.passage.chatbot_id != chatbot_id:
                msg = f"Passage {match.passage.id} is outside scope {chatbot_id}"
                raise ValueError(msg)
            if match.distance <= self.max_distance:
                candidates.append(match)
        if not candidates:
            return None
        return min(candidates, key=lambda match: match.distance)

    def _fail_open(self, chatbot_id: str, exc: BaseException) -> RetrievalResult:
        logger.warning(
            "Retrieval unavailable for chatbot %s, answering without context: %s",
            chatbot_id,
            exc,
        )
        if self.on_unavailable is not None:
            try:
                self.on_unavailable(chatbot_id, exc)
            except Exception:
                logger.exception("on_unavailable hook failed")
        return self._finish(RetrievalResult(chatbot_id, RetrievalStatus.UNAVAILABLE))

    def _finish(self, result: RetrievalResult) -> RetrievalResult:
        self.stats.record(result.status)
        return result

    def close(self) -> None:
        if self._owns_executor:
            self.executor.shutdown(wait=False, cancel_futures=True)
