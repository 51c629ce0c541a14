"""Chat completion client for the language-model backend."""

from collections.abc import Sequence

import openai
from openai import OpenAI

from .config import config
from .errors import GenerationFailed, InvalidMessage
from .models import ChatMessage, Role

logger = config.get_logger(__name__)


class GenerationClient:
    """Wraps OpenAI chat completions behind ``complete(model, messages)``.

    Timeouts, quota errors and malformed completions all surface as
    ``GenerationFailed``. Retries are disabled; re-sending is left to the user.
    """

    def __init__(
        self,
        api_key: str | None = None,
        timeout: float | None = None,
        max_tokens: int | None = None,
        temperature: float | None = None,
    ) -> None:
        """Initialize the generation client.

        Args:
            api_key: OpenAI API key. Falls back to OPENAI_API_KEY.
            timeout: Request timeout in seconds. Defaults to CHAT_TIMEOUT_SECONDS.
            max_tokens: Completion token cap. Defaults to CHAT_MAX_TOKENS.
            temperature: Sampling temperature. Defaults to CHAT_TEMPERATURE.
        """
        self.client = OpenAI(
            api_key=api_key or config.get_openai_api_key(),
            base_url=config.OPENAI_BASE_URL,
            default_headers={"User-Agent": config.API_USER_AGENT},
            timeout=timeout if timeout is not None else config.CHAT_TIMEOUT_SECONDS,
            max_retries=0,
        )
        self.max_tokens = max_tokens if max_tokens is not None else config.CHAT_MAX_TOKENS
        self.temperature = (
            temperature if temperature is not None else config.CHAT_TEMPERATURE
        )

    def complete(self, model: str, messages: Sequence[ChatMessage]) -> ChatMessage:
        """Generate the assistant reply for an ordered message sequence.

        Returns:
            The validated assistant message.

        Raises:
            GenerationFailed: If the backend errors, times out or returns a
                completion without assistant text.
        """
        try:
            response = self.client.chat.completions.create(
                model=model,
                messages=[message.to_dict() for message in messages],
                max_tokens=self.max_tokens,
                temperature=self.temperature,
            )
        except openai.OpenAIError as exc:
            logger.exception("Chat completion failed for model %s", model)
            raise GenerationFailed from exc

        try:
            choice = response.choices[0].message
            reply = ChatMessage.from_dict(
                {"role": choice.role or "assistant", "content": choice.content},
                allowed_roles=frozenset({Role.ASSISTANT}),
            )
        except (AttributeError, IndexError, TypeError, InvalidMessage) as exc:
            logger.exception("Malformed chat completion from model %s", model)
            raise GenerationFailed from exc

        logger.info("Generated %d characters with model %s", len(reply.content), model)
        return reply
