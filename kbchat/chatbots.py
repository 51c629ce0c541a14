"""Read-only chatbot configuration registry."""

import json
from pathlib import Path

from .config import config
from .models import ChatbotConfig

logger = config.get_logger(__name__)


class ChatbotRegistry:
    """Chatbot configurations keyed by id.

    The records are owned by the hosting application; this registry only
    reads them.
    """

    def __init__(self, chatbots: list[ChatbotConfig] | None = None) -> None:
        self._chatbots = {chatbot.id: chatbot for chatbot in chatbots or []}

    @classmethod
    def from_json(cls, path: Path | None = None) -> "ChatbotRegistry":
        """Load chatbot records from a JSON file holding a list of objects.

        A missing file yields an empty registry.

        Returns:
            The populated registry.

        Raises:
            ValueError: If the file is not a JSON list of chatbot records.
        """
        path = Path(path if path is not None else config.CHATBOTS_PATH)
        if not path.exists():
            logger.warning("Chatbot registry not found at %s; starting empty", path)
            return cls()

        with path.open(encoding="utf-8") as file:
            records = json.load(file)
        if not isinstance(records, list):
            msg = f"Chatbot registry {path} must contain a JSON list"
            raise ValueError(msg)

        registry = cls([ChatbotConfig.from_dict(record) for record in records])
        logger.info("Loaded %d chatbots from %s", len(registry), path)
        return registry

    def get(self, chatbot_id: str) -> ChatbotConfig | None:
        return self._chatbots.get(chatbot_id)

    def __len__(self) -> int:
        return len(self._chatbots)
