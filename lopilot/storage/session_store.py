"""
Session Store - Persists the whole chat history as a single blob.
"""

import json
import logging
from typing import List, Optional
from pydantic import TypeAdapter, ValidationError

from .interface import StorageInterface
from ..models import ChatSession

logger = logging.getLogger(__name__)

_sessions_adapter = TypeAdapter(List[ChatSession])


class SessionStore:
    """
    Reads and writes the full session collection under one fixed key.
    There is no partial-write API: every save replaces the whole collection.
    """

    def __init__(self, storage: StorageInterface, key: str = "chat_history.json"):
        self.storage = storage
        self.key = key

    async def load(self) -> List[ChatSession]:
        """
        Load every stored session, newest first.

        A missing or undecodable blob yields an empty history; it is never
        raised to the caller.
        """
        content = await self.storage.load(self.key)
        if content is None:
            return []

        try:
            sessions = _sessions_adapter.validate_json(content)
        except (ValidationError, ValueError) as e:
            logger.error(
                f"Failed to decode chat history, starting empty: {e}",
                extra={"extra_fields": {"key": self.key, "bytes": len(content)}}
            )
            return []

        sessions.sort(key=lambda s: s.timestamp, reverse=True)
        logger.info(f"Loaded {len(sessions)} chat sessions")
        return sessions

    async def save(self, sessions: List[ChatSession]) -> bool:
        """
        Persist the full collection.

        On encode failure the previously stored blob is left untouched.
        """
        try:
            data = _sessions_adapter.dump_json(list(sessions))
        except (ValueError, TypeError) as e:
            logger.error(f"Failed to encode chat history, keeping previous copy: {e}", exc_info=True)
            return False

        saved = await self.storage.save(self.key, data)
        if not saved:
            logger.error("Chat history could not be written")
        return saved


class PreferenceStore:
    """Small JSON document of user preferences (e.g. the last selected model)."""

    def __init__(self, storage: StorageInterface, key: str = "preferences.json"):
        self.storage = storage
        self.key = key

    async def _load(self) -> dict:
        content = await self.storage.load(self.key)
        if content is None:
            return {}
        try:
            data = json.loads(content.decode('utf-8'))
        except (UnicodeDecodeError, json.JSONDecodeError):
            logger.warning("Preferences file is unreadable, ignoring it")
            return {}
        return data if isinstance(data, dict) else {}

    async def get_last_selected_model(self) -> Optional[str]:
        value = (await self._load()).get("last_selected_model")
        return value if isinstance(value, str) else None

    async def save_last_selected_model(self, model: str) -> bool:
        data = await self._load()
        data["last_selected_model"] = model
        return await self.storage.save(self.key, json.dumps(data, indent=2))
