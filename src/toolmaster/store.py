"""Session store: the ordered session collection persisted under one storage key."""

import json
from typing import Generic, TypeVar

import structlog
from pydantic import ValidationError as PydanticValidationError

from toolmaster.errors import ParseError
from toolmaster.schemas.session import ChatSession, PluginSession, SessionBase
from toolmaster.storage import KeyValueStorage

logger = structlog.get_logger(__name__)

CHAT_HISTORY_KEY = "toolmaster_chat_history"
PLUGIN_HISTORY_KEY = "toolmaster_plugin_history"

S = TypeVar("S", bound=SessionBase)


def sort_for_display(sessions: list[S]) -> list[S]:
    """Most recently modified first; ties keep their stored order."""
    return sorted(sessions, key=lambda s: s.last_modified, reverse=True)


class SessionStore(Generic[S]):
    """Loads and saves the whole session collection as one JSON array."""

    def __init__(self, storage: KeyValueStorage, key: str, session_model: type[S]):
        self.storage = storage
        self.key = key
        self.session_model = session_model

    def _parse(self, raw: str) -> list[S]:
        try:
            records = json.loads(raw)
        except json.JSONDecodeError as e:
            raise ParseError(f"Stored sessions are not valid JSON: {e}") from e

        if not isinstance(records, list):
            raise ParseError(f"Stored sessions must be a JSON array, got {type(records).__name__}")

        try:
            sessions = [self.session_model.model_validate(r) for r in records]
        except PydanticValidationError as e:
            raise ParseError(f"Stored session does not match schema: {e}") from e

        unique: dict[str, S] = {}
        for session in sessions:
            if session.id in unique:
                logger.warning("Dropping duplicate stored session", key=self.key, session_id=session.id)
                continue
            unique[session.id] = session
        return list(unique.values())

    def load(self) -> list[S]:
        """
        Read the collection from storage.

        Returns:
            Sessions sorted for display, or an empty list when nothing
            usable is stored (absent, corrupt, or empty).
        """
        raw = self.storage.get(self.key)
        if not raw:
            return []

        try:
            sessions = self._parse(raw)
        except ParseError as e:
            logger.warning("Discarding unreadable session history", key=self.key, error=str(e))
            return []

        logger.debug("Loaded sessions", key=self.key, count=len(sessions))
        return sort_for_display(sessions)

    def save(self, sessions: list[S]) -> None:
        """Write the full collection; an empty collection clears the key."""
        if not sessions:
            self.storage.remove(self.key)
            logger.debug("Cleared session history", key=self.key)
            return

        payload = json.dumps([s.to_record() for s in sessions], ensure_ascii=False)
        self.storage.set(self.key, payload)


def chat_store(storage: KeyValueStorage) -> SessionStore[ChatSession]:
    return SessionStore(storage, CHAT_HISTORY_KEY, ChatSession)


def plugin_store(storage: KeyValueStorage) -> SessionStore[PluginSession]:
    return SessionStore(storage, PLUGIN_HISTORY_KEY, PluginSession)
