"""Session workspaces: active-session lifecycle, optimistic sends, autosave."""

from contextlib import aclosing
from pathlib import Path
from typing import Callable, Generic, Optional, TypeVar

import structlog

from toolmaster.config import Settings, settings
from toolmaster.engine import (
    ChatEngine,
    ClientFactory,
    ConversationEngine,
    PluginEngine,
)
from toolmaster.errors import ConfigurationError, RemoteCallError, ValidationError
from toolmaster.schemas.session import (
    ChatMessage,
    ChatSession,
    PluginSession,
    SessionBase,
)
from toolmaster.storage import KeyValueStorage
from toolmaster.store import SessionStore, chat_store, plugin_store
from toolmaster.utils.debounce import Debouncer
from toolmaster.utils.llm_client import get_llm_client

logger = structlog.get_logger(__name__)

S = TypeVar("S", bound=SessionBase)

ConfirmFn = Callable[[str], bool]
ChangeFn = Callable[[SessionBase], None]

CHAT_ERROR_TEXT = "Failed to get response. Please check your connection or API key."

PLUGIN_GREETING = (
    "Hi! I'm your WordPress Plugin Architect. Give me a name and description, "
    "then tell me what features you want!"
)
PLUGIN_NAME_REQUIRED = "Please enter a Plugin Name in the top field before we start building."
PLUGIN_CHAT_CLEARED = "Chat cleared. I still remember the code we're working on."
PLUGIN_ERROR_TEXT = (
    "Sorry, I encountered an error connecting to the AI. Please check your API settings."
)
DEFAULT_PLUGIN_NAME = "My Plugin"
DEFAULT_PLUGIN_DESCRIPTION = "A custom WordPress plugin"


class SessionWorkspace(Generic[S]):
    """
    Owns the in-memory session list and keeps one session active.

    Invariants:
    - After mount() there is always exactly one active session.
    - Structural changes (create, delete) are saved immediately; content
      edits are saved by the per-session autosave debounce.
    - At most one request is in flight per session.
    """

    delete_prompt = "Delete this session?"

    def __init__(
        self,
        store: SessionStore[S],
        engine: ConversationEngine,
        config: Optional[Settings] = None,
        on_change: Optional[ChangeFn] = None,
    ):
        self.store = store
        self.engine = engine
        self.config = config or settings
        self.on_change = on_change
        self.sessions: list[S] = []
        self.active_id: Optional[str] = None
        self.notice = ""
        self._in_flight: set[str] = set()
        self._autosave = Debouncer(self.config.autosave_delay_seconds, self._persist)

    # --- session lookup ---

    @property
    def active(self) -> Optional[S]:
        return self.get(self.active_id) if self.active_id else None

    def get(self, session_id: str) -> Optional[S]:
        for session in self.sessions:
            if session.id == session_id:
                return session
        return None

    def is_loading(self, session_id: Optional[str] = None) -> bool:
        session_id = session_id or self.active_id
        return session_id in self._in_flight

    # --- lifecycle ---

    def _new_session(self) -> S:
        raise NotImplementedError

    def mount(self) -> S:
        """Load saved sessions (most recent becomes active) or start fresh."""
        sessions = self.store.load()
        if not sessions:
            logger.info("No saved sessions, starting fresh", key=self.store.key)
            return self.create_session()

        self.sessions = sessions
        self.active_id = sessions[0].id
        self._initialize_engine(sessions[0])
        logger.info("Workspace mounted", key=self.store.key, sessions=len(sessions))
        return sessions[0]

    def create_session(self) -> S:
        session = self._new_session()
        self.sessions.insert(0, session)
        self.active_id = session.id
        self._save()
        self._initialize_engine(session)
        logger.info("Session created", session_id=session.id)
        self._notify(session)
        return session

    def switch_to(self, session_id: str) -> S:
        """
        Make session_id active and rebuild the remote context from its history.

        Raises:
            KeyError: If no such session exists.
        """
        session = self.get(session_id)
        if session is None:
            raise KeyError(session_id)

        self.active_id = session_id
        self._initialize_engine(session)
        logger.debug("Switched session", session_id=session_id)
        self._notify(session)
        return session

    def delete_session(self, session_id: str, confirm: ConfirmFn) -> bool:
        """
        Delete a session after confirm(prompt) agrees.

        Returns:
            True if the session was removed.
        """
        session = self.get(session_id)
        if session is None:
            logger.warning("Delete requested for unknown session", session_id=session_id)
            return False
        if not confirm(self.delete_prompt):
            return False

        self._autosave.cancel(session_id)
        self.sessions = [s for s in self.sessions if s.id != session_id]
        logger.info("Session deleted", session_id=session_id, remaining=len(self.sessions))

        if not self.sessions:
            self.create_session()
            return True

        self._save()
        if self.active_id == session_id:
            self.switch_to(self.sessions[0].id)
        return True

    def close(self) -> None:
        """Write out any edits still waiting on the autosave timer."""
        self._autosave.flush()

    # --- internals ---

    def _initialize_engine(self, session: S) -> None:
        try:
            self.engine.initialize(session.history())
        except ConfigurationError as e:
            self.notice = str(e)
            logger.warning("Assistant unavailable", reason=str(e))
            return
        self.notice = ""

    def _ensure_engine(self, prior: list[ChatMessage]) -> None:
        if not self.engine.ready:
            self.engine.initialize(prior)

    def _changed(self, session: S) -> None:
        self._autosave.schedule(session.id)
        self._notify(session)

    def _notify(self, session: S) -> None:
        if self.on_change is not None:
            self.on_change(session)

    def _persist(self, session_id: str) -> None:
        session = self.get(session_id)
        if session is None:
            return
        session.touch()
        self._save()
        logger.debug("Autosaved session", session_id=session_id)

    def _save(self) -> None:
        self.store.save(self.sessions)

    def _claim(self, session: Optional[S]) -> bool:
        if session is None:
            return False
        if session.id in self._in_flight:
            logger.warning("Send ignored while a reply is in flight", session_id=session.id)
            return False
        self._in_flight.add(session.id)
        return True


class ChatWorkspace(SessionWorkspace[ChatSession]):
    """General chat assistant with streamed replies."""

    delete_prompt = "Delete this conversation?"
    engine: ChatEngine

    def _new_session(self) -> ChatSession:
        return ChatSession()

    async def send(self, text: str) -> Optional[ChatMessage]:
        """
        Send a user message on the active session and stream the reply in.

        Returns:
            The assistant message (reply or error), or None when nothing
            was sent or the session disappeared mid-stream.
        """
        if not text.strip():
            return None
        session = self.active
        if not self._claim(session):
            return None

        session_id = session.id
        self.notice = ""
        prior = session.history()
        if not session.messages:
            session.derive_title(text, self.config.title_max_chars)
        session.append("user", text)
        session.touch()
        self._changed(session)

        reply_id: Optional[str] = None
        accumulated = ""
        try:
            self._ensure_engine(prior)
            async with aclosing(self.engine.stream(text)) as fragments:
                async for fragment in fragments:
                    if self.get(session_id) is None:
                        logger.info("Session deleted mid-stream, dropping reply", session_id=session_id)
                        return None
                    if reply_id is None:
                        reply_id = session.append("assistant", "").id
                    accumulated += fragment
                    reply = session.find_message(reply_id)
                    if reply is not None:
                        reply.text = accumulated
                    self._changed(session)
        except ConfigurationError as e:
            self.notice = str(e)
            return self._record_error(session_id, reply_id, str(e))
        except RemoteCallError:
            return self._record_error(session_id, reply_id, CHAT_ERROR_TEXT)
        finally:
            self._in_flight.discard(session_id)

        if reply_id is None:
            logger.warning("Empty reply from assistant", session_id=session_id)
            return None
        return session.find_message(reply_id)

    def _record_error(
        self, session_id: str, reply_id: Optional[str], text: str
    ) -> Optional[ChatMessage]:
        session = self.get(session_id)
        if session is None:
            return None

        message = session.find_message(reply_id) if reply_id else None
        if message is None:
            message = session.append("assistant", text)
        else:
            message.text = text
        self._changed(session)
        return message


class PluginWorkspace(SessionWorkspace[PluginSession]):
    """Plugin builder: name/description/code fields plus a refine chat."""

    delete_prompt = "Are you sure you want to delete this plugin project?"
    engine: PluginEngine

    def _new_session(self) -> PluginSession:
        session = PluginSession()
        session.append("assistant", PLUGIN_GREETING)
        return session

    # --- field edits ---

    def _edit(self, field: str, value: str) -> None:
        session = self.active
        if session is None:
            return
        setattr(session, field, value)
        self._changed(session)

    def set_name(self, name: str) -> None:
        self._edit("name", name)

    def set_description(self, description: str) -> None:
        self._edit("description", description)

    def set_code(self, code: str) -> None:
        self._edit("code", code)

    # --- chat ---

    def _validate(self, session: PluginSession) -> None:
        if not session.name.strip() and len(session.messages) <= 1:
            raise ValidationError(PLUGIN_NAME_REQUIRED)

    async def send(self, text: str) -> Optional[ChatMessage]:
        """
        Ask the assistant to refine the active plugin.

        Returns:
            The assistant message (reply, guidance, or error), or None if
            nothing was sent or the session was deleted meanwhile.
        """
        if not text.strip():
            return None
        session = self.active
        if session is None:
            return None

        try:
            self._validate(session)
        except ValidationError as e:
            session.append("user", text)
            guidance = session.append("assistant", str(e))
            self._changed(session)
            return guidance

        if not self._claim(session):
            return None

        session_id = session.id
        self.notice = ""
        prior = session.history()
        session.append("user", text)
        self._changed(session)

        result = None
        error_text = PLUGIN_ERROR_TEXT
        try:
            self._ensure_engine(prior)
            result = await self.engine.refine(
                session.code,
                text,
                name=session.name or DEFAULT_PLUGIN_NAME,
                description=session.description or DEFAULT_PLUGIN_DESCRIPTION,
            )
        except ConfigurationError as e:
            self.notice = str(e)
            error_text = str(e)
        except RemoteCallError:
            pass
        finally:
            self._in_flight.discard(session_id)

        if self.get(session_id) is None:
            logger.info("Session deleted before reply arrived", session_id=session_id)
            return None

        if result is None:
            reply = session.append("assistant", error_text)
        else:
            if result.code:
                session.code = result.code
            reply = session.append("assistant", result.text, is_code_update=bool(result.code))
        self._changed(session)
        return reply

    def clear_chat(self, confirm: ConfirmFn) -> bool:
        """Reset the conversation but keep the code."""
        session = self.active
        if session is None or not confirm("Clear chat history? Your code will be preserved."):
            return False
        session.messages = [ChatMessage(role="assistant", text=PLUGIN_CHAT_CLEARED)]
        self._changed(session)
        return True

    def export_code(self, directory: Path) -> Path:
        """Write the active plugin's code to <slug>.php in directory."""
        session = self.active
        if session is None:
            raise KeyError("no active session")
        directory = Path(directory)
        directory.mkdir(parents=True, exist_ok=True)
        path = directory / f"{session.slug}.php"
        path.write_text(session.code, encoding="utf-8")
        logger.info("Exported plugin code", path=str(path), chars=len(session.code))
        return path


def chat_workspace(
    storage: KeyValueStorage,
    client_factory: ClientFactory = get_llm_client,
    config: Optional[Settings] = None,
    on_change: Optional[ChangeFn] = None,
) -> ChatWorkspace:
    engine = ChatEngine(storage, client_factory=client_factory, config=config)
    return ChatWorkspace(chat_store(storage), engine, config=config, on_change=on_change)


def plugin_workspace(
    storage: KeyValueStorage,
    client_factory: ClientFactory = get_llm_client,
    config: Optional[Settings] = None,
    on_change: Optional[ChangeFn] = None,
) -> PluginWorkspace:
    engine = PluginEngine(storage, client_factory=client_factory, config=config)
    return PluginWorkspace(plugin_store(storage), engine, config=config, on_change=on_change)
