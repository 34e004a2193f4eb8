"""Conversation engines: one remote conversation bound to one session at a time."""

import re
from contextlib import aclosing
from dataclasses import dataclass
from enum import Enum
from typing import AsyncIterator, Callable, Optional

import structlog

from toolmaster.config import Settings, settings
from toolmaster.errors import ConfigurationError, RemoteCallError
from toolmaster.schemas.session import ChatMessage
from toolmaster.storage import API_KEY_STORAGE_KEY, KeyValueStorage
from toolmaster.utils.llm_client import Conversation, GenAIClient, get_llm_client

logger = structlog.get_logger(__name__)

CHAT_SYSTEM_INSTRUCTION = (
    "You are a helpful, friendly, and intelligent AI assistant called ToolMaster AI. "
    "Provide clear, concise, and accurate answers. "
    "Use markdown formatting for code and lists where appropriate."
)

PLUGIN_SYSTEM_INSTRUCTION = (
    "You are an expert WordPress Plugin Developer and helpful AI assistant. "
    "You help users build and refine WordPress plugins."
)

REFINE_PROMPT = """
Context:
Plugin Name: {name}
Description: {description}

Current PHP Code:
{code}

User Instruction:
{instruction}

Task:
1. If the user is asking for code changes, generate the FULL updated PHP file content.
2. If the user is just asking a question, answer it.
3. WRAP any generated PHP code in ```php ... ``` markdown blocks.
4. Provide a brief, friendly explanation of changes outside the code block.
5. Ensure code is secure (ABSPATH check) and follows WP standards.
"""

CODE_UPDATED_MARKER = "[Code Updated]"
UNFENCED_CODE_TEXT = "Here is the generated code."

_PHP_BLOCK = re.compile(r"```php(.*?)```", re.DOTALL)

ClientFactory = Callable[[str], GenAIClient]


class EngineState(str, Enum):
    UNINITIALIZED = "uninitialized"
    INITIALIZING = "initializing"
    READY = "ready"
    SENDING = "sending"
    ERROR = "error"


@dataclass
class RefineResult:
    """Plugin-builder reply: chat text plus the new code, if any."""

    text: str
    code: Optional[str] = None


def resolve_api_key(storage: KeyValueStorage, config: Optional[Settings] = None) -> str:
    """
    Find the credential to use.

    Order: per-user key saved in storage, then GEMINI_API_KEY from the
    environment / .env, then the configured fallback.

    Raises:
        ConfigurationError: If every source is blank.
    """
    config = config or settings
    for source, value in (
        ("storage", storage.get(API_KEY_STORAGE_KEY)),
        ("environment", config.gemini_api_key),
        ("fallback", config.fallback_api_key),
    ):
        if value and value.strip() and value != "undefined":
            logger.debug("Resolved API key", source=source)
            return value.strip()
    raise ConfigurationError("API key is missing. Please set it with `toolmaster set-key`.")


def extract_code(raw: str) -> RefineResult:
    """
    Split a model reply into chat text and PHP code.

    Priority:
    1. First ```php fenced block; every fenced block is replaced by a
       marker in the displayed text
    2. Best-effort fallback: an unfenced reply that starts with <?php is
       taken whole as code. This is a guess, not a contract.
    3. Otherwise the reply is plain chat text
    """
    match = _PHP_BLOCK.search(raw)
    if match:
        text = _PHP_BLOCK.sub(CODE_UPDATED_MARKER, raw).strip()
        return RefineResult(text=text, code=match.group(1).strip())

    stripped = raw.strip()
    if stripped.startswith("<?php"):
        return RefineResult(text=UNFENCED_CODE_TEXT, code=stripped)

    return RefineResult(text=stripped)


class ConversationEngine:
    """Adapter over the remote model, re-initialized whenever the session changes."""

    system_instruction = CHAT_SYSTEM_INSTRUCTION

    def __init__(
        self,
        storage: KeyValueStorage,
        client_factory: ClientFactory = get_llm_client,
        config: Optional[Settings] = None,
    ):
        self.storage = storage
        self.client_factory = client_factory
        self.config = config or settings
        self.state = EngineState.UNINITIALIZED
        self.transitions: list[EngineState] = []
        self.client: Optional[GenAIClient] = None
        self.conversation: Optional[Conversation] = None

    @property
    def model(self) -> str:
        return self.config.chat_model

    @property
    def ready(self) -> bool:
        return self.state is EngineState.READY and self.client is not None

    def initialize(self, history: list[ChatMessage]) -> None:
        """
        Build a fresh remote context seeded with the session's prior turns.

        Raises:
            ConfigurationError: No credential is available; the engine
                stays uninitialized.
        """
        self._enter(EngineState.INITIALIZING)
        try:
            self.client = self.client_factory(resolve_api_key(self.storage, self.config))
        except ConfigurationError:
            self._enter(EngineState.UNINITIALIZED)
            self.client = None
            self.conversation = None
            raise

        prior_turns = [
            {"role": m.role, "content": m.text} for m in history if m.text.strip()
        ]
        self.conversation = self.client.create_conversation(
            self.system_instruction, prior_turns, model=self.model
        )
        self._enter(EngineState.READY)
        logger.debug("Engine initialized", engine=type(self).__name__, turns=len(prior_turns))

    def _enter(self, state: EngineState) -> None:
        self.transitions.append(state)
        self.state = state

    def _require_ready(self) -> GenAIClient:
        if not self.ready:
            raise ConfigurationError("Assistant is not initialized. Check your API key.")
        return self.client


class ChatEngine(ConversationEngine):
    """General chat assistant with streaming replies."""

    async def stream(self, text: str) -> AsyncIterator[str]:
        """
        Send text on the current conversation and yield reply fragments.

        The conversation handle is captured here, so re-initializing the
        engine for another session does not affect this request.
        """
        client = self._require_ready()
        conversation = self.conversation
        self._enter(EngineState.SENDING)
        try:
            async with aclosing(client.send_streaming(conversation, text)) as fragments:
                async for fragment in fragments:
                    yield fragment
        except (ConfigurationError, RemoteCallError):
            if self.conversation is conversation:
                self._enter(EngineState.ERROR)
            raise
        finally:
            # ERROR lasts until the failure has been raised to the caller.
            if self.conversation is conversation and self.state in (
                EngineState.SENDING,
                EngineState.ERROR,
            ):
                self._enter(EngineState.READY)


class PluginEngine(ConversationEngine):
    """Plugin-builder assistant; every request is single-shot with full context."""

    system_instruction = PLUGIN_SYSTEM_INSTRUCTION

    @property
    def model(self) -> str:
        return self.config.plugin_model

    async def refine(
        self,
        code: str,
        instruction: str,
        name: str,
        description: str,
    ) -> RefineResult:
        client = self._require_ready()
        prompt = REFINE_PROMPT.format(
            name=name,
            description=description,
            code=code or "// No code yet",
            instruction=instruction,
        )

        conversation = self.conversation
        self._enter(EngineState.SENDING)
        try:
            raw = await client.send_once(prompt, self.system_instruction, model=self.model)
        except (ConfigurationError, RemoteCallError):
            if self.conversation is conversation:
                self._enter(EngineState.ERROR)
            raise
        finally:
            if self.conversation is conversation:
                self._enter(EngineState.READY)

        result = extract_code(raw)
        logger.info(
            "Plugin reply received",
            response_length=len(raw),
            code_updated=result.code is not None,
        )
        return result
