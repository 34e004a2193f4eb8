"""Schemas for chat and plugin-builder sessions."""

import re
import time
import uuid
from datetime import datetime
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

MessageRole = Literal["user", "assistant"]

# Roles written by earlier front ends ("model" for chat, "ai" for plugins)
LEGACY_ASSISTANT_ROLES = {"model", "ai"}

DEFAULT_CHAT_TITLE = "New Chat"
UNTITLED_PLUGIN = "Untitled Plugin"
DEFAULT_PLUGIN_SLUG = "custom-plugin"


def now_ms() -> int:
    """Current wall-clock time in epoch milliseconds."""
    return int(time.time() * 1000)


def display_time() -> str:
    return datetime.now().strftime("%H:%M")


class ChatMessage(BaseModel):
    """A single turn in a session's conversation."""

    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    role: MessageRole
    text: str = ""
    timestamp: str = Field(default_factory=display_time)
    is_code_update: Optional[bool] = Field(default=None, alias="isCodeUpdate")

    @field_validator("role", mode="before")
    @classmethod
    def _normalize_role(cls, value: str) -> str:
        if isinstance(value, str) and value in LEGACY_ASSISTANT_ROLES:
            return "assistant"
        return value


class SessionBase(BaseModel):
    """Fields and helpers common to every saved session."""

    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(default_factory=lambda: str(uuid.uuid4()), frozen=True)
    messages: list[ChatMessage] = Field(default_factory=list)
    last_modified: int = Field(default_factory=now_ms, alias="lastModified")

    def touch(self) -> None:
        self.last_modified = now_ms()

    def append(self, role: MessageRole, text: str, **extra) -> ChatMessage:
        message = ChatMessage(role=role, text=text, **extra)
        self.messages.append(message)
        return message

    def find_message(self, message_id: str) -> Optional[ChatMessage]:
        for message in self.messages:
            if message.id == message_id:
                return message
        return None

    def history(self) -> list[ChatMessage]:
        """Turns worth replaying to the remote side (non-blank text only)."""
        return [m for m in self.messages if m.text.strip()]

    def to_record(self) -> dict:
        return self.model_dump(by_alias=True, exclude_none=True)


class ChatSession(SessionBase):
    """General chat assistant session."""

    title: str = DEFAULT_CHAT_TITLE

    def derive_title(self, first_message: str, max_chars: int = 30) -> str:
        """Title from the first user message, truncated with an ellipsis."""
        title = first_message[:max_chars]
        if len(first_message) > max_chars:
            title += "..."
        self.title = title
        return title

    @property
    def label(self) -> str:
        return self.title


class PluginSession(SessionBase):
    """Plugin-builder session with its generated PHP artifact."""

    name: str = ""
    description: str = ""
    code: str = ""

    @property
    def display_name(self) -> str:
        return self.name or UNTITLED_PLUGIN

    @property
    def label(self) -> str:
        return self.display_name

    @property
    def slug(self) -> str:
        slug = re.sub(r"[^a-z0-9]+", "-", self.name.lower()).strip("-")
        return slug or DEFAULT_PLUGIN_SLUG
