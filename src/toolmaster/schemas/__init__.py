"""Session schemas and data models."""

from toolmaster.schemas.session import (
    ChatMessage,
    ChatSession,
    PluginSession,
    SessionBase,
)

__all__ = ["ChatMessage", "ChatSession", "PluginSession", "SessionBase"]
