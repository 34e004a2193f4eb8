"""Utility functions for the toolmaster workspaces."""

from toolmaster.utils.debounce import Debouncer
from toolmaster.utils.llm_client import GenAIClient, get_llm_client
from toolmaster.utils.logging_setup import setup_logging

__all__ = ["Debouncer", "GenAIClient", "get_llm_client", "setup_logging"]
