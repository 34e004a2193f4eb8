"""Shared fixtures: in-memory storage and test settings."""

import pytest

from toolmaster.config import Settings
from toolmaster.storage import API_KEY_STORAGE_KEY, MemoryStorage


@pytest.fixture
def config() -> Settings:
    return Settings(
        _env_file=None,
        gemini_api_key="",
        fallback_api_key="",
        autosave_delay_seconds=0.05,
        log_format="none",
    )


@pytest.fixture
def storage() -> MemoryStorage:
    return MemoryStorage({API_KEY_STORAGE_KEY: "test-key"})


@pytest.fixture
def keyless_storage() -> MemoryStorage:
    return MemoryStorage()
