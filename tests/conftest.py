"""Shared fixtures."""

from __future__ import annotations

import pytest

from aibox.constants import SETTING_CLAUDE_API_KEY, SETTING_OPENAI_API_KEY
from aibox.settings import MemorySettingsStore


@pytest.fixture
def settings() -> MemorySettingsStore:
    return MemorySettingsStore(
        {
            SETTING_OPENAI_API_KEY: "sk-test-openai",
            SETTING_CLAUDE_API_KEY: "sk-ant-test-claude",
        }
    )
