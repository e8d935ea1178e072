"""Shared fixtures for second-screen dashboard tests."""

from __future__ import annotations

import sys
from pathlib import Path

import pytest

# Ensure the project root is importable (second_screen, web, manage)
sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

_SETTINGS_ENV = ("PORT", "HOST", "CLAUDE_SECOND_SCREEN_DATA_DIR", "SECOND_SCREEN_AUTO_CREATE")


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    """Keep the developer's environment out of settings-dependent tests."""
    for var in _SETTINGS_ENV:
        monkeypatch.delenv(var, raising=False)
