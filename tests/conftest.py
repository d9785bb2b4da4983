"""Shared fixtures: an on-disk workspace, a history store and config."""

import pytest

from contextchat.config import ChatConfig
from contextchat.history import JsonHistoryStore


@pytest.fixture
def workspace(tmp_path):
    """Working directory with a couple of source files."""
    root = tmp_path / "project"
    root.mkdir()
    (root / "main.py").write_text("import os\n\n\ndef main():\n    print('hi')\n")
    (root / "util.py").write_text("".join(f"line {i}\n" for i in range(1, 21)))
    return root


@pytest.fixture
def history_store(tmp_path):
    return JsonHistoryStore(tmp_path / "history")


@pytest.fixture
def config():
    return ChatConfig()
