"""Tests for JSON history persistence."""

import os
from unittest.mock import patch

import pytest

from contextchat.errors import HistoryIOError
from contextchat.history import JsonHistoryStore
from contextchat.session import ChatMessage, Role, Session


@pytest.fixture
def session():
    s = Session(working_dir="/home/me/project")
    s.append(ChatMessage(role=Role.USER, content="hello", context="File: a.py [load-once]"))
    s.append(ChatMessage(role=Role.ASSISTANT, content="Hi there"))
    return s


class TestJsonHistoryStore:
    """Tests for JsonHistoryStore."""

    def test_load_missing_returns_none(self, history_store):
        assert history_store.load("/nowhere") is None

    def test_save_and_load(self, history_store, session):
        history_store.save(session.working_dir, session)
        loaded = history_store.load(session.working_dir)

        assert loaded is not None
        assert [m.content for m in loaded.messages] == ["hello", "Hi there"]
        assert loaded.messages[0].context == "File: a.py [load-once]"

    def test_file_name_is_percent_encoded_directory(self, history_store):
        path = history_store.path_for("/home/me/project")
        assert path.name == "%2Fhome%2Fme%2Fproject.json"
        assert path.parent == history_store.base_dir

    def test_creates_base_dir(self, tmp_path, session):
        store = JsonHistoryStore(tmp_path / "deep" / "dir")
        store.save("key", session)
        assert store.path_for("key").exists()

    def test_save_leaves_no_temp_files(self, history_store, session):
        history_store.save("key", session)
        history_store.save("key", session)

        assert [p.name for p in history_store.base_dir.iterdir()] == ["key.json"]

    def test_corrupt_file_raises(self, history_store):
        history_store.base_dir.mkdir(parents=True)
        history_store.path_for("key").write_text("{not json")

        with pytest.raises(HistoryIOError):
            history_store.load("key")

    def test_failed_write_keeps_previous_history(self, history_store, session):
        history_store.save("key", session)
        session.append(ChatMessage(role=Role.USER, content="more"))

        with patch("contextchat.history.os.replace", side_effect=OSError("disk full")):
            with pytest.raises(HistoryIOError):
                history_store.save("key", session)

        loaded = history_store.load("key")
        assert len(loaded.messages) == 2
        assert [p.name for p in history_store.base_dir.iterdir()] == ["key.json"]

    def test_clear(self, history_store, session):
        history_store.save("key", session)

        assert history_store.clear("key") is True
        assert history_store.load("key") is None
        assert history_store.clear("key") is False

    @pytest.mark.skipif(os.name == "nt" or os.geteuid() == 0, reason="needs POSIX permissions as non-root")
    def test_unwritable_directory_raises(self, tmp_path, session):
        base = tmp_path / "ro"
        base.mkdir()
        base.chmod(0o500)
        try:
            with pytest.raises(HistoryIOError):
                JsonHistoryStore(base).save("key", session)
        finally:
            base.chmod(0o700)
