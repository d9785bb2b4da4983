"""Tests for command line parsing and logging setup."""

import logging

import pytest

from contextchat.cli import configure_logging, parse_args, split_files


class TestParseArgs:
    """Tests for parse_args."""

    def test_bare_invocation_is_interactive_chat(self):
        args = parse_args([])
        assert args.command is None
        assert args.prompt_text is None
        assert args.file_list == []

    def test_positional_words_form_the_prompt(self):
        args = parse_args(["why", "does", "this", "fail?"])
        assert args.command is None
        assert args.prompt_text == "why does this fail?"

    def test_prompt_flag_and_words_combine(self):
        args = parse_args(["-p", "explain", "briefly"])
        assert args.prompt_text == "explain briefly"

    @pytest.mark.parametrize("command", ["commit", "git", "models", "clear"])
    def test_subcommands(self, command):
        args = parse_args([command])
        assert args.command == command
        assert args.prompt_text is None

    def test_commit_with_instructions(self):
        args = parse_args(["commit", "write", "a", "cool", "message"])
        assert args.command == "commit"
        assert args.prompt_text == "write a cool message"

    def test_git_task_words(self):
        args = parse_args(["git", "undo", "the", "last", "commit"])
        assert args.command == "git"
        assert args.prompt_text == "undo the last commit"

    def test_subcommand_word_later_is_prompt(self):
        args = parse_args(["please", "clear", "this", "up"])
        assert args.command is None
        assert args.prompt_text == "please clear this up"

    def test_files(self):
        args = parse_args(["-f", "a.py:1-10,b.py", "--files", "c.py", "review"])
        assert args.file_list == ["a.py:1-10", "b.py", "c.py"]

    def test_options(self, tmp_path):
        args = parse_args(
            ["-m", "opus", "--port", "4100", "--no-socket", "--config", str(tmp_path / "c.json"), "-v"]
        )
        assert args.model == "opus"
        assert args.port == 4100
        assert args.no_socket is True
        assert args.config == tmp_path / "c.json"
        assert args.verbose is True


def test_split_files_ignores_blanks():
    assert split_files(["a.py, ,b.py", ""]) == ["a.py", "b.py"]
    assert split_files(None) == []


class TestConfigureLogging:
    """Tests for configure_logging."""

    @pytest.fixture(autouse=True)
    def restore_logger(self):
        logger = logging.getLogger("contextchat")
        handlers, level = list(logger.handlers), logger.level
        yield
        for handler in logger.handlers:
            handler.close()
        logger.handlers[:] = handlers
        logger.setLevel(level)

    def test_file_handler_and_level(self, tmp_path, monkeypatch):
        monkeypatch.setenv("CONTEXTCHAT_LOG", "debug")
        log_file = tmp_path / "contextchat.log"

        configure_logging(log_file=log_file)
        logging.getLogger("contextchat.test").debug("hello log")

        logger = logging.getLogger("contextchat")
        assert logger.level == logging.DEBUG
        assert [type(h) for h in logger.handlers] == [logging.FileHandler]
        logger.handlers[0].flush()
        assert "hello log" in log_file.read_text()

    def test_unknown_level_falls_back_to_info(self, tmp_path, monkeypatch):
        monkeypatch.setenv("CONTEXTCHAT_LOG", "chatty")
        configure_logging(log_file=tmp_path / "contextchat.log")
        assert logging.getLogger("contextchat").level == logging.INFO

    def test_verbose_adds_stderr_handler(self, tmp_path, monkeypatch):
        monkeypatch.delenv("CONTEXTCHAT_LOG", raising=False)
        configure_logging(verbose=True, log_file=tmp_path / "contextchat.log")

        handlers = logging.getLogger("contextchat").handlers
        assert len(handlers) == 2
        assert handlers[1].level == logging.WARNING
