"""
contextchat command line.

Usage:
    # Interactive session in the current directory
    contextchat

    # One turn with file context, then exit
    contextchat -f src/main.py:10-40,README.md "why does this loop twice?"

    # Piped stdin is the prompt (or follows it when both are given)
    cat error.log | contextchat -p "explain this failure"

    # Utility commands
    contextchat commit "mention the ticket"
    contextchat git "undo the last commit but keep the changes"
    contextchat models
    contextchat clear
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import os
import sys
import tempfile
from pathlib import Path

from . import __version__
from .app import ChatApp
from .config import ChatConfig
from .errors import ConfigError, ContextChatError

logger = logging.getLogger(__name__)

LOG_FILE = Path(tempfile.gettempdir()) / "contextchat.log"
SUBCOMMANDS = ("commit", "git", "models", "clear")


def configure_logging(verbose: bool = False, log_file: Path = LOG_FILE) -> None:
    """Log to a file; CONTEXTCHAT_LOG sets the level, --verbose echoes warnings."""
    level_name = os.environ.get("CONTEXTCHAT_LOG", "INFO").upper()
    level = getattr(logging, level_name, None)
    if not isinstance(level, int):
        level = logging.INFO

    root = logging.getLogger("contextchat")
    root.setLevel(level)
    root.handlers.clear()

    file_handler = logging.FileHandler(log_file, encoding="utf-8")
    file_handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s"))
    root.addHandler(file_handler)

    if verbose:
        stderr_handler = logging.StreamHandler(sys.stderr)
        stderr_handler.setLevel(logging.WARNING)
        stderr_handler.setFormatter(logging.Formatter("[contextchat] %(levelname)s: %(message)s"))
        root.addHandler(stderr_handler)


def split_files(values: list[str] | None) -> list[str]:
    """Flatten repeated/comma-separated --files values."""
    files: list[str] = []
    for value in values or []:
        files.extend(part.strip() for part in value.split(",") if part.strip())
    return files


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="contextchat",
        description="Chat with a remote code assistant, sending file context only when it changed",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Subcommands (first positional word):
    commit [PROMPT...]   Write a commit message for the staged changes
    git TASK...          Suggest git command(s) for a task
    models               List available models
    clear                Delete the history of the current directory
        """,
    )
    parser.add_argument("words", nargs="*", help="Prompt, or a subcommand followed by its prompt")
    parser.add_argument("--prompt", "-p", help="Prompt text (alternative to positional words)")
    parser.add_argument(
        "--files",
        "-f",
        action="append",
        metavar="PATH[:START-END][,...]",
        help="Files to attach; repeatable or comma-separated",
    )
    parser.add_argument("--model", "-m", help="Model alias or id (default: from config)")
    parser.add_argument("--port", type=int, help="Loopback port for socket input")
    parser.add_argument("--no-socket", action="store_true", help="Do not listen for socket input")
    parser.add_argument("--config", type=Path, help="Config file (default: ~/.contextchat/config.json)")
    parser.add_argument("--verbose", "-v", action="store_true", help="Echo warnings to stderr")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return parser


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse arguments and split off the subcommand, if any."""
    args = build_parser().parse_args(argv)
    words = list(args.words)
    args.command = words.pop(0) if words and words[0] in SUBCOMMANDS else None
    positional = " ".join(words).strip()
    args.prompt_text = " ".join(p for p in (args.prompt, positional) if p) or None
    args.file_list = split_files(args.files)
    return args


def read_piped_stdin() -> str | None:
    """stdin content when it is piped rather than a terminal."""
    if sys.stdin is None or sys.stdin.isatty():
        return None
    return sys.stdin.read()


async def run(args: argparse.Namespace, piped_text: str | None) -> int:
    config = ChatConfig.load(args.config)
    if args.port is not None:
        config.socket.port = args.port
    if args.no_socket:
        config.socket.enabled = False

    app = ChatApp(config, model=args.model)
    if args.command == "commit":
        return await app.commit(args.prompt_text, piped_text)
    if args.command == "git":
        return await app.git(args.prompt_text, piped_text)
    if args.command == "models":
        return await app.list_models()
    if args.command == "clear":
        return app.clear_history()
    return await app.run(args.prompt_text, piped_text, args.file_list)


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    configure_logging(args.verbose)
    piped_text = read_piped_stdin()
    logger.info(f"Starting contextchat (command={args.command or 'chat'}, piped={piped_text is not None})")

    try:
        return asyncio.run(run(args, piped_text))
    except KeyboardInterrupt:
        print("\n[interrupted]")
        return 130
    except ConfigError as e:
        print(f"Config error: {e}", file=sys.stderr)
        return 2
    except ContextChatError as e:
        logger.error(str(e))
        print(f"Error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
