"""Entry point: python -m leara [options] [command]

- chat (default):  interactive REPL against the configured engine
- serve:           daemon mode with the HTTP API
- remember, forget, recall, task, tasks, done, summary:
                   one-shot memory commands that work without an engine
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from dataclasses import replace
from pathlib import Path

from leara.config import LearaConfig, load_config
from leara.memory.errors import LearaError

OFFLINE_COMMANDS = ("remember", "forget", "recall", "task", "tasks", "done", "summary")


def _setup_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="leara",
        description="Personal AI assistant with a persistent memory and task store",
    )
    parser.add_argument("--config", "-c", type=Path, help="Path to leara.toml", default=None)
    parser.add_argument("--db", help="Database file (overrides the configured path)")
    parser.add_argument("--log-level", dest="log_level", help="Logging level, e.g. DEBUG")

    subparsers = parser.add_subparsers(dest="command")

    subparsers.add_parser("chat", aliases=["repl"], help="Interactive REPL (default)")
    subparsers.add_parser("serve", help="Run the daemon with the HTTP API")

    p_remember = subparsers.add_parser("remember", help="Store or replace a memory")
    p_remember.add_argument("key")
    p_remember.add_argument("value", nargs="+")

    p_forget = subparsers.add_parser("forget", help="Forget a memory")
    p_forget.add_argument("key")

    p_recall = subparsers.add_parser("recall", help="Search memories (recent ones if no query)")
    p_recall.add_argument("query", nargs="*")

    p_task = subparsers.add_parser("task", help="Create a task from natural language")
    p_task.add_argument("text", nargs="+")

    subparsers.add_parser("tasks", help="List pending tasks")

    p_done = subparsers.add_parser("done", help="Mark a task completed")
    p_done.add_argument("task_id")

    subparsers.add_parser("summary", help="Important memories and pending tasks")

    return parser


def _resolve_config(args: argparse.Namespace) -> LearaConfig:
    config = load_config(args.config)
    if args.db:
        config = replace(config, database=replace(config.database, path=args.db))
    if args.log_level:
        config = replace(config, log_level=args.log_level)
    return config


def _tool_args(args: argparse.Namespace) -> str:
    """Rebuild the slash-command argument string for a one-shot command."""
    if args.command == "remember":
        return f"{args.key}: {' '.join(args.value)}"
    if args.command == "forget":
        return args.key
    if args.command == "recall":
        return " ".join(args.query)
    if args.command == "task":
        return " ".join(args.text)
    if args.command == "done":
        return args.task_id
    return ""


def _run_offline(config: LearaConfig, args: argparse.Namespace) -> None:
    """Run one memory command against the database and print the reply."""
    from leara.daemon import LearaDaemon
    from leara.tools.memory_tools import get_memory_tools

    service = LearaDaemon(config)._open_service()
    try:
        tool = get_memory_tools(service)[args.command]
        print(tool(_tool_args(args)))
    finally:
        service.close()


def _run_cli(config: LearaConfig) -> None:
    """Interactive CLI REPL mode."""
    from leara.connectors.cli import CLIConnector
    from leara.daemon import LearaDaemon

    daemon = LearaDaemon(config)
    leara = daemon._build_leara()
    leara.add_connector(CLIConnector())

    try:
        asyncio.run(leara.start())
    except KeyboardInterrupt:
        pass
    finally:
        leara.service.close()


def _run_serve(config: LearaConfig) -> None:
    """Daemon mode: HTTP API until SIGTERM/SIGINT."""
    from leara.daemon import LearaDaemon

    asyncio.run(LearaDaemon(config).run())


def main(argv: list[str] | None = None) -> None:
    parser = _build_parser()
    args = parser.parse_args(argv)
    command = args.command or "chat"

    config = _resolve_config(args)
    _setup_logging(config.log_level)

    try:
        if command in OFFLINE_COMMANDS:
            _run_offline(config, args)
        elif command in ("chat", "repl"):
            _run_cli(config)
        elif command == "serve":
            _run_serve(config)
    except LearaError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
