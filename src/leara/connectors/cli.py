"""Terminal REPL connector.

Lines typed at the prompt go to the core as messages on one chat. Slash
command replies are printed as-is; engine replies get a ``Leara:`` prefix
and a timing footer on stderr. Store and validation errors are reported on
stderr and the loop keeps reading.
"""

from __future__ import annotations

import asyncio
import logging
import sys
from typing import TYPE_CHECKING, TextIO

from leara.connectors.base import IncomingMessage
from leara.memory.errors import LearaError

if TYPE_CHECKING:
    from leara.connectors.base import MessageHandler
    from leara.engines.base import AgentResponse

logger = logging.getLogger(__name__)

_CLI_CHAT_ID = "cli"
_CLI_SENDER = "user"
_EXIT_WORDS = ("exit", "quit")

BANNER = "Leara AI Assistant (type /help for commands, 'exit' or Ctrl+C to quit)"


class CLIConnector:
    """Interactive REPL over a pair of text streams (stdin/stdout by default)."""

    def __init__(
        self,
        chat_id: str = _CLI_CHAT_ID,
        stdin: TextIO | None = None,
        stdout: TextIO | None = None,
        stderr: TextIO | None = None,
    ) -> None:
        self._running = False
        self._chat_id = chat_id
        self._stdin = stdin or sys.stdin
        self._stdout = stdout or sys.stdout
        self._stderr = stderr or sys.stderr

    @property
    def name(self) -> str:
        return "cli"

    def _print(self, text: str = "", err: bool = False) -> None:
        stream = self._stderr if err else self._stdout
        print(text, file=stream, flush=True)

    async def start(self, handler: MessageHandler) -> None:
        self._running = True
        loop = asyncio.get_running_loop()

        self._print(BANNER)
        self._print("-" * len(BANNER))

        while self._running:
            try:
                line = await loop.run_in_executor(None, self._read_input)
            except KeyboardInterrupt:
                line = None

            if line is None or line.strip().lower() in _EXIT_WORDS:
                self._print("Bye!")
                break

            text = line.strip()
            if not text:
                continue

            msg = IncomingMessage(
                text=text,
                chat_id=self._chat_id,
                sender=_CLI_SENDER,
                connector_name=self.name,
            )
            try:
                response = await handler(msg)
            except LearaError as e:
                logger.warning("CLI message failed: %s", e)
                self._print(f"Error: {e}", err=True)
                continue
            self.reply(response)

        self._running = False

    def _read_input(self) -> str | None:
        self._stdout.write("\nYou: ")
        self._stdout.flush()
        raw = self._stdin.readline()
        if not raw:
            return None
        return raw.rstrip("\n")

    async def stop(self) -> None:
        self._running = False

    def reply(self, response: AgentResponse) -> None:
        if response.command is not None:
            self._print(response.text)
            return
        if response.failed:
            self._print(f"Leara could not answer: {response.text}", err=True)
            return
        self._print(f"\nLeara: {response.text}")
        timing = response.timing()
        if timing:
            self._print(f"  [{timing}]", err=True)
