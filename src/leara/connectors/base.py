"""Connector protocol and the message type connectors hand to the core."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Callable, Coroutine, Protocol, runtime_checkable

if TYPE_CHECKING:
    from leara.engines.base import AgentResponse

COMMAND_PREFIX = "/"


@dataclass
class IncomingMessage:
    """A message received from any connector.

    Text starting with ``/`` is a slash command, answered from the knowledge
    service without calling an engine.
    """

    text: str
    chat_id: str
    sender: str = ""
    connector_name: str = ""
    metadata: dict = field(default_factory=dict)

    @property
    def session_id(self) -> str:
        """Session under which this chat's context is kept in the store."""
        return self.chat_id

    @property
    def is_command(self) -> bool:
        return self.text.startswith(COMMAND_PREFIX)

    def parse_command(self) -> tuple[str, str]:
        """Split ``/name args`` into (lower-cased name, stripped args)."""
        if not self.is_command:
            raise ValueError(f"not a command: {self.text!r}")
        name, _, args = self.text[len(COMMAND_PREFIX):].strip().partition(" ")
        return name.lower(), args.strip()


# Callback type: core.Leara.handle_message
MessageHandler = Callable[[IncomingMessage], Coroutine[None, None, "AgentResponse"]]


@runtime_checkable
class Connector(Protocol):
    """A source of chat messages (the terminal REPL, the HTTP API)."""

    @property
    def name(self) -> str: ...

    async def start(self, handler: MessageHandler) -> None:
        """Deliver each incoming message to ``handler`` until stopped."""
        ...

    async def stop(self) -> None:
        ...
