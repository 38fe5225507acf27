"""Engine protocol and the response type shared by engines and slash commands."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Protocol, runtime_checkable

ERROR_PREFIX = "[Engine error"
TIMEOUT_PREFIX = "[Engine timeout"
ERROR_PREFIXES = (ERROR_PREFIX, TIMEOUT_PREFIX)


@dataclass
class AgentResponse:
    """A reply to one chat message.

    Engines never raise for transport problems; they return a response built
    with ``error()`` or ``timed_out()`` instead, and the core decides whether
    to retry on the fallback engine. Replies to slash commands carry the
    command name in ``metadata["command"]``.
    """

    text: str
    session_id: str | None = None
    model: str | None = None
    duration_ms: int | None = None
    metadata: dict = field(default_factory=dict)

    @classmethod
    def error(cls, detail: str, model: str | None = None) -> AgentResponse:
        return cls(text=f"{ERROR_PREFIX}: {detail}]", model=model)

    @classmethod
    def timed_out(cls, seconds: int, model: str | None = None) -> AgentResponse:
        return cls(text=f"{TIMEOUT_PREFIX} after {seconds}s]", model=model)

    @classmethod
    def for_command(cls, command: str, text: str) -> AgentResponse:
        return cls(text=text, metadata={"command": command})

    @property
    def failed(self) -> bool:
        return self.text.startswith(ERROR_PREFIXES)

    @property
    def command(self) -> str | None:
        return self.metadata.get("command")

    def timing(self) -> str | None:
        """``model: x | time: 1.5s``, or None when the engine reported no duration."""
        if self.duration_ms is None:
            return None
        parts = []
        if self.model:
            parts.append(f"model: {self.model}")
        total_s = self.duration_ms / 1000
        if total_s < 60:
            parts.append(f"time: {total_s:.1f}s")
        else:
            m, s = divmod(int(total_s), 60)
            parts.append(f"time: {m}m{s}s")
        return " | ".join(parts)


@runtime_checkable
class Engine(Protocol):
    """A language-model backend."""

    @property
    def name(self) -> str: ...

    async def send(
        self,
        message: str,
        *,
        system_prompt: str | None = None,
        context: str | None = None,
        session_id: str | None = None,
    ) -> AgentResponse:
        """Generate a reply to ``message``.

        ``context`` is the memory block assembled by the core (summary,
        related memories, conversation notes). ``session_id`` is whatever the
        engine returned for this chat last time, if anything.
        """
        ...

    async def list_models(self) -> list[str]:
        """Names of the models the backend can serve."""
        ...

    async def health_check(self) -> bool:
        """True when the backend is reachable and has the configured model."""
        ...
