"""Leara orchestrator.

Connectors hand every message to ``Leara.handle_message``. Messages for the
same chat are serialized through a per-chat lock. Slash commands are answered
straight from the knowledge service; anything else goes to the configured
engine with a context block assembled from stored memories, pending tasks and
the chat's session context.
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING

from leara.config import LearaConfig
from leara.connectors.base import IncomingMessage
from leara.engines.base import AgentResponse
from leara.memory.errors import ValidationError
from leara.memory.service import EMPTY_SUMMARY, KnowledgeService
from leara.tools.memory_tools import get_memory_tools

if TYPE_CHECKING:
    from leara.connectors.base import Connector
    from leara.engines.base import Engine

logger = logging.getLogger(__name__)

FALLBACK_ENGINE = "ollama_fallback"
CONTEXT_SEARCH_LIMIT = 5

LAST_MESSAGE_KEY = "last_user_message"
ENGINE_SESSION_KEY = "engine_session_id"

SYSTEM_PROMPT = """\
You are Leara, a personal AI assistant with a persistent memory.

Relevant memories, pending tasks and notes about this conversation are
injected before each message inside <context> tags. Use them when they help,
and do not invent memories that are not there.

The user can manage memory directly with slash commands (/remember, /forget,
/recall, /task, /tasks, /done, /summary). Suggest one when the user asks you
to remember something or to track a task.
"""


class Leara:
    """Core orchestrator: routes messages between connectors and engines."""

    def __init__(self, config: LearaConfig, service: KnowledgeService) -> None:
        self.config = config
        self.service = service
        self.tools = get_memory_tools(service)
        self._engines: dict[str, Engine] = {}
        self._connectors: list[Connector] = []
        self._lane_locks: dict[str, asyncio.Lock] = {}

    # ── Engine management ────────────────────────────────────

    def add_engine(self, engine: Engine) -> None:
        self._engines[engine.name] = engine
        logger.info("Registered engine: %s", engine.name)

    def _get_engine(self, name: str | None = None) -> Engine:
        name = name or self.config.engine.name
        engine = self._engines.get(name)
        if not engine:
            raise RuntimeError(f"Engine '{name}' not registered. Available: {list(self._engines)}")
        return engine

    async def engine_health(self) -> bool:
        try:
            return await self._get_engine().health_check()
        except RuntimeError:
            return False

    # ── Connector management ─────────────────────────────────

    def add_connector(self, connector: Connector) -> None:
        self._connectors.append(connector)
        logger.info("Registered connector: %s", connector.name)

    # ── Lane Queue (per-chat serialization) ──────────────────

    def _get_lane_lock(self, chat_id: str) -> asyncio.Lock:
        if chat_id not in self._lane_locks:
            self._lane_locks[chat_id] = asyncio.Lock()
        return self._lane_locks[chat_id]

    # ── Message handling ─────────────────────────────────────

    async def handle_message(self, msg: IncomingMessage) -> AgentResponse:
        """Process an incoming message; the entry point for all connectors."""
        lock = self._get_lane_lock(msg.chat_id)
        async with lock:
            if msg.is_command:
                return await self._run_command(msg)
            return await self._process(msg)

    async def _run_command(self, msg: IncomingMessage) -> AgentResponse:
        command, args = msg.parse_command()
        tool = self.tools.get(command)
        if tool is None:
            return AgentResponse.for_command(command, f"Unknown command: /{command}. Try /help.")
        try:
            text = await asyncio.to_thread(tool, args)
        except ValidationError as e:
            text = f"Invalid input: {e}"
        logger.info("[%s] %s ran /%s", msg.connector_name, msg.sender, command)
        return AgentResponse.for_command(command, text)

    def _gather_context(self, msg: IncomingMessage) -> str:
        sections: list[str] = []

        summary = self.service.summarize()
        if summary != EMPTY_SUMMARY:
            sections.append(summary.rstrip())

        related = self.service.search(msg.text, CONTEXT_SEARCH_LIMIT)
        if related:
            lines = ["Related memories:"]
            lines.extend(f"- {m.key}: {m.value}" for m in related)
            sections.append("\n".join(lines))

        notes = [
            c
            for c in self.service.get_session_context(msg.session_id)
            if c.context_key != ENGINE_SESSION_KEY
        ]
        if notes:
            lines = ["Conversation notes:"]
            lines.extend(f"- {c.context_key}: {c.context_value}" for c in notes)
            sections.append("\n".join(lines))

        return "\n\n".join(sections)

    async def _process(self, msg: IncomingMessage) -> AgentResponse:
        # 1. Assemble memory context (off the loop; the store is synchronous)
        context = await asyncio.to_thread(self._gather_context, msg)
        session_id = await asyncio.to_thread(
            self.service.get_session_value, msg.session_id, ENGINE_SESSION_KEY
        )

        # 2. Route to engine
        engine = self._get_engine()
        response = await engine.send(
            msg.text,
            system_prompt=SYSTEM_PROMPT,
            context=context or None,
            session_id=session_id,
        )

        # 3. Fallback if primary fails
        if response.failed and FALLBACK_ENGINE in self._engines:
            logger.warning("Primary engine failed, trying fallback: %s", FALLBACK_ENGINE)
            response = await self._engines[FALLBACK_ENGINE].send(
                msg.text,
                system_prompt=SYSTEM_PROMPT,
                context=context or None,
            )

        # 4. Record the turn in the chat's session context
        await asyncio.to_thread(
            self.service.put_session_context, msg.session_id, LAST_MESSAGE_KEY, msg.text
        )
        if response.session_id:
            await asyncio.to_thread(
                self.service.put_session_context,
                msg.session_id,
                ENGINE_SESSION_KEY,
                response.session_id,
            )

        return response

    # ── Lifecycle ─────────────────────────────────────────────

    async def start(self) -> None:
        """Start all connectors (each listens for messages)."""
        if not self._engines:
            raise RuntimeError("No engines registered. Call add_engine() first.")

        tasks = [connector.start(self.handle_message) for connector in self._connectors]
        if tasks:
            await asyncio.gather(*tasks)

    async def stop(self) -> None:
        """Gracefully stop all connectors and engines."""
        for connector in self._connectors:
            await connector.stop()

        for engine in self._engines.values():
            close = getattr(engine, "close", None)
            if close and callable(close):
                await close()
