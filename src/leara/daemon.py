"""Daemon process: always-on mode for production.

Usage: python -m leara serve

Manages:
- Knowledge store and engine construction
- HTTP API connector
- PID file (prevent duplicate instances)
- Graceful shutdown (SIGTERM/SIGINT)
"""

from __future__ import annotations

import asyncio
import logging
import os
import signal
import sys

from leara.config import LearaConfig, load_config
from leara.connectors.http import HTTPConnector
from leara.core import FALLBACK_ENGINE, Leara
from leara.engines.ollama import OllamaEngine
from leara.memory.service import KnowledgeService

logger = logging.getLogger(__name__)


class LearaDaemon:
    """Always-on daemon process."""

    def __init__(self, config: LearaConfig | None = None) -> None:
        self.config = config or load_config()
        self._shutdown_event = asyncio.Event()

    # ── PID file management ──────────────────────────────────

    def _write_pid(self) -> None:
        self.config.pid_file.parent.mkdir(parents=True, exist_ok=True)
        self.config.pid_file.write_text(str(os.getpid()))
        logger.info("PID file written: %s (pid=%d)", self.config.pid_file, os.getpid())

    def _remove_pid(self) -> None:
        if self.config.pid_file.exists():
            self.config.pid_file.unlink()

    def _check_existing(self) -> None:
        if not self.config.pid_file.exists():
            return
        try:
            pid = int(self.config.pid_file.read_text().strip())
            os.kill(pid, 0)
            print(f"Leara daemon already running (pid={pid}). Exiting.", file=sys.stderr)
            sys.exit(1)
        except (ProcessLookupError, ValueError):
            # Stale PID file
            self._remove_pid()

    # ── Signal handling ──────────────────────────────────────

    def _setup_signals(self) -> None:
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(sig, self._handle_signal, sig)

    def _handle_signal(self, sig: signal.Signals) -> None:
        logger.info("Received %s, shutting down...", sig.name)
        self._shutdown_event.set()

    # ── Build components ─────────────────────────────────────

    def _open_service(self) -> KnowledgeService:
        db = self.config.database
        service = KnowledgeService.open(db.path, pool_size=db.pool_size, pool_timeout=db.pool_timeout)
        logger.info("Knowledge store opened: %s", db.path)
        return service

    def _build_engine(self, model: str | None = None, name: str | None = None) -> OllamaEngine:
        engine = self.config.engine
        if engine.name != "ollama":
            raise ValueError(f"Unknown engine: {engine.name}")
        return OllamaEngine(
            model=model or engine.model,
            base_url=engine.base_url,
            timeout=engine.timeout,
            engine_name=name or engine.name,
        )

    def _build_leara(self) -> Leara:
        leara = Leara(self.config, self._open_service())
        leara.add_engine(self._build_engine())

        if self.config.engine.fallback_model:
            leara.add_engine(
                self._build_engine(self.config.engine.fallback_model, FALLBACK_ENGINE)
            )

        return leara

    def _build_connectors(self, leara: Leara) -> None:
        leara.add_connector(
            HTTPConnector(self.config.server, leara.service, engine_health=leara.engine_health)
        )

    # ── Main run loop ────────────────────────────────────────

    async def run(self) -> None:
        self._check_existing()
        self._write_pid()
        self._setup_signals()

        leara = self._build_leara()
        self._build_connectors(leara)

        logger.info(
            "Leara daemon starting (engine=%s, model=%s)",
            self.config.engine.name,
            self.config.engine.model,
        )

        try:
            await leara.start()
            await self._shutdown_event.wait()
        except asyncio.CancelledError:
            pass
        finally:
            await leara.stop()
            leara.service.close()
            self._remove_pid()
            logger.info("Leara daemon stopped.")
