"""Ollama engine: local models over the Ollama HTTP API."""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass, field

import aiohttp

from leara.engines.base import AgentResponse

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "http://localhost:11434"


@dataclass
class OllamaEngine:
    """Text generation through ``POST /api/generate``.

    Ollama streams newline-delimited JSON objects; their ``response`` fields
    are concatenated until one arrives with ``done: true``. Failures come back
    as an AgentResponse whose text starts with ``[Engine error`` rather than
    as exceptions.
    """

    model: str = "openhermes:latest"
    base_url: str = DEFAULT_BASE_URL
    timeout: int = 120
    engine_name: str = "ollama"
    options: dict = field(default_factory=dict)

    @property
    def name(self) -> str:
        return self.engine_name

    def _url(self, path: str) -> str:
        return f"{self.base_url.rstrip('/')}{path}"

    async def send(
        self,
        message: str,
        *,
        system_prompt: str | None = None,
        context: str | None = None,
        session_id: str | None = None,
    ) -> AgentResponse:
        prompt = f"<context>\n{context}\n</context>\n\n{message}" if context else message
        payload: dict = {"model": self.model, "prompt": prompt}
        if system_prompt:
            payload["system"] = system_prompt
        if self.options:
            payload["options"] = self.options

        logger.info("Sending request to Ollama model: %s", self.model)
        timeout = aiohttp.ClientTimeout(total=self.timeout)
        try:
            async with aiohttp.ClientSession(timeout=timeout) as session:
                async with session.post(self._url("/api/generate"), json=payload) as resp:
                    body = await resp.text()
                    if resp.status != 200:
                        logger.error("Ollama API error (%d): %s", resp.status, body[:500])
                        return AgentResponse.error(
                            f"HTTP {resp.status}: {body[:200]}", model=self.model
                        )
        except asyncio.TimeoutError:
            logger.error("Ollama request timed out after %ds", self.timeout)
            return AgentResponse.timed_out(self.timeout, model=self.model)
        except aiohttp.ClientError as e:
            logger.error("Ollama connection error: %s", e)
            return AgentResponse.error(str(e), model=self.model)

        try:
            text, final = self._collect(body)
        except ValueError as e:
            logger.error("Failed to parse Ollama response: %s", e)
            return AgentResponse.error(f"bad response: {e}", model=self.model)

        duration_ns = final.get("total_duration")
        logger.info("Received response from Ollama model: %s", self.model)
        return AgentResponse(
            text=text,
            model=final.get("model", self.model),
            duration_ms=duration_ns // 1_000_000 if isinstance(duration_ns, int) else None,
        )

    @staticmethod
    def _collect(body: str) -> tuple[str, dict]:
        """Join the NDJSON stream. Returns (text, last object seen)."""
        parts: list[str] = []
        last: dict = {}
        for line in body.splitlines():
            if not line.strip():
                continue
            try:
                chunk = json.loads(line)
            except json.JSONDecodeError as e:
                raise ValueError(f"invalid JSON line: {line[:80]!r}") from e
            parts.append(chunk.get("response", ""))
            last = chunk
            if chunk.get("done"):
                break
        return "".join(parts), last

    async def list_models(self) -> list[str]:
        timeout = aiohttp.ClientTimeout(total=10)
        async with aiohttp.ClientSession(timeout=timeout) as session:
            async with session.get(self._url("/api/tags")) as resp:
                if resp.status != 200:
                    return []
                data = await resp.json()
        return [m.get("name", "") for m in data.get("models", [])]

    async def health_check(self) -> bool:
        """True when the server answers and has the configured model pulled."""
        try:
            return self.model in await self.list_models()
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
            logger.debug("Ollama health check failed: %s", e)
            return False
