"""Configuration loading from environment variables and leara.toml."""

from __future__ import annotations

import os
import sys
from dataclasses import dataclass, field

if sys.version_info >= (3, 11):
    import tomllib
else:
    import tomli as tomllib
from pathlib import Path

_DEFAULT_HOME = Path.home() / ".leara"
_DEFAULT_DATABASE = _DEFAULT_HOME / "leara.db"
_CONFIG_FILENAME = "leara.toml"


@dataclass
class EngineConfig:
    """Language-model engine configuration."""

    name: str = "ollama"
    model: str = "openhermes:latest"
    fallback_model: str | None = None
    base_url: str = "http://localhost:11434"
    timeout: int = 120


@dataclass
class ServerConfig:
    """HTTP API configuration."""

    host: str = "127.0.0.1"
    port: int = 3000


@dataclass
class DatabaseConfig:
    """Knowledge store location and pool sizing."""

    path: str = str(_DEFAULT_DATABASE)
    pool_size: int = 5
    pool_timeout: float = 5.0


@dataclass
class LearaConfig:
    """Top-level Leara configuration."""

    engine: EngineConfig = field(default_factory=EngineConfig)
    server: ServerConfig = field(default_factory=ServerConfig)
    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    pid_file: Path = _DEFAULT_HOME / "leara.pid"
    log_level: str = "INFO"


def load_config(config_path: Path | None = None) -> LearaConfig:
    """Load configuration from environment variables and optional leara.toml.

    Priority: environment variables > leara.toml > defaults.
    """
    file_data: dict = {}
    if config_path and config_path.exists():
        file_data = tomllib.loads(config_path.read_text())
    else:
        # Search current dir and ~/.leara/
        for candidate in [Path.cwd() / _CONFIG_FILENAME, _DEFAULT_HOME / _CONFIG_FILENAME]:
            if candidate.exists():
                file_data = tomllib.loads(candidate.read_text())
                break

    engine_data = file_data.get("engine", {})
    server_data = file_data.get("server", {})
    database_data = file_data.get("database", {})

    return LearaConfig(
        engine=EngineConfig(
            name=os.getenv("LEARA_ENGINE", engine_data.get("name", "ollama")),
            model=os.getenv("LEARA_MODEL", engine_data.get("model", "openhermes:latest")),
            fallback_model=os.getenv("LEARA_FALLBACK_MODEL", engine_data.get("fallback_model")),
            base_url=os.getenv(
                "LEARA_OLLAMA_URL", engine_data.get("base_url", "http://localhost:11434")
            ),
            timeout=int(os.getenv("LEARA_TIMEOUT", engine_data.get("timeout", 120))),
        ),
        server=ServerConfig(
            host=os.getenv("LEARA_HOST", server_data.get("host", "127.0.0.1")),
            port=int(os.getenv("LEARA_PORT", server_data.get("port", 3000))),
        ),
        database=DatabaseConfig(
            path=os.getenv(
                "LEARA_DATABASE_PATH", database_data.get("path", str(_DEFAULT_DATABASE))
            ),
            pool_size=int(os.getenv("LEARA_POOL_SIZE", database_data.get("pool_size", 5))),
            pool_timeout=float(
                os.getenv("LEARA_POOL_TIMEOUT", database_data.get("pool_timeout", 5.0))
            ),
        ),
        pid_file=Path(file_data.get("pid_file", str(_DEFAULT_HOME / "leara.pid"))).expanduser(),
        log_level=os.getenv("LEARA_LOG_LEVEL", file_data.get("log_level", "INFO")),
    )
