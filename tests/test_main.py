"""Tests for the command-line entry point."""

from __future__ import annotations

from pathlib import Path

import pytest

from leara.__main__ import _build_parser, _resolve_config, main
from leara.memory.service import KnowledgeService


@pytest.fixture(autouse=True)
def isolated(tmp_path: Path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    monkeypatch.delenv("LEARA_DATABASE_PATH", raising=False)
    monkeypatch.delenv("LEARA_LOG_LEVEL", raising=False)


@pytest.fixture
def config_file(tmp_path: Path) -> Path:
    path = tmp_path / "leara.toml"
    path.write_text(f"""
log_level = "WARNING"

[database]
path = "{(tmp_path / "from-config.db").as_posix()}"
""")
    return path


class TestConfigResolution:
    def test_database_path_from_config(self, config_file: Path, tmp_path: Path):
        args = _build_parser().parse_args(["--config", str(config_file), "tasks"])
        config = _resolve_config(args)
        assert config.database.path == (tmp_path / "from-config.db").as_posix()
        assert config.log_level == "WARNING"

    def test_db_flag_overrides_config(self, config_file: Path, tmp_path: Path):
        args = _build_parser().parse_args(
            ["--config", str(config_file), "--db", str(tmp_path / "flag.db"), "--log-level", "DEBUG", "tasks"]
        )
        config = _resolve_config(args)
        assert config.database.path == str(tmp_path / "flag.db")
        assert config.log_level == "DEBUG"

    def test_no_command_defaults_to_chat(self):
        assert _build_parser().parse_args([]).command is None


class TestOfflineCommands:
    def test_remember_writes_to_configured_database(self, config_file: Path, tmp_path: Path, capsys):
        main(["--config", str(config_file), "remember", "editor", "helix", "with", "vim", "keys"])
        assert "Remembered editor" in capsys.readouterr().out

        service = KnowledgeService.open(tmp_path / "from-config.db")
        try:
            assert service.get_memory("editor").value == "helix with vim keys"
        finally:
            service.close()

    def test_task_then_done(self, tmp_path: Path, capsys):
        db = str(tmp_path / "tasks.db")
        main(["--db", db, "task", "urgent", "renew", "passport"])
        assert "Created task #1: renew passport (priority 5" in capsys.readouterr().out

        main(["--db", db, "tasks"])
        assert "#1 renew passport [Priority: 5]" in capsys.readouterr().out

        main(["--db", db, "done", "1"])
        assert "Completed #1" in capsys.readouterr().out

        main(["--db", db, "summary"])
        assert capsys.readouterr().out.strip() == "No recent memories or pending tasks found."

    def test_recall_and_forget(self, tmp_path: Path, capsys):
        db = str(tmp_path / "leara.db")
        main(["--db", db, "remember", "system.rs_changes", "fixed the memory leak"])
        capsys.readouterr()

        main(["--db", db, "recall", "system.rs"])
        assert "system.rs_changes: fixed the memory leak" in capsys.readouterr().out

        main(["--db", db, "forget", "system.rs_changes"])
        assert "Forgot system.rs_changes" in capsys.readouterr().out

        main(["--db", db, "recall"])
        assert "(no memories yet)" in capsys.readouterr().out

    def test_store_failure_exits_nonzero(self, tmp_path: Path, capsys):
        # A directory cannot be opened as a database file.
        with pytest.raises(SystemExit) as exc:
            main(["--db", str(tmp_path), "tasks"])
        assert exc.value.code == 1
        assert "Error: cannot open database" in capsys.readouterr().err
