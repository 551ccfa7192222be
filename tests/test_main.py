"""Tests for the command-line entry point."""

from __future__ import annotations

import json

import pytest

from memecoin_lifecycle_tracker.__main__ import build_parser, main
from memecoin_lifecycle_tracker.config import clear_settings_cache


@pytest.fixture(autouse=True)
def isolated_env(monkeypatch: pytest.MonkeyPatch, tmp_path) -> None:
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("DATABASE_URL", f"sqlite+aiosqlite:///{tmp_path / 'cli.db'}")
    monkeypatch.delenv("REDIS_URL", raising=False)
    clear_settings_cache()
    yield
    clear_settings_cache()


class TestParser:
    def test_requires_command(self) -> None:
        with pytest.raises(SystemExit):
            build_parser().parse_args([])

    def test_log_level_override(self) -> None:
        args = build_parser().parse_args(["--log-level", "DEBUG", "stats"])

        assert args.command == "stats"
        assert args.log_level == "DEBUG"


class TestCommands:
    def test_init_db_then_stats(self, capsys: pytest.CaptureFixture[str]) -> None:
        assert main(["init-db"]) == 0

        assert main(["stats"]) == 0

        stats = json.loads(capsys.readouterr().out)
        assert stats["state"] == "stopped"
        assert stats["entities"] == {}
        assert stats["observations"] == 0
