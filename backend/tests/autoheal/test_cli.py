"""
Tests for the command line entry point.
"""
from pathlib import Path

import pytest

from backend.src.autoheal.__main__ import build_parser, load_config, main
from backend.src.autoheal.exceptions import ConfigurationError


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    monkeypatch.delenv("AUTOHEAL_ENABLED_MONITORS", raising=False)
    monkeypatch.delenv("AUTOHEAL_FAILURE_THRESHOLD", raising=False)


class TestLoadConfig:
    """Test how arguments override the environment."""

    def test_defaults(self):
        config = load_config(build_parser().parse_args([]))
        assert config.auto_recover is True
        assert config.watch_logs is False

    def test_overrides(self, tmp_path):
        args = build_parser().parse_args([
            "--monitors", "redis, system",
            "--project-root", str(tmp_path),
            "--database-url", "sqlite+aiosqlite:///autoheal.db",
            "--watch-logs",
            "--no-recovery",
            "--log-level", "DEBUG",
        ])

        config = load_config(args)

        assert config.enabled_monitors == ("redis", "system")
        assert config.project_root == Path(tmp_path)
        assert config.database_url == "sqlite+aiosqlite:///autoheal.db"
        assert config.watch_logs is True
        assert config.auto_recover is False
        assert config.log_level == "DEBUG"

    def test_environment_is_the_base(self, monkeypatch):
        monkeypatch.setenv("AUTOHEAL_FAILURE_THRESHOLD", "5")
        config = load_config(build_parser().parse_args(["--monitors", "redis"]))
        assert config.failure_threshold == 5

    def test_unknown_monitor(self):
        with pytest.raises(ConfigurationError):
            load_config(build_parser().parse_args(["--monitors", "redis,kafka"]))


def test_main_reports_configuration_errors(capsys):
    """Test that bad configuration exits with status 2."""
    assert main(["--monitors", "kafka"]) == 2
    assert "Unknown monitors: kafka" in capsys.readouterr().err
