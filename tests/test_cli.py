"""Tests for CLI module."""

from unittest.mock import AsyncMock, MagicMock, patch

import aiohttp
import pytest
from click.testing import CliRunner

from pairlink import __version__
from pairlink.cli import main


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture(autouse=True)
def isolated_config(tmp_path, monkeypatch):
    """Keep the user's config file and environment out of CLI tests."""
    monkeypatch.delenv("PORT", raising=False)
    monkeypatch.delenv("RELAY_EXTERNAL_URL", raising=False)
    monkeypatch.setattr(
        "pairlink.config.get_config_path",
        lambda custom_path=None: custom_path or tmp_path / "config.yaml",
    )


class TestCLIHelp:
    def test_cli_help(self, runner):
        """Top-level help lists the commands."""
        result = runner.invoke(main, ["--help"])

        assert result.exit_code == 0
        assert "signaling relay" in result.output
        assert "serve" in result.output
        assert "status" in result.output

    def test_version(self, runner):
        """version prints the package version."""
        result = runner.invoke(main, ["version"])

        assert result.exit_code == 0
        assert __version__ in result.output


class TestServeCommand:
    def test_serve_applies_overrides(self, runner):
        """serve passes --host and --port through to the relay config."""
        with patch("pairlink.relay.Relay") as mock_relay_class:
            relay = MagicMock()
            relay.start = AsyncMock()
            relay.run_forever = AsyncMock()
            relay.server.get_port.return_value = 9123
            mock_relay_class.return_value = relay

            result = runner.invoke(main, ["serve", "--port", "9123", "--host", "127.0.0.1"])

        assert result.exit_code == 0
        assert "Relay running on port 9123" in result.output
        config = mock_relay_class.call_args.kwargs["config"]
        assert config.port == 9123
        assert config.bind_address == "127.0.0.1"
        relay.run_forever.assert_awaited_once()

    def test_serve_startup_error_exits_nonzero(self, runner):
        """A bind failure is reported and exits with status 1."""
        from pairlink.relay import StartupError

        with patch("pairlink.relay.Relay") as mock_relay_class:
            relay = MagicMock()
            relay.start = AsyncMock(side_effect=StartupError("port in use"))
            mock_relay_class.return_value = relay

            result = runner.invoke(main, ["serve"])

        assert result.exit_code == 1
        assert "Startup error: port in use" in result.output

    def test_invalid_port_env_is_reported(self, runner, monkeypatch):
        """A bad PORT value is a usage error, not a traceback."""
        monkeypatch.setenv("PORT", "not-a-number")

        result = runner.invoke(main, ["version"])

        assert result.exit_code != 0
        assert "Invalid port" in result.output


class TestStatusCommand:
    def test_status_unreachable(self, runner):
        """status exits 1 when nothing is listening."""
        # Port 9 (discard) is essentially never listening on localhost
        result = runner.invoke(main, ["status", "--url", "http://127.0.0.1:9"])

        assert result.exit_code == 1
        assert "unreachable" in result.output

    def test_status_prints_health(self, runner):
        """status prints the relay's health fields."""
        health = {"status": "running", "connectedDevices": 3, "uptime": 42.4}

        resp = MagicMock()
        resp.raise_for_status = MagicMock()
        resp.json = AsyncMock(return_value=health)
        resp_ctx = MagicMock()
        resp_ctx.__aenter__ = AsyncMock(return_value=resp)
        resp_ctx.__aexit__ = AsyncMock(return_value=False)

        session = MagicMock()
        session.get = MagicMock(return_value=resp_ctx)
        session_ctx = MagicMock()
        session_ctx.__aenter__ = AsyncMock(return_value=session)
        session_ctx.__aexit__ = AsyncMock(return_value=False)

        with patch.object(aiohttp, "ClientSession", return_value=session_ctx):
            result = runner.invoke(main, ["status", "--url", "http://relay.test/"])

        assert result.exit_code == 0
        assert "Relay status: running" in result.output
        assert "Connected devices: 3" in result.output
        assert "Uptime: 42s" in result.output
        session.get.assert_called_once_with("http://relay.test/health")
