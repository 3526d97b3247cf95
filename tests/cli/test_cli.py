"""Tests for the ppclaw CLI."""

from __future__ import annotations

import json
import logging
from unittest.mock import AsyncMock

import pytest

from ppclaw import cli
from ppclaw.core.exceptions import BindingError, DiscoveryError
from ppclaw.network.discovery import RelayDirectory, RelayInfo
from ppclaw.network.binding import CredentialBinder

RELAYS = (
    RelayInfo("relay-a", "wss://a.example.com/ws", 1.0),
    RelayInfo("relay-b", "wss://b.example.com/ws", 3.0),
)


@pytest.fixture(autouse=True)
def restore_logging():
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    yield
    root.handlers[:] = handlers
    root.setLevel(level)


@pytest.fixture
def config_file(tmp_path):
    return tmp_path / "config.json"


class TestParser:
    def test_run_agent_options_are_exclusive(self):
        parser = cli.create_parser()
        with pytest.raises(SystemExit):
            parser.parse_args(["run", "--echo", "--agent", "x:y"])

    def test_global_flags(self):
        args = cli.create_parser().parse_args(["--json", "-v", "--discovery-url", "https://d/relay.json", "relays"])
        assert args.json is True
        assert args.verbose is True
        assert args.discovery_url == "https://d/relay.json"
        assert args.command == "relays"

    def test_no_command_prints_help(self, capsys):
        assert cli.main([]) == 0
        assert "usage: ppclaw" in capsys.readouterr().out


class TestLoadSettings:
    def test_persisted_file_and_flags(self, config_file):
        config_file.write_text(json.dumps({"api_key": "sk-file", "discovery_url": "https://file/relay.json"}))
        args = cli.create_parser().parse_args(
            ["--config-file", str(config_file), "--discovery-url", "https://flag/relay.json", "relays"]
        )
        settings = cli.load_settings(args)
        assert settings.api_key == "sk-file"
        assert settings.discovery_url == "https://flag/relay.json"

    def test_token_flag(self, config_file):
        args = cli.create_parser().parse_args(["--config-file", str(config_file), "bind", "--token", "tok"])
        assert cli.load_settings(args).bind_token == "tok"


class TestRelaysCommand:
    def test_table(self, monkeypatch, capsys, config_file):
        monkeypatch.setattr(RelayDirectory, "refresh", AsyncMock(return_value=RELAYS))
        assert cli.main(["--config-file", str(config_file), "relays"]) == 0
        out = capsys.readouterr().out
        assert "relay-a" in out
        assert "(75%)" in out

    def test_json(self, monkeypatch, capsys, config_file):
        monkeypatch.setattr(RelayDirectory, "refresh", AsyncMock(return_value=RELAYS))
        assert cli.main(["--json", "--config-file", str(config_file), "relays"]) == 0
        data = json.loads(capsys.readouterr().out)
        assert [r["id"] for r in data] == ["relay-a", "relay-b"]

    def test_json_after_subcommand(self, monkeypatch, capsys, config_file):
        monkeypatch.setattr(RelayDirectory, "refresh", AsyncMock(return_value=RELAYS))
        assert cli.main(["--config-file", str(config_file), "relays", "--json"]) == 0
        data = json.loads(capsys.readouterr().out)
        assert [r["id"] for r in data] == ["relay-a", "relay-b"]

    @pytest.mark.parametrize(
        "argv, expected",
        [
            (["relays"], False),
            (["relays", "--json"], True),
            (["--json", "relays"], True),
        ],
    )
    def test_json_flag_positions(self, argv, expected):
        assert cli.create_parser().parse_args(argv).json is expected

    def test_discovery_failure(self, monkeypatch, capsys, config_file):
        monkeypatch.setattr(RelayDirectory, "refresh", AsyncMock(side_effect=DiscoveryError("unreachable")))
        assert cli.main(["--config-file", str(config_file), "relays"]) == 1
        assert "unreachable" in capsys.readouterr().err


class TestBindCommand:
    def test_already_bound(self, capsys, config_file):
        config_file.write_text(json.dumps({"api_key": "sk-existing"}))
        assert cli.main(["--config-file", str(config_file), "bind"]) == 0
        assert "Already bound" in capsys.readouterr().out

    def test_no_token(self, capsys, config_file):
        assert cli.main(["--config-file", str(config_file), "bind"]) == 1
        assert "No bind token" in capsys.readouterr().err

    def test_bind_success(self, monkeypatch, capsys, config_file):
        monkeypatch.setattr(RelayDirectory, "refresh", AsyncMock(return_value=RELAYS[:1]))
        bind = AsyncMock(return_value="sk-new-key")
        monkeypatch.setattr(CredentialBinder, "bind", bind)

        assert cli.main(["--config-file", str(config_file), "bind", "--token", "tok"]) == 0

        assert bind.await_args.args == (RELAYS[0], "tok")
        assert "relay-a" in capsys.readouterr().out

    def test_bind_rejected(self, monkeypatch, capsys, config_file):
        monkeypatch.setattr(RelayDirectory, "refresh", AsyncMock(return_value=RELAYS[:1]))
        monkeypatch.setattr(CredentialBinder, "bind", AsyncMock(side_effect=BindingError("Binding failed: expired")))
        assert cli.main(["--config-file", str(config_file), "bind", "--token", "tok"]) == 1
        assert "Binding failed: expired" in capsys.readouterr().err


class TestRunCommand:
    def test_requires_agent(self, capsys, config_file):
        assert cli.main(["--config-file", str(config_file), "run"]) == 1
        assert "--echo" in capsys.readouterr().err

    def test_missing_credentials(self, capsys, config_file):
        assert cli.main(["--config-file", str(config_file), "run", "--echo"]) == 1
        assert "No apiKey and no bindToken" in capsys.readouterr().err

    def test_bad_agent_path(self, capsys, config_file):
        assert cli.main(["--config-file", str(config_file), "run", "--agent", "no_such_module_xyz:agent"]) == 1
        assert "Cannot load agent" in capsys.readouterr().err

    def test_runs_until_connector_returns(self, monkeypatch, capsys, config_file):
        config_file.write_text(json.dumps({"api_key": "sk"}))
        run = AsyncMock(return_value=None)
        monkeypatch.setattr(cli.Connector, "run", run)

        assert cli.main(["--config-file", str(config_file), "run", "--echo"]) == 0

        run.assert_awaited_once()
        assert "Connector stopped" in capsys.readouterr().out
