"""Tests for the kiro-sidecar CLI."""

from __future__ import annotations

import json
from pathlib import Path
from unittest.mock import patch

import pytest
import yaml
from click.testing import CliRunner

from kiro_sidecar.cli import main
from kiro_sidecar.control import ControlUnavailable, RemoteError
from kiro_sidecar.models import SidecarStatus

from conftest import FakeInspector


@pytest.fixture
def runner() -> CliRunner:
    return CliRunner()


def _unavailable(*args, **kwargs):
    raise ControlUnavailable("control server not reachable")


class TestCredentialsCommand:
    """Tests for `kiro-sidecar credentials`."""

    def test_json_masks_secrets(self, runner, sidecar_home: Path, accounts_file: Path):
        result = runner.invoke(
            main,
            ["credentials", "--home", str(sidecar_home), "--accounts-file", str(accounts_file),
             "--json-out"],
        )
        assert result.exit_code == 0, result.output
        rows = json.loads(result.output)
        assert [r["id"] for r in rows] == [1, 3]
        assert rows[1]["refreshToken"] == "rt-e…0003"
        assert rows[1]["clientSecret"] == "secr…-xyz"
        assert "rt-enterprise-0003" not in result.output

    def test_table(self, runner, sidecar_home: Path, accounts_file: Path):
        result = runner.invoke(
            main,
            ["credentials", "--home", str(sidecar_home), "--accounts-file", str(accounts_file)],
        )
        assert result.exit_code == 0
        assert "2 credential(s), 1 disabled" in result.output

    def test_missing_store(self, runner, sidecar_home: Path, tmp_path: Path):
        result = runner.invoke(
            main,
            ["credentials", "--home", str(sidecar_home), "--accounts-file",
             str(tmp_path / "missing.json")],
        )
        assert result.exit_code == 1
        assert "ConfigMissing" in result.output


class TestConfigCommands:
    """Tests for `kiro-sidecar config`."""

    def test_set_and_show(self, runner, sidecar_home: Path):
        result = runner.invoke(main, ["config", "set", "port", "9191", "--home", str(sidecar_home)])
        assert result.exit_code == 0, result.output

        saved = yaml.safe_load((sidecar_home / "config.yaml").read_text())
        assert saved["port"] == 9191

        result = runner.invoke(main, ["config", "show", "--home", str(sidecar_home), "--json-out"])
        assert json.loads(result.output)["port"] == 9191

    def test_unknown_key(self, runner, sidecar_home: Path):
        result = runner.invoke(main, ["config", "set", "colour", "blue", "--home", str(sidecar_home)])
        assert result.exit_code == 1
        assert "Unknown setting" in result.output

    def test_invalid_value(self, runner, sidecar_home: Path):
        result = runner.invoke(main, ["config", "set", "port", "huge", "--home", str(sidecar_home)])
        assert result.exit_code == 1
        assert not (sidecar_home / "config.yaml").exists()

    def test_blank_clears_optional(self, runner, sidecar_home: Path):
        runner.invoke(main, ["config", "set", "proxy_url", "http://p:1", "--home", str(sidecar_home)])
        runner.invoke(main, ["config", "set", "proxy_url", "", "--home", str(sidecar_home)])
        saved = yaml.safe_load((sidecar_home / "config.yaml").read_text())
        assert "proxy_url" not in saved


class TestStatusCommand:
    """Tests for `kiro-sidecar status`."""

    @patch("kiro_sidecar.control.ControlClient.status")
    def test_supervised(self, mock_status, runner, sidecar_home: Path):
        mock_status.return_value = SidecarStatus(
            running=True, pid=4321, port=8080, url="http://127.0.0.1:8080", healthy=True
        )
        result = runner.invoke(main, ["status", "--home", str(sidecar_home), "--json-out"])
        assert result.exit_code == 0
        data = json.loads(result.output)
        assert data["running"] is True
        assert data["pid"] == 4321

    @patch("kiro_sidecar.health.probe", return_value=True)
    @patch("kiro_sidecar.control.ControlClient.status", side_effect=_unavailable)
    def test_unsupervised_probes_port(self, mock_status, mock_probe, runner, sidecar_home: Path):
        result = runner.invoke(
            main, ["status", "--home", str(sidecar_home), "--port", "9999", "--json-out"]
        )
        assert result.exit_code == 0
        assert json.loads(result.output) == {
            "running": False,
            "supervised": False,
            "port": 9999,
            "healthy": True,
        }
        assert mock_probe.call_args[0][:2] == (9999, "sk-default-key")

    @patch("kiro_sidecar.health.probe", return_value=False)
    @patch("kiro_sidecar.control.ControlClient.status", side_effect=_unavailable)
    def test_unsupervised_text(self, mock_status, mock_probe, runner, sidecar_home: Path):
        result = runner.invoke(main, ["status", "--home", str(sidecar_home)])
        assert result.exit_code == 0
        assert "No supervisor is running" in result.output


class TestStartCommand:
    """Tests for `kiro-sidecar start`."""

    @patch("kiro_sidecar.control.ControlClient.start", side_effect=_unavailable)
    def test_without_supervisor(self, mock_start, runner, sidecar_home: Path):
        result = runner.invoke(main, ["start", "--home", str(sidecar_home)])
        assert result.exit_code == 1
        assert "serve" in result.output

    @patch("kiro_sidecar.control.ControlClient.start")
    def test_forwards_params(self, mock_start, runner, sidecar_home: Path):
        mock_start.return_value = SidecarStatus(running=True, pid=1, port=9300)
        result = runner.invoke(
            main,
            ["start", "--home", str(sidecar_home), "--port", "9300", "--api-key", "sk-cli",
             "--json-out"],
        )
        assert result.exit_code == 0, result.output
        params = mock_start.call_args[0][0]
        assert params.port == 9300
        assert params.api_key == "sk-cli"
        assert json.loads(result.output)["port"] == 9300

    @patch("kiro_sidecar.control.ControlClient.start")
    def test_remote_error(self, mock_start, runner, sidecar_home: Path):
        mock_start.side_effect = RemoteError("already running", "AlreadyRunning")
        result = runner.invoke(main, ["start", "--home", str(sidecar_home)])
        assert result.exit_code == 1
        assert "AlreadyRunning" in result.output


class TestStopCommand:
    """Tests for `kiro-sidecar stop`."""

    @patch("kiro_sidecar.control.ControlClient.stop")
    def test_supervised(self, mock_stop, runner, sidecar_home: Path):
        mock_stop.return_value = SidecarStatus()
        result = runner.invoke(main, ["stop", "--home", str(sidecar_home), "--port", "8080"])
        assert result.exit_code == 0
        mock_stop.assert_called_once_with(8080)
        assert "Gateway stopped" in result.output

    @patch("kiro_sidecar.control.ControlClient.stop", side_effect=_unavailable)
    def test_sweeps_orphan_without_supervisor(self, mock_stop, runner, sidecar_home: Path):
        inspector = FakeInspector(listeners=[555], cmdlines={555: "/x/kiro-rs --config c"})
        with patch("kiro_sidecar.supervisor.default_inspector", return_value=inspector):
            result = runner.invoke(main, ["stop", "--home", str(sidecar_home), "--port", "8080"])
        assert result.exit_code == 0, result.output
        assert inspector.signals == [(555, False)]

    @patch("kiro_sidecar.control.ControlClient.stop", side_effect=_unavailable)
    def test_foreign_listener_left_alone(self, mock_stop, runner, sidecar_home: Path):
        inspector = FakeInspector(listeners=[80], cmdlines={80: "httpd"})
        with patch("kiro_sidecar.supervisor.default_inspector", return_value=inspector):
            result = runner.invoke(main, ["stop", "--home", str(sidecar_home)])
        assert result.exit_code == 1
        assert "PortInUse" in result.output
        assert inspector.signals == []


class TestLogsCommand:
    """Tests for `kiro-sidecar logs`."""

    def test_tail(self, runner, sidecar_home: Path, tmp_path: Path):
        data_dir = tmp_path / "run"
        data_dir.mkdir()
        lines = [f"line {i}\n" for i in range(10)]
        (data_dir / "kiro2api.log").write_text("".join(lines))

        result = runner.invoke(
            main, ["logs", "--home", str(sidecar_home), "--data-dir", str(data_dir), "-n", "3"]
        )
        assert result.exit_code == 0
        assert result.output == "line 7\nline 8\nline 9\n"

    def test_missing_log(self, runner, sidecar_home: Path, tmp_path: Path):
        result = runner.invoke(
            main, ["logs", "--home", str(sidecar_home), "--data-dir", str(tmp_path / "none")]
        )
        assert result.exit_code == 0
        assert "No gateway log" in result.output


class TestVersion:
    def test_version(self, runner):
        result = runner.invoke(main, ["--version"])
        assert result.exit_code == 0
        assert "0.1.0" in result.output
