"""Tests for saved settings and launch-parameter merging."""

from __future__ import annotations

from pathlib import Path

import yaml

from kiro_sidecar.models import StartParams
from kiro_sidecar.settings import (
    SupervisorSettings,
    load_settings,
    merge_launch,
    save_settings,
)


class TestLoadSettings:
    """Tests for load_settings()."""

    def test_defaults_without_file(self, sidecar_home: Path):
        settings = load_settings(sidecar_home)
        assert settings.port == 8080
        assert settings.api_key == "sk-default-key"
        assert settings.admin_key == "admin-default-key"
        assert settings.region == "us-east-1"
        assert settings.kiro_version == "0.9.2"
        assert settings.control_port == 7781
        assert settings.health_path == "/v1/models"

    def test_reads_yaml(self, sidecar_home: Path):
        (sidecar_home / "config.yaml").write_text(
            yaml.safe_dump({"port": 9191, "region": "ap-northeast-1", "proxy_url": "http://p:1"})
        )
        settings = load_settings(sidecar_home)
        assert settings.port == 9191
        assert settings.region == "ap-northeast-1"
        assert settings.proxy_url == "http://p:1"

    def test_malformed_yaml_falls_back(self, sidecar_home: Path):
        (sidecar_home / "config.yaml").write_text("port: [unclosed\n")
        assert load_settings(sidecar_home) == SupervisorSettings()

    def test_invalid_value_falls_back(self, sidecar_home: Path):
        (sidecar_home / "config.yaml").write_text("port: 70000\n")
        assert load_settings(sidecar_home).port == 8080

    def test_empty_file(self, sidecar_home: Path):
        (sidecar_home / "config.yaml").write_text("")
        assert load_settings(sidecar_home) == SupervisorSettings()


class TestSaveSettings:
    """Tests for save_settings()."""

    def test_round_trip(self, tmp_path: Path):
        home = tmp_path / "fresh"
        original = SupervisorSettings(port=9000, data_dir=tmp_path / "run", api_key="sk-x")
        path = save_settings(original, home)

        assert path == home / "config.yaml"
        assert load_settings(home) == original

    def test_unset_optionals_omitted(self, sidecar_home: Path):
        save_settings(SupervisorSettings(), sidecar_home)
        data = yaml.safe_load((sidecar_home / "config.yaml").read_text())
        assert "proxy_url" not in data
        assert "project_path" not in data
        assert data["port"] == 8080


class TestMergeLaunch:
    """Explicit parameter > saved setting > built-in default."""

    def test_defaults(self, isolated_data_root: Path):
        plan = merge_launch(None, SupervisorSettings())
        assert plan.port == 8080
        assert plan.api_key == "sk-default-key"
        assert plan.project_path is None
        assert plan.proxy_url is None
        assert plan.data_dir == isolated_data_root / ".kiro-account-manager" / "kiro-rs"

    def test_settings_used_when_params_absent(self, tmp_path: Path):
        settings = SupervisorSettings(port=9100, region="eu-west-2", data_dir=tmp_path)
        plan = merge_launch(StartParams(), settings)
        assert plan.port == 9100
        assert plan.region == "eu-west-2"
        assert plan.data_dir == tmp_path

    def test_params_win(self, tmp_path: Path):
        settings = SupervisorSettings(port=9100, api_key="sk-saved", project_path="/saved")
        params = StartParams(
            port=9200,
            api_key="sk-explicit",
            project_path="/explicit",
            data_dir=str(tmp_path / "d"),
        )
        plan = merge_launch(params, settings)
        assert plan.port == 9200
        assert plan.api_key == "sk-explicit"
        assert plan.project_path == "/explicit"
        assert plan.data_dir == tmp_path / "d"

    def test_blank_values_are_unset(self):
        settings = SupervisorSettings(api_key="  ", proxy_url=" ", project_path="")
        params = StartParams(region="  ", kiro_version="", admin_key=" ")
        plan = merge_launch(params, settings)
        assert plan.api_key == "sk-default-key"
        assert plan.admin_key == "admin-default-key"
        assert plan.region == "us-east-1"
        assert plan.kiro_version == "0.9.2"
        assert plan.proxy_url is None
        assert plan.project_path is None

    def test_values_trimmed(self):
        plan = merge_launch(StartParams(api_key="  sk-pad  "), SupervisorSettings())
        assert plan.api_key == "sk-pad"
