import pytest
import yaml

from dockrevui.config import (
    ConfigManager,
    RuntimeConfig,
    normalize_base_url,
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in ("DOCKREV_API_BASE_URL", "DOCKREV_SELF_UPGRADE_URL", "DOCKREV_IMAGE_REPO",
                 "DOCKREVUI_CONFIG"):
        monkeypatch.delenv(name, raising=False)


def test_defaults_without_file(tmp_path):
    manager = ConfigManager(tmp_path / "config.yaml")
    runtime = manager.get_runtime()
    assert runtime.api_base_url == "http://127.0.0.1:50883"
    assert manager.self_upgrade_base_url() == "/supervisor/"
    assert manager.get_theme() == "dark"
    assert manager.get_log_level() == "INFO"
    assert not (tmp_path / "config.yaml").exists()


def test_file_values_are_merged(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text(yaml.dump({
        "runtime": {"self_upgrade_url": "https://ops.example.com/up", "unknown_key": 1},
        "ui": {"theme": "light"},
        "logging": {"level": "debug"},
    }))
    manager = ConfigManager(path)
    assert manager.self_upgrade_base_url() == "https://ops.example.com/up/"
    assert manager.get_theme() == "light"
    assert manager.get_log_level() == "DEBUG"
    assert manager.get_refresh_interval() == 30


def test_invalid_theme_falls_back_to_dark(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text("ui:\n  theme: solarized\n")
    assert ConfigManager(path).get_theme() == "dark"


def test_broken_yaml_uses_defaults(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text("runtime: [unterminated\n")
    manager = ConfigManager(path)
    assert manager.get_runtime() == RuntimeConfig()


def test_environment_overrides_file(tmp_path, monkeypatch):
    path = tmp_path / "config.yaml"
    path.write_text("runtime:\n  api_base_url: http://from-file:1\n")
    monkeypatch.setenv("DOCKREV_API_BASE_URL", " http://from-env:2 ")
    monkeypatch.setenv("DOCKREV_SELF_UPGRADE_URL", "")
    manager = ConfigManager(path)
    assert manager.get_runtime().api_base_url == "http://from-env:2"
    assert manager.get_runtime().self_upgrade_url == "/supervisor/"


def test_config_path_from_environment(tmp_path, monkeypatch):
    path = tmp_path / "custom.yaml"
    path.write_text("ui:\n  refresh_interval: 5\n")
    monkeypatch.setenv("DOCKREVUI_CONFIG", str(path))
    assert ConfigManager().get_refresh_interval() == 5


def test_set_theme_persists(tmp_path):
    path = tmp_path / "nested" / "config.yaml"
    manager = ConfigManager(path)
    manager.set_theme("light")
    assert yaml.safe_load(path.read_text())["ui"]["theme"] == "light"
    assert ConfigManager(path).get_theme() == "light"

    with pytest.raises(ValueError):
        manager.set_theme("neon")


@pytest.mark.parametrize("value,expected", [
    ("", "/"),
    ("  ", "/"),
    ("/supervisor", "/supervisor/"),
    ("/supervisor/", "/supervisor/"),
    (" https://x.example/up ", "https://x.example/up/"),
])
def test_normalize_base_url(value, expected):
    assert normalize_base_url(value) == expected


def test_dockrev_image_ref():
    runtime = RuntimeConfig()
    assert runtime.is_dockrev_image_ref("ghcr.io/ivanli-cn/dockrev")
    assert runtime.is_dockrev_image_ref("ghcr.io/ivanli-cn/dockrev:0.4.1")
    assert runtime.is_dockrev_image_ref("ghcr.io/ivanli-cn/dockrev@sha256:abc")
    assert not runtime.is_dockrev_image_ref("ghcr.io/ivanli-cn/dockrev-supervisor:0.4.1")
    assert not RuntimeConfig(dockrev_image_repo=" ").is_dockrev_image_ref("anything")
