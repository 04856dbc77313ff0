"""
Configuration management for dockrevui.

This module provides configuration file support with YAML format,
deployment runtime settings and default values.

Features:
- YAML configuration file at ~/.config/dockrevui/config.yaml
  (DOCKREVUI_CONFIG points somewhere else)
- Runtime settings for the Dockrev deployment: API base URL, self-upgrade
  (supervisor) URL and the Dockrev image repository
- Environment overrides for runtime settings (DOCKREV_API_BASE_URL,
  DOCKREV_SELF_UPGRADE_URL, DOCKREV_IMAGE_REPO)
- Theme and log settings

Architecture:
- ConfigManager: Main configuration interface
- Merges user config with defaults, then environment overrides
- Provides typed access to settings
- Handles missing/invalid config gracefully
"""

import os
import yaml
import logging
from typing import Dict, Any, Optional
from dataclasses import dataclass, field, asdict
from pathlib import Path

logger = logging.getLogger(__name__)

DEFAULT_SELF_UPGRADE_URL = "/supervisor/"
DEFAULT_IMAGE_REPO = "ghcr.io/ivanli-cn/dockrev"
THEMES = ("dark", "light")


def normalize_base_url(value: str) -> str:
    """Trim and make sure the URL ends with '/'; empty means '/'."""
    trimmed = value.strip()
    if not trimmed:
        return "/"
    if trimmed.endswith("/"):
        return trimmed
    return f"{trimmed}/"


def normalize_theme(value: Optional[str]) -> Optional[str]:
    if value in THEMES:
        return value
    return None


@dataclass
class RuntimeConfig:
    """Deployment-provided settings."""
    api_base_url: str = "http://127.0.0.1:50883"
    self_upgrade_url: str = DEFAULT_SELF_UPGRADE_URL
    dockrev_image_repo: str = DEFAULT_IMAGE_REPO

    def self_upgrade_base_url(self) -> str:
        return normalize_base_url(self.self_upgrade_url or DEFAULT_SELF_UPGRADE_URL)

    def is_dockrev_image_ref(self, image_ref: str) -> bool:
        """True when image_ref points at the Dockrev image itself (by tag or digest)."""
        repo = self.dockrev_image_repo.strip()
        if not repo:
            return False
        return image_ref == repo or image_ref.startswith(f"{repo}:") or image_ref.startswith(f"{repo}@")


@dataclass
class UIConfig:
    """UI-related configuration."""
    theme: str = "dark"
    refresh_interval: int = 30  # seconds


@dataclass
class LogConfig:
    """Logging configuration."""
    level: str = "INFO"
    file_path: Optional[str] = None  # None for default


@dataclass
class AppConfig:
    """Main application configuration."""
    runtime: RuntimeConfig = field(default_factory=RuntimeConfig)
    ui: UIConfig = field(default_factory=UIConfig)
    logging: LogConfig = field(default_factory=LogConfig)


_ENV_OVERRIDES = {
    "DOCKREV_API_BASE_URL": "api_base_url",
    "DOCKREV_SELF_UPGRADE_URL": "self_upgrade_url",
    "DOCKREV_IMAGE_REPO": "dockrev_image_repo",
}


class ConfigManager:
    """Configuration manager with YAML file support."""

    def __init__(self, config_file: Optional[Path] = None):
        if config_file is None:
            env_path = os.environ.get("DOCKREVUI_CONFIG")
            config_file = Path(env_path) if env_path else Path.home() / ".config" / "dockrevui" / "config.yaml"
        self.config_file = Path(config_file)
        self.config_dir = self.config_file.parent
        self._config: AppConfig = AppConfig()

        self.load_config()

    def load_config(self) -> None:
        """Load configuration from YAML file."""
        try:
            if self.config_file.exists():
                with open(self.config_file, 'r') as f:
                    user_config = yaml.safe_load(f) or {}

                self._config = self._merge_configs(AppConfig(), user_config)
                logger.debug(f"Loaded configuration from {self.config_file}")
            else:
                self._config = AppConfig()
                logger.debug(f"No configuration at {self.config_file}, using defaults")
        except (OSError, yaml.YAMLError) as e:
            logger.error(f"Failed to load config: {e}, using defaults")
            self._config = AppConfig()
        self._apply_env_overrides()

    def save_config(self) -> None:
        """Save current configuration to YAML file."""
        try:
            self.config_dir.mkdir(parents=True, exist_ok=True)
            with open(self.config_file, 'w') as f:
                yaml.dump(asdict(self._config), f, default_flow_style=False, indent=2)
            logger.debug(f"Saved configuration to {self.config_file}")
        except OSError as e:
            logger.error(f"Failed to save config: {e}")

    def get_config(self) -> AppConfig:
        """Get current configuration."""
        return self._config

    def _merge_configs(self, default: AppConfig, user: Dict[str, Any]) -> AppConfig:
        """Merge user config with defaults."""
        if not isinstance(user, dict):
            logger.warning("Config file is not a mapping, ignoring it")
            return default
        if isinstance(user.get('runtime'), dict):
            self._merge_dataclass(default.runtime, user['runtime'])
        if isinstance(user.get('ui'), dict):
            self._merge_dataclass(default.ui, user['ui'])
        if isinstance(user.get('logging'), dict):
            self._merge_dataclass(default.logging, user['logging'])

        if normalize_theme(default.ui.theme) is None:
            logger.warning(f"Unknown theme {default.ui.theme!r}, falling back to dark")
            default.ui.theme = "dark"
        return default

    def _merge_dataclass(self, obj: Any, updates: Dict[str, Any]) -> None:
        """Merge updates into dataclass object."""
        for key, value in updates.items():
            if hasattr(obj, key):
                setattr(obj, key, value)

    def _apply_env_overrides(self) -> None:
        for env_name, attr in _ENV_OVERRIDES.items():
            value = os.environ.get(env_name)
            if value is not None and value.strip():
                setattr(self._config.runtime, attr, value.strip())

    def get_runtime(self) -> RuntimeConfig:
        return self._config.runtime

    def self_upgrade_base_url(self) -> str:
        return self._config.runtime.self_upgrade_base_url()

    def is_dockrev_image_ref(self, image_ref: str) -> bool:
        return self._config.runtime.is_dockrev_image_ref(image_ref)

    def get_theme(self) -> str:
        return self._config.ui.theme

    def set_theme(self, theme: str) -> None:
        if normalize_theme(theme) is None:
            raise ValueError(f"Unknown theme: {theme}")
        self._config.ui.theme = theme
        self.save_config()

    def get_log_level(self) -> str:
        """Get configured log level."""
        return self._config.logging.level.upper()

    def get_custom_log_path(self) -> Optional[str]:
        """Get custom log file path if configured."""
        return self._config.logging.file_path

    def get_refresh_interval(self) -> int:
        return self._config.ui.refresh_interval


# Global config instance
config_manager = ConfigManager()
