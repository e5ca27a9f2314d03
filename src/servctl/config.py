"""
Configuration management for servctl.

This module provides configuration file support with YAML format,
user preferences, and default settings.

Features:
- YAML configuration file at ~/.config/servctl/config.yaml
  (directory overridable with SERVCTL_CONFIG_DIR)
- Default values with user overrides
- Escape-key read timeout for the console input decoder
- Docker and vsftpd locations and defaults
- Log level, location and rotation

Architecture:
- ConfigManager: Main configuration interface
- Merges user config with defaults
- Provides typed access to settings
- Handles missing/invalid config gracefully
"""

import os
import yaml
import logging
from typing import Dict, Any, Optional, List
from dataclasses import dataclass, field, asdict
from pathlib import Path

logger = logging.getLogger(__name__)


@dataclass
class UIConfig:
    """Console-related configuration."""
    escape_timeout_ms: int = 100  # 0 blocks until the full sequence arrives
    show_header_summary: bool = True


@dataclass
class DockerConfig:
    """Docker-related configuration."""
    log_tail: int = 50
    default_shell: str = "bash"
    fallback_shell: str = "sh"
    protected_networks: List[str] = field(default_factory=lambda: ["bridge", "host", "none"])


@dataclass
class FtpConfig:
    """vsftpd-related configuration."""
    config_path: str = "/etc/vsftpd.conf"
    default_root: str = "/srv/ftp"
    service: str = "vsftpd"
    log_file: str = "/var/log/vsftpd.log"
    log_lines: int = 15
    pasv_min_port: int = 40000
    pasv_max_port: int = 40100


@dataclass
class LogConfig:
    """Logging configuration."""
    level: str = "INFO"
    file_path: Optional[str] = None  # None for default
    max_size_mb: int = 10
    backup_count: int = 5


@dataclass
class AppConfig:
    """Main application configuration."""
    ui: UIConfig = field(default_factory=UIConfig)
    docker: DockerConfig = field(default_factory=DockerConfig)
    ftp: FtpConfig = field(default_factory=FtpConfig)
    logging: LogConfig = field(default_factory=LogConfig)


def default_config_dir() -> Path:
    override = os.environ.get("SERVCTL_CONFIG_DIR")
    if override:
        return Path(override).expanduser()
    return Path.home() / ".config" / "servctl"


class ConfigManager:
    """Configuration manager with YAML file support."""

    def __init__(self, config_dir: Optional[Path] = None):
        self.config_dir = Path(config_dir) if config_dir else default_config_dir()
        self.config_file = self.config_dir / "config.yaml"
        self._config: AppConfig = AppConfig()
        self.load_config()

    def load_config(self) -> None:
        """Load configuration from YAML file."""
        try:
            if self.config_file.exists():
                with open(self.config_file, 'r') as f:
                    user_config = yaml.safe_load(f) or {}
                if not isinstance(user_config, dict):
                    raise ValueError("top level must be a mapping")
                self._config = self._merge_configs(AppConfig(), user_config)
                logger.debug(f"Loaded configuration from {self.config_file}")
            else:
                self.save_config()
                logger.info(f"Created default configuration at {self.config_file}")
        except Exception as e:
            logger.error(f"Failed to load config: {e}, using defaults")
            self._config = AppConfig()

    def save_config(self) -> None:
        """Save current configuration to YAML file."""
        try:
            self.config_dir.mkdir(parents=True, exist_ok=True)
            with open(self.config_file, 'w') as f:
                yaml.safe_dump(asdict(self._config), f, default_flow_style=False, indent=2)
            logger.debug(f"Saved configuration to {self.config_file}")
        except OSError as e:
            logger.error(f"Failed to save config: {e}")

    def get_config(self) -> AppConfig:
        """Get current configuration."""
        return self._config

    def _merge_configs(self, default: AppConfig, user: Dict[str, Any]) -> AppConfig:
        """Merge user config with defaults."""
        for section in ('ui', 'docker', 'ftp', 'logging'):
            if isinstance(user.get(section), dict):
                self._merge_dataclass(getattr(default, section), user[section])
        return default

    def _merge_dataclass(self, obj: Any, updates: Dict[str, Any]) -> None:
        """Merge updates into dataclass object."""
        for key, value in updates.items():
            if hasattr(obj, key):
                setattr(obj, key, value)
            else:
                logger.warning(f"Ignoring unknown config key: {key}")

    def get_log_level(self) -> str:
        """Get configured log level."""
        return self._config.logging.level.upper()

    def get_escape_timeout(self) -> Optional[float]:
        """Escape sequence read timeout in seconds, None to block."""
        ms = self._config.ui.escape_timeout_ms
        if not ms or ms <= 0:
            return None
        return ms / 1000.0


# Global config instance
config_manager = ConfigManager()
