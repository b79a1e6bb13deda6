"""
layerhost - Settings

Process-level settings for the default host, read from environment
variables with sensible defaults. Values inside the host's own layered
configuration (``shutdownTimeoutSeconds``, ``Logging:Level``) take
precedence over these.
"""
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv


def _optional_float(name: str) -> Optional[float]:
    raw = os.getenv(name, "").strip()
    return float(raw) if raw else None


@dataclass
class HostingSettings:
    """Defaults for :func:`hosting.defaults.create_default_builder`."""
    # Host configuration
    env_prefix: str = field(default_factory=lambda: os.getenv("LAYERHOST_ENV_PREFIX", "LAYERHOST_"))
    settings_file: str = field(default_factory=lambda: os.getenv("LAYERHOST_SETTINGS_FILE", "appsettings.json"))
    secrets_dir: Path = field(
        default_factory=lambda: Path(os.getenv("LAYERHOST_SECRETS_DIR", "~/.layerhost/secrets")).expanduser()
    )

    # Change detection for settings files
    reload_on_change: bool = field(
        default_factory=lambda: os.getenv("LAYERHOST_RELOAD_ON_CHANGE", "true").lower() == "true"
    )
    reload_poll_interval: float = field(
        default_factory=lambda: float(os.getenv("LAYERHOST_RELOAD_POLL_INTERVAL", "2.0"))
    )

    # Run loop
    shutdown_timeout: float = field(default_factory=lambda: float(os.getenv("LAYERHOST_SHUTDOWN_TIMEOUT", "30")))
    startup_timeout: Optional[float] = field(default_factory=lambda: _optional_float("LAYERHOST_STARTUP_TIMEOUT"))

    # Logging
    log_level: str = field(default_factory=lambda: os.getenv("LOG_LEVEL", "INFO"))
    log_format: str = field(default_factory=lambda: os.getenv("LOG_FORMAT", "console"))

    @property
    def json_logs(self) -> bool:
        return self.log_format.lower() == "json"

    def environment_settings_file(self, environment_name: str) -> str:
        """``appsettings.json`` -> ``appsettings.Development.json``."""
        path = Path(self.settings_file)
        return str(path.with_name(f"{path.stem}.{environment_name}{path.suffix}"))


_settings: Optional[HostingSettings] = None


def get_settings() -> HostingSettings:
    """Get or create the settings singleton."""
    global _settings
    if _settings is None:
        load_dotenv()
        _settings = HostingSettings()
    return _settings


def reload_settings() -> HostingSettings:
    """Reload settings from the environment."""
    global _settings
    load_dotenv(override=True)
    _settings = HostingSettings()
    return _settings
