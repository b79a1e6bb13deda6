"""
layerhost - Test Configuration

Pytest fixtures shared by all tests.
"""
import json
import os
from pathlib import Path
from typing import Any, Callable, Dict

import pytest

from config import HostingSettings
from configuration import ConfigurationBuilder, ConfigurationRoot


@pytest.fixture(autouse=True)
def clean_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    """Remove host-level variables so tests do not see the developer's shell."""
    for name in list(os.environ):
        if name.upper().startswith("LAYERHOST_"):
            monkeypatch.delenv(name, raising=False)


@pytest.fixture
def build_config() -> Callable[..., ConfigurationRoot]:
    """Build a configuration from in-memory layers, lowest precedence first."""

    def _build(*layers: Dict[str, Any]) -> ConfigurationRoot:
        builder = ConfigurationBuilder()
        for layer in layers:
            builder.add_in_memory(layer)
        return builder.build()

    return _build


@pytest.fixture
def write_json(tmp_path: Path) -> Callable[[str, Any], Path]:
    """Write a JSON document below ``tmp_path`` and return its path."""

    def _write(name: str, document: Any) -> Path:
        path = tmp_path / name
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps(document), encoding="utf-8")
        return path

    return _write


@pytest.fixture
def settings(tmp_path: Path) -> HostingSettings:
    """Default-host settings that never touch the real home directory."""
    return HostingSettings(
        env_prefix="LAYERHOST_",
        settings_file="appsettings.json",
        secrets_dir=tmp_path / "secrets",
        reload_on_change=False,
        reload_poll_interval=0.05,
        shutdown_timeout=5.0,
        startup_timeout=None,
        log_level="WARNING",
        log_format="console",
    )
