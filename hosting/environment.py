"""
layerhost - Host Environment

Resolves the application name, environment name and content root from the
host configuration. Resolution never fails: every value has a default.
"""
from __future__ import annotations

import os
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterator, Optional, Union

from configuration.root import ConfigurationRoot
from observability.logging import get_logger, set_host_identity

logger = get_logger("layerhost.hosting.environment")


class Environments:
    """Commonly used environment names."""

    DEVELOPMENT = "Development"
    STAGING = "Staging"
    PRODUCTION = "Production"


class HostDefaults:
    """Well-known host configuration keys."""

    APPLICATION_KEY = "applicationName"
    ENVIRONMENT_KEY = "environment"
    CONTENT_ROOT_KEY = "contentRoot"


class PhysicalFileProvider:
    """Read-only access to files below a root directory."""

    def __init__(self, root: Union[str, Path]) -> None:
        self.root = Path(root)

    def _resolve(self, subpath: Union[str, Path]) -> Path:
        path = (self.root / subpath).resolve()
        root = self.root.resolve()
        if path != root and root not in path.parents:
            raise ValueError(f"Path '{subpath}' escapes the root '{self.root}'")
        return path

    def get_file_info(self, subpath: Union[str, Path]) -> Path:
        return self._resolve(subpath)

    def exists(self, subpath: Union[str, Path]) -> bool:
        return self._resolve(subpath).is_file()

    def read_text(self, subpath: Union[str, Path], encoding: str = "utf-8") -> str:
        return self._resolve(subpath).read_text(encoding=encoding)

    def get_directory_contents(self, subpath: Union[str, Path] = "") -> Iterator[Path]:
        directory = self._resolve(subpath)
        if not directory.is_dir():
            return iter(())
        return iter(sorted(directory.iterdir()))

    def __repr__(self) -> str:
        return f"PhysicalFileProvider(root={str(self.root)!r})"


@dataclass
class HostEnvironment:
    """The environment a host runs in."""

    environment_name: str = Environments.PRODUCTION
    application_name: str = ""
    content_root_path: str = field(default_factory=os.getcwd)
    content_root_file_provider: Optional[PhysicalFileProvider] = None

    def __post_init__(self) -> None:
        if self.content_root_file_provider is None:
            self.content_root_file_provider = PhysicalFileProvider(self.content_root_path)

    def is_environment(self, name: str) -> bool:
        return self.environment_name.casefold() == name.casefold()

    def is_development(self) -> bool:
        return self.is_environment(Environments.DEVELOPMENT)

    def is_staging(self) -> bool:
        return self.is_environment(Environments.STAGING)

    def is_production(self) -> bool:
        return self.is_environment(Environments.PRODUCTION)


def default_application_name() -> str:
    """Name of the entry point: the script stem, else the ``__main__`` module."""
    if sys.argv and sys.argv[0] and sys.argv[0] not in ("-c", "-m"):
        stem = Path(sys.argv[0]).stem
        if stem:
            return stem
    main = sys.modules.get("__main__")
    spec = getattr(main, "__spec__", None)
    if spec is not None and spec.name:
        return spec.name.rsplit(".", 1)[0] if spec.name.endswith(".__main__") else spec.name
    return "layerhost"


def resolve_content_root(value: Optional[str], cwd: Optional[str] = None) -> str:
    base = cwd or os.getcwd()
    if not value:
        return base
    path = Path(value)
    if not path.is_absolute():
        path = Path(base) / path
    return str(path)


def resolve_environment(
    host_configuration: ConfigurationRoot,
    application_name: Optional[str] = None,
) -> HostEnvironment:
    """Build the :class:`HostEnvironment` from the host configuration and stamp it on later log events."""
    name = host_configuration.get(HostDefaults.APPLICATION_KEY) or application_name or default_application_name()
    environment = host_configuration.get(HostDefaults.ENVIRONMENT_KEY) or Environments.PRODUCTION
    content_root = resolve_content_root(host_configuration.get(HostDefaults.CONTENT_ROOT_KEY))

    env = HostEnvironment(
        environment_name=environment,
        application_name=name,
        content_root_path=content_root,
    )
    set_host_identity(env.application_name, env.environment_name)
    logger.info("Host environment resolved", content_root=env.content_root_path)
    return env
