"""
layerhost - File-backed Configuration Providers

JSON settings files, dotenv files and the per-application secrets file.
Files marked ``optional`` contribute no entries when they are missing or
cannot be parsed on first load; required files raise :class:`~core.errors.ConfigurationError`.

Change detection is poll based: :meth:`FileConfigurationProvider.check_for_changes`
compares the file's modification time and size with the last load and
reloads when they differ.
"""
from __future__ import annotations

import io
import json
from pathlib import Path
from typing import Dict, Mapping, Optional, Tuple, Union

from dotenv import dotenv_values

from configuration.keys import KEY_DELIMITER, flatten, normalize
from configuration.providers import ConfigurationProvider
from core.errors import ConfigurationError
from observability.logging import get_logger

logger = get_logger("layerhost.configuration.files")

PathLike = Union[str, Path]


class FileConfigurationProvider(ConfigurationProvider):
    """Base class for providers reading a single file."""

    def __init__(
        self,
        path: PathLike,
        optional: bool = False,
        reload_on_change: bool = False,
        base_path: Optional[PathLike] = None,
    ) -> None:
        path = Path(path)
        if not path.is_absolute() and base_path is not None:
            path = Path(base_path) / path
        super().__init__(f"{type(self).__name__}({path.name})")
        self.path = path
        self.optional = optional
        self.reload_on_change = reload_on_change
        self._signature: Optional[Tuple[int, int]] = None
        self._loaded = False

    @property
    def supports_reload(self) -> bool:  # type: ignore[override]
        return self.reload_on_change

    def _stat(self) -> Optional[Tuple[int, int]]:
        try:
            st = self.path.stat()
        except OSError:
            return None
        return (st.st_mtime_ns, st.st_size)

    def parse(self, text: str) -> Mapping[str, str]:
        raise NotImplementedError

    def load(self) -> None:
        self._signature = self._stat()
        if self._signature is None:
            if self.optional:
                logger.debug("Optional configuration file not found", path=str(self.path))
                self.set_data({})
                return
            raise ConfigurationError(
                f"The configuration file '{self.path}' was not found and is not optional",
                provider=self.name,
                source=str(self.path),
            )

        try:
            text = self.path.read_text(encoding="utf-8-sig")
            entries = self.parse(text)
        except ConfigurationError as e:
            self._load_failed(e)
            return
        except (OSError, ValueError) as e:
            error = ConfigurationError(
                f"Failed to load configuration file '{self.path}': {e}",
                provider=self.name,
                source=str(self.path),
                cause=e,
            )
            error.__cause__ = e
            self._load_failed(error)
            return

        self._loaded = True
        self.set_data(entries)

    def _load_failed(self, error: ConfigurationError) -> None:
        """
        Raise, unless this is the first load of an optional file.

        Once a file has loaded, a broken edit raises so that the reload
        poller keeps the entries from the last good load.
        """
        if not self.optional or self._loaded:
            raise error
        logger.warning("Ignoring malformed optional configuration file", path=str(self.path), error=error.message)
        self.set_data({})

    def check_for_changes(self) -> bool:
        """Reload and notify observers if the file changed since the last load."""
        if self._stat() == self._signature:
            return False
        logger.info("Configuration file changed", path=str(self.path))
        self.reload()
        return True


class JsonConfigurationProvider(FileConfigurationProvider):
    """
    JSON settings file.

    Objects nest with ``:``, arrays use index segments and scalars keep
    their JSON text (``true``, ``1.50``). The document root must be an
    object and keys must be unique case-insensitively.
    """

    def parse(self, text: str) -> Mapping[str, str]:
        if not text.strip():
            return {}
        try:
            document = json.loads(text, parse_float=str, parse_int=str)
        except json.JSONDecodeError as e:
            raise ConfigurationError(
                f"Could not parse the JSON file '{self.path}': {e}",
                provider=self.name,
                source=str(self.path),
                cause=e,
            ) from e
        if not isinstance(document, dict):
            raise ConfigurationError(
                f"Top-level JSON element of '{self.path}' must be an object",
                provider=self.name,
                source=str(self.path),
            )

        entries: Dict[str, str] = {}
        seen: set = set()
        for key, value in flatten(document):
            folded = normalize(key)
            if folded in seen:
                raise ConfigurationError(
                    f"A duplicate key '{key}' was found in '{self.path}'",
                    provider=self.name,
                    source=str(self.path),
                )
            seen.add(folded)
            entries[key] = value
        return entries


class DotEnvConfigurationProvider(FileConfigurationProvider):
    """dotenv file; ``__`` in variable names becomes ``:``."""

    def parse(self, text: str) -> Mapping[str, str]:
        values = dotenv_values(stream=io.StringIO(text))
        return {
            name.replace("__", KEY_DELIMITER): "" if value is None else value
            for name, value in values.items()
        }


class SecretsConfigurationProvider(JsonConfigurationProvider):
    """
    Per-application secrets kept outside the project tree.

    Reads ``<base_dir>/<application_name>/secrets.json``; always optional.
    """

    def __init__(
        self,
        application_name: str,
        base_dir: PathLike,
        reload_on_change: bool = False,
    ) -> None:
        super().__init__(
            Path(base_dir).expanduser() / application_name / "secrets.json",
            optional=True,
            reload_on_change=reload_on_change,
        )
        self.application_name = application_name

