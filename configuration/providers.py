"""
layerhost - Configuration Providers

A provider is an ordered, named source of flat ``key -> value`` entries.
Keys are compared case-insensitively and use ``:`` between hierarchy
levels; each provider translates its native separator at load time.

Providers that can change after the first load (files, chained layers)
report changes through :meth:`ConfigurationProvider.on_change`; the owning
:class:`~configuration.root.ConfigurationRoot` re-merges and notifies its
own observers.
"""
from __future__ import annotations

import os
import threading
from typing import (
    TYPE_CHECKING,
    Callable,
    Dict,
    Iterator,
    List,
    Mapping,
    Optional,
    Sequence,
    Tuple,
)

from configuration.keys import KEY_DELIMITER, flatten, normalize
from core.errors import ConfigurationError

if TYPE_CHECKING:
    from configuration.root import ConfigurationRoot

ChangeCallback = Callable[["ConfigurationProvider"], None]


class ConfigurationProvider:
    """
    Base class for configuration providers.

    Subclasses override :meth:`load` and fill their entries with
    :meth:`set_data`.
    """

    supports_reload: bool = False

    def __init__(self, name: Optional[str] = None) -> None:
        self.name = name or type(self).__name__
        self._data: Dict[str, Tuple[str, str]] = {}
        self._callbacks: List[ChangeCallback] = []
        self._lock = threading.Lock()

    def load(self) -> None:
        """Populate entries. The default provider has none."""

    def set_data(self, entries: Mapping[str, str]) -> None:
        """Replace every entry. Later duplicates (case-insensitive) win."""
        data: Dict[str, Tuple[str, str]] = {}
        for key, value in entries.items():
            data[normalize(key)] = (key, value)
        self._data = data

    def set(self, key: str, value: str) -> None:
        folded = normalize(key)
        existing = self._data.get(folded)
        self._data[folded] = (existing[0] if existing else key, value)

    def try_get(self, key: str) -> Optional[str]:
        entry = self._data.get(normalize(key))
        return entry[1] if entry else None

    def items(self) -> Iterator[Tuple[str, str]]:
        return iter(list(self._data.values()))

    def keys(self) -> List[str]:
        return [key for key, _ in self._data.values()]

    def __len__(self) -> int:
        return len(self._data)

    def on_change(self, callback: ChangeCallback) -> Callable[[], None]:
        """Register a change callback; returns a function that unregisters it."""
        with self._lock:
            self._callbacks.append(callback)

        def unsubscribe() -> None:
            with self._lock:
                if callback in self._callbacks:
                    self._callbacks.remove(callback)

        return unsubscribe

    def notify_change(self) -> None:
        with self._lock:
            callbacks = list(self._callbacks)
        for callback in callbacks:
            callback(self)

    def reload(self) -> None:
        """Load again and tell observers."""
        self.load()
        self.notify_change()

    def __repr__(self) -> str:
        return f"{type(self).__name__}(name={self.name!r}, entries={len(self._data)})"


class MemoryConfigurationProvider(ConfigurationProvider):
    """Entries supplied in code. Nested mappings are flattened with ``:``."""

    def __init__(
        self,
        data: Optional[Mapping[str, object]] = None,
        name: Optional[str] = None,
    ) -> None:
        super().__init__(name or "Memory")
        self._initial = dict(data or {})

    def load(self) -> None:
        self.set_data(dict(flatten(self._initial)))


class EnvironmentVariablesConfigurationProvider(ConfigurationProvider):
    """
    Environment variables, optionally filtered by a prefix.

    The prefix match is case-insensitive and the prefix is removed from the
    key; ``__`` is translated to ``:`` so ``Logging__Level`` becomes
    ``Logging:Level``.
    """

    NATIVE_DELIMITER = "__"

    def __init__(
        self,
        prefix: str = "",
        environ: Optional[Mapping[str, str]] = None,
    ) -> None:
        super().__init__(f"EnvironmentVariables(prefix={prefix!r})" if prefix else "EnvironmentVariables")
        self.prefix = prefix
        self._environ = environ

    def load(self) -> None:
        environ = self._environ if self._environ is not None else os.environ
        folded_prefix = normalize(self.prefix)
        entries: Dict[str, str] = {}
        for name, value in environ.items():
            if not normalize(name).startswith(folded_prefix):
                continue
            key = name[len(self.prefix):].replace(self.NATIVE_DELIMITER, KEY_DELIMITER)
            if key:
                entries[key] = value
        self.set_data(entries)


class CommandLineConfigurationProvider(ConfigurationProvider):
    """
    Command line arguments.

    Accepted forms: ``--key value``, ``--key=value``, ``/key value``,
    ``/key=value`` and ``key=value``. Single-dash switches only count when
    listed in ``switch_mappings`` (``{"-e": "environment"}``).
    """

    def __init__(
        self,
        args: Sequence[str],
        switch_mappings: Optional[Mapping[str, str]] = None,
    ) -> None:
        super().__init__("CommandLine")
        self.args = list(args)
        self._switch_mappings = self._validate_mappings(switch_mappings) if switch_mappings else {}

    @staticmethod
    def _validate_mappings(mappings: Mapping[str, str]) -> Dict[str, str]:
        validated: Dict[str, str] = {}
        for switch, key in mappings.items():
            if not switch.startswith("-"):
                raise ConfigurationError(
                    f"Switch mapping '{switch}' must start with '-' or '--'",
                    provider="CommandLine",
                )
            folded = normalize(switch)
            if folded in validated:
                raise ConfigurationError(
                    f"Switch mapping '{switch}' is defined more than once",
                    provider="CommandLine",
                )
            validated[folded] = key
        return validated

    def _mapped(self, switch: str) -> Optional[str]:
        return self._switch_mappings.get(normalize(switch))

    def load(self) -> None:
        entries: Dict[str, str] = {}
        args = iter(self.args)
        for arg in args:
            key_start = 0
            if arg.startswith("--"):
                key_start = 2
            elif arg.startswith("-"):
                key_start = 1
            elif arg.startswith("/"):
                arg = "--" + arg[1:]
                key_start = 2

            separator = arg.find("=")
            if separator < 0:
                if key_start == 0:
                    continue
                mapped = self._mapped(arg)
                if mapped is not None:
                    key = mapped
                elif key_start == 1:
                    continue
                else:
                    key = arg[key_start:]
                value = next(args, None)
                if value is None:
                    continue
            else:
                segment = arg[:separator]
                mapped = self._mapped(segment)
                if mapped is not None:
                    key = mapped
                elif key_start == 1:
                    raise ConfigurationError(
                        f"The short switch '{arg}' is not defined in the switch mappings",
                        provider="CommandLine",
                    )
                else:
                    key = arg[key_start:separator]
                value = arg[separator + 1:]

            entries[key] = value
        self.set_data(entries)


class ChainedConfigurationProvider(ConfigurationProvider):
    """
    Exposes an already-built configuration snapshot as a single layer.

    Used to seed the application configuration with everything the host
    configuration produced; reloads of the inner snapshot propagate.
    """

    supports_reload = True

    def __init__(self, configuration: "ConfigurationRoot", name: Optional[str] = None) -> None:
        super().__init__(name or "Chained")
        self.configuration = configuration
        self._unsubscribe = configuration.on_change(self._inner_changed)

    def load(self) -> None:
        self.set_data(self.configuration.as_dict())

    def _inner_changed(self, _configuration: "ConfigurationRoot") -> None:
        self.reload()

    def close(self) -> None:
        self._unsubscribe()
