"""
layerhost - Configuration Snapshot

:class:`ConfigurationRoot` is the merged, read-only view over an ordered
list of providers. For every key the value of the last-added provider that
defines it wins, regardless of how specific the key is.

The merged view is an immutable mapping. When a provider reports a change
the root re-merges every provider in its original order into a new mapping,
swaps the reference and then notifies ``on_change`` observers. Readers
holding a section keep reading through the root, so they see the new values
after the swap; values copied out earlier must be re-read after the
notification.
"""
from __future__ import annotations

import threading
from dataclasses import dataclass
from types import MappingProxyType
from typing import (
    Any,
    Callable,
    Dict,
    Iterator,
    List,
    Mapping,
    Optional,
    Sequence,
    Tuple,
    Type,
    TypeVar,
)

from pydantic import BaseModel, ValidationError

from configuration.keys import (
    KEY_DELIMITER,
    combine,
    get_section_key,
    normalize,
    starts_with_path,
)
from configuration.providers import ConfigurationProvider
from core.errors import ConfigurationError
from observability.logging import get_logger

logger = get_logger("layerhost.configuration")

TModel = TypeVar("TModel", bound=BaseModel)
ChangeObserver = Callable[["ConfigurationRoot"], None]


@dataclass(frozen=True)
class _Entry:
    key: str
    value: str
    provider: ConfigurationProvider


@dataclass(frozen=True)
class DebugViewRow:
    """One effective key, its value and the provider that supplied it."""

    key: str
    value: str
    provider: str


class _ConfigurationView:
    """Read operations shared by the root and its sections."""

    _root: "ConfigurationRoot"
    path: str

    def get(self, key: str, default: Optional[str] = None) -> Optional[str]:
        value = self._root._lookup(combine(self.path, key))
        return default if value is None else value

    def __getitem__(self, key: str) -> str:
        value = self._root._lookup(combine(self.path, key))
        if value is None:
            raise KeyError(combine(self.path, key))
        return value

    def __contains__(self, key: object) -> bool:
        return isinstance(key, str) and self._root._lookup(combine(self.path, key)) is not None

    def get_section(self, key: str) -> "ConfigurationSection":
        return ConfigurationSection(self._root, combine(self.path, key))

    def get_children(self) -> List["ConfigurationSection"]:
        """Immediate child sections, ordered by key."""
        return [
            ConfigurationSection(self._root, combine(self.path, name))
            for name in self._root._child_names(self.path)
        ]

    def as_dict(self) -> Dict[str, str]:
        """Flat entries below this view, keys relative to it."""
        offset = len(self.path) + 1 if self.path else 0
        return {
            entry.key[offset:]: entry.value
            for entry in self._root._entries.values()
            if starts_with_path(entry.key, self.path)
        }

    def to_nested(self) -> Dict[str, Any]:
        """
        Entries below this view as nested dicts.

        Children whose keys are exactly ``0..n-1`` become lists.
        """
        tree: Dict[str, Any] = {}
        for key, value in sorted(self.as_dict().items(), key=lambda kv: _sort_key(kv[0])):
            node = tree
            segments = key.split(KEY_DELIMITER)
            for segment in segments[:-1]:
                child = node.get(segment)
                if not isinstance(child, dict):
                    child = {}
                    node[segment] = child
                node = child
            if not isinstance(node.get(segments[-1]), dict):
                node[segments[-1]] = value
        return _listify(tree)

    def bind(self, model: Type[TModel]) -> TModel:
        """Validate the entries below this view into a pydantic model."""
        try:
            return model.model_validate(self.to_nested())
        except ValidationError as e:
            raise ConfigurationError(
                f"Configuration section '{self.path or '<root>'}' does not bind to {model.__name__}: {e}",
                cause=e,
            ) from e


class ConfigurationSection(_ConfigurationView):
    """A live view of the entries sharing a key prefix."""

    def __init__(self, root: "ConfigurationRoot", path: str) -> None:
        self._root = root
        self.path = path

    @property
    def key(self) -> str:
        return get_section_key(self.path)

    @property
    def value(self) -> Optional[str]:
        return self._root._lookup(self.path)

    def exists(self) -> bool:
        return self.value is not None or bool(self._root._child_names(self.path))

    def __repr__(self) -> str:
        return f"ConfigurationSection(path={self.path!r}, value={self.value!r})"


class ConfigurationRoot(_ConfigurationView):
    """
    Merged snapshot of an ordered provider list.

    Built by :meth:`configuration.builder.ConfigurationBuilder.build`; the
    provider list never changes afterwards.
    """

    path = ""

    def __init__(self, providers: Sequence[ConfigurationProvider]) -> None:
        self._root = self
        self._providers: Tuple[ConfigurationProvider, ...] = tuple(providers)
        self._observers: List[ChangeObserver] = []
        self._lock = threading.Lock()
        self._entries: Mapping[str, _Entry] = self._merge()
        for provider in self._providers:
            provider.on_change(self._provider_changed)

    @property
    def providers(self) -> Tuple[ConfigurationProvider, ...]:
        return self._providers

    def _merge(self) -> Mapping[str, _Entry]:
        merged: Dict[str, _Entry] = {}
        for provider in self._providers:
            for key, value in provider.items():
                folded = normalize(key)
                previous = merged.get(folded)
                merged[folded] = _Entry(previous.key if previous else key, value, provider)
        return MappingProxyType(merged)

    def _lookup(self, key: str) -> Optional[str]:
        entry = self._entries.get(normalize(key))
        return entry.value if entry else None

    def _child_names(self, path: str) -> List[str]:
        offset = len(path) + 1 if path else 0
        names: Dict[str, str] = {}
        for entry in self._entries.values():
            if not starts_with_path(entry.key, path):
                continue
            name = entry.key[offset:].split(KEY_DELIMITER, 1)[0]
            names.setdefault(normalize(name), name)
        return sorted(names.values(), key=_sort_key)

    def provider_for(self, key: str) -> Optional[ConfigurationProvider]:
        """The provider whose value is effective for ``key``."""
        entry = self._entries.get(normalize(key))
        return entry.provider if entry else None

    def __iter__(self) -> Iterator[str]:
        return iter(entry.key for entry in self._entries.values())

    def __len__(self) -> int:
        return len(self._entries)

    def debug_view(self) -> List[DebugViewRow]:
        """Every effective key with the provider that won it, sorted by key."""
        return [
            DebugViewRow(entry.key, entry.value, entry.provider.name)
            for entry in sorted(self._entries.values(), key=lambda e: _sort_key(e.key))
        ]

    # ------------------------------------------------------------------
    # Reload
    # ------------------------------------------------------------------

    def on_change(self, observer: ChangeObserver) -> Callable[[], None]:
        """Register a change observer; returns a function that unregisters it."""
        with self._lock:
            self._observers.append(observer)

        def unsubscribe() -> None:
            with self._lock:
                if observer in self._observers:
                    self._observers.remove(observer)

        return unsubscribe

    def reload(self) -> None:
        """Load every provider again, re-merge once and notify."""
        for provider in self._providers:
            provider.load()
        self._rebuild()

    def _provider_changed(self, provider: ConfigurationProvider) -> None:
        logger.debug("Configuration provider changed", provider=provider.name)
        self._rebuild()

    def _rebuild(self) -> None:
        entries = self._merge()
        with self._lock:
            self._entries = entries
            observers = list(self._observers)
        for observer in observers:
            observer(self)

    def __repr__(self) -> str:
        return f"ConfigurationRoot(providers={[p.name for p in self._providers]}, keys={len(self._entries)})"


def _sort_key(key: str) -> Tuple:
    """Sort numeric segments numerically and the rest case-insensitively."""
    return tuple(
        (0, int(segment), "") if segment.isdigit() else (1, 0, normalize(segment))
        for segment in key.split(KEY_DELIMITER)
    )


def _listify(node: Any) -> Any:
    if not isinstance(node, dict):
        return node
    converted = {k: _listify(v) for k, v in node.items()}
    if converted and all(k.isdigit() for k in converted):
        indices = sorted(int(k) for k in converted)
        if indices == list(range(len(indices))):
            return [converted[str(i)] for i in indices]
    return converted
