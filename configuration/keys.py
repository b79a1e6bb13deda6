"""Helpers for hierarchical configuration keys."""
from __future__ import annotations

from typing import Iterable, Optional

KEY_DELIMITER = ":"


def normalize(key: str) -> str:
    """Case-folded form used for every key comparison."""
    return key.casefold()


def combine(*segments: str) -> str:
    """Join path segments with the canonical delimiter, skipping empty ones."""
    return KEY_DELIMITER.join(s for s in segments if s)


def split(key: str) -> list[str]:
    return key.split(KEY_DELIMITER) if key else []


def get_section_key(path: str) -> str:
    """Last segment of ``path`` (``"a:b:c"`` -> ``"c"``)."""
    if not path:
        return path
    return path.rsplit(KEY_DELIMITER, 1)[-1]


def get_parent_path(path: str) -> Optional[str]:
    """Everything but the last segment, or ``None`` for a top-level key."""
    if not path or KEY_DELIMITER not in path:
        return None
    return path.rsplit(KEY_DELIMITER, 1)[0]


def starts_with_path(key: str, prefix: str) -> bool:
    """True when ``key`` lives strictly below ``prefix``."""
    if not prefix:
        return True
    return normalize(key).startswith(normalize(prefix) + KEY_DELIMITER)


def flatten(data: dict, parent: str = "") -> Iterable[tuple[str, str]]:
    """
    Flatten nested mappings/sequences into ``(key, value)`` pairs.

    Lists become index segments (``items:0``); ``None`` becomes ``""`` and
    booleans their lowercase JSON spelling.
    """
    if isinstance(data, dict):
        items = data.items()
    else:
        items = ((str(i), v) for i, v in enumerate(data))
    for name, value in items:
        path = combine(parent, str(name)) if parent else str(name)
        if isinstance(value, (dict, list)):
            if not value:
                yield path, ""
            else:
                yield from flatten(value, path)
        elif value is None:
            yield path, ""
        elif isinstance(value, bool):
            yield path, "true" if value else "false"
        else:
            yield path, str(value)
