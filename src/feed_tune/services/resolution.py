# ABOUTME: Table-driven field resolution with ordered fallback chains.
# ABOUTME: Each source type declares {field: FieldRule([paths...], fallback)} and resolves through here.

from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

_MISSING = object()


@dataclass(frozen=True)
class FieldRule:
    """Ordered source paths for one target field; the first non-empty value wins.

    Paths are dotted keys into nested mappings (``snippet.thumbnails.high.url``).
    ``fallback`` is a constant, or a zero-argument callable evaluated only when
    every path is empty.
    """

    sources: tuple[str, ...]
    fallback: Any = None

    def default(self) -> Any:
        return self.fallback() if callable(self.fallback) else self.fallback


def lookup(record: Mapping[str, Any], path: str) -> Any:
    """Follow a dotted path through nested mappings; missing keys yield None."""
    value: Any = record
    for key in path.split("."):
        if not isinstance(value, Mapping):
            return None
        value = value.get(key, _MISSING)
        if value is _MISSING:
            return None
    return value


def is_empty(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    return False


def resolve(record: Mapping[str, Any], rule: FieldRule) -> Any:
    for path in rule.sources:
        value = lookup(record, path)
        if not is_empty(value):
            return value
    return rule.default()


def resolve_fields(
    record: Mapping[str, Any], table: Mapping[str, FieldRule]
) -> dict[str, Any]:
    """Resolve every field of ``table`` against ``record``."""
    return {name: resolve(record, rule) for name, rule in table.items()}