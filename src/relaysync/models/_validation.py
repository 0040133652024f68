"""Shared validation helpers for frozen dataclass models.

Private module, not part of the public API. Used by ``__post_init__``
methods in sibling model modules to enforce runtime type constraints,
hex encoding, null-byte safety, and deep immutability.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from types import MappingProxyType
from typing import Any


_HEX_DIGITS = frozenset("0123456789abcdef")


def validate_timestamp(value: Any, name: str) -> None:
    """Raise if *value* is not a non-negative ``int`` (``bool`` excluded)."""
    if isinstance(value, bool) or not isinstance(value, int):
        raise TypeError(f"{name} must be an int, got {type(value).__name__}")
    if value < 0:
        raise ValueError(f"{name} must be non-negative")


def validate_int_range(value: Any, name: str, low: int, high: int) -> None:
    """Raise if *value* is not an ``int`` within ``[low, high]`` (``bool`` excluded)."""
    if isinstance(value, bool) or not isinstance(value, int):
        raise TypeError(f"{name} must be an int, got {type(value).__name__}")
    if not low <= value <= high:
        raise ValueError(f"{name} {value} out of valid range ({low}-{high})")


def validate_str_no_null(value: Any, name: str) -> None:
    """Raise if *value* is not a ``str`` or contains null bytes."""
    if not isinstance(value, str):
        raise TypeError(f"{name} must be a str, got {type(value).__name__}")
    if "\x00" in value:
        raise ValueError(f"{name} contains null bytes")


def validate_str_not_empty(value: Any, name: str) -> None:
    """Raise if *value* is not a non-empty ``str`` without null bytes."""
    validate_str_no_null(value, name)
    if not value:
        raise ValueError(f"{name} must not be empty")


def validate_hex(value: Any, length: int, name: str) -> None:
    """Raise if *value* is not a lowercase hex string of exactly *length* chars."""
    if not isinstance(value, str):
        raise TypeError(f"{name} must be a str, got {type(value).__name__}")
    if len(value) != length:
        raise ValueError(f"Invalid {name} length: {len(value)} (expected {length})")
    if not _HEX_DIGITS.issuperset(value):
        raise ValueError(f"{name} must be lowercase hex")


def freeze_tags(tags: Iterable[Iterable[Any]], name: str = "tags") -> tuple[tuple[str, ...], ...]:
    """Convert a nested tag sequence into a tuple of string tuples.

    Raises:
        TypeError: If *tags* or any tag is a bare string, or a tag value
            is not a string.
        ValueError: If a tag is empty.
    """
    if isinstance(tags, str | bytes):
        raise TypeError(f"{name} must be a sequence of tag arrays")
    frozen: list[tuple[str, ...]] = []
    for tag in tags:
        if isinstance(tag, str | bytes):
            raise TypeError(f"{name} entries must be arrays, got {type(tag).__name__}")
        values = tuple(tag)
        if not values:
            raise ValueError(f"{name} entries must not be empty")
        for item in values:
            if not isinstance(item, str):
                raise TypeError(f"{name} values must be str, got {type(item).__name__}")
        frozen.append(values)
    return tuple(frozen)


def deep_freeze(obj: Any) -> Any:
    """Recursively wrap dicts with ``MappingProxyType`` to prevent mutation."""
    if isinstance(obj, Mapping):
        return MappingProxyType({k: deep_freeze(v) for k, v in obj.items()})
    if isinstance(obj, list):
        return tuple(deep_freeze(item) for item in obj)
    return obj
