"""Utility functions for d2manifest."""

import copy
from collections.abc import Mapping, Sequence
from typing import Any, Dict, Iterator, List, Union

from typing_extensions import TypedDict

# Batch lookups are capped the same way the upstream entity endpoint caps them
MAX_BATCH_SIZE = 20

UINT32_MODULUS = 2**32


# TypedDict for batch definition lookups
class DefinitionBatch(TypedDict):
    """Result of looking up several definitions from one table."""

    results: Dict[str, Any]  # hash -> definition
    missing: List[str]  # hashes with no definition
    total_requested: int
    total_found: int


def validate_table_name(name: str) -> None:
    """Validate that a manifest table name is usable as a lookup key.

    Args:
        name: Table name to validate

    Raises:
        ValueError: If name is empty, padded with whitespace, or too long

    Examples:
        >>> validate_table_name('DestinyInventoryItemDefinition')  # OK
        >>> validate_table_name(' Items')
        Traceback (most recent call last):
            ...
        ValueError: Table name ' Items' cannot have leading or trailing whitespace
    """
    if not isinstance(name, str):
        raise TypeError(f"Table name must be a string, got {type(name).__name__}")

    if not name:
        raise ValueError("Table name cannot be empty")

    if name != name.strip():
        raise ValueError(
            f"Table name '{name}' cannot have leading or trailing whitespace"
        )

    if len(name) > 255:
        raise ValueError(f"Table name '{name}' is too long (max 255 characters)")


def hash_candidates(definition_hash: Union[str, int]) -> List[str]:
    """Get the keys under which a definition hash may be stored.

    Manifest tables are keyed by the unsigned 32-bit hash, while some API
    responses report the same hash as a signed integer. The key as given is
    always tried first.

    Args:
        definition_hash: Hash as a string or integer

    Returns:
        Candidate keys, most specific first, without duplicates

    Examples:
        >>> hash_candidates('123')
        ['123']
        >>> hash_candidates(-1)
        ['-1', '4294967295']
        >>> hash_candidates(' 0042 ')
        [' 0042 ', '42']
    """
    raw = str(definition_hash)
    candidates = [raw]

    try:
        value = int(raw.strip())
    except ValueError:
        return candidates

    if -(UINT32_MODULUS // 2) <= value < 0:
        value += UINT32_MODULUS

    normalized = str(value)
    if normalized not in candidates:
        candidates.append(normalized)
    return candidates


class FrozenMapping(Mapping):
    """Read-only view of a decoded JSON object.

    Nested objects and arrays are wrapped as they are accessed, so no part of
    the underlying data can be changed through the view and nothing is copied
    up front.
    """

    __slots__ = ("_data",)

    def __init__(self, data: Dict[str, Any]):
        self._data = data

    def __getitem__(self, key: str) -> Any:
        return freeze(self._data[key])

    def __iter__(self) -> Iterator[str]:
        return iter(self._data)

    def __len__(self) -> int:
        return len(self._data)

    def __contains__(self, key: object) -> bool:
        return key in self._data

    def __repr__(self) -> str:
        return f"FrozenMapping({self._data!r})"


class FrozenSequence(Sequence):
    """Read-only view of a decoded JSON array."""

    __slots__ = ("_data",)

    def __init__(self, data: List[Any]):
        self._data = data

    def __getitem__(self, index):
        if isinstance(index, slice):
            return FrozenSequence(self._data[index])
        return freeze(self._data[index])

    def __len__(self) -> int:
        return len(self._data)

    def __eq__(self, other: object) -> bool:
        if isinstance(other, (FrozenSequence, list, tuple)):
            return len(self) == len(other) and all(a == b for a, b in zip(self, other))
        return NotImplemented

    __hash__ = None

    def __repr__(self) -> str:
        return f"FrozenSequence({self._data!r})"


def freeze(value: Any) -> Any:
    """Wrap decoded JSON in a read-only view. Scalars are returned as is."""
    if isinstance(value, dict):
        return FrozenMapping(value)
    if isinstance(value, list):
        return FrozenSequence(value)
    return value


def thaw(value: Any) -> Any:
    """Get an independent, mutable copy of a value, unwrapping read-only views.

    Examples:
        >>> thaw(freeze({'a': [1, 2]}))
        {'a': [1, 2]}
    """
    if isinstance(value, (FrozenMapping, FrozenSequence)):
        return copy.deepcopy(value._data)
    return copy.deepcopy(value)
