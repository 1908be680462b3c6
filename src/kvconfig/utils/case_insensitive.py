"""
Read-only mapping with case-insensitive string keys.

Keys are compared with str.lower(), which is locale independent, so
"Database:Host" and "database:host" are the same key. The original
spelling of the first insertion is kept for iteration and display.
"""

from __future__ import annotations

import collections.abc as _abc
import typing as _typing

_V = _typing.TypeVar("_V")


class CaseInsensitiveMapping(_abc.Mapping[str, _V]):
    """
    Read-only view over string keys that ignores case on lookup.

    Example:
        >>> data = CaseInsensitiveMapping({"Database:Host": "db1"})
        >>> data["database:host"]
        'db1'
        >>> list(data)
        ['Database:Host']
    """

    __slots__ = ("_data",)

    def __init__(
        self,
        data: _abc.Mapping[str, _V] | _abc.Iterable[tuple[str, _V]] = (),
    ) -> None:
        """
        Build the mapping.

        Args:
            data: Mapping or iterable of (key, value) pairs. When keys
                collide case-insensitively the last one wins; callers that
                need collision errors check before building (see flattener).
        """
        items = data.items() if isinstance(data, _abc.Mapping) else data
        self._data: dict[str, tuple[str, _V]] = {}
        for key, value in items:
            folded = key.lower()
            original = self._data[folded][0] if folded in self._data else key
            self._data[folded] = (original, value)

    def __getitem__(self, key: str) -> _V:
        return self._data[key.lower()][1]

    def __contains__(self, key: object) -> bool:
        return isinstance(key, str) and key.lower() in self._data

    def __iter__(self) -> _typing.Iterator[str]:
        return (original for original, _ in self._data.values())

    def __len__(self) -> int:
        return len(self._data)

    def __repr__(self) -> str:
        return f"CaseInsensitiveMapping({dict(self.items())!r})"

    def __eq__(self, other: object) -> bool:
        """Compare equal to any mapping with the same keys (ignoring case) and values."""
        if not isinstance(other, _abc.Mapping):
            return NotImplemented
        if len(self) != len(other):
            return False
        return all(
            isinstance(key, str) and key in self and self[key] == value
            for key, value in other.items()
        )

    def __hash__(self) -> int:
        raise TypeError(f"unhashable type: '{type(self).__name__}'")
