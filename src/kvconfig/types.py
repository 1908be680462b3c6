"""
Core data types for kvconfig.

These are data transfer objects shared by the client, the watcher and
the provider:
- KVEntry: one entry returned by the store
- QueryStatus / QueryResult: the uniform result of a read
- LoadAction: what the load exception hook wants done with a failure
- LoadExceptionContext / WatchExceptionContext: data passed to the hooks
"""

from __future__ import annotations

import dataclasses as _dataclasses
import datetime as _datetime
import enum as _enum
import typing as _typing

import kvconfig.constants as _constants

if _typing.TYPE_CHECKING:
    import kvconfig.cancellation as cancellation
    import kvconfig.source as source


@_dataclasses.dataclass(frozen=True)
class KVEntry:
    """One (path, payload) entry returned by the store."""

    key: str
    value: bytes | None = None
    modify_index: int = 0
    flags: int = 0

    @property
    def is_leaf(self) -> bool:
        """Entries whose key ends with the store delimiter are folders."""
        return not self.key.endswith(_constants.STORE_DELIMITER)

    @property
    def has_value(self) -> bool:
        """Whether this entry contributes configuration data."""
        return self.is_leaf and bool(self.value)


class QueryStatus(_enum.Enum):
    """Outcome of a read against the store."""

    FOUND = "found"
    NOT_FOUND = "not_found"


@_dataclasses.dataclass(frozen=True)
class QueryResult:
    """
    Uniform result of a read.

    Attributes:
        status: FOUND or NOT_FOUND.
        entries: Entries returned by the store (empty when not found).
        index: Version index the store reported for the queried subtree.
    """

    status: QueryStatus
    entries: tuple[KVEntry, ...] = ()
    index: int = 0

    @classmethod
    def not_found(cls, index: int = 0) -> QueryResult:
        return cls(status=QueryStatus.NOT_FOUND, index=index)

    @property
    def has_value(self) -> bool:
        """True iff the key exists and at least one entry carries data."""
        return self.status == QueryStatus.FOUND and any(e.has_value for e in self.entries)


class LoadAction(_enum.Enum):
    """
    Decision returned by a load exception hook.
    """

    RAISE = "raise"
    """Let the exception propagate out of load()."""

    IGNORE = "ignore"
    """Swallow the exception; load() returns with whatever data is installed."""

    @classmethod
    def coerce(cls, decision: LoadAction | bool | None) -> LoadAction:
        """Normalize a hook return value. None means RAISE, True means IGNORE."""
        if decision is None:
            return cls.RAISE
        if isinstance(decision, LoadAction):
            return decision
        return cls.IGNORE if decision else cls.RAISE


@_dataclasses.dataclass(frozen=True)
class LoadExceptionContext:
    """
    Information about an exception raised while loading configuration.

    Attributes:
        exception: The exception raised while fetching or flattening.
        source: The configuration source of the provider that failed.
    """

    exception: BaseException
    source: source.ConsulConfigurationSource


@_dataclasses.dataclass(frozen=True)
class WatchExceptionContext:
    """
    Information about an exception raised while watching for changes.

    Attributes:
        exception: The exception raised by the failed read.
        consecutive_failures: Number of failures in a row, including this one.
        source: The configuration source of the provider being watched.
        cancellation: Token of the watch; cancelling it stops the watch.
    """

    exception: BaseException
    consecutive_failures: int
    source: source.ConsulConfigurationSource
    cancellation: cancellation.CancellationToken

    def cancel(self) -> None:
        """Stop watching after this failure."""
        self.cancellation.cancel()


LoadExceptionHook = _typing.Callable[[LoadExceptionContext], LoadAction | bool | None]
"""Called with every exception raised during load(); returns the decision."""

WatchExceptionHook = _typing.Callable[
    [WatchExceptionContext], float | _datetime.timedelta | None
]
"""Called with every failed watch read; returns how long to wait before retrying."""


def to_seconds(value: float | _datetime.timedelta | None, default: float) -> float:
    """Convert a hook or option duration to seconds, never negative."""
    if value is None:
        return default
    if isinstance(value, _datetime.timedelta):
        value = value.total_seconds()
    return max(float(value), 0.0)
