"""
Change watcher.

Repeatedly issues blocking reads against the store and reports when the
version index of the watched subtree advances. The watcher owns the
cursor (the last observed index) and the failure policy; it never touches
the configuration mapping itself.

State machine:

    IDLE -> POLLING -> CHANGED            (index advanced, result returned)
                    -> POLLING            (read timed out, index unchanged)
                    -> FAILED(n)          (read failed, policy consulted)
    FAILED(n) -> POLLING                  (after the policy's wait)
    any state -> CANCELLED                (token cancelled)
"""

from __future__ import annotations

import enum as _enum
import logging as _logging
import threading as _threading
import typing as _typing

import kvconfig.constants as _constants
import kvconfig.errors as errors
import kvconfig.types as types

if _typing.TYPE_CHECKING:
    import kvconfig.cancellation as cancellation
    import kvconfig.source as source

_logger = _logging.getLogger(__name__)


class KVReader(_typing.Protocol):
    """The part of the fetch client the watcher and provider depend on."""

    async def get(
        self,
        key: str,
        *,
        wait_index: int = 0,
        wait_time: float | None = None,
    ) -> types.QueryResult: ...


class WatchState(_enum.Enum):
    """Lifecycle state of a ChangeWatcher."""

    IDLE = "idle"
    POLLING = "polling"
    CHANGED = "changed"
    FAILED = "failed"
    CANCELLED = "cancelled"


def next_index(previous: int, raw: int) -> int:
    """
    Compute the cursor to use for the next blocking read.

    Args:
        previous: Cursor used for the read that just completed.
        raw: Index the store reported for that read.

    Returns:
        raw, except that 0 becomes 1 (0 would make the next read
        non-blocking) and an index that went backwards resets the cursor
        to 0 so the next read returns immediately with fresh data.
    """
    if raw == 0:
        return 1
    if raw < previous:
        return 0
    return raw


def has_changed(previous: int, raw: int) -> bool:
    """A read reports a change only when the index strictly advanced."""
    return raw > previous


class ChangeWatcher:
    """
    Long-polls one key and returns the result of each read that advanced the index.

    The failure policy is the source's on_watch_exception hook. It is
    called with a WatchExceptionContext and returns how long to wait before
    retrying; None means the default of 5 seconds. A policy that raises, or
    returns something that is not a duration, stops the watch.
    """

    def __init__(
        self,
        client: KVReader,
        source: source.ConsulConfigurationSource,
        cancellation: cancellation.CancellationToken,
        *,
        initial_index: int = 0,
    ) -> None:
        """
        Initialize the watcher.

        Args:
            client: Fetch client used for the blocking reads.
            source: Configuration source (key, poll wait time and hook).
            cancellation: Token that stops the watch when cancelled.
            initial_index: Cursor to start from, normally the index
                observed by the initial load.
        """
        self._client = client
        self._source = source
        self._cancellation = cancellation
        self._lock = _threading.Lock()
        self._last_index = initial_index
        self._consecutive_failures = 0
        self._state = WatchState.IDLE

    @property
    def last_index(self) -> int:
        with self._lock:
            return self._last_index

    @property
    def state(self) -> WatchState:
        return self._state

    @property
    def consecutive_failures(self) -> int:
        return self._consecutive_failures

    def _advance(self, raw: int) -> bool:
        with self._lock:
            previous = self._last_index
            self._last_index = next_index(previous, raw)
        changed = has_changed(previous, raw)
        if changed:
            _logger.debug("Index for %s advanced %d -> %d", self._source.key, previous, raw)
        elif raw < previous:
            _logger.debug(
                "Index for %s went backwards (%d -> %d), resetting", self._source.key, previous, raw
            )
        return changed

    async def wait_for_change(self) -> types.QueryResult | None:
        """
        Block until the watched subtree changes.

        Returns:
            The result of the read that observed the change, or None if
            the watch was cancelled or stopped by its failure policy.
        """
        wait_time = self._source.poll_wait_time.total_seconds()
        while True:
            if self._cancellation.is_cancelled:
                self._state = WatchState.CANCELLED
                return None

            self._state = WatchState.POLLING
            try:
                result = await self._cancellation.run(
                    self._client.get(
                        self._source.key,
                        wait_index=self.last_index,
                        wait_time=wait_time,
                    )
                )
            except errors.OperationCancelledError:
                self._state = WatchState.CANCELLED
                return None
            except Exception as e:
                if not await self.report_failure(e):
                    return None
                continue

            self._consecutive_failures = 0
            if self._advance(result.index):
                self._state = WatchState.CHANGED
                return result

    async def report_failure(self, exception: BaseException) -> bool:
        """
        Run the failure policy for an exception and wait as it asks.

        Also used by the provider for errors raised while applying a change.

        Returns:
            True to keep watching, False if the watch was cancelled during
            the wait or stopped by the policy.
        """
        self._consecutive_failures += 1
        self._state = WatchState.FAILED
        _logger.warning(
            "Watching %s failed (%d in a row): %s",
            self._source.key,
            self._consecutive_failures,
            exception,
        )

        hook = self._source.on_watch_exception
        context = types.WatchExceptionContext(
            exception=exception,
            consecutive_failures=self._consecutive_failures,
            source=self._source,
            cancellation=self._cancellation,
        )
        try:
            decision = hook(context) if hook is not None else None
            delay = types.to_seconds(decision, _constants.DEFAULT_WATCH_RETRY_SECONDS)
        except Exception as e:
            _logger.warning(
                "Watch exception hook failed, stopping watch of %s: %s", self._source.key, e
            )
            self._cancellation.cancel()
            self._state = WatchState.CANCELLED
            return False

        if await self._cancellation.wait(delay):
            self._state = WatchState.CANCELLED
            return False
        return True
