"""
Cooperative cancellation shared by a provider and its watcher.

A CancellationToken is created with the provider and cancelled when the
provider is closed. It can be cancelled from any thread (including from a
watch exception hook) and awaited from inside an event loop, which is what
lets close() interrupt a blocking read or a back-off sleep promptly.
"""

from __future__ import annotations

import asyncio as _asyncio
import threading as _threading
import typing as _typing

import kvconfig.errors as errors

_T = _typing.TypeVar("_T")


def _resolve(waiter: _asyncio.Future[None]) -> None:
    if not waiter.done():
        waiter.set_result(None)


class CancellationToken:
    """
    Thread-safe, one-shot cancellation signal.

    Example:
        >>> token = CancellationToken()
        >>> token.is_cancelled
        False
        >>> token.cancel()
        >>> token.is_cancelled
        True
    """

    def __init__(self) -> None:
        self._cancelled = _threading.Event()
        self._lock = _threading.Lock()
        self._waiters: list[tuple[_asyncio.AbstractEventLoop, _asyncio.Future[None]]] = []

    @property
    def is_cancelled(self) -> bool:
        return self._cancelled.is_set()

    def cancel(self) -> None:
        """Cancel the token and wake every coroutine waiting on it."""
        with self._lock:
            if self._cancelled.is_set():
                return
            self._cancelled.set()
            waiters = list(self._waiters)

        for loop, waiter in waiters:
            if loop.is_closed():
                continue
            loop.call_soon_threadsafe(_resolve, waiter)

    def raise_if_cancelled(self) -> None:
        if self.is_cancelled:
            raise errors.OperationCancelledError("operation was cancelled")

    async def wait(self, timeout: float | None = None) -> bool:
        """
        Wait until the token is cancelled or the timeout elapses.

        Args:
            timeout: Seconds to wait. None waits until cancelled.

        Returns:
            True if the token was cancelled, False if the timeout elapsed.
        """
        if self.is_cancelled:
            return True

        loop = _asyncio.get_running_loop()
        waiter: _asyncio.Future[None] = loop.create_future()
        entry = (loop, waiter)
        with self._lock:
            if self._cancelled.is_set():
                return True
            self._waiters.append(entry)

        try:
            await _asyncio.wait_for(waiter, timeout=timeout)
            return True
        except TimeoutError:
            return self.is_cancelled
        finally:
            with self._lock:
                self._waiters.remove(entry)

    async def run(self, awaitable: _typing.Awaitable[_T]) -> _T:
        """
        Await an operation unless the token is cancelled first.

        The operation is cancelled and OperationCancelledError raised if the
        token fires before the operation completes.
        """
        if self.is_cancelled:
            if _asyncio.iscoroutine(awaitable):
                awaitable.close()
            raise errors.OperationCancelledError("operation was cancelled")

        operation = _asyncio.ensure_future(awaitable)
        cancelled = _asyncio.ensure_future(self.wait())
        try:
            done, _ = await _asyncio.wait(
                {operation, cancelled},
                return_when=_asyncio.FIRST_COMPLETED,
            )
        except _asyncio.CancelledError:
            operation.cancel()
            raise
        finally:
            if not cancelled.done():
                cancelled.cancel()

        if operation in done:
            return operation.result()

        operation.cancel()
        # Let the operation unwind before reporting the cancellation
        await _asyncio.wait({operation})
        raise errors.OperationCancelledError("operation was cancelled")
