"""
Reload notification.

Consumers register callbacks that fire each time a provider installs new
data after a change. Callbacks run on the provider's loop thread and must
not block on the provider (e.g. by calling load()).
"""

from __future__ import annotations

import logging as _logging
import threading as _threading
import typing as _typing

if _typing.TYPE_CHECKING:
    import kvconfig.provider as provider

_logger = _logging.getLogger(__name__)

ReloadCallback = _typing.Callable[["provider.ConsulConfigurationProvider"], None]


class ReloadNotifier:
    """Thread-safe list of reload callbacks."""

    def __init__(self) -> None:
        self._lock = _threading.Lock()
        self._callbacks: list[ReloadCallback] = []
        self._reload_count = 0

    @property
    def reload_count(self) -> int:
        """Number of reloads signalled so far."""
        return self._reload_count

    def register(self, callback: ReloadCallback) -> _typing.Callable[[], None]:
        """
        Register a callback.

        Returns:
            A function that unregisters the callback. Calling it more than
            once is harmless.
        """
        with self._lock:
            self._callbacks.append(callback)

        def unregister() -> None:
            with self._lock:
                if callback in self._callbacks:
                    self._callbacks.remove(callback)

        return unregister

    def notify(self, source: provider.ConsulConfigurationProvider) -> None:
        """Invoke every registered callback. Errors are logged, not raised."""
        with self._lock:
            self._reload_count += 1
            callbacks = list(self._callbacks)

        for callback in callbacks:
            try:
                callback(source)
            except Exception as e:
                _logger.warning("Reload callback %r failed: %s", callback, e)

    def __len__(self) -> int:
        with self._lock:
            return len(self._callbacks)
