"""
Load/reload coordinator.

ConsulConfigurationProvider owns the flattened configuration mapping of
one source. load() reads the key once and installs the result; with
reload_on_change it then starts a ChangeWatcher and swaps in new data
every time the key changes.

All network I/O runs on a private event loop in a daemon thread, so the
synchronous API works the same from plain code, from threads, and from
inside another event loop. Hooks and reload callbacks that fire during a
reload run on that thread.
"""

from __future__ import annotations

import asyncio as _asyncio
import collections.abc as _abc
import concurrent.futures as _futures
import logging as _logging
import threading as _threading
import types as _pytypes
import typing as _typing

import kvconfig.cache as cache
import kvconfig.cancellation as cancellation
import kvconfig.constants as _constants
import kvconfig.errors as errors
import kvconfig.flattener as flattener
import kvconfig.reload as reload
import kvconfig.types as types
import kvconfig.utils as utils
import kvconfig.watcher as watcher

if _typing.TYPE_CHECKING:
    import kvconfig.client as consul_client
    import kvconfig.source as source

_logger = _logging.getLogger(__name__)

_T = _typing.TypeVar("_T")

_EMPTY: utils.CaseInsensitiveMapping[str | None] = utils.CaseInsensitiveMapping()


def _run_loop(loop: _asyncio.AbstractEventLoop) -> None:
    try:
        loop.run_forever()
    finally:
        loop.close()


class ConsulConfigurationProvider:
    """
    Configuration provider backed by one key (or key prefix) of the store.

    Example:
        >>> provider = ConsulConfigurationSource(key="app/prod").build()
        >>> provider.load()
        >>> provider.get("db:host")
        'db1'
        >>> provider.close()
    """

    def __init__(
        self,
        source: source.ConsulConfigurationSource,
        *,
        kv_client: consul_client.ConsulKVClient | None = None,
    ) -> None:
        """
        Initialize the provider. Nothing is read until load() is called.

        Args:
            source: Options of this provider.
            kv_client: Client to use instead of one built from source.client.
        """
        self._source = source
        self._client = kv_client if kv_client is not None else source.client.create_client()
        self._cache: cache.SnapshotCache | None = None
        if source.cache_dir is not None:
            self._cache = cache.SnapshotCache(source.cache_dir, source.key)
        self._data: utils.CaseInsensitiveMapping[str | None] = _EMPTY
        self._loaded_index = 0
        self._reload_token = reload.ReloadNotifier()
        self._cancellation = cancellation.CancellationToken()
        self._watcher: watcher.ChangeWatcher | None = None
        self._watch_future: _futures.Future[None] | None = None
        self._lock = _threading.Lock()
        self._loop: _asyncio.AbstractEventLoop | None = None
        self._thread: _threading.Thread | None = None
        self._closed = False
        self._shutdown_task: _asyncio.Task[None] | None = None

    # -- public state -----------------------------------------------------

    @property
    def source(self) -> source.ConsulConfigurationSource:
        return self._source

    @property
    def data(self) -> _abc.Mapping[str, str | None]:
        """The current flattened mapping. Empty until the first successful load."""
        return self._data

    @property
    def reload_token(self) -> reload.ReloadNotifier:
        """Fires after each reload that installed new data."""
        return self._reload_token

    @property
    def last_index(self) -> int:
        """Cursor of the watcher, or the index seen by the last load when not watching."""
        current = self._watcher
        return current.last_index if current is not None else self._loaded_index

    @property
    def is_watching(self) -> bool:
        future = self._watch_future
        return future is not None and not future.done()

    @property
    def is_closed(self) -> bool:
        return self._closed

    def get(self, key: str) -> str | None:
        """
        Look up a configuration key, ignoring case.

        Raises:
            KeyError: If the key is not present.
        """
        return self._data[key]

    def try_get(self, key: str) -> tuple[bool, str | None]:
        """Look up a configuration key, returning (found, value)."""
        data = self._data
        if key in data:
            return True, data[key]
        return False, None

    # -- loop management --------------------------------------------------

    def _ensure_loop(self) -> _asyncio.AbstractEventLoop:
        with self._lock:
            if self._closed:
                raise RuntimeError("provider is closed")
            if self._loop is None:
                loop = _asyncio.new_event_loop()
                thread = _threading.Thread(
                    target=_run_loop,
                    args=(loop,),
                    name=f"kvconfig-{self._source.key}",
                    daemon=True,
                )
                thread.start()
                self._loop = loop
                self._thread = thread
            return self._loop

    def _on_loop_thread(self) -> bool:
        return self._thread is not None and _threading.current_thread() is self._thread

    def _submit(
        self, coro: _abc.Coroutine[_typing.Any, _typing.Any, _T]
    ) -> _futures.Future[_T]:
        """Schedule a coroutine on the provider's loop from another thread."""
        try:
            if self._on_loop_thread():
                raise RuntimeError("cannot block on the provider from its own loop thread")
            loop = self._ensure_loop()
        except RuntimeError:
            coro.close()
            raise
        return _asyncio.run_coroutine_threadsafe(coro, loop)

    def _run(self, coro: _abc.Coroutine[_typing.Any, _typing.Any, _T]) -> _T:
        """Run a coroutine on the provider's loop and block for its result."""
        return self._submit(coro).result()

    # -- loading ----------------------------------------------------------

    def _install(self, result: types.QueryResult, *, reloading: bool) -> bool:
        """
        Install a read result as the current mapping.

        Returns:
            True if the mapping was replaced, False if the old data was kept.

        Raises:
            ConfigNotFoundError: Required key missing on the initial load.
            FlatteningError: The payload could not be flattened.
        """
        key = self._source.key
        if not result.has_value:
            if not self._source.optional:
                if not reloading:
                    raise errors.ConfigNotFoundError(key)
                _logger.warning(
                    "Key %s disappeared from the store, keeping the previous configuration", key
                )
                return False
            self._data = _EMPTY
            return True

        self._data = flattener.flatten_entries(
            result.entries,
            self._source.key_to_remove,
            self._source.parser,
        )
        return True

    def _save_snapshot(self, result: types.QueryResult) -> None:
        if self._cache is not None:
            self._cache.save(result)

    def _restore_from_cache(self) -> bool:
        if self._cache is None or self._data is not _EMPTY:
            return False
        cached = self._cache.load()
        if cached is None:
            return False
        try:
            self._install(cached, reloading=False)
        except errors.KVConfigError as e:
            _logger.warning("Snapshot for %s is unusable: %s", self._source.key, e)
            return False
        _logger.warning(
            "Loaded %s from the local snapshot (index %d)", self._source.key, cached.index
        )
        return True

    def _handle_load_exception(self, exception: Exception) -> None:
        """Route an exception to the load hook; re-raise unless it says IGNORE."""
        hook = self._source.on_load_exception
        decision = types.LoadAction.RAISE
        if hook is not None:
            context = types.LoadExceptionContext(exception=exception, source=self._source)
            decision = types.LoadAction.coerce(hook(context))
        if decision is types.LoadAction.RAISE:
            raise exception
        _logger.warning("Ignoring failure to load %s: %s", self._source.key, exception)

    def load(self) -> None:
        """
        Read the key and install its configuration.

        Does nothing while a watcher is running, since the watcher already
        keeps the data current. When reload_on_change is set, a watcher is
        started once load() returns normally.

        Raises:
            ConfigNotFoundError: The key is missing and the source is not optional.
            KVProtocolError, KVTransportError, FlatteningError: Unless the
                load exception hook returns IGNORE.
        """
        if self._closed:
            raise RuntimeError("provider is closed")
        if self.is_watching:
            return

        # A failed load leaves the cursor at 0 so the watcher's first read
        # returns immediately instead of blocking.
        cursor = 0
        pending = self._submit(self._client.get(self._source.key))
        try:
            result = pending.result()
            self._install(result, reloading=False)
        except Exception as e:
            self._restore_from_cache()
            self._handle_load_exception(e)
        else:
            self._save_snapshot(result)
            self._loaded_index = result.index
            cursor = watcher.next_index(0, result.index)
            _logger.info(
                "Loaded %d keys from %s (index %d)", len(self._data), self._source.key, result.index
            )

        if self._source.reload_on_change:
            self._start_watching(cursor)

    def set(self, key: str, value: bytes | str) -> bool:
        """
        Write a raw value under the source key.

        Args:
            key: Path relative to the source key, with "/" or ":" separators.
                An empty key writes the source key itself.
            value: Payload to store, in the format the source's parser reads.

        Returns:
            True if the store accepted the write. Without a running watcher
            the provider reloads immediately so the write is visible.
        """
        relative = key.replace(_constants.KEY_DELIMITER, _constants.STORE_DELIMITER).strip(
            _constants.STORE_DELIMITER
        )
        root = self._source.key.rstrip(_constants.STORE_DELIMITER)
        path = f"{root}{_constants.STORE_DELIMITER}{relative}" if relative else self._source.key
        accepted = self._run(self._client.put(path, value))
        if accepted and not self.is_watching:
            self._run(self._refresh())
        return accepted

    async def _refresh(self) -> None:
        result = await self._client.get(self._source.key)
        self._apply_change(result)

    # -- watching ---------------------------------------------------------

    def _apply_change(self, result: types.QueryResult) -> None:
        if self._install(result, reloading=True):
            self._save_snapshot(result)
            _logger.info(
                "Reloaded %d keys from %s (index %d)",
                len(self._data),
                self._source.key,
                result.index,
            )
            self._reload_token.notify(self)

    def _start_watching(self, initial_index: int) -> None:
        loop = self._ensure_loop()
        self._watcher = watcher.ChangeWatcher(
            self._client,
            self._source,
            self._cancellation,
            initial_index=initial_index,
        )
        self._watch_future = _asyncio.run_coroutine_threadsafe(self._watch(self._watcher), loop)
        _logger.debug("Watching %s from index %d", self._source.key, initial_index)

    async def _watch(self, change_watcher: watcher.ChangeWatcher) -> None:
        while True:
            result = await change_watcher.wait_for_change()
            if result is None:
                break
            try:
                self._apply_change(result)
            except Exception as e:
                if not await change_watcher.report_failure(e):
                    break
        _logger.debug("Stopped watching %s", self._source.key)

    # -- shutdown ---------------------------------------------------------

    def close(self, timeout: float = _constants.DEFAULT_CLOSE_TIMEOUT_SECONDS) -> None:
        """
        Stop watching and release the HTTP client and the loop thread.

        Safe to call more than once. The current data stays readable. When
        called from a reload callback (on the loop thread) the shutdown is
        scheduled on the loop and close() returns without waiting.
        """
        with self._lock:
            if self._closed:
                return
            self._closed = True
            loop, thread = self._loop, self._thread

        self._cancellation.cancel()
        if loop is None or thread is None:
            return

        if self._on_loop_thread():
            self._shutdown_task = loop.create_task(self._shutdown(loop, timeout))
            return

        if self._watch_future is not None:
            try:
                self._watch_future.result(timeout)
            except (TimeoutError, _futures.CancelledError):
                _logger.warning("Watch of %s did not stop within %.1fs", self._source.key, timeout)
                self._watch_future.cancel()
            except Exception as e:
                _logger.warning("Watch of %s ended with an error: %s", self._source.key, e)

        try:
            _asyncio.run_coroutine_threadsafe(self._client.aclose(), loop).result(timeout)
        except Exception as e:
            _logger.warning("Error closing client for %s: %s", self._source.key, e)

        loop.call_soon_threadsafe(loop.stop)
        thread.join(timeout)

    async def _shutdown(self, loop: _asyncio.AbstractEventLoop, timeout: float) -> None:
        """Finish close() from the loop thread, then stop the loop."""
        if self._watch_future is not None:
            watching = _asyncio.wrap_future(self._watch_future)
            done, _ = await _asyncio.wait({watching}, timeout=timeout)
            if not done:
                _logger.warning("Watch of %s did not stop within %.1fs", self._source.key, timeout)
                watching.cancel()
            elif not watching.cancelled() and watching.exception() is not None:
                _logger.warning(
                    "Watch of %s ended with an error: %s", self._source.key, watching.exception()
                )
        try:
            await self._client.aclose()
        except Exception as e:
            _logger.warning("Error closing client for %s: %s", self._source.key, e)
        loop.stop()

    def __enter__(self) -> ConsulConfigurationProvider:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: _pytypes.TracebackType | None,
    ) -> None:
        self.close()

    def __repr__(self) -> str:
        return (
            f"ConsulConfigurationProvider(key={self._source.key!r}, "
            f"keys={len(self._data)}, watching={self.is_watching})"
        )
