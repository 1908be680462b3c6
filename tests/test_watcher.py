"""Tests for ChangeWatcher and the cursor rule."""

import asyncio as _asyncio
import datetime as _datetime

import pytest as _pytest

import kvconfig.cancellation as cancellation
import kvconfig.errors as errors
import kvconfig.source as source
import kvconfig.types as types
import kvconfig.watcher as watcher
import tests.conftest as conftest


def _result(index: int) -> types.QueryResult:
    return conftest.found(index, app={"v": index})


class TestNextIndex:
    """Tests for next_index() and has_changed()."""

    @_pytest.mark.parametrize(
        "previous,raw,expected",
        [
            (0, 5, 5),
            (5, 5, 5),
            (5, 7, 7),
            (7, 3, 0),
            (5, 0, 1),
            (0, 0, 1),
        ],
    )
    def test_next_index(self, previous: int, raw: int, expected: int) -> None:
        assert watcher.next_index(previous, raw) == expected

    def test_change_only_when_index_advances(self) -> None:
        assert watcher.has_changed(5, 7)
        assert not watcher.has_changed(5, 5)
        assert not watcher.has_changed(7, 3)


class TestChangeWatcher:
    """Tests for wait_for_change() and the failure policy."""

    @_pytest.fixture
    def token(self) -> cancellation.CancellationToken:
        return cancellation.CancellationToken()

    def _source(self, make_source, **options) -> source.ConsulConfigurationSource:
        return make_source("app", reload_on_change=True, **options)

    async def _drain(
        self,
        change_watcher: watcher.ChangeWatcher,
        token: cancellation.CancellationToken,
        client: conftest.ScriptedKVClient,
    ) -> list[types.QueryResult]:
        """Collect changes until the script runs out, then cancel."""
        changes: list[types.QueryResult] = []

        async def collect() -> None:
            while (result := await change_watcher.wait_for_change()) is not None:
                changes.append(result)

        task = _asyncio.create_task(collect())
        while client.script:
            await _asyncio.sleep(0.01)
        await _asyncio.sleep(0.05)
        token.cancel()
        await _asyncio.wait_for(task, timeout=5.0)
        return changes

    @_pytest.mark.asyncio
    async def test_cursor_sequence_with_index_reset(
        self,
        make_source,
        token: cancellation.CancellationToken,
    ) -> None:
        """Observed [5, 5, 7, 7, 3] feeds cursors [5, 5, 7, 7, 0] to later reads."""
        client = conftest.ScriptedKVClient([_result(i) for i in (5, 5, 7, 7, 3)])
        change_watcher = watcher.ChangeWatcher(
            client, self._source(make_source), token, initial_index=1
        )

        changes = await self._drain(change_watcher, token, client)

        assert [wait_index for _, wait_index in client.calls] == [1, 5, 5, 7, 7, 0]
        assert [result.index for result in changes] == [5, 7]
        assert change_watcher.last_index == 0
        assert change_watcher.state == watcher.WatchState.CANCELLED

    @_pytest.mark.asyncio
    async def test_zero_index_becomes_one(
        self,
        make_source,
        token: cancellation.CancellationToken,
    ) -> None:
        """Observed [5, 0] records cursors [5, 1]."""
        client = conftest.ScriptedKVClient([_result(5), _result(0)])
        change_watcher = watcher.ChangeWatcher(
            client, self._source(make_source), token, initial_index=1
        )

        changes = await self._drain(change_watcher, token, client)

        assert [wait_index for _, wait_index in client.calls] == [1, 5, 1]
        assert [result.index for result in changes] == [5]

    @_pytest.mark.asyncio
    async def test_reads_use_poll_wait_time(
        self,
        make_source,
        token: cancellation.CancellationToken,
    ) -> None:
        seen: list[float | None] = []

        class _Client(conftest.ScriptedKVClient):
            async def get(self, key, *, wait_index=0, wait_time=None):
                seen.append(wait_time)
                return await super().get(key, wait_index=wait_index, wait_time=wait_time)

        client = _Client([_result(2)])
        config_source = self._source(make_source, poll_wait_time=_datetime.timedelta(seconds=7))
        change_watcher = watcher.ChangeWatcher(client, config_source, token, initial_index=1)

        assert (await change_watcher.wait_for_change()).index == 2
        assert seen == [7.0]

    @_pytest.mark.asyncio
    async def test_failure_invokes_hook_and_retries_same_cursor(
        self,
        make_source,
        token: cancellation.CancellationToken,
    ) -> None:
        contexts: list[types.WatchExceptionContext] = []

        def on_watch_exception(context: types.WatchExceptionContext) -> float:
            contexts.append(context)
            return 0

        failure = errors.KVTransportError("down")
        client = conftest.ScriptedKVClient([failure, failure, _result(4)])
        change_watcher = watcher.ChangeWatcher(
            client,
            self._source(make_source, on_watch_exception=on_watch_exception),
            token,
            initial_index=3,
        )

        result = await change_watcher.wait_for_change()

        assert result is not None and result.index == 4
        assert [context.consecutive_failures for context in contexts] == [1, 2]
        assert all(context.exception is failure for context in contexts)
        assert [wait_index for _, wait_index in client.calls] == [3, 3, 3]
        assert change_watcher.consecutive_failures == 0

    @_pytest.mark.asyncio
    async def test_unchanged_read_resets_failure_count(
        self,
        make_source,
        token: cancellation.CancellationToken,
    ) -> None:
        counts: list[int] = []

        def on_watch_exception(context: types.WatchExceptionContext) -> float:
            counts.append(context.consecutive_failures)
            return 0

        failure = errors.KVProtocolError("bad", status_code=500)
        client = conftest.ScriptedKVClient([failure, _result(3), failure, _result(4)])
        change_watcher = watcher.ChangeWatcher(
            client,
            self._source(make_source, on_watch_exception=on_watch_exception),
            token,
            initial_index=3,
        )

        await change_watcher.wait_for_change()

        assert counts == [1, 1]

    @_pytest.mark.asyncio
    async def test_hook_cancel_stops_watch(
        self,
        make_source,
        token: cancellation.CancellationToken,
    ) -> None:
        def on_watch_exception(context: types.WatchExceptionContext) -> float:
            context.cancel()
            return 0

        client = conftest.ScriptedKVClient([errors.KVTransportError("down"), _result(9)])
        change_watcher = watcher.ChangeWatcher(
            client,
            self._source(make_source, on_watch_exception=on_watch_exception),
            token,
            initial_index=1,
        )

        assert await change_watcher.wait_for_change() is None
        assert token.is_cancelled
        assert len(client.calls) == 1

    @_pytest.mark.asyncio
    async def test_raising_hook_stops_watch(
        self,
        make_source,
        token: cancellation.CancellationToken,
    ) -> None:
        def on_watch_exception(context: types.WatchExceptionContext) -> float:
            raise RuntimeError("hook failed")

        client = conftest.ScriptedKVClient([errors.KVTransportError("down"), _result(9)])
        change_watcher = watcher.ChangeWatcher(
            client,
            self._source(make_source, on_watch_exception=on_watch_exception),
            token,
            initial_index=1,
        )

        assert await change_watcher.wait_for_change() is None
        assert change_watcher.state == watcher.WatchState.CANCELLED

    @_pytest.mark.asyncio
    async def test_hook_returning_non_duration_stops_watch(
        self,
        make_source,
        token: cancellation.CancellationToken,
    ) -> None:
        def on_watch_exception(context: types.WatchExceptionContext) -> str:
            return "soon"

        client = conftest.ScriptedKVClient([errors.KVTransportError("down"), _result(9)])
        change_watcher = watcher.ChangeWatcher(
            client,
            self._source(make_source, on_watch_exception=on_watch_exception),
            token,
            initial_index=1,
        )

        assert await change_watcher.wait_for_change() is None
        assert token.is_cancelled
        assert change_watcher.state == watcher.WatchState.CANCELLED
        assert len(client.calls) == 1

    @_pytest.mark.asyncio
    async def test_cancellation_interrupts_backoff(
        self,
        make_source,
        token: cancellation.CancellationToken,
    ) -> None:
        """Without a hook the watcher waits 5 seconds; cancelling ends it early."""
        client = conftest.ScriptedKVClient([errors.KVTransportError("down")])
        change_watcher = watcher.ChangeWatcher(client, self._source(make_source), token)

        task = _asyncio.create_task(change_watcher.wait_for_change())
        await _asyncio.sleep(0.05)
        assert change_watcher.state == watcher.WatchState.FAILED
        token.cancel()

        assert await _asyncio.wait_for(task, timeout=1.0) is None

    @_pytest.mark.asyncio
    async def test_cancellation_interrupts_blocking_read(
        self,
        make_source,
        token: cancellation.CancellationToken,
    ) -> None:
        """Cancellation never reaches the failure hook."""
        hook_calls: list[types.WatchExceptionContext] = []
        client = conftest.ScriptedKVClient([])
        change_watcher = watcher.ChangeWatcher(
            client,
            self._source(make_source, on_watch_exception=hook_calls.append),
            token,
            initial_index=1,
        )

        task = _asyncio.create_task(change_watcher.wait_for_change())
        await _asyncio.sleep(0.05)
        assert change_watcher.state == watcher.WatchState.POLLING
        token.cancel()

        assert await _asyncio.wait_for(task, timeout=1.0) is None
        assert hook_calls == []

    @_pytest.mark.asyncio
    async def test_already_cancelled_does_not_read(
        self,
        make_source,
        token: cancellation.CancellationToken,
    ) -> None:
        client = conftest.ScriptedKVClient([_result(2)])
        change_watcher = watcher.ChangeWatcher(client, self._source(make_source), token)
        token.cancel()

        assert await change_watcher.wait_for_change() is None
        assert client.calls == []

    @_pytest.mark.asyncio
    async def test_hook_wait_accepts_timedelta(
        self,
        make_source,
        token: cancellation.CancellationToken,
    ) -> None:
        def on_watch_exception(context: types.WatchExceptionContext) -> _datetime.timedelta:
            return _datetime.timedelta(milliseconds=10)

        client = conftest.ScriptedKVClient([errors.KVTransportError("down"), _result(2)])
        change_watcher = watcher.ChangeWatcher(
            client,
            self._source(make_source, on_watch_exception=on_watch_exception),
            token,
            initial_index=1,
        )

        result = await _asyncio.wait_for(change_watcher.wait_for_change(), timeout=1.0)
        assert result is not None and result.index == 2
