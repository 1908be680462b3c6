"""
Shared pytest fixtures for kvconfig tests.

This file is automatically loaded by pytest. Fixtures defined here are
available to all test files without explicit imports.
"""

import asyncio as _asyncio
import datetime as _datetime
import json as _json
import os as _os
import time as _time
import typing as _typing
import unittest.mock as _mock

import pytest as _pytest

import kvconfig.source as source
import kvconfig.types as types

# Environment keys that should be cleared for isolated tests
ENV_KEYS_TO_CLEAR = [
    "CONSUL_HTTP_ADDR",
    "CONSUL_HTTP_TOKEN",
    "CONSUL_HTTP_SSL",
    "CONSUL_DATACENTER",
    "CONSUL_TIMEOUT",
]


# =============================================================================
# Fake clients
# =============================================================================


class FakeKVClient:
    """
    In-memory stand-in for ConsulKVClient.

    Behaves like a single-node store: every write bumps a global index, and
    a blocking read returns as soon as the index moves past wait_index or
    when wait_time elapses. Safe to mutate from the test thread while a
    provider's loop thread is blocked in get().
    """

    def __init__(self, index: int = 1) -> None:
        self.entries: dict[str, bytes | None] = {}
        self.index = index
        self.calls: list[tuple[str, int]] = []
        self.puts: list[tuple[str, bytes]] = []
        self.failures: list[BaseException] = []
        self.closed = False

    def put_raw(self, key: str, value: bytes | None) -> None:
        self.entries[key] = value
        self.index += 1

    def put_json(self, key: str, document: _typing.Any) -> None:
        self.put_raw(key, _json.dumps(document).encode("utf-8"))

    def delete(self, key: str) -> None:
        self.entries.pop(key, None)
        self.index += 1

    def fail_next(self, exception: BaseException, times: int = 1) -> None:
        self.failures.extend([exception] * times)

    def _snapshot(self, key: str) -> types.QueryResult:
        matching = sorted(k for k in self.entries if k.startswith(key))
        if not matching:
            return types.QueryResult.not_found(self.index)
        return types.QueryResult(
            status=types.QueryStatus.FOUND,
            entries=tuple(types.KVEntry(key=k, value=self.entries[k]) for k in matching),
            index=self.index,
        )

    async def get(
        self,
        key: str,
        *,
        wait_index: int = 0,
        wait_time: float | None = None,
    ) -> types.QueryResult:
        self.calls.append((key, wait_index))
        if self.failures:
            raise self.failures.pop(0)
        if wait_index > 0:
            deadline = _time.monotonic() + (wait_time if wait_time is not None else 300.0)
            while self.index <= wait_index and _time.monotonic() < deadline:
                await _asyncio.sleep(0.01)
        return self._snapshot(key)

    async def put(self, key: str, value: bytes | str) -> bool:
        content = value.encode("utf-8") if isinstance(value, str) else value
        self.puts.append((key, content))
        self.put_raw(key, content)
        return True

    async def aclose(self) -> None:
        self.closed = True


class ScriptedKVClient:
    """
    Client that replays a fixed script of results and exceptions.

    Once the script is exhausted, get() blocks until it is cancelled.
    """

    def __init__(self, script: list[types.QueryResult | BaseException]) -> None:
        self.script = list(script)
        self.calls: list[tuple[str, int]] = []

    async def get(
        self,
        key: str,
        *,
        wait_index: int = 0,
        wait_time: float | None = None,
    ) -> types.QueryResult:
        self.calls.append((key, wait_index))
        if not self.script:
            await _asyncio.Event().wait()
        item = self.script.pop(0)
        if isinstance(item, BaseException):
            raise item
        return item

    async def aclose(self) -> None:
        pass


def found(index: int, **payloads: _typing.Any) -> types.QueryResult:
    """Build a FOUND result with one JSON entry per keyword (key=document)."""
    entries = tuple(
        types.KVEntry(key=name.replace("__", "/"), value=_json.dumps(doc).encode("utf-8"))
        for name, doc in payloads.items()
    )
    return types.QueryResult(status=types.QueryStatus.FOUND, entries=entries, index=index)


def wait_until(predicate: _typing.Callable[[], bool], timeout: float = 5.0) -> bool:
    """Poll predicate from the test thread until it is true or timeout elapses."""
    deadline = _time.monotonic() + timeout
    while _time.monotonic() < deadline:
        if predicate():
            return True
        _time.sleep(0.01)
    return predicate()


# =============================================================================
# Fixtures
# =============================================================================


@_pytest.fixture
def clean_env() -> dict[str, str]:
    """Return environment dict with CONSUL_* keys removed."""
    return {k: v for k, v in _os.environ.items() if k not in ENV_KEYS_TO_CLEAR}


@_pytest.fixture
def isolated_env(clean_env: dict[str, str]):
    """Context manager that isolates tests from CONSUL_* environment variables."""
    return _mock.patch.dict(_os.environ, clean_env, clear=True)


@_pytest.fixture
def client_settings(isolated_env) -> source.ConsulClientSettings:
    """Connection settings isolated from the environment."""
    with isolated_env:
        return source.ConsulClientSettings()


@_pytest.fixture
def fake_client() -> FakeKVClient:
    return FakeKVClient()


@_pytest.fixture
def make_source(client_settings: source.ConsulClientSettings):
    """Factory for sources with fast polling defaults suitable for tests."""

    def factory(key: str = "app", **options: _typing.Any) -> source.ConsulConfigurationSource:
        options.setdefault("poll_wait_time", _datetime.timedelta(seconds=1))
        options.setdefault("client", client_settings)
        return source.ConsulConfigurationSource(key=key, **options)

    return factory
