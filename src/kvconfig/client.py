"""
Remote fetch client for the Consul key-value HTTP API.

A thin wrapper that performs one read (optionally blocking) and returns a
uniform QueryResult. Status triage:

- 200: FOUND, entries decoded from the JSON body
- 404: NOT_FOUND, an ordinary result rather than an error
- anything else: KVProtocolError carrying the status code
- network failures: KVTransportError

The client never retries; the watcher owns retry policy.
"""

from __future__ import annotations

import logging as _logging

import httpx as _httpx
import pydantic as _pydantic

import kvconfig.constants as _constants
import kvconfig.errors as errors
import kvconfig.types as types

_logger = _logging.getLogger(__name__)


class _KVPairPayload(_pydantic.BaseModel):
    """One element of the JSON array returned by GET /v1/kv/<key>."""

    model_config = _pydantic.ConfigDict(extra="ignore", frozen=True)

    key: str = _pydantic.Field(alias="Key")
    value: _pydantic.Base64Bytes | None = _pydantic.Field(default=None, alias="Value")
    modify_index: int = _pydantic.Field(default=0, alias="ModifyIndex")
    flags: int = _pydantic.Field(default=0, alias="Flags")

    def to_entry(self) -> types.KVEntry:
        return types.KVEntry(
            key=self.key,
            value=self.value,
            modify_index=self.modify_index,
            flags=self.flags,
        )


_KV_LIST_ADAPTER = _pydantic.TypeAdapter(list[_KVPairPayload])


def _parse_index(response: _httpx.Response) -> int:
    raw = response.headers.get(_constants.INDEX_HEADER)
    if not raw:
        return 0
    try:
        return int(raw)
    except ValueError as e:
        raise errors.KVProtocolError(
            f"Invalid {_constants.INDEX_HEADER} header: {raw!r}",
            status_code=response.status_code,
        ) from e


def _format_wait(seconds: float) -> str:
    """Format a wait time the way the store's duration parser accepts it."""
    return f"{max(int(seconds * 1000), 1)}ms"


class ConsulKVClient:
    """
    Async client for the key-value endpoint.

    The underlying httpx.AsyncClient is created on first use so that it
    binds to the event loop the provider runs it on.
    """

    def __init__(
        self,
        address: str = _constants.DEFAULT_CONSUL_ADDRESS,
        *,
        token: str | None = None,
        datacenter: str | None = None,
        timeout: float = _constants.DEFAULT_REQUEST_TIMEOUT,
        transport: _httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """
        Initialize the client.

        Args:
            address: Base URL of the HTTP API, e.g. http://127.0.0.1:8500.
            token: ACL token sent as X-Consul-Token.
            datacenter: Datacenter to query instead of the agent's own.
            timeout: Timeout in seconds for non-blocking requests. Blocking
                reads extend it by the requested wait time.
            transport: Custom httpx transport (used by tests).
        """
        self._address = address.rstrip("/")
        self._token = token
        self._datacenter = datacenter
        self._timeout = timeout
        self._transport = transport
        self._client: _httpx.AsyncClient | None = None

    @property
    def address(self) -> str:
        return self._address

    def _get_client(self) -> _httpx.AsyncClient:
        if self._client is None:
            headers = {"User-Agent": "kvconfig"}
            if self._token:
                headers[_constants.TOKEN_HEADER] = self._token
            self._client = _httpx.AsyncClient(
                base_url=self._address,
                headers=headers,
                timeout=self._timeout,
                transport=self._transport,
            )
        return self._client

    def _path(self, key: str) -> str:
        return _constants.KV_API_PATH + key.lstrip(_constants.STORE_DELIMITER)

    def _params(self) -> dict[str, str]:
        params: dict[str, str] = {}
        if self._datacenter:
            params["dc"] = self._datacenter
        return params

    async def get(
        self,
        key: str,
        *,
        wait_index: int = 0,
        wait_time: float | None = None,
    ) -> types.QueryResult:
        """
        Read every entry under key.

        Args:
            key: Key (or key prefix) to read.
            wait_index: 0 reads immediately. A positive index makes the store
                hold the request until its index for key exceeds wait_index
                or wait_time elapses.
            wait_time: Maximum seconds the store may hold a blocking read.

        Returns:
            QueryResult with status, entries and the store's version index.
            When a blocking read times out the index is unchanged.

        Raises:
            KVProtocolError: Unexpected status code or malformed body.
            KVTransportError: The store could not be reached.
        """
        params = self._params()
        params["recurse"] = "true"
        timeout = self._timeout
        if wait_index > 0:
            wait = _constants.DEFAULT_POLL_WAIT_SECONDS if wait_time is None else wait_time
            params["index"] = str(wait_index)
            params["wait"] = _format_wait(wait)
            timeout = wait + wait / _constants.WAIT_JITTER_DIVISOR + self._timeout

        _logger.debug("GET %s (index=%s, timeout=%.1fs)", key, wait_index, timeout)
        try:
            response = await self._get_client().get(
                self._path(key),
                params=params,
                timeout=timeout,
            )
        except _httpx.TransportError as e:
            raise errors.KVTransportError(
                f"Error reaching the store at {self._address}: {e}"
            ) from e

        index = _parse_index(response)
        if response.status_code == _httpx.codes.NOT_FOUND:
            return types.QueryResult.not_found(index)
        if response.status_code != _httpx.codes.OK:
            raise errors.KVProtocolError(
                "Error loading configuration from the store. "
                f"Status code: {response.status_code}.",
                status_code=response.status_code,
            )

        try:
            payload = _KV_LIST_ADAPTER.validate_json(response.content)
        except _pydantic.ValidationError as e:
            raise errors.KVProtocolError(
                f"Malformed response body for key {key}: {e}",
                status_code=response.status_code,
            ) from e

        return types.QueryResult(
            status=types.QueryStatus.FOUND,
            entries=tuple(item.to_entry() for item in payload),
            index=index,
        )

    async def put(self, key: str, value: bytes | str) -> bool:
        """
        Write a raw value at key.

        Returns:
            True if the store accepted the write.

        Raises:
            KVProtocolError: Unexpected status code.
            KVTransportError: The store could not be reached.
        """
        content = value.encode("utf-8") if isinstance(value, str) else value
        _logger.debug("PUT %s (%d bytes)", key, len(content))
        try:
            response = await self._get_client().put(
                self._path(key),
                params=self._params(),
                content=content,
            )
        except _httpx.TransportError as e:
            raise errors.KVTransportError(
                f"Error reaching the store at {self._address}: {e}"
            ) from e

        if response.status_code != _httpx.codes.OK:
            raise errors.KVProtocolError(
                f"Error writing key {key} to the store. Status code: {response.status_code}.",
                status_code=response.status_code,
            )
        return response.text.strip() == "true"

    async def aclose(self) -> None:
        """Close the underlying HTTP connection pool."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None
