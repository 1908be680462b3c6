"""
Registration surface.

ConsulConfigurationSource holds the options of one provider: which key
to read, how to parse it and how to react to failures. Connection
settings live in ConsulClientSettings, which reads the same CONSUL_*
environment variables as the consul command line tool:

  CONSUL_HTTP_ADDR=consul.internal:8500
  CONSUL_HTTP_TOKEN=...
  CONSUL_HTTP_SSL=true
  CONSUL_DATACENTER=dc2

Example:
    source = ConsulConfigurationSource(key="app/prod", optional=True, reload_on_change=True)
    with source.build() as provider:
        provider.load()
        provider.get("db:host")
"""

from __future__ import annotations

import datetime as _datetime
import pathlib as _pathlib
import typing as _typing

import pydantic as _pydantic
import pydantic_settings as _pydantic_settings

import kvconfig.client as consul_client
import kvconfig.constants as _constants
import kvconfig.parsers as parsers
import kvconfig.provider as provider
import kvconfig.types as types

if _typing.TYPE_CHECKING:
    import httpx as _httpx


class ConsulClientSettings(_pydantic_settings.BaseSettings):
    """Connection settings for the store, read from CONSUL_* environment variables."""

    model_config = _pydantic_settings.SettingsConfigDict(
        env_prefix="CONSUL_",
        extra="ignore",
        frozen=True,
    )

    http_addr: str = "127.0.0.1:8500"
    """Address of the agent: "host", "host:port" or a full URL."""

    http_token: str | None = None
    """ACL token sent with every request."""

    http_ssl: bool = False
    """Use https when http_addr has no scheme."""

    datacenter: str | None = None
    """Datacenter to query. None uses the agent's datacenter."""

    timeout: float = _pydantic.Field(default=_constants.DEFAULT_REQUEST_TIMEOUT, gt=0)
    """Timeout in seconds for non-blocking requests."""

    @property
    def address(self) -> str:
        """http_addr as a base URL with a scheme."""
        addr = self.http_addr.strip().rstrip("/")
        if addr.startswith("http://") or addr.startswith("https://"):
            return addr
        scheme = "https" if self.http_ssl else "http"
        return f"{scheme}://{addr}"

    def create_client(
        self,
        *,
        transport: _httpx.AsyncBaseTransport | None = None,
    ) -> consul_client.ConsulKVClient:
        return consul_client.ConsulKVClient(
            self.address,
            token=self.http_token,
            datacenter=self.datacenter,
            timeout=self.timeout,
            transport=transport,
        )


class ConsulConfigurationSource(_pydantic.BaseModel):
    """
    Options for one provider. Immutable once built.
    """

    model_config = _pydantic.ConfigDict(frozen=True, arbitrary_types_allowed=True)

    key: str
    """Key (or key prefix) in the store to read."""

    key_to_remove: str = ""
    """
    Leading portion of each entry key that is not part of the configuration
    key. Defaults to key, so entries directly under the root become
    top-level configuration keys.
    """

    optional: bool = False
    """When True a missing key yields an empty mapping instead of an error."""

    reload_on_change: bool = False
    """Start a watcher after load() and reload on every change."""

    poll_wait_time: _datetime.timedelta = _datetime.timedelta(
        seconds=_constants.DEFAULT_POLL_WAIT_SECONDS
    )
    """Maximum time the store holds one blocking read."""

    parser: parsers.ConfigurationParser = _pydantic.Field(
        default_factory=parsers.JsonConfigurationParser
    )
    """Payload parser. Accepts a parser instance or one of "json", "yaml", "simple"."""

    on_load_exception: types.LoadExceptionHook | None = None
    """Decides whether an exception raised by load() propagates."""

    on_watch_exception: types.WatchExceptionHook | None = None
    """Decides how long the watcher waits after a failed read."""

    client: ConsulClientSettings = _pydantic.Field(default_factory=ConsulClientSettings)
    """Connection settings."""

    cache_dir: _pathlib.Path | None = None
    """Directory for the local snapshot cache. None disables the cache."""

    @_pydantic.model_validator(mode="before")
    @classmethod
    def _default_key_to_remove(cls, data: _typing.Any) -> _typing.Any:
        if isinstance(data, dict) and data.get("key_to_remove") is None and "key" in data:
            data = {**data, "key_to_remove": data["key"]}
        return data

    @_pydantic.field_validator("key")
    @classmethod
    def _key_not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("key must not be blank")
        return value

    @_pydantic.field_validator("parser", mode="before")
    @classmethod
    def _parser_by_name(cls, value: _typing.Any) -> _typing.Any:
        if isinstance(value, str):
            return parsers.get_parser(value)
        return value

    @_pydantic.field_validator("poll_wait_time")
    @classmethod
    def _positive_wait(cls, value: _datetime.timedelta) -> _datetime.timedelta:
        if value <= _datetime.timedelta(0):
            raise ValueError("poll_wait_time must be positive")
        return value

    def build(
        self,
        *,
        kv_client: consul_client.ConsulKVClient | None = None,
    ) -> provider.ConsulConfigurationProvider:
        """
        Create a provider for this source.

        Args:
            kv_client: Client to use instead of one built from self.client.
        """
        return provider.ConsulConfigurationProvider(self, kv_client=kv_client)
