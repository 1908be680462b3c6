"""
kvconfig - configuration from a Consul-style key-value store.

Reads a key (or key prefix) from the store, flattens the payloads into
``section:key`` configuration keys and, optionally, keeps the mapping in
sync by long-polling the store for changes.
"""

import importlib.metadata as _metadata

# Version is defined in pyproject.toml - read it and parse into tuple (primary representation)
_raw_version = _metadata.version("kvconfig")
__version_info__: tuple[int, int, int] = tuple(int(x) for x in _raw_version.split(".")[:3])  # type: ignore[assignment]
__version__: str = ".".join(str(x) for x in __version_info__)

from kvconfig.errors import (  # noqa: E402
    ConfigNotFoundError,
    DuplicateKeyError,
    EmptyKeyError,
    FlatteningError,
    KVConfigError,
    KVProtocolError,
    KVTransportError,
)
from kvconfig.provider import ConsulConfigurationProvider  # noqa: E402
from kvconfig.settings_source import ConsulSettingsSource  # noqa: E402
from kvconfig.source import ConsulClientSettings, ConsulConfigurationSource  # noqa: E402
from kvconfig.types import (  # noqa: E402
    KVEntry,
    LoadAction,
    LoadExceptionContext,
    QueryResult,
    QueryStatus,
    WatchExceptionContext,
)

__all__ = [
    "__version__",
    "__version_info__",
    "ConfigNotFoundError",
    "ConsulClientSettings",
    "ConsulConfigurationProvider",
    "ConsulConfigurationSource",
    "ConsulSettingsSource",
    "DuplicateKeyError",
    "EmptyKeyError",
    "FlatteningError",
    "KVConfigError",
    "KVEntry",
    "KVProtocolError",
    "KVTransportError",
    "LoadAction",
    "LoadExceptionContext",
    "QueryResult",
    "QueryStatus",
    "WatchExceptionContext",
]
