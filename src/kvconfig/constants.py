"""
Shared constants for kvconfig.

This module provides a single source of truth for default values
that are used across multiple modules.
"""

# Key delimiters
STORE_DELIMITER = "/"
"""Separator between hierarchical segments of a key in the store."""

KEY_DELIMITER = ":"
"""Separator between segments of a flattened configuration key."""

# Store connection defaults
DEFAULT_CONSUL_ADDRESS = "http://127.0.0.1:8500"
"""Default address of the Consul HTTP API."""

DEFAULT_REQUEST_TIMEOUT = 10.0
"""Timeout in seconds for non-blocking requests to the store."""

KV_API_PATH = "/v1/kv/"
"""Path prefix of the key-value endpoint."""

INDEX_HEADER = "X-Consul-Index"
"""Response header carrying the version index of the queried subtree."""

TOKEN_HEADER = "X-Consul-Token"
"""Request header carrying the ACL token."""

# Watch defaults
DEFAULT_POLL_WAIT_SECONDS = 300.0
"""Default maximum time a blocking read is held open by the store (5 minutes)."""

DEFAULT_WATCH_RETRY_SECONDS = 5.0
"""Wait before retrying a failed watch read when no policy is configured."""

DEFAULT_CLOSE_TIMEOUT_SECONDS = 5.0
"""How long close() waits for the background watch to unwind."""

WAIT_JITTER_DIVISOR = 16
"""The store adds up to wait/16 of random jitter to a blocking read."""

# Local snapshot cache
CACHE_FILE_NAME = "snapshot.json"
"""File name of the local snapshot written under the cache directory."""
