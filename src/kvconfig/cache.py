"""
Local snapshot cache.

Keeps the last successful read of a key on disk so that a process can
still start with its previous configuration when the store is down.

Snapshot format (JSON, one file per key):

    {
      "key": "app/prod",
      "index": 42,
      "entries": [
        {"key": "app/prod/db", "value": "<base64>", "modify_index": 40, "flags": 0}
      ]
    }
"""

from __future__ import annotations

import base64 as _base64
import hashlib as _hashlib
import json as _json
import logging as _logging
import os as _os
import pathlib as _pathlib
import typing as _typing

import kvconfig.constants as _constants
import kvconfig.types as types

_logger = _logging.getLogger(__name__)


def _encode_entry(entry: types.KVEntry) -> dict[str, _typing.Any]:
    value = entry.value
    return {
        "key": entry.key,
        "value": _base64.b64encode(value).decode("ascii") if value is not None else None,
        "modify_index": entry.modify_index,
        "flags": entry.flags,
    }


def _decode_entry(raw: dict[str, _typing.Any]) -> types.KVEntry:
    value = raw.get("value")
    return types.KVEntry(
        key=raw["key"],
        value=_base64.b64decode(value, validate=True) if value is not None else None,
        modify_index=int(raw.get("modify_index", 0)),
        flags=int(raw.get("flags", 0)),
    )


class SnapshotCache:
    """
    On-disk snapshot of the last read of one key.

    Each key gets its own subdirectory of cache_dir (named by a hash of the
    key) holding snapshot.json, so several providers can share cache_dir.
    """

    def __init__(self, cache_dir: _pathlib.Path, key: str) -> None:
        self._key = key
        digest = _hashlib.sha256(key.encode("utf-8")).hexdigest()[:16]
        self._path = _pathlib.Path(cache_dir).expanduser() / digest / _constants.CACHE_FILE_NAME

    @property
    def path(self) -> _pathlib.Path:
        return self._path

    def save(self, result: types.QueryResult) -> None:
        """
        Write the result to disk, replacing the previous snapshot.

        Results without data are not cached. Write errors are logged; a
        failing cache never fails a load.
        """
        if not result.has_value:
            return

        document = {
            "key": self._key,
            "index": result.index,
            "entries": [_encode_entry(entry) for entry in result.entries],
        }
        tmp_path = self._path.with_suffix(".tmp")
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path.write_text(_json.dumps(document, indent=2), encoding="utf-8")
            _os.replace(tmp_path, self._path)
        except OSError as e:
            _logger.warning("Could not write snapshot for %s to %s: %s", self._key, self._path, e)
            return
        _logger.debug("Wrote snapshot for %s (index %d)", self._key, result.index)

    def load(self) -> types.QueryResult | None:
        """
        Read the snapshot.

        Returns:
            The cached result, or None if there is no usable snapshot.
        """
        if not self._path.exists():
            return None
        try:
            document = _json.loads(self._path.read_text(encoding="utf-8"))
            if document.get("key") != self._key:
                _logger.warning("Snapshot at %s belongs to another key, ignoring", self._path)
                return None
            entries = tuple(_decode_entry(raw) for raw in document.get("entries", []))
            index = int(document.get("index", 0))
        except (OSError, ValueError, KeyError, TypeError, AttributeError) as e:
            _logger.warning("Could not read snapshot for %s from %s: %s", self._key, self._path, e)
            return None
        return types.QueryResult(status=types.QueryStatus.FOUND, entries=entries, index=index)

    def clear(self) -> None:
        """Delete the snapshot if it exists."""
        self._path.unlink(missing_ok=True)
