"""
Key flattening.

Turns nested documents, and sets of entries read from the store, into
flat configuration keys joined with ":".

A document is any tree of mappings, lists and scalars, which is what
the JSON and YAML parsers produce:

    {"db": {"hosts": ["a", "b"], "port": 5432}}

flattens to

    db:hosts:0 = a
    db:hosts:1 = b
    db:port    = 5432

Entries are flattened relative to a root key. With root "app/prod", an
entry stored at "app/prod/db" holding {"port": 5432} produces "db:port".

Keys are unique ignoring case. A collision is an error, never a silent
overwrite.
"""

from __future__ import annotations

import collections.abc as _abc
import datetime as _datetime
import typing as _typing

import kvconfig.constants as _constants
import kvconfig.errors as errors
import kvconfig.utils as utils

if _typing.TYPE_CHECKING:
    import kvconfig.parsers.base as parsers_base
    import kvconfig.types as types


def _scalar_to_text(value: object) -> str | None:
    """Render a scalar without locale-dependent formatting."""
    if value is None:
        return None
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, str):
        return value
    if isinstance(value, int):
        return str(value)
    if isinstance(value, float):
        return repr(value)
    if isinstance(value, bytes):
        return value.decode("utf-8")
    if isinstance(value, (_datetime.date, _datetime.time)):
        return value.isoformat()
    raise errors.FlatteningError(
        f"Error parsing payload. {type(value).__name__} is not a supported token."
    )


def _visit(
    node: object,
    path: list[str],
) -> _typing.Iterator[tuple[str, str | None]]:
    """Depth-first walk yielding (joined path, text) for every scalar."""
    if isinstance(node, _abc.Mapping):
        for name, child in node.items():
            path.append(str(name))
            yield from _visit(child, path)
            path.pop()
    elif isinstance(node, (list, tuple)):
        for index, child in enumerate(node):
            path.append(str(index))
            yield from _visit(child, path)
            path.pop()
    else:
        yield _constants.KEY_DELIMITER.join(path), _scalar_to_text(node)


def _add_unique(
    data: dict[str, str | None],
    seen: set[str],
    key: str,
    value: str | None,
) -> None:
    folded = key.lower()
    if folded in seen:
        raise errors.DuplicateKeyError(key)
    seen.add(folded)
    data[key] = value


def flatten_tree(tree: object) -> dict[str, str | None]:
    """
    Flatten a document tree into configuration keys.

    Args:
        tree: Mapping, list or scalar (as produced by json.loads or yaml.safe_load).

    Returns:
        Dict of flattened key to text value. A scalar at the root is
        returned under the empty key "".

    Raises:
        DuplicateKeyError: If two keys are equal ignoring case.
        FlatteningError: If the tree holds an unsupported value type.
    """
    data: dict[str, str | None] = {}
    seen: set[str] = set()
    for key, value in _visit(tree, []):
        _add_unique(data, seen, key, value)
    return data


def remove_start(key: str, prefix: str) -> str:
    """Strip prefix from the start of key, if present."""
    return key[len(prefix):] if prefix and key.startswith(prefix) else key


def convert_entry(
    entry: types.KVEntry,
    key_to_remove: str,
    parser: parsers_base.ConfigurationParser,
) -> list[tuple[str, str | None]]:
    """
    Flatten one entry's payload and prefix each key with the entry's relative path.

    Args:
        entry: Entry read from the store.
        key_to_remove: Leading portion of the entry key that is not part of
            the configuration key (normally the root key being loaded).
        parser: Parser for the payload format.

    Returns:
        List of (configuration key, value) pairs.

    Raises:
        EmptyKeyError: If a value would have no key, e.g. a bare scalar
            stored directly at the root key.
    """
    relative = remove_start(entry.key, key_to_remove).rstrip(_constants.STORE_DELIMITER)
    pairs: list[tuple[str, str | None]] = []
    for pair_key, value in parser.parse(entry.value or b"").items():
        key = (
            f"{relative}{_constants.KEY_DELIMITER}{pair_key}"
            .replace(_constants.STORE_DELIMITER, _constants.KEY_DELIMITER)
            .strip(_constants.KEY_DELIMITER)
        )
        if not key:
            raise errors.EmptyKeyError()
        pairs.append((key, value))
    return pairs


def flatten_entries(
    entries: _abc.Iterable[types.KVEntry],
    key_to_remove: str,
    parser: parsers_base.ConfigurationParser,
) -> utils.CaseInsensitiveMapping[str | None]:
    """
    Flatten every entry that carries data into one case-insensitive mapping.

    Folder entries and entries with an empty payload are skipped.

    Raises:
        DuplicateKeyError: If two entries produce the same key.
        EmptyKeyError: See convert_entry.
        FlatteningError: If a payload cannot be parsed.
    """
    data: dict[str, str | None] = {}
    seen: set[str] = set()
    for entry in entries:
        if not entry.has_value:
            continue
        for key, value in convert_entry(entry, key_to_remove, parser):
            _add_unique(data, seen, key, value)
    return utils.CaseInsensitiveMapping(data)
