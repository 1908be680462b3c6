"""
JSON payload parser (the default).
"""

import json as _json
import typing as _typing

import kvconfig.errors as errors
import kvconfig.flattener as flattener


def _unique_object(pairs: list[tuple[str, _typing.Any]]) -> dict[str, _typing.Any]:
    """Build a JSON object, rejecting property names repeated ignoring case."""
    seen: set[str] = set()
    for name, _ in pairs:
        folded = name.lower()
        if folded in seen:
            raise errors.DuplicateKeyError(name)
        seen.add(folded)
    return dict(pairs)


class JsonConfigurationParser:
    """Parses a JSON document and flattens every leaf into its own key."""

    name = "json"

    def parse(self, data: bytes) -> dict[str, str | None]:
        try:
            document = _json.loads(data.decode("utf-8-sig"), object_pairs_hook=_unique_object)
        except UnicodeDecodeError as e:
            raise errors.FlatteningError(f"payload is not valid UTF-8: {e}") from e
        except _json.JSONDecodeError as e:
            raise errors.FlatteningError(f"invalid JSON: {e}") from e
        return flattener.flatten_tree(document)

    def __repr__(self) -> str:
        return "JsonConfigurationParser()"
