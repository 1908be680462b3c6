"""
YAML payload parser.

Flattens exactly like the JSON parser; useful when configuration is kept
in the store in the same YAML form used for local config files.
"""

import collections.abc as _abc
import typing as _typing

import yaml as _yaml

import kvconfig.errors as errors
import kvconfig.flattener as flattener

_MERGE_TAG = "tag:yaml.org,2002:merge"


class _UniqueKeyLoader(_yaml.SafeLoader):
    """Safe loader that rejects a mapping key written twice (ignoring case).

    Keys pulled in through a "<<" merge may still be overridden locally.
    """

    def construct_mapping(
        self, node: _yaml.MappingNode, deep: bool = False
    ) -> dict[_typing.Any, _typing.Any]:
        seen: set[_typing.Any] = set()
        for key_node, _ in node.value:
            if key_node.tag == _MERGE_TAG:
                continue
            key = self.construct_object(key_node, deep=True)
            if not isinstance(key, _abc.Hashable):
                continue
            folded = key.lower() if isinstance(key, str) else key
            if folded in seen:
                raise errors.DuplicateKeyError(str(key))
            seen.add(folded)
        return super().construct_mapping(node, deep=deep)


class YamlConfigurationParser:
    """Parses a YAML document (safe loader) and flattens every leaf."""

    name = "yaml"

    def parse(self, data: bytes) -> dict[str, str | None]:
        try:
            document = _yaml.load(data.decode("utf-8-sig"), Loader=_UniqueKeyLoader)
        except UnicodeDecodeError as e:
            raise errors.FlatteningError(f"payload is not valid UTF-8: {e}") from e
        except _yaml.YAMLError as e:
            raise errors.FlatteningError(f"invalid YAML: {e}") from e
        return flattener.flatten_tree(document)

    def __repr__(self) -> str:
        return "YamlConfigurationParser()"
