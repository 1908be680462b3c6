"""
Parser interface and lookup by name.
"""

from __future__ import annotations

import typing as _typing


@_typing.runtime_checkable
class ConfigurationParser(_typing.Protocol):
    """Defines how the payload of a store entry is parsed."""

    name: str

    def parse(self, data: bytes) -> dict[str, str | None]:
        """
        Parse a payload into flattened configuration keys.

        Args:
            data: Raw payload bytes.

        Returns:
            Dict of flattened key to value, relative to the entry.

        Raises:
            FlatteningError: If the payload is malformed.
        """
        ...


def get_parser(name: str) -> ConfigurationParser:
    """
    Return a parser instance by name.

    Args:
        name: One of "json", "yaml" or "simple".

    Raises:
        ValueError: If the name is unknown.
    """
    # Imported here: the concrete parsers import this module
    import kvconfig.parsers.json as json_parser
    import kvconfig.parsers.simple as simple_parser
    import kvconfig.parsers.yaml as yaml_parser

    parsers: dict[str, type[ConfigurationParser]] = {
        "json": json_parser.JsonConfigurationParser,
        "yaml": yaml_parser.YamlConfigurationParser,
        "simple": simple_parser.SimpleConfigurationParser,
    }
    try:
        return parsers[name.lower()]()
    except KeyError:
        known = ", ".join(sorted(parsers))
        raise ValueError(f"Unknown parser '{name}' (expected one of: {known})") from None
