"""
Payload parsers.

A parser turns the raw bytes of one store entry into flattened
configuration keys. JSON is the default; YAML and the "simple" single
value parser are selected through the source options, never by sniffing
the content.
"""

from kvconfig.parsers.base import ConfigurationParser, get_parser
from kvconfig.parsers.json import JsonConfigurationParser
from kvconfig.parsers.simple import SimpleConfigurationParser
from kvconfig.parsers.yaml import YamlConfigurationParser

__all__ = [
    "ConfigurationParser",
    "JsonConfigurationParser",
    "SimpleConfigurationParser",
    "YamlConfigurationParser",
    "get_parser",
]
