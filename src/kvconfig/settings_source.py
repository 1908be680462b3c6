"""pydantic-settings source backed by the key-value store.

This module provides:

- unflatten: rebuilds nested dicts (and lists) from ``section:key`` keys.
- ConsulSettingsSource: a pydantic-settings source that loads one key from
  the store and hands the nested result to pydantic for validation.

Usage:

    class AppSettings(pydantic_settings.BaseSettings):
        db: DatabaseSettings

        @classmethod
        def settings_customise_sources(cls, settings_cls, init_settings, env_settings,
                                       dotenv_settings, file_secret_settings):
            return (
                init_settings,
                env_settings,
                ConsulSettingsSource(settings_cls, ConsulConfigurationSource(key="app/prod")),
            )

A settings object is a snapshot. To follow changes, keep a provider with
reload_on_change, pass it in, and rebuild the settings from a reload callback.
"""

from __future__ import annotations

import collections.abc as _abc
import logging as _logging
import typing as _typing

import pydantic.fields as _pydantic_fields
import pydantic_settings as _pydantic_settings

import kvconfig.constants as _constants
import kvconfig.provider as provider
import kvconfig.source as source

_logger = _logging.getLogger(__name__)


def _listify(node: _typing.Any) -> _typing.Any:
    """Turn dicts whose keys are all non-negative integers into lists, recursively."""
    if not isinstance(node, dict):
        return node
    converted = {name: _listify(child) for name, child in node.items()}
    if converted and all(name.isdigit() for name in converted):
        return [converted[name] for name in sorted(converted, key=int)]
    return converted


def unflatten(
    data: _abc.Mapping[str, str | None],
    *,
    lowercase: bool = False,
) -> dict[str, _typing.Any]:
    """
    Rebuild a nested structure from flattened configuration keys.

    Args:
        data: Flattened mapping, e.g. {"db:hosts:0": "a", "db:port": "5432"}.
        lowercase: Lower-case every path segment (for case-insensitive settings).

    Returns:
        Nested dict, e.g. {"db": {"hosts": ["a"], "port": "5432"}}. Sibling
        keys that are all numeric become a list ordered by index.

    When a key holds a value and also has children (e.g. "db" and
    "db:port"), the children win and the value is dropped.
    """
    tree: dict[str, _typing.Any] = {}
    # Shorter keys first, so a parent value is always seen before its children
    for key in sorted(data, key=lambda k: k.count(_constants.KEY_DELIMITER)):
        value = data[key]
        parts = key.split(_constants.KEY_DELIMITER)
        if lowercase:
            parts = [part.lower() for part in parts]

        node = tree
        for part in parts[:-1]:
            child = node.get(part)
            if not isinstance(child, dict):
                if child is not None:
                    _logger.debug("Dropping value of %r in favour of its children", part)
                child = node[part] = {}
            node = child

        leaf = parts[-1]
        if isinstance(node.get(leaf), dict):
            _logger.debug("Dropping value of %r in favour of its children", key)
            continue
        node[leaf] = value

    return {name: _listify(child) for name, child in tree.items()}


class ConsulSettingsSource(_pydantic_settings.PydanticBaseSettingsSource):
    """
    Settings source that reads one key of the store.

    The key is loaded once, when the source is created. Loading failures
    follow the source's optional flag and on_load_exception hook.
    """

    def __init__(
        self,
        settings_cls: type[_pydantic_settings.BaseSettings],
        config_source: source.ConsulConfigurationSource | None = None,
        *,
        config_provider: provider.ConsulConfigurationProvider | None = None,
    ) -> None:
        """
        Initialize the settings source.

        Args:
            settings_cls: The Settings class being populated.
            config_source: Source to build, load and close a provider for.
            config_provider: Provider to read from instead. It is loaded if it
                has no data yet and is left open for the caller.

        Raises:
            ValueError: If neither or both of config_source and
                config_provider are given.
        """
        super().__init__(settings_cls)
        if (config_source is None) == (config_provider is None):
            raise ValueError("pass exactly one of config_source or config_provider")

        if config_provider is not None:
            if not config_provider.data and not config_provider.is_watching:
                config_provider.load()
            data = config_provider.data
        else:
            assert config_source is not None
            with config_source.build() as built:
                built.load()
                data = built.data

        self._case_sensitive = bool(self.config.get("case_sensitive", False))
        self._data = unflatten(data, lowercase=not self._case_sensitive)

    def get_field_value(
        self,
        field: _pydantic_fields.FieldInfo,  # noqa: ARG002 - required by pydantic-settings interface
        field_name: str,
    ) -> tuple[_typing.Any, str, bool]:
        """
        Get value for a field from the loaded configuration.

        Returns:
            Tuple of (value, field_name, is_complex).
        """
        lookup = field_name if self._case_sensitive else field_name.lower()
        value = self._data.get(lookup)
        return value, field_name, isinstance(value, (_abc.Mapping, list))

    def __call__(self) -> dict[str, _typing.Any]:
        """
        Return the loaded configuration as a nested dict for pydantic validation.

        Only top-level keys that match a field (by name or alias) are returned.
        """
        result: dict[str, _typing.Any] = {}
        for field_name, field in self.settings_cls.model_fields.items():
            for name in (field.alias, field_name):
                if name is None:
                    continue
                value, _, _ = self.get_field_value(field, name)
                if value is not None:
                    result[name] = value
                    break
        return result

    def __repr__(self) -> str:
        return f"ConsulSettingsSource(keys={sorted(self._data)!r})"
