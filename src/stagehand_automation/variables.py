"""Layered variable resolution.

Layers apply lowest to highest: defaults, global vars, group vars (in the
target's tag order), host vars, extra vars from the command line.
"""

from __future__ import annotations

from collections.abc import Iterator, Mapping
from typing import Any, Optional

from .errors import ConfigError
from .types import Target, VariableLayers


class EffectiveConfig(Mapping):
    """Read-only view of one target's resolved variables."""

    def __init__(self, values: dict[str, Any], origins: dict[str, str]):
        self._values = dict(values)
        self._origins = dict(origins)

    def __getitem__(self, key: str) -> Any:
        return self._values[key]

    def __iter__(self) -> Iterator[str]:
        return iter(self._values)

    def __len__(self) -> int:
        return len(self._values)

    def __repr__(self) -> str:
        return f"EffectiveConfig({self._values!r})"

    def origin(self, key: str) -> Optional[str]:
        return self._origins.get(key)

    def as_dict(self) -> dict[str, Any]:
        return dict(self._values)


class VariableResolver:
    def __init__(self, layers: VariableLayers, extra: Optional[dict[str, Any]] = None):
        self.layers = layers
        self.extra = dict(extra or {})

    def resolve(self, target: Target) -> EffectiveConfig:
        values: dict[str, Any] = {}
        origins: dict[str, str] = {}

        def _apply(layer: Mapping[str, Any], origin: str) -> None:
            for key, value in layer.items():
                values[key] = value
                origins[key] = origin

        _apply(self.layers.defaults, "defaults")
        _apply(self.layers.globals, "vars")
        for tag in target.tags:
            _apply(self.layers.groups.get(tag, {}), f"group:{tag}")
        _apply(self.layers.hosts.get(target.name, {}), f"host:{target.name}")
        _apply(self.extra, "extra")

        missing = [name for name in self.layers.required if name not in values]
        if missing:
            raise ConfigError(
                f"{target.name}: required variable(s) not defined: {', '.join(missing)}"
            )
        values.setdefault("inventory_hostname", target.name)
        values.setdefault("group_names", list(target.tags))
        return EffectiveConfig(values, origins)


def parse_extra_vars(items: list[str]) -> dict[str, Any]:
    extra: dict[str, Any] = {}
    for item in items:
        key, sep, value = item.partition("=")
        if not sep or not key.strip():
            raise ConfigError(f"extra variable '{item}' must be KEY=VALUE")
        extra[key.strip()] = value
    return extra
