"""Load TqqcConfig values from YAML documents.

The document may hold the fields at top level or under a ``tqqc`` key::

    tqqc:
      qubits: 7
      noise: 0.02
      shots: 8192
      strategy: layerwise
      seed: 42
"""

from __future__ import annotations

from dataclasses import fields
from pathlib import Path
from typing import Any

import yaml

from niso.errors import ConfigurationInvalid
from niso.tqqc.types import TqqcConfig

_FIELDS = {f.name for f in fields(TqqcConfig)}

PRESETS = {
    "default": TqqcConfig.default_7q,
    "default_5q": TqqcConfig.default_5q,
    "quick": TqqcConfig.quick,
    "benchmark": TqqcConfig.benchmark,
    "ideal": TqqcConfig.ideal,
}


def config_from_mapping(data: dict[str, Any], base: TqqcConfig | None = None) -> TqqcConfig:
    """Overlay a mapping onto ``base`` (defaults when omitted).

    A ``preset`` key picks the starting point by name.
    """
    data = dict(data.get("tqqc", data))
    preset = data.pop("preset", None)
    if preset is not None:
        if preset not in PRESETS:
            raise ConfigurationInvalid("preset", f"unknown preset {preset!r}")
        base = PRESETS[preset]()
    unknown = sorted(set(data) - _FIELDS)
    if unknown:
        raise ConfigurationInvalid("config", f"unknown keys {unknown}")
    base = base or TqqcConfig()
    return TqqcConfig(**{**base.to_dict(), **data})


def load_config(path: str | Path, base: TqqcConfig | None = None) -> TqqcConfig:
    with open(path, encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ConfigurationInvalid("config", f"{path} must contain a mapping")
    return config_from_mapping(data, base)


def dump_config(config: TqqcConfig, path: str | Path) -> None:
    with open(path, "w", encoding="utf-8") as f:
        yaml.safe_dump({"tqqc": config.to_dict()}, f, sort_keys=False)
