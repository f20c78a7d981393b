"""Config loader and validator.

Provides `load_config` which accepts either a path to a YAML file,
a dictionary or None and returns a normalized configuration dict
using DEFAULTS for missing values.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

import yaml


DEFAULTS: dict[str, Any] = {
    "kbsr": 0xFE00,
    "kbdr": 0xFE02,
    "step_limit": None,
    "halt_message": "HALTing execution",
}


class ConfigError(ValueError):
    """Raised when configuration is invalid or cannot be loaded."""

    pass


def _to_int(v: Any) -> int:
    # YAML 1.1 already resolves 0xFE00 to int; quoted values still arrive as str
    if isinstance(v, str):
        return int(v, 0)
    return int(v)


def _convert_types(cfg: dict[str, Any]) -> None:
    """Normalize types for configuration values in-place.

    Raises ConfigError on conversion failure.
    """
    try:
        cfg["kbsr"] = _to_int(cfg.get("kbsr", DEFAULTS["kbsr"]))
        cfg["kbdr"] = _to_int(cfg.get("kbdr", DEFAULTS["kbdr"]))

        # step_limit
        v = cfg.get("step_limit")
        if v is None:
            cfg["step_limit"] = None
        else:
            cfg["step_limit"] = _to_int(v)

        msg = cfg.get("halt_message", DEFAULTS["halt_message"])
        cfg["halt_message"] = "" if msg is None else str(msg)
    except Exception as e:
        msg = f"Bad types in config: {e}"
        raise ConfigError(msg) from e


def _validate_cfg(cfg: dict[str, Any]) -> None:
    """Perform semantic validation on normalized config dict.

    Raises ConfigError on invalid values.
    """
    for key in ("kbsr", "kbdr"):
        if not (0 <= cfg[key] <= 0xFFFF):
            msg = f"{key} ({cfg[key]:#x}) out of address range (0..0xFFFF)"
            raise ConfigError(msg)

    if cfg["kbsr"] == cfg["kbdr"]:
        msg = "kbsr and kbdr must be distinct addresses"
        raise ConfigError(msg)

    if cfg["step_limit"] is not None and cfg["step_limit"] <= 0:
        msg = "step_limit must be positive or null"
        raise ConfigError(msg)


def load_config(path_or_dict: str | dict[str, Any] | None = None) -> dict[str, Any]:
    """Load and normalize configuration.

    Accepts:
      - None -> returns DEFAULTS copy
      - dict -> overlay DEFAULTS with provided dict
      - str (path) -> load YAML and overlay DEFAULTS

    Returns a normalized dict or raises ConfigError.
    """
    if path_or_dict is None:
        cfg: dict[str, Any] = dict(DEFAULTS)
    elif isinstance(path_or_dict, dict):
        cfg = dict(DEFAULTS)
        cfg.update(path_or_dict)
    elif isinstance(path_or_dict, str):
        p = Path(path_or_dict)
        if not p.exists():
            msg = f"Config file not found: {path_or_dict}"
            raise ConfigError(msg)
        try:
            with p.open("r", encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
        except Exception as e:
            msg = f"Failed to load config file {path_or_dict}: {e}"
            raise ConfigError(msg) from e
        if not isinstance(data, dict):
            msg = f"Config file {path_or_dict} does not contain a mapping"
            raise ConfigError(msg)
        cfg = dict(DEFAULTS)
        cfg.update(data)
    else:
        msg = "Unsupported config input"
        raise ConfigError(msg)

    unknown = sorted(set(cfg) - set(DEFAULTS))
    if unknown:
        msg = f"Unknown config keys: {', '.join(map(str, unknown))}"
        raise ConfigError(msg)

    # convert types and validate semantics
    _convert_types(cfg)
    _validate_cfg(cfg)

    return cfg
