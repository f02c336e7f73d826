"""
scrypture-store: runtime config loader.

File: src/scrypture/config/loader.py

Purpose
- Build the effective config from four layers: defaults, ``scrypture.toml``,
  ``SCRYPTURE_*`` environment variables, and CLI overrides (highest wins).

Functional requirements
- Environment names come from the field rules: ``SCRYPTURE_<SECTION>_<NAME>``.
- Relative path fields resolve against the directory of the config file (or the
  working directory when there is no file).
"""

from __future__ import annotations

import json
import os
import tomllib
from collections.abc import Mapping
from pathlib import Path
from typing import Any, Final

from scrypture.config.schema import (
    FIELD_RULES,
    FieldRule,
    assert_valid_config,
    default_config,
    merge_config,
)

DEFAULT_CONFIG_FILE: Final[str] = "scrypture.toml"
ENV_PREFIX: Final[str] = "SCRYPTURE_"


class ConfigLoadError(ValueError):
    """Raised when config cannot be read or an override cannot be coerced."""


def load_config(
    config_path: str | Path | None = None,
    *,
    cli_overrides: Mapping[str, object] | None = None,
    environ: Mapping[str, str] | None = None,
) -> dict[str, Any]:
    """Load effective config with precedence CLI > env > file > defaults.

    An explicit ``config_path`` must exist; the implicit ``./scrypture.toml`` is
    optional. ``cli_overrides`` maps dotted keys (``storage.path``) to values;
    ``None`` values are ignored so unset argparse options fall through.
    """

    path = _config_file_path(config_path)
    layers = (
        _read_toml(path, required=config_path is not None),
        env_overrides(os.environ if environ is None else environ),
        _dotted_layer(cli_overrides or {}),
    )
    merged: dict[str, Any] = dict(default_config())
    for layer in layers:
        merged = merge_config(merged, layer)
    return normalize_paths(assert_valid_config(merged), base_dir=path.parent)


def env_overrides(environ: Mapping[str, str]) -> dict[str, Any]:
    """Nested override layer built from ``SCRYPTURE_*`` variables that are set."""

    layer: dict[str, Any] = {}
    for rule in FIELD_RULES:
        name = env_var_name(rule)
        raw = environ.get(name)
        if raw is None:
            continue
        layer.setdefault(rule.section, {})[rule.name] = _coerce(rule, name, raw)
    return layer


def env_var_name(rule: FieldRule) -> str:
    return f"{ENV_PREFIX}{rule.section}_{rule.name}".upper()


def normalize_paths(config: Mapping[str, object], *, base_dir: Path) -> dict[str, Any]:
    """Resolve every path-kind field against ``base_dir``."""

    normalized = merge_config({}, config)
    for rule in FIELD_RULES:
        if rule.kind != "path":
            continue
        section = normalized.get(rule.section)
        if isinstance(section, dict) and isinstance(section.get(rule.name), str):
            section[rule.name] = _resolve_path_text(section[rule.name], base_dir)
    return normalized


def dump_effective_config(config: Mapping[str, object]) -> str:
    """Stable JSON rendering of a config mapping."""

    return json.dumps(config, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def _config_file_path(config_path: str | Path | None) -> Path:
    if config_path is None:
        return (Path.cwd() / DEFAULT_CONFIG_FILE).resolve()
    return Path(config_path).expanduser().resolve()


def _read_toml(path: Path, *, required: bool) -> dict[str, Any]:
    try:
        with path.open("rb") as handle:
            return tomllib.load(handle)
    except FileNotFoundError as exc:
        if required:
            raise ConfigLoadError(f"config file not found: {path}") from exc
        return {}
    except tomllib.TOMLDecodeError as exc:
        raise ConfigLoadError(f"invalid TOML in {path}: {exc}") from exc
    except OSError as exc:
        raise ConfigLoadError(f"unable to read config file {path}: {exc}") from exc


def _coerce(rule: FieldRule, env_name: str, raw: str) -> object:
    text = raw.strip()
    if rule.kind != "int":
        return text
    try:
        return int(text)
    except ValueError as exc:
        raise ConfigLoadError(f"{env_name} -> {rule.path} must be an integer") from exc


def _dotted_layer(overrides: Mapping[str, object]) -> dict[str, Any]:
    layer: dict[str, Any] = {}
    for key, value in overrides.items():
        if value is None:
            continue
        parts = [part for part in key.split(".") if part]
        if not parts:
            raise ConfigLoadError(f"invalid CLI override key {key!r}")
        cursor = layer
        for part in parts[:-1]:
            cursor = cursor.setdefault(part, {})
        cursor[parts[-1]] = value
    return layer


def _resolve_path_text(raw: str, base_dir: Path) -> str:
    candidate = Path(os.path.expandvars(raw)).expanduser()
    if not candidate.is_absolute():
        candidate = base_dir / candidate
    return Path(os.path.normpath(candidate)).as_posix()


__all__ = [
    "ConfigLoadError",
    "DEFAULT_CONFIG_FILE",
    "ENV_PREFIX",
    "dump_effective_config",
    "env_overrides",
    "env_var_name",
    "load_config",
    "normalize_paths",
]
