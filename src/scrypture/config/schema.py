"""
scrypture-store: configuration schema and validation.

File: src/scrypture/config/schema.py

Purpose
- Define the built-in defaults and one declarative rule per config field.

Functional requirements
- Validation reports every problem at once as (dotted path, message) issues.
- Field rules are shared with the loader, which derives env bindings and path
  normalization from them.
"""

from __future__ import annotations

import copy
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from typing import Any, Final, Literal, TypedDict

from scrypture.constants import CONFIG_SCHEMA_VERSION, DEFAULT_QUOTA_BYTES
from scrypture.observability.logging import LOG_FORMATS, LOG_LEVELS

ConfigSchemaVersion: Final[int] = CONFIG_SCHEMA_VERSION

STORAGE_BACKENDS: Final[tuple[str, ...]] = ("sqlite", "memory")

FieldKind = Literal["int", "path", "choice"]


class MetaConfig(TypedDict):
    schema_version: int


class StorageConfig(TypedDict):
    backend: Literal["sqlite", "memory"]
    path: str
    quota_bytes: int
    busy_timeout_ms: int


class ObservabilityConfig(TypedDict):
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"]
    log_format: Literal["json", "console"]


class ScryptureConfig(TypedDict):
    meta: MetaConfig
    storage: StorageConfig
    observability: ObservabilityConfig


DEFAULT_CONFIG: Final[ScryptureConfig] = {
    "meta": {"schema_version": CONFIG_SCHEMA_VERSION},
    "storage": {
        "backend": "sqlite",
        "path": ".scrypture/store.sqlite3",
        "quota_bytes": DEFAULT_QUOTA_BYTES,
        "busy_timeout_ms": 5_000,
    },
    "observability": {
        "log_level": "WARNING",
        "log_format": "console",
    },
}


@dataclass(frozen=True, slots=True)
class FieldRule:
    """How one ``section.name`` value is checked and normalized."""

    section: str
    name: str
    kind: FieldKind
    choices: tuple[str, ...] = ()
    minimum: int | None = None
    upper_case: bool = False

    @property
    def path(self) -> str:
        return f"{self.section}.{self.name}"


FIELD_RULES: Final[tuple[FieldRule, ...]] = (
    FieldRule("meta", "schema_version", "int", minimum=1),
    FieldRule("storage", "backend", "choice", choices=STORAGE_BACKENDS),
    FieldRule("storage", "path", "path"),
    FieldRule("storage", "quota_bytes", "int", minimum=1),
    FieldRule("storage", "busy_timeout_ms", "int", minimum=0),
    FieldRule("observability", "log_level", "choice", choices=LOG_LEVELS, upper_case=True),
    FieldRule("observability", "log_format", "choice", choices=LOG_FORMATS),
)

SECTIONS: Final[tuple[str, ...]] = tuple(dict.fromkeys(rule.section for rule in FIELD_RULES))


@dataclass(frozen=True, slots=True)
class ConfigValidationIssue:
    """Single structured validation failure."""

    path: str
    message: str


@dataclass(frozen=True, slots=True)
class ConfigValidationResult:
    """Normalized config, or ``None`` together with the issues found."""

    config: dict[str, Any] | None
    issues: tuple[ConfigValidationIssue, ...]

    @property
    def is_valid(self) -> bool:
        return self.config is not None and not self.issues


class ConfigValidationError(ValueError):
    """Raised when strict config validation fails."""

    def __init__(self, issues: Sequence[ConfigValidationIssue]) -> None:
        self.issues = tuple(issues)
        lines = [f"- {issue.path}: {issue.message}" for issue in self.issues]
        super().__init__("invalid config:\n" + ("\n".join(lines) or "- <unknown>"))


def default_config() -> ScryptureConfig:
    """Return a deep copy of the built-in defaults."""

    return copy.deepcopy(DEFAULT_CONFIG)


def migration_guidance(found_version: int) -> str:
    if found_version < ConfigSchemaVersion:
        return (
            f"schema version {found_version} is older than supported {ConfigSchemaVersion}; "
            "rewrite scrypture.toml for the current schema"
        )
    if found_version > ConfigSchemaVersion:
        return (
            f"schema version {found_version} is newer than supported {ConfigSchemaVersion}; "
            "upgrade scrypture-store"
        )
    return "schema version is current"


def merge_config(base: Mapping[str, object], overlay: Mapping[str, object]) -> dict[str, Any]:
    """Return ``base`` with ``overlay`` deep-merged on top; neither input is modified."""

    merged: dict[str, Any] = copy.deepcopy(dict(base))
    for key, value in overlay.items():
        current = merged.get(key)
        if isinstance(value, Mapping):
            merged[key] = merge_config(current if isinstance(current, Mapping) else {}, value)
        else:
            merged[key] = copy.deepcopy(value)
    return merged


def validate_config(config: object) -> ConfigValidationResult:
    """Check every section and field rule, collecting all issues."""

    issues: list[ConfigValidationIssue] = []
    if not isinstance(config, Mapping):
        issues.append(
            ConfigValidationIssue("<root>", f"expected object, got {type(config).__name__}")
        )
        return ConfigValidationResult(config=None, issues=tuple(issues))

    normalized: dict[str, Any] = {}
    for key in sorted(str(item) for item in config):
        if key not in SECTIONS:
            issues.append(ConfigValidationIssue(key, "unknown field"))

    for section in SECTIONS:
        if section not in config:
            issues.append(ConfigValidationIssue(section, "missing required field"))
            continue
        values = config[section]
        if not isinstance(values, Mapping):
            issues.append(
                ConfigValidationIssue(section, f"expected object, got {type(values).__name__}")
            )
            continue
        normalized[section] = _validate_section(section, values, issues)

    if issues:
        return ConfigValidationResult(config=None, issues=tuple(issues))
    return ConfigValidationResult(config=normalized, issues=())


def assert_valid_config(config: object) -> dict[str, Any]:
    """Validate config and raise ``ConfigValidationError`` on failure."""

    result = validate_config(config)
    if result.config is None:
        raise ConfigValidationError(result.issues)
    return result.config


def _validate_section(
    section: str,
    values: Mapping[object, object],
    issues: list[ConfigValidationIssue],
) -> dict[str, Any]:
    rules = {rule.name: rule for rule in FIELD_RULES if rule.section == section}
    for key in sorted(str(item) for item in values):
        if key not in rules:
            issues.append(ConfigValidationIssue(f"{section}.{key}", "unknown field"))

    out: dict[str, Any] = {}
    for name, rule in rules.items():
        if name not in values:
            issues.append(ConfigValidationIssue(rule.path, "missing required field"))
            continue
        value, problem = _check_field(rule, values[name])
        if problem is not None:
            issues.append(ConfigValidationIssue(rule.path, problem))
            continue
        out[name] = value
        if rule.path == "meta.schema_version" and value != ConfigSchemaVersion:
            issues.append(ConfigValidationIssue(rule.path, migration_guidance(value)))
    return out


def _check_field(rule: FieldRule, value: object) -> tuple[Any, str | None]:
    if rule.kind == "int":
        if isinstance(value, bool) or not isinstance(value, int):
            return None, f"expected integer, got {type(value).__name__}"
        if rule.minimum is not None and value < rule.minimum:
            return None, f"must be >= {rule.minimum}"
        return value, None

    if not isinstance(value, str):
        return None, f"expected string, got {type(value).__name__}"
    text = value.strip()
    if not text:
        return None, "must not be empty"
    if rule.kind == "path":
        if "\x00" in text:
            return None, "must not contain NUL bytes"
        return text, None

    if rule.upper_case:
        text = text.upper()
    if text not in rule.choices:
        return None, f"invalid value {text!r}; expected one of: {', '.join(rule.choices)}"
    return text, None


__all__ = [
    "ConfigSchemaVersion",
    "ConfigValidationError",
    "ConfigValidationIssue",
    "ConfigValidationResult",
    "DEFAULT_CONFIG",
    "FIELD_RULES",
    "FieldRule",
    "SECTIONS",
    "STORAGE_BACKENDS",
    "ScryptureConfig",
    "assert_valid_config",
    "default_config",
    "merge_config",
    "migration_guidance",
    "validate_config",
]
