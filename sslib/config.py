"""
sslib.config — Migration configuration loading and validation.

Reads migration-config.yaml (or a .json equivalent) once per run into an
immutable MigrationConfig tree. Validation is presence-only: a field that is
missing, null, or an empty string is reported; values are not checked further.

Zero dependency on utils.py.
"""

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import yaml

from sslib.errors import ConfigError

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_FILE = "migration-config.yaml"

# ---------------------------------------------------------------------------
# Required fields per entry point
# ---------------------------------------------------------------------------

REQUIRED_FIELDS: Dict[str, List[str]] = {
    "migration": [
        "migration.source.profile",
        "migration.source.region",
        "migration.source.infrastructure_stack_name",
        "migration.source.migration_setup_stack_name",
        "migration.target.profile",
        "migration.target.region",
        "migration.target.infrastructure_stack_name",
        "migration.target.migration_setup_stack_name",
        "migration.target.cluster.node_type",
        "migration.options.snapshot.create_new",
    ],
    "cleanup": [
        "migration.source.profile",
        "migration.source.region",
        "migration.source.migration_setup_stack_name",
        "migration.target.profile",
        "migration.target.region",
        "migration.target.migration_setup_stack_name",
    ],
    "validation": [
        "migration.target.profile",
        "migration.target.region",
        "migration.target.infrastructure_stack_name",
    ],
    "loader": [
        "migration.source.profile",
        "migration.source.region",
        "migration.source.infrastructure_stack_name",
    ],
}


# ---------------------------------------------------------------------------
# Config records
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class AccountConfig:
    """One side (source or target) of the migration."""

    profile: str = ""
    region: str = ""
    infrastructure_stack_name: str = ""
    migration_setup_stack_name: str = ""


@dataclass(frozen=True)
class SnapshotOptions:
    create_new: bool = True
    existing_snapshot_name: str = ""
    poll_interval_seconds: float = 30
    max_attempts: int = 60


@dataclass(frozen=True)
class ExportOptions:
    poll_interval_seconds: float = 30
    max_attempts: int = 120


@dataclass(frozen=True)
class ValidationOptions:
    deploy_validation: bool = False
    expected_minimum_keys: int = 40


@dataclass(frozen=True)
class CleanupOptions:
    lifecycle_expiration_days: int = 30
    noncurrent_expiration_days: int = 7
    name_pattern_fallback: bool = True


@dataclass(frozen=True)
class MigrationConfig:
    """Immutable view of the migration configuration file."""

    source: AccountConfig
    target: AccountConfig
    target_node_type: str = ""
    target_template_file: str = "templates/target-infrastructure.yaml"
    snapshot: SnapshotOptions = field(default_factory=SnapshotOptions)
    export: ExportOptions = field(default_factory=ExportOptions)
    verify_data: bool = True
    validation: ValidationOptions = field(default_factory=ValidationOptions)
    cleanup: CleanupOptions = field(default_factory=CleanupOptions)
    aws_sdk_config: Dict[str, Any] = field(default_factory=dict)
    path: Optional[Path] = None
    raw: Dict[str, Any] = field(default_factory=dict, repr=False, compare=False)


# ---------------------------------------------------------------------------
# Value accessors
# ---------------------------------------------------------------------------


def config_value(data: Dict[str, Any], dotted_key: str, default: Any = None) -> Any:
    """
    Look up a nested value using a dotted path.

    Args:
        data: Parsed configuration mapping
        dotted_key: Path such as 'migration.source.profile'
        default: Value returned when any segment is missing

    Returns:
        The configuration value or default
    """
    node: Any = data
    for part in dotted_key.split("."):
        if not isinstance(node, dict) or part not in node:
            return default
        node = node[part]
    return default if node is None else node


def _as_bool(value: Any, key: str) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str) and value.strip().lower() in ("true", "yes", "1"):
        return True
    if isinstance(value, str) and value.strip().lower() in ("false", "no", "0"):
        return False
    raise ConfigError(f"Configuration field '{key}' must be true or false, got {value!r}")


def _as_number(value: Any, key: str, kind=int, minimum=None):
    try:
        number = kind(value)
    except (TypeError, ValueError):
        raise ConfigError(f"Configuration field '{key}' must be numeric, got {value!r}") from None
    if minimum is not None and number < minimum:
        raise ConfigError(f"Configuration field '{key}' must be at least {minimum}, got {value!r}")
    return number


def _is_unset(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def missing_fields(data: Dict[str, Any], scope: str = "migration") -> List[str]:
    """
    Return the required fields for ``scope`` that are absent or empty.

    Args:
        data: Parsed configuration mapping
        scope: One of REQUIRED_FIELDS' keys

    Returns:
        list: Dotted keys that are unset
    """
    if scope not in REQUIRED_FIELDS:
        raise ValueError(f"Unknown configuration scope: {scope}")

    missing = [key for key in REQUIRED_FIELDS[scope] if _is_unset(config_value(data, key))]

    if scope == "migration":
        create_new = config_value(data, "migration.options.snapshot.create_new")
        if not _is_unset(create_new) and not _as_bool(create_new, "migration.options.snapshot.create_new"):
            if _is_unset(config_value(data, "migration.options.snapshot.existing_snapshot_name")):
                missing.append("migration.options.snapshot.existing_snapshot_name")

    return missing


# ---------------------------------------------------------------------------
# Loading
# ---------------------------------------------------------------------------


def read_config_file(config_path: Union[str, Path]) -> Dict[str, Any]:
    """
    Parse a YAML or JSON configuration file into a dict.

    Raises:
        ConfigError: if the file is absent or cannot be parsed
    """
    path = Path(config_path)
    if not path.is_file():
        raise ConfigError(f"Configuration file not found: {path}")

    try:
        with open(path, "r", encoding="utf-8") as f:
            if path.suffix.lower() == ".json":
                data = json.load(f)
            else:
                data = yaml.safe_load(f)
    except (yaml.YAMLError, json.JSONDecodeError) as e:
        raise ConfigError(f"Could not parse configuration file {path}: {e}") from e

    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ConfigError(f"Configuration file {path} must contain a mapping at the top level")

    logger.debug("Read configuration from %s", path)
    return data


def _account(data: Dict[str, Any], side: str) -> AccountConfig:
    prefix = f"migration.{side}"
    return AccountConfig(
        profile=str(config_value(data, f"{prefix}.profile", "")),
        region=str(config_value(data, f"{prefix}.region", "")),
        infrastructure_stack_name=str(config_value(data, f"{prefix}.infrastructure_stack_name", "")),
        migration_setup_stack_name=str(config_value(data, f"{prefix}.migration_setup_stack_name", "")),
    )


def build_config(data: Dict[str, Any], path: Optional[Path] = None) -> MigrationConfig:
    """Convert a parsed mapping into a MigrationConfig (no presence checks)."""
    snap = "migration.options.snapshot"
    exp = "migration.options.export"

    snapshot = SnapshotOptions(
        create_new=_as_bool(config_value(data, f"{snap}.create_new", True), f"{snap}.create_new"),
        existing_snapshot_name=str(config_value(data, f"{snap}.existing_snapshot_name", "")),
        poll_interval_seconds=_as_number(
            config_value(data, f"{snap}.poll_interval_seconds", 30), f"{snap}.poll_interval_seconds", float, minimum=0
        ),
        max_attempts=_as_number(
            config_value(data, f"{snap}.max_attempts", 60), f"{snap}.max_attempts", minimum=1
        ),
    )
    export = ExportOptions(
        poll_interval_seconds=_as_number(
            config_value(data, f"{exp}.poll_interval_seconds", 30), f"{exp}.poll_interval_seconds", float, minimum=0
        ),
        max_attempts=_as_number(
            config_value(data, f"{exp}.max_attempts", 120), f"{exp}.max_attempts", minimum=1
        ),
    )
    validation = ValidationOptions(
        deploy_validation=_as_bool(
            config_value(data, "validation.deploy_validation", False), "validation.deploy_validation"
        ),
        expected_minimum_keys=_as_number(
            config_value(data, "validation.expected_minimum_keys", 40), "validation.expected_minimum_keys", minimum=0
        ),
    )
    cleanup = CleanupOptions(
        lifecycle_expiration_days=_as_number(
            config_value(data, "cleanup.lifecycle_expiration_days", 30), "cleanup.lifecycle_expiration_days", minimum=1
        ),
        noncurrent_expiration_days=_as_number(
            config_value(data, "cleanup.noncurrent_expiration_days", 7), "cleanup.noncurrent_expiration_days", minimum=1
        ),
        name_pattern_fallback=_as_bool(
            config_value(data, "cleanup.name_pattern_fallback", True), "cleanup.name_pattern_fallback"
        ),
    )

    return MigrationConfig(
        source=_account(data, "source"),
        target=_account(data, "target"),
        target_node_type=str(config_value(data, "migration.target.cluster.node_type", "")),
        target_template_file=str(
            config_value(data, "migration.target.cluster.template_file", "templates/target-infrastructure.yaml")
        ),
        snapshot=snapshot,
        export=export,
        verify_data=_as_bool(
            config_value(data, "migration.options.import.verify_data", True), "migration.options.import.verify_data"
        ),
        validation=validation,
        cleanup=cleanup,
        aws_sdk_config=dict(config_value(data, "aws_sdk_config", {})),
        path=path,
        raw=data,
    )


def load_config(config_path: Union[str, Path] = DEFAULT_CONFIG_FILE, scope: str = "migration") -> MigrationConfig:
    """
    Load and validate the migration configuration for one entry point.

    Args:
        config_path: Path to the YAML/JSON file
        scope: Which set of required fields to enforce ('migration', 'cleanup',
               'validation', 'loader')

    Returns:
        MigrationConfig: the parsed, immutable configuration

    Raises:
        ConfigError: if the file is absent, unparseable, or a required field is unset
    """
    path = Path(config_path)
    data = read_config_file(path)

    missing = missing_fields(data, scope)
    if missing:
        raise ConfigError(
            f"Configuration file {path} is missing required field(s): {', '.join(missing)}"
        )

    config = build_config(data, path=path)
    logger.debug("Configuration loaded for scope '%s'", scope)
    return config
