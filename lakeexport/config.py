"""Destination and buffer configuration.

Configs are plain dataclasses with ``from_dict``/``to_dict``/``validate``.
YAML files may reference environment variables with ``${VAR}`` or
``${VAR:default}``; substitution happens after parsing, on string values.
"""

from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Optional, Union

import yaml

from lakeexport.exceptions import ConfigValidationError
from lakeexport.schema.builder import FieldOrdering, SchemaBuilder
from lakeexport.schema.projector import TypeProjector
from lakeexport.schema.types import SemanticType
from lakeexport.transform import (
    DEFAULT_CHANGE_TYPE_FIELD,
    DEFAULT_MARKER_FIELD,
    ChangeMarkerTransformer,
    DefaultFieldTransformer,
    FieldTransformer,
    MarkerDialect,
)

logger = logging.getLogger(__name__)

_ENV_VAR_PATTERN = re.compile(r"\$\{([^}:]+)(?::([^}]*))?\}")

DEFAULT_ROW_GROUP_SIZE = 10000
DEFAULT_PROGRESS_INTERVAL = 1000
DEFAULT_BUFFER_CAPACITY = 50
DEFAULT_IDLE_TIMEOUT_SECONDS = 60.0


class OutputFormat(str, Enum):
    """Container formats a destination can receive."""

    CSV = "csv"
    JSON = "json"
    PARQUET = "parquet"

    @property
    def extension(self) -> str:
        return f".{self.value}"

    @classmethod
    def from_string(cls, value: str) -> "OutputFormat":
        normalized = value.strip().lower().lstrip(".")
        try:
            return cls(normalized)
        except ValueError:
            valid = ", ".join(f.value for f in cls)
            raise ConfigValidationError(
                f"Unknown output format '{value}'. Valid values: {valid}", key="output_format"
            )


def substitute_env_vars(value: Any) -> Any:
    """Recursively substitute environment variables in config values.

    Supports:
    - ${VAR_NAME} - fails if VAR_NAME not set
    - ${VAR_NAME:default} - uses default if VAR_NAME not set
    """
    if isinstance(value, str):

        def replacer(match: re.Match) -> str:
            var_name = match.group(1)
            default_value = match.group(2)

            env_value = os.environ.get(var_name)
            if env_value is not None:
                return env_value
            if default_value is not None:
                return default_value
            raise ConfigValidationError(
                f"Environment variable '{var_name}' is not set and no default provided",
                key=var_name,
            )

        return _ENV_VAR_PATTERN.sub(replacer, value)

    elif isinstance(value, dict):
        return {k: substitute_env_vars(v) for k, v in value.items()}

    elif isinstance(value, list):
        return [substitute_env_vars(item) for item in value]

    return value


def _read_yaml(path: Union[str, Path]) -> Dict[str, Any]:
    logger.info(f"Loading config from {path}")

    config_path = Path(path)
    if not config_path.exists():
        raise ConfigValidationError(f"Config file not found: {path}", config_path=str(path))

    try:
        with open(config_path, "r", encoding="utf-8") as handle:
            cfg = yaml.safe_load(handle)
    except yaml.YAMLError as exc:
        raise ConfigValidationError(f"Invalid YAML in config file: {exc}", config_path=str(path))

    if not isinstance(cfg, dict):
        raise ConfigValidationError("Config must be a YAML dictionary/object", config_path=str(path))

    return cfg


def _as_bool(value: Any, key: str) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str) and value.strip().lower() in ("true", "yes", "1", "on"):
        return True
    if isinstance(value, str) and value.strip().lower() in ("false", "no", "0", "off", ""):
        return False
    raise ConfigValidationError(f"'{key}' must be a boolean, got {value!r}", key=key)


def _as_int(value: Any, key: str) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ConfigValidationError(f"'{key}' must be an integer, got {value!r}", key=key)


@dataclass(frozen=True)
class DestinationConfig:
    """Per-destination export policy; immutable for a run."""

    output_format: OutputFormat = OutputFormat.CSV
    field_ordering: FieldOrdering = FieldOrdering.SOURCE
    marker_dialect: Optional[MarkerDialect] = None  # None: not CDC-aware
    marker_field_name: str = DEFAULT_MARKER_FIELD
    change_type_field: str = DEFAULT_CHANGE_TYPE_FIELD
    array_native_support: bool = True
    row_group_size: int = DEFAULT_ROW_GROUP_SIZE
    progress_interval: int = DEFAULT_PROGRESS_INTERVAL
    write_uuid_as_string: bool = True
    escape_field_names: bool = False
    serialize_array_columns: bool = False
    is_delta_mode: bool = False
    field_types: Dict[str, SemanticType] = field(default_factory=dict)

    def __post_init__(self) -> None:
        self.validate()

    def validate(self) -> None:
        if self.row_group_size <= 0:
            raise ConfigValidationError(
                f"row_group_size must be positive, got {self.row_group_size}", key="row_group_size"
            )
        if self.progress_interval <= 0:
            raise ConfigValidationError(
                f"progress_interval must be positive, got {self.progress_interval}", key="progress_interval"
            )
        if not self.marker_field_name:
            raise ConfigValidationError("marker_field_name must not be empty", key="marker_field_name")
        if not self.change_type_field:
            raise ConfigValidationError("change_type_field must not be empty", key="change_type_field")

    @property
    def is_cdc_aware(self) -> bool:
        return self.marker_dialect is not None

    def build_projector(self) -> TypeProjector:
        return TypeProjector(write_uuid_as_string=self.write_uuid_as_string)

    def build_transformer(self) -> FieldTransformer:
        if self.marker_dialect is not None:
            return ChangeMarkerTransformer(
                dialect=self.marker_dialect,
                marker_name=self.marker_field_name,
                change_type_field=self.change_type_field,
                array_native_support=self.array_native_support,
            )
        return DefaultFieldTransformer(serialize_array_columns=self.serialize_array_columns)

    def build_schema_builder(
        self,
        projector: Optional[TypeProjector] = None,
        transformer: Optional[FieldTransformer] = None,
    ) -> SchemaBuilder:
        return SchemaBuilder(
            projector=projector or self.build_projector(),
            transformer=transformer or self.build_transformer(),
            ordering=self.field_ordering,
            escape_field_names=self.escape_field_names,
            field_overrides=self.field_types,
        )

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "DestinationConfig":
        if not isinstance(data, dict):
            raise ConfigValidationError("Destination config must be a mapping")

        known = set(cls.__dataclass_fields__)
        unknown = sorted(set(data) - known)
        if unknown:
            raise ConfigValidationError(f"Unknown destination config keys: {unknown}", key=unknown[0])

        kwargs: Dict[str, Any] = {}
        if "output_format" in data:
            kwargs["output_format"] = OutputFormat.from_string(str(data["output_format"]))
        if "field_ordering" in data:
            kwargs["field_ordering"] = FieldOrdering.from_string(str(data["field_ordering"]))
        if data.get("marker_dialect"):
            kwargs["marker_dialect"] = MarkerDialect.from_string(str(data["marker_dialect"]))
        for key in ("marker_field_name", "change_type_field"):
            if key in data:
                kwargs[key] = str(data[key])
        for key in ("row_group_size", "progress_interval"):
            if key in data:
                kwargs[key] = _as_int(data[key], key)
        for key in (
            "array_native_support",
            "write_uuid_as_string",
            "escape_field_names",
            "serialize_array_columns",
            "is_delta_mode",
        ):
            if key in data:
                kwargs[key] = _as_bool(data[key], key)
        if "field_types" in data:
            field_types = data["field_types"] or {}
            if not isinstance(field_types, dict):
                raise ConfigValidationError("field_types must be a mapping", key="field_types")
            kwargs["field_types"] = {
                str(name): SemanticType.from_string(str(type_name)) for name, type_name in field_types.items()
            }
        return cls(**kwargs)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "output_format": self.output_format.value,
            "field_ordering": self.field_ordering.value,
            "marker_dialect": self.marker_dialect.value if self.marker_dialect else None,
            "marker_field_name": self.marker_field_name,
            "change_type_field": self.change_type_field,
            "array_native_support": self.array_native_support,
            "row_group_size": self.row_group_size,
            "progress_interval": self.progress_interval,
            "write_uuid_as_string": self.write_uuid_as_string,
            "escape_field_names": self.escape_field_names,
            "serialize_array_columns": self.serialize_array_columns,
            "is_delta_mode": self.is_delta_mode,
            "field_types": {name: t.value for name, t in self.field_types.items()},
        }


class CacheBacking(str, Enum):
    MEMORY = "memory"
    DURABLE = "durable"


@dataclass(frozen=True)
class BufferConfig:
    """Write-buffer thresholds and backing store."""

    capacity: int = DEFAULT_BUFFER_CAPACITY
    idle_timeout_seconds: float = DEFAULT_IDLE_TIMEOUT_SECONDS
    backing: CacheBacking = CacheBacking.MEMORY
    connection_string: Optional[str] = None
    table_name: str = "SqlCaching"

    def __post_init__(self) -> None:
        self.validate()

    def validate(self) -> None:
        if self.capacity <= 0:
            raise ConfigValidationError(f"capacity must be positive, got {self.capacity}", key="capacity")
        if self.idle_timeout_seconds <= 0:
            raise ConfigValidationError(
                f"idle_timeout_seconds must be positive, got {self.idle_timeout_seconds}",
                key="idle_timeout_seconds",
            )

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "BufferConfig":
        if not isinstance(data, dict):
            raise ConfigValidationError("Buffer config must be a mapping")
        kwargs: Dict[str, Any] = {}
        if "capacity" in data:
            kwargs["capacity"] = _as_int(data["capacity"], "capacity")
        if "idle_timeout_seconds" in data:
            try:
                kwargs["idle_timeout_seconds"] = float(data["idle_timeout_seconds"])
            except (TypeError, ValueError):
                raise ConfigValidationError(
                    f"'idle_timeout_seconds' must be a number, got {data['idle_timeout_seconds']!r}",
                    key="idle_timeout_seconds",
                )
        if "backing" in data:
            try:
                kwargs["backing"] = CacheBacking(str(data["backing"]).lower())
            except ValueError:
                raise ConfigValidationError(
                    f"Unknown buffer backing '{data['backing']}'. Valid values: memory, durable", key="backing"
                )
        if data.get("connection_string"):
            kwargs["connection_string"] = str(data["connection_string"])
        if data.get("table_name"):
            kwargs["table_name"] = str(data["table_name"])
        return cls(**kwargs)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "capacity": self.capacity,
            "idle_timeout_seconds": self.idle_timeout_seconds,
            "backing": self.backing.value,
            "connection_string": self.connection_string,
            "table_name": self.table_name,
        }


def _section(cfg: Dict[str, Any], key: str, path: Union[str, Path]) -> Dict[str, Any]:
    section = cfg.get(key, cfg)
    if not isinstance(section, dict):
        raise ConfigValidationError(f"'{key}' section must be a mapping", config_path=str(path), key=key)
    return section


def load_destination_config(path: Union[str, Path], enable_env_substitution: bool = True) -> DestinationConfig:
    """Load a ``DestinationConfig`` from the ``destination`` section of a YAML file."""
    cfg = _read_yaml(path)
    if enable_env_substitution:
        cfg = substitute_env_vars(cfg)
    return DestinationConfig.from_dict(_section(cfg, "destination", path))


def load_buffer_config(path: Union[str, Path], enable_env_substitution: bool = True) -> BufferConfig:
    """Load a ``BufferConfig`` from the ``buffer`` section of a YAML file."""
    cfg = _read_yaml(path)
    if enable_env_substitution:
        cfg = substitute_env_vars(cfg)
    return BufferConfig.from_dict(_section(cfg, "buffer", path))
