"""Field and value transformers applied after type projection.

A transformer maps one projected source field to one or more output fields,
and one projected value to the matching list of output values. Writers are
composed with a transformer instead of being subclassed per destination.
"""

from __future__ import annotations

import json
import logging
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional

from lakeexport.exceptions import ConfigValidationError, InvalidChangeTypeError
from lakeexport.schema.types import Field, SemanticType
from lakeexport.schema.values import to_json_compatible

logger = logging.getLogger(__name__)

DEFAULT_CHANGE_TYPE_FIELD = "__ChangeType__"
DEFAULT_MARKER_FIELD = "__rowMarker__"


class ChangeType(str, Enum):
    """Mutation kind of a source row."""

    INSERT = "insert"
    UPDATE = "update"
    DELETE = "delete"
    UPSERT = "upsert"

    @classmethod
    def from_value(cls, value: Any, field_name: Optional[str] = None) -> "ChangeType":
        """Parse a change kind.

        Accepts ``ChangeType`` members, other enum members (by name), and
        text such as ``Added``, ``Changed``, ``Removed`` or ``"Removed"``
        (JSON-quoted), case-insensitively.
        """
        if isinstance(value, cls):
            return value
        if isinstance(value, Enum):
            text = value.name
        elif isinstance(value, str):
            text = value.strip()
            if len(text) >= 2 and text[0] == '"' and text[-1] == '"':
                try:
                    text = json.loads(text)
                except ValueError:
                    text = text[1:-1]
        else:
            raise InvalidChangeTypeError(
                f"Unrecognised change type {value!r}", value=repr(value), field_name=field_name
            )

        change_type = _CHANGE_TYPE_ALIASES.get(str(text).strip().lower())
        if change_type is None:
            raise InvalidChangeTypeError(
                f"Unrecognised change type {value!r}", value=value, field_name=field_name
            )
        return change_type


_CHANGE_TYPE_ALIASES = {
    "added": ChangeType.INSERT,
    "insert": ChangeType.INSERT,
    "inserted": ChangeType.INSERT,
    "changed": ChangeType.UPDATE,
    "update": ChangeType.UPDATE,
    "updated": ChangeType.UPDATE,
    "removed": ChangeType.DELETE,
    "delete": ChangeType.DELETE,
    "deleted": ChangeType.DELETE,
    "upsert": ChangeType.UPSERT,
}


class MarkerDialect(str, Enum):
    """Row-marker recoding rules of a mirroring destination."""

    OPEN_MIRRORING = "open_mirroring"
    OPEN_MIRRORING_LEGACY = "open_mirroring_legacy"

    @classmethod
    def from_string(cls, value: str) -> "MarkerDialect":
        aliases = {
            "a": cls.OPEN_MIRRORING,
            "b": cls.OPEN_MIRRORING_LEGACY,
            "legacy": cls.OPEN_MIRRORING_LEGACY,
        }
        normalized = value.strip().lower().replace("-", "_")
        if normalized in aliases:
            return aliases[normalized]
        try:
            return cls(normalized)
        except ValueError:
            valid = ", ".join(d.value for d in cls)
            raise ConfigValidationError(
                f"Unknown marker dialect '{value}'. Valid values: {valid}", key="marker_dialect"
            )

    @property
    def codes(self) -> Dict[ChangeType, str]:
        upsert_code = "3" if self is MarkerDialect.OPEN_MIRRORING else "4"
        return {
            ChangeType.DELETE: "2",
            ChangeType.INSERT: upsert_code,
            ChangeType.UPDATE: upsert_code,
            ChangeType.UPSERT: upsert_code,
        }

    def code_for(self, change_type: ChangeType) -> str:
        return self.codes[change_type]


def _is_text_array(field: Field) -> bool:
    return field.is_array and field.type in (SemanticType.STRING, None)


def _array_to_json(value: Any) -> Optional[str]:
    if value is None:
        return None
    return json.dumps(to_json_compatible(list(value)))


class FieldTransformer:
    """Passthrough transformer; base for destination policies."""

    def transform_field(self, field: Field) -> List[Field]:
        return [field]

    def transform_value(self, field: Field, value: Any) -> List[Any]:
        return [value]

    def marker_name(self) -> Optional[str]:
        """Name of the output field forced last by ``MARKER_LAST`` ordering."""
        return None


class DefaultFieldTransformer(FieldTransformer):
    """Passthrough with optional ``<name>_String`` JSON companions for text arrays."""

    def __init__(self, serialize_array_columns: bool = False):
        self.serialize_array_columns = serialize_array_columns

    def transform_field(self, field: Field) -> List[Field]:
        if self.serialize_array_columns and _is_text_array(field):
            companion = Field(
                name=f"{field.name}_String",
                type=SemanticType.JSON,
                nullable=True,
                source=field.source_name,
            )
            return [field, companion]
        return [field]

    def transform_value(self, field: Field, value: Any) -> List[Any]:
        if self.serialize_array_columns and _is_text_array(field):
            return [value, _array_to_json(value)]
        return [value]


class ChangeMarkerTransformer(FieldTransformer):
    """Recodes the change-type field into a destination row marker.

    The field named ``change_type_field`` is renamed to ``marker_name`` and
    its value becomes the dialect's numeric code as text. When the
    destination cannot store native arrays, text arrays collapse to one
    JSON text value.
    """

    def __init__(
        self,
        dialect: MarkerDialect = MarkerDialect.OPEN_MIRRORING,
        marker_name: str = DEFAULT_MARKER_FIELD,
        change_type_field: str = DEFAULT_CHANGE_TYPE_FIELD,
        array_native_support: bool = True,
    ):
        if isinstance(dialect, str) and not isinstance(dialect, MarkerDialect):
            dialect = MarkerDialect.from_string(dialect)
        self.dialect = dialect
        self._marker_name = marker_name
        self.change_type_field = change_type_field
        self.array_native_support = array_native_support

    def marker_name(self) -> Optional[str]:
        return self._marker_name

    def is_change_type_field(self, field: Field) -> bool:
        return field.source_name == self.change_type_field

    def transform_field(self, field: Field) -> List[Field]:
        if self.is_change_type_field(field):
            return [Field(name=self._marker_name, type=SemanticType.STRING, nullable=field.nullable, source=field.source_name)]
        if not self.array_native_support and _is_text_array(field):
            return [Field(name=field.name, type=SemanticType.JSON, nullable=True, source=field.source_name)]
        return [field]

    def transform_value(self, field: Field, value: Any) -> List[Any]:
        if self.is_change_type_field(field):
            return [self.encode(value)]
        if not self.array_native_support and _is_text_array(field):
            return [_array_to_json(value)]
        return [value]

    def encode(self, value: Any) -> Optional[str]:
        """Map a change-type value to the dialect's marker code."""
        if value is None:
            return None
        change_type = ChangeType.from_value(value, field_name=self.change_type_field)
        return self.dialect.code_for(change_type)

    def transform_row(self, row: Mapping[str, Any]) -> Dict[str, Any]:
        """Apply the marker rules to a plain mapping, keeping key order."""
        result: Dict[str, Any] = {}
        for name, value in row.items():
            if name == self.change_type_field:
                result[self._marker_name] = self.encode(value)
            elif (
                not self.array_native_support
                and isinstance(value, (list, tuple))
                and all(v is None or isinstance(v, str) for v in value)
            ):
                result[name] = _array_to_json(value)
            else:
                result[name] = value
        return result
