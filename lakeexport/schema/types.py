"""Semantic types, fields and schemas shared by every output format."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Dict, Iterator, List, Optional

from lakeexport.exceptions import SchemaCollisionError

logger = logging.getLogger(__name__)


class SemanticType(str, Enum):
    """Value kinds understood by the exporters."""

    BOOLEAN = "boolean"
    INT8 = "int8"
    UINT8 = "uint8"
    INT16 = "int16"
    UINT16 = "uint16"
    INT32 = "int32"
    UINT32 = "uint32"
    INT64 = "int64"
    UINT64 = "uint64"
    FLOAT = "float"
    DOUBLE = "double"
    DECIMAL = "decimal"
    BIG_INTEGER = "big_integer"
    TIMESTAMP = "timestamp"
    TIMESTAMP_OFFSET = "timestamp_offset"  # Source-only; degrades to STRING
    DATE = "date"
    TIME = "time"
    DURATION = "duration"
    BINARY = "binary"
    STRING = "string"
    UUID = "uuid"
    JSON = "json"

    @classmethod
    def from_string(cls, value: str) -> "SemanticType":
        """Convert a type name to SemanticType, with SQL and vocabulary aliases."""
        aliases = {
            "bool": cls.BOOLEAN,
            "bit": cls.BOOLEAN,
            "sbyte": cls.INT8,
            "byte": cls.UINT8,
            "tinyint": cls.UINT8,
            "short": cls.INT16,
            "smallint": cls.INT16,
            "ushort": cls.UINT16,
            "int": cls.INT32,
            "integer": cls.INT32,
            "uint": cls.UINT32,
            "long": cls.INT64,
            "bigint": cls.INT64,
            "ulong": cls.UINT64,
            "real": cls.FLOAT,
            "single": cls.FLOAT,
            "number": cls.FLOAT,
            "float64": cls.DOUBLE,
            "numeric": cls.DECIMAL,
            "money": cls.DECIMAL,
            "biginteger": cls.BIG_INTEGER,
            "datetime": cls.TIMESTAMP,
            "datetime2": cls.TIMESTAMP,
            "datetimeoffset": cls.TIMESTAMP_OFFSET,
            "timespan": cls.DURATION,
            "interval": cls.DURATION,
            "bytes": cls.BINARY,
            "varbinary": cls.BINARY,
            "text": cls.STRING,
            "str": cls.STRING,
            "varchar": cls.STRING,
            "nvarchar": cls.STRING,
            "email": cls.STRING,
            "phonenumber": cls.STRING,
            "uri": cls.STRING,
            "lookup": cls.STRING,
            "guid": cls.UUID,
            "identifier": cls.UUID,
            "uniqueidentifier": cls.UUID,
        }

        normalized = value.lower().strip().replace(" ", "")
        if normalized in aliases:
            return aliases[normalized]

        try:
            return cls(normalized)
        except ValueError:
            logger.warning(f"Unknown data type '{value}', using string")
            return cls.STRING

    @property
    def is_integer(self) -> bool:
        return self in _INTEGER_RANGES


# Inclusive bounds of the fixed-width integer kinds
_INTEGER_RANGES = {
    SemanticType.INT8: (-(2 ** 7), 2 ** 7 - 1),
    SemanticType.UINT8: (0, 2 ** 8 - 1),
    SemanticType.INT16: (-(2 ** 15), 2 ** 15 - 1),
    SemanticType.UINT16: (0, 2 ** 16 - 1),
    SemanticType.INT32: (-(2 ** 31), 2 ** 31 - 1),
    SemanticType.UINT32: (0, 2 ** 32 - 1),
    SemanticType.INT64: (-(2 ** 63), 2 ** 63 - 1),
    SemanticType.UINT64: (0, 2 ** 64 - 1),
}


def integer_range(semantic_type: SemanticType) -> tuple:
    """Return the (min, max) bounds of a fixed-width integer type."""
    return _INTEGER_RANGES[semantic_type]


@dataclass(frozen=True)
class Field:
    """A single output column.

    ``type`` is ``None`` for a dynamic field whose values are projected one
    row at a time. ``source`` names the cursor column the field is read from.
    """

    name: str
    type: Optional[SemanticType] = SemanticType.STRING
    nullable: bool = True
    is_array: bool = False
    precision: Optional[int] = None  # For decimal
    scale: Optional[int] = None  # For decimal
    source: Optional[str] = None

    @property
    def source_name(self) -> str:
        return self.source or self.name

    def renamed(self, name: str) -> "Field":
        return replace(self, name=name, source=self.source_name)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Field":
        """Create from dictionary."""
        name = data.get("name")
        if not name:
            raise ValueError("Field definition must have a 'name'")

        type_value = data.get("type", "string")
        return cls(
            name=name,
            type=type_value if isinstance(type_value, SemanticType) else SemanticType.from_string(type_value),
            nullable=data.get("nullable", True),
            is_array=data.get("is_array", False),
            precision=data.get("precision"),
            scale=data.get("scale"),
            source=data.get("source"),
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        result: Dict[str, Any] = {
            "name": self.name,
            "type": self.type.value if self.type else None,
            "nullable": self.nullable,
        }
        if self.is_array:
            result["is_array"] = True
        if self.precision is not None:
            result["precision"] = self.precision
        if self.scale is not None:
            result["scale"] = self.scale
        if self.source and self.source != self.name:
            result["source"] = self.source
        return result


@dataclass
class Schema:
    """Ordered collection of fields with unique names."""

    fields: List[Field] = field(default_factory=list)

    def __post_init__(self) -> None:
        seen: Dict[str, Field] = {}
        for f in self.fields:
            if f.name in seen:
                sources = [seen[f.name].source_name, f.source_name]
                raise SchemaCollisionError(
                    f"Duplicate output field name '{f.name}'",
                    field_name=f.name,
                    sources=sources,
                )
            seen[f.name] = f

    def __iter__(self) -> Iterator[Field]:
        return iter(self.fields)

    def __len__(self) -> int:
        return len(self.fields)

    def __getitem__(self, index: int) -> Field:
        return self.fields[index]

    @property
    def names(self) -> List[str]:
        return [f.name for f in self.fields]

    def get(self, name: str) -> Optional[Field]:
        """Get field by output name."""
        for f in self.fields:
            if f.name == name:
                return f
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {"fields": [f.to_dict() for f in self.fields]}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Schema":
        return cls(fields=[Field.from_dict(f) for f in data.get("fields", [])])
