"""Projection of source values and declared types onto supported output types.

Declared types come from the row cursor and may be plain Python classes,
``typing`` annotations such as ``Optional[int]`` or ``List[Tag]``, or
``SemanticType`` members. Projection is a closed dispatch over
``SemanticType``; anything that falls outside it raises
``UnsupportedTypeError``.
"""

from __future__ import annotations

import collections.abc
import json
import logging
import types
import typing
import uuid
from dataclasses import dataclass, replace
from datetime import date, datetime, time, timedelta, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Callable, Dict, Optional, Tuple, Union

from lakeexport.exceptions import UnsupportedTypeError
from lakeexport.schema.domain import OPAQUE_TYPES, is_opaque_type, to_text
from lakeexport.schema.types import Field, SemanticType, integer_range
from lakeexport.schema.values import enum_to_json, to_invariant_text

logger = logging.getLogger(__name__)

# Subclasses must precede their bases (bool before int, datetime before date)
_PYTHON_TYPES: Tuple[Tuple[type, SemanticType], ...] = (
    (bool, SemanticType.BOOLEAN),
    (int, SemanticType.INT64),
    (float, SemanticType.DOUBLE),
    (Decimal, SemanticType.DECIMAL),
    (datetime, SemanticType.TIMESTAMP),
    (date, SemanticType.DATE),
    (time, SemanticType.TIME),
    (timedelta, SemanticType.DURATION),
    (bytes, SemanticType.BINARY),
    (bytearray, SemanticType.BINARY),
    (memoryview, SemanticType.BINARY),
    (str, SemanticType.STRING),
    (uuid.UUID, SemanticType.UUID),
)

_SEQUENCE_CLASSES = (list, tuple, set, frozenset)

_UNION_TYPES: Tuple[Any, ...] = (Union,)
if hasattr(types, "UnionType"):
    _UNION_TYPES += (types.UnionType,)

_NONE_TYPE = type(None)


@dataclass(frozen=True)
class Projection:
    """Result of projecting one value."""

    value: Any
    type: SemanticType
    nullable: bool = True
    is_array: bool = False

    def as_field(self, name: str) -> Field:
        return Field(name=name, type=self.type, nullable=self.nullable, is_array=self.is_array)


def _is_sequence_value(value: Any) -> bool:
    return isinstance(value, _SEQUENCE_CLASSES) and not isinstance(value, OPAQUE_TYPES)


def _is_sequence_origin(origin: Any) -> bool:
    if not isinstance(origin, type):
        return False
    if issubclass(origin, (str, bytes, bytearray, memoryview, collections.abc.Mapping)):
        return False
    return issubclass(origin, collections.abc.Iterable)


def _type_name(tp: Any) -> str:
    return getattr(tp, "__name__", None) or repr(tp)


class TypeProjector:
    """Maps values and declared types to ``SemanticType`` output types."""

    def __init__(self, write_uuid_as_string: bool = True) -> None:
        self.write_uuid_as_string = write_uuid_as_string
        self._coercers: Dict[SemanticType, Callable[[Any, Field], Any]] = {
            SemanticType.BOOLEAN: self._to_boolean,
            SemanticType.FLOAT: self._to_float,
            SemanticType.DOUBLE: self._to_float,
            SemanticType.DECIMAL: self._to_decimal,
            SemanticType.BIG_INTEGER: self._to_big_integer,
            SemanticType.TIMESTAMP: self._to_timestamp,
            SemanticType.TIMESTAMP_OFFSET: self._to_offset_text,
            SemanticType.DATE: self._to_date,
            SemanticType.TIME: self._to_time,
            SemanticType.DURATION: self._to_duration,
            SemanticType.BINARY: self._to_binary,
            SemanticType.STRING: self._to_string,
            SemanticType.UUID: self._to_uuid,
            SemanticType.JSON: self._to_json_text,
        }
        for semantic_type in SemanticType:
            if semantic_type.is_integer:
                self._coercers[semantic_type] = self._to_integer

    # ------------------------------------------------------------------
    # Type resolution
    # ------------------------------------------------------------------
    def resolve(
        self,
        declared_type: Any,
        override: Any = None,
        field_name: Optional[str] = None,
    ) -> Optional[Field]:
        """Resolve a declared type to an output field.

        Returns ``None`` when the declared type carries no information and the
        field must be projected from its values. A sequence whose element type
        is unknown resolves to an array field with ``type=None``.
        """
        resolved = self._resolve(declared_type, field_name)
        if override is not None:
            semantic = override if isinstance(override, SemanticType) else SemanticType.from_string(str(override))
            nullable, is_array = (resolved[1], resolved[2]) if resolved else (True, False)
            resolved = (semantic, nullable, is_array)

        if resolved is None:
            return None

        semantic, nullable, is_array = resolved
        return Field(
            name=field_name or "",
            type=self._output_type(semantic) if semantic is not None else None,
            nullable=nullable,
            is_array=is_array,
        )

    def _resolve(self, declared: Any, field_name: Optional[str]) -> Optional[Tuple[Optional[SemanticType], bool, bool]]:
        if declared is None or declared is Any or declared is object:
            return None
        if isinstance(declared, SemanticType):
            return declared, True, False
        if isinstance(declared, str):
            return SemanticType.from_string(declared), True, False

        origin = typing.get_origin(declared)
        if origin in _UNION_TYPES:
            members = [arg for arg in typing.get_args(declared) if arg is not _NONE_TYPE]
            if len(members) != 1:
                raise UnsupportedTypeError(
                    f"Union type {declared!r} has no single projectable member",
                    type_name=repr(declared),
                    field_name=field_name,
                )
            inner = self._resolve(members[0], field_name)
            if inner is None:
                return None
            return inner[0], True, inner[2]

        if origin is not None:
            if not _is_sequence_origin(origin):
                raise UnsupportedTypeError(
                    f"Unsupported declared type {declared!r}",
                    type_name=_type_name(origin),
                    field_name=field_name,
                )
            return self._element_type(typing.get_args(declared), declared, field_name), True, True

        if isinstance(declared, type):
            if _is_sequence_origin(declared) and not is_opaque_type(declared):
                return None, True, True
            return self._scalar_type(declared, field_name), True, False

        raise UnsupportedTypeError(
            f"Unsupported declared type {declared!r}",
            type_name=_type_name(declared),
            field_name=field_name,
        )

    def _element_type(self, args: Tuple[Any, ...], declared: Any, field_name: Optional[str]) -> Optional[SemanticType]:
        if not args:
            return None
        if len(args) == 2 and args[1] is Ellipsis:
            args = args[:1]
        if len(set(args)) != 1:
            raise UnsupportedTypeError(
                f"Heterogeneous sequence type {declared!r} is not supported",
                type_name=repr(declared),
                field_name=field_name,
            )
        element = self._resolve(args[0], field_name)
        if element is None:
            return None
        if element[2]:
            raise UnsupportedTypeError(
                f"Nested sequence type {declared!r} is not supported",
                type_name=repr(declared),
                field_name=field_name,
            )
        return element[0]

    def _scalar_type(self, tp: type, field_name: Optional[str]) -> SemanticType:
        if issubclass(tp, Enum):
            return SemanticType.JSON
        if is_opaque_type(tp):
            return SemanticType.STRING
        for python_type, semantic in _PYTHON_TYPES:
            if issubclass(tp, python_type):
                return semantic
        raise UnsupportedTypeError(
            f"Type '{tp.__name__}' cannot be projected to an output type",
            type_name=tp.__name__,
            field_name=field_name,
        )

    def _output_type(self, semantic: SemanticType) -> SemanticType:
        if semantic is SemanticType.TIMESTAMP_OFFSET:
            return SemanticType.STRING
        if semantic is SemanticType.UUID and self.write_uuid_as_string:
            return SemanticType.STRING
        return semantic

    # ------------------------------------------------------------------
    # Value projection
    # ------------------------------------------------------------------
    def infer(self, value: Any, field_name: Optional[str] = None) -> Field:
        """Derive an output field from a concrete, non-null value."""
        if _is_sequence_value(value):
            element_type = SemanticType.STRING
            for element in value:
                if element is None:
                    continue
                if _is_sequence_value(element) or isinstance(element, collections.abc.Mapping):
                    raise UnsupportedTypeError(
                        f"Nested '{type(element).__name__}' inside a sequence is not supported",
                        type_name=type(element).__name__,
                        field_name=field_name,
                    )
                element_type = self._infer_scalar(element, field_name)
                break
            return Field(name=field_name or "", type=element_type, is_array=True)
        return Field(name=field_name or "", type=self._infer_scalar(value, field_name))

    def _infer_scalar(self, value: Any, field_name: Optional[str]) -> SemanticType:
        if isinstance(value, datetime) and value.utcoffset() is not None:
            return SemanticType.STRING
        if isinstance(value, int) and not isinstance(value, (bool, Enum)):
            low, high = integer_range(SemanticType.INT64)
            if not low <= value <= high:
                return SemanticType.BIG_INTEGER
        if isinstance(value, collections.abc.Mapping):
            raise UnsupportedTypeError(
                f"Mapping value '{type(value).__name__}' cannot be projected",
                type_name=type(value).__name__,
                field_name=field_name,
            )
        return self._output_type(self._scalar_type(type(value), field_name))

    def project(
        self,
        value: Any,
        declared_type: Any = None,
        override: Any = None,
        field_name: Optional[str] = None,
    ) -> Projection:
        """Project one value to (value, output type)."""
        resolved = self.resolve(declared_type, override, field_name)

        if value is None:
            if resolved is None:
                return Projection(None, SemanticType.STRING, nullable=True)
            return Projection(None, resolved.type or SemanticType.STRING, nullable=True, is_array=resolved.is_array)

        if resolved is None or resolved.type is None:
            inferred = self.infer(value, field_name)
            if resolved is not None and resolved.is_array and not inferred.is_array:
                raise UnsupportedTypeError(
                    f"Expected a sequence but got '{type(value).__name__}'",
                    type_name=type(value).__name__,
                    field_name=field_name,
                )
            resolved = replace(inferred, nullable=True)

        return Projection(
            self.coerce(value, resolved),
            resolved.type,
            nullable=resolved.nullable,
            is_array=resolved.is_array,
        )

    def coerce(self, value: Any, field: Field) -> Any:
        """Convert a value for a field whose type is already fixed."""
        if value is None:
            return None
        if field.type is None:
            return self.project(value, field_name=field.name).value
        if field.is_array:
            if not _is_sequence_value(value):
                raise UnsupportedTypeError(
                    f"Expected a sequence but got '{type(value).__name__}'",
                    type_name=type(value).__name__,
                    field_name=field.name,
                )
            element_field = replace(field, is_array=False)
            return [self._coerce_scalar(element, element_field) for element in value]
        return self._coerce_scalar(value, field)

    def _coerce_scalar(self, value: Any, field: Field) -> Any:
        if value is None:
            return None
        if _is_sequence_value(value) or isinstance(value, collections.abc.Mapping):
            if field.type is not SemanticType.JSON:
                self._unsupported(value, field)
        coercer = self._coercers.get(field.type)
        if coercer is None:
            self._unsupported(value, field)
        return coercer(value, field)

    def _unsupported(self, value: Any, field: Field) -> None:
        target = field.type.value if field.type else "dynamic"
        raise UnsupportedTypeError(
            f"Value of type '{type(value).__name__}' cannot be projected to {target}",
            type_name=type(value).__name__,
            field_name=field.name,
        )

    # ------------------------------------------------------------------
    # Coercers, one per SemanticType
    # ------------------------------------------------------------------
    def _to_boolean(self, value: Any, field: Field) -> bool:
        if isinstance(value, bool):
            return value
        if isinstance(value, int) and value in (0, 1):
            return bool(value)
        self._unsupported(value, field)

    def _to_integer(self, value: Any, field: Field) -> int:
        if isinstance(value, Enum):
            self._unsupported(value, field)
        if isinstance(value, int):
            result = int(value)
        elif isinstance(value, float) and value.is_integer():
            result = int(value)
        elif isinstance(value, Decimal) and value.is_finite() and value == value.to_integral_value():
            result = int(value)
        else:
            self._unsupported(value, field)
        low, high = integer_range(field.type)
        if not low <= result <= high:
            raise UnsupportedTypeError(
                f"Integer {result} is out of range for {field.type.value}",
                type_name="int",
                field_name=field.name,
            )
        return result

    def _to_float(self, value: Any, field: Field) -> float:
        if isinstance(value, (int, float, Decimal)) and not isinstance(value, (bool, Enum)):
            return float(value)
        self._unsupported(value, field)

    def _to_decimal(self, value: Any, field: Field) -> Decimal:
        if isinstance(value, Decimal):
            return value
        if isinstance(value, int) and not isinstance(value, (bool, Enum)):
            return Decimal(value)
        if isinstance(value, float):
            return Decimal(repr(value))
        self._unsupported(value, field)

    def _to_big_integer(self, value: Any, field: Field) -> int:
        if isinstance(value, int) and not isinstance(value, (bool, Enum)):
            return int(value)
        if isinstance(value, Decimal) and value == value.to_integral_value():
            return int(value)
        self._unsupported(value, field)

    def _to_timestamp(self, value: Any, field: Field) -> datetime:
        if isinstance(value, datetime):
            if value.utcoffset() is not None:
                return value.astimezone(timezone.utc).replace(tzinfo=None)
            return value
        if isinstance(value, date):
            return datetime.combine(value, time())
        self._unsupported(value, field)

    def _to_offset_text(self, value: Any, field: Field) -> str:
        if isinstance(value, datetime):
            return value.isoformat()
        self._unsupported(value, field)

    def _to_date(self, value: Any, field: Field) -> date:
        if isinstance(value, datetime):
            return value.date()
        if isinstance(value, date):
            return value
        self._unsupported(value, field)

    def _to_time(self, value: Any, field: Field) -> time:
        if isinstance(value, time):
            return value
        self._unsupported(value, field)

    def _to_duration(self, value: Any, field: Field) -> timedelta:
        if isinstance(value, timedelta):
            return value
        self._unsupported(value, field)

    def _to_binary(self, value: Any, field: Field) -> bytes:
        if isinstance(value, (bytes, bytearray, memoryview)):
            return bytes(value)
        self._unsupported(value, field)

    def _to_string(self, value: Any, field: Field) -> str:
        if isinstance(value, str) and not isinstance(value, Enum):
            return value
        if isinstance(value, OPAQUE_TYPES):
            return to_text(value)
        if isinstance(value, datetime) and value.utcoffset() is not None:
            # Round-trip form keeps the offset
            return value.isoformat()
        if isinstance(value, (bool, int, float, Decimal, datetime, date, time, timedelta, bytes, bytearray, uuid.UUID, Enum)):
            return to_invariant_text(value)
        self._unsupported(value, field)

    def _to_uuid(self, value: Any, field: Field) -> uuid.UUID:
        if isinstance(value, uuid.UUID):
            return value
        if isinstance(value, str):
            try:
                return uuid.UUID(value)
            except ValueError:
                pass
        self._unsupported(value, field)

    def _to_json_text(self, value: Any, field: Field) -> str:
        if isinstance(value, Enum):
            return enum_to_json(value)
        if isinstance(value, str):
            return value
        if _is_sequence_value(value):
            return to_invariant_text(value)
        self._unsupported(value, field)
