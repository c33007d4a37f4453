"""Derive ordered output schemas from declared types and sample rows."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import TYPE_CHECKING, Any, Dict, FrozenSet, List, Mapping, Optional, Sequence

from lakeexport.exceptions import ConfigValidationError, UnsupportedTypeError
from lakeexport.schema.projector import TypeProjector
from lakeexport.schema.types import Field, Schema, SemanticType
from lakeexport.transform import FieldTransformer

if TYPE_CHECKING:
    from lakeexport.cursor import RowCursor

logger = logging.getLogger(__name__)

_INVALID_NAME_CHARS = re.compile(r"[^a-zA-Z0-9_]")


class FieldOrdering(str, Enum):
    """Output field order policy."""

    SOURCE = "source"
    MARKER_LAST = "marker_last"

    @classmethod
    def from_string(cls, value: str) -> "FieldOrdering":
        try:
            return cls(value.strip().lower())
        except ValueError:
            valid = ", ".join(o.value for o in cls)
            raise ConfigValidationError(
                f"Unknown field ordering '{value}'. Valid values: {valid}", key="field_ordering"
            )


def escape_field_name(name: str) -> str:
    return _INVALID_NAME_CHARS.sub("_", name)


@dataclass
class ExportSchema:
    """Source fields, output schema and the mapping between them."""

    source_fields: List[Field]
    fields: Schema
    projector: TypeProjector = field(repr=False)
    transformer: FieldTransformer = field(repr=False)
    order: List[int] = field(default_factory=list, repr=False)
    # Source fields typed from a sample row; their values are projected row by row
    sampled: FrozenSet[str] = field(default_factory=frozenset, repr=False)

    @property
    def names(self) -> List[str]:
        return self.fields.names

    def values(self, row: Mapping[str, Any]) -> List[Any]:
        """Coerced, transformed values of ``row`` in output order."""
        flat: List[Any] = []
        for source_field in self.source_fields:
            value = row.get(source_field.source_name)
            if source_field.source_name in self.sampled:
                declared = list if source_field.is_array else None
                value = self.projector.project(value, declared, field_name=source_field.name).value
            else:
                value = self.projector.coerce(value, source_field)
            flat.extend(self.transformer.transform_value(source_field, value))
        if self.order:
            return [flat[i] for i in self.order]
        return flat

    def as_dict(self, row: Mapping[str, Any]) -> Dict[str, Any]:
        return dict(zip(self.fields.names, self.values(row)))


class SchemaBuilder:
    """Runs the type projector per field and applies destination policy.

    Policy is applied in a fixed order: field transformer (renames and
    companions), name escaping, then ordering. Duplicate output names raise
    ``SchemaCollisionError`` before any row is written.

    A non-strict build types undeclared fields from the sample row for the
    schema's shape only; their values are still projected row by row.
    """

    def __init__(
        self,
        projector: Optional[TypeProjector] = None,
        transformer: Optional[FieldTransformer] = None,
        ordering: FieldOrdering = FieldOrdering.SOURCE,
        escape_field_names: bool = False,
        field_overrides: Optional[Mapping[str, Any]] = None,
    ):
        self.projector = projector or TypeProjector()
        self.transformer = transformer or FieldTransformer()
        self.ordering = ordering
        self.escape_field_names = escape_field_names
        self.field_overrides = dict(field_overrides or {})

    def build(
        self,
        field_names: Sequence[str],
        declared_types: Optional[Mapping[str, Any]] = None,
        sample_row: Optional[Mapping[str, Any]] = None,
        strict: bool = False,
        nullability: Optional[Mapping[str, bool]] = None,
    ) -> ExportSchema:
        declared_types = declared_types or {}
        nullability = nullability or {}

        source_fields = [
            self._source_field(name, declared_types.get(name), sample_row, strict, nullability.get(name, True))
            for name in field_names
        ]
        sampled: FrozenSet[str] = frozenset()
        if not strict and sample_row is not None:
            sampled = frozenset(
                f.name for f in source_fields if self._is_untyped(f.name, declared_types.get(f.name))
            )

        output: List[Field] = []
        for source_field in source_fields:
            for out_field in self.transformer.transform_field(source_field):
                if self.escape_field_names:
                    escaped = escape_field_name(out_field.name)
                    if escaped != out_field.name:
                        out_field = out_field.renamed(escaped)
                output.append(out_field)

        order = self._order(output)
        schema = Schema(fields=[output[i] for i in order])
        logger.debug(f"Built output schema with {len(schema)} fields: {schema.names}")

        return ExportSchema(
            source_fields=source_fields,
            fields=schema,
            projector=self.projector,
            transformer=self.transformer,
            order=order if order != list(range(len(output))) else [],
            sampled=sampled,
        )

    def build_from_row(self, row: Mapping[str, Any], declared_types: Optional[Mapping[str, Any]] = None) -> ExportSchema:
        return self.build(list(row.keys()), declared_types, sample_row=row)

    def build_from_cursor(
        self,
        cursor: "RowCursor",
        field_names: Optional[Sequence[str]] = None,
        strict: bool = False,
    ) -> ExportSchema:
        names = list(field_names) if field_names is not None else list(cursor.field_names)
        declared = {name: cursor.field_type(name) for name in names}
        nullability = {name: cursor.is_nullable(name) for name in names}
        return self.build(names, declared, strict=strict, nullability=nullability)

    def _is_untyped(self, name: str, declared: Any) -> bool:
        resolved = self.projector.resolve(declared, self.field_overrides.get(name), name)
        return resolved is None or resolved.type is None

    def _source_field(
        self,
        name: str,
        declared: Any,
        sample_row: Optional[Mapping[str, Any]],
        strict: bool,
        nullable: bool,
    ) -> Field:
        resolved = self.projector.resolve(declared, self.field_overrides.get(name), name)

        if resolved is None or resolved.type is None:
            sample = sample_row.get(name) if sample_row is not None else None
            if sample is not None:
                inferred = self.projector.infer(sample, name)
                if resolved is not None and resolved.is_array and not inferred.is_array:
                    raise UnsupportedTypeError(
                        f"Expected a sequence but got '{type(sample).__name__}'",
                        type_name=type(sample).__name__,
                        field_name=name,
                    )
                resolved = inferred
            elif strict:
                is_array = resolved.is_array if resolved is not None else False
                resolved = Field(name=name, type=SemanticType.STRING, is_array=is_array)
            elif resolved is None:
                resolved = Field(name=name, type=None)

        return replace(resolved, name=name, source=name, nullable=resolved.nullable and nullable)

    def _order(self, output: List[Field]) -> List[int]:
        indices = list(range(len(output)))
        marker = self.transformer.marker_name()
        if self.ordering is not FieldOrdering.MARKER_LAST or not marker:
            return indices
        if self.escape_field_names:
            marker = escape_field_name(marker)
        markers = [i for i in indices if output[i].name == marker]
        return [i for i in indices if output[i].name != marker] + markers
