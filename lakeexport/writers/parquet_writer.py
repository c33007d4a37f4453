"""Columnar output written in bounded row groups."""

import logging
from decimal import Decimal
from typing import Any, BinaryIO, Callable, Dict, Iterable, List, Optional

import pyarrow as pa
import pyarrow.parquet as pq

from lakeexport.config import OutputFormat
from lakeexport.exceptions import SinkWriteError, UnsupportedTypeError
from lakeexport.schema.builder import ExportSchema
from lakeexport.schema.types import Field, SemanticType
from lakeexport.writers.base import FormatWriter

logger = logging.getLogger(__name__)

DEFAULT_DECIMAL_PRECISION = 38
DEFAULT_DECIMAL_SCALE = 18

_ARROW_TYPES: Dict[SemanticType, Callable[[], pa.DataType]] = {
    SemanticType.BOOLEAN: pa.bool_,
    SemanticType.INT8: pa.int8,
    SemanticType.UINT8: pa.uint8,
    SemanticType.INT16: pa.int16,
    SemanticType.UINT16: pa.uint16,
    SemanticType.INT32: pa.int32,
    SemanticType.UINT32: pa.uint32,
    SemanticType.INT64: pa.int64,
    SemanticType.UINT64: pa.uint64,
    SemanticType.FLOAT: pa.float32,
    SemanticType.DOUBLE: pa.float64,
    SemanticType.BIG_INTEGER: lambda: pa.decimal128(DEFAULT_DECIMAL_PRECISION, 0),
    SemanticType.TIMESTAMP: lambda: pa.timestamp("us"),
    SemanticType.DATE: pa.date32,
    SemanticType.TIME: lambda: pa.time64("us"),
    SemanticType.DURATION: lambda: pa.duration("us"),
    SemanticType.BINARY: pa.binary,
    SemanticType.STRING: pa.string,
    SemanticType.UUID: lambda: pa.binary(16),
    SemanticType.JSON: pa.string,
}


def arrow_type(field: Field) -> pa.DataType:
    """Arrow type of an output field."""
    if field.type is SemanticType.DECIMAL:
        value_type = pa.decimal128(
            field.precision or DEFAULT_DECIMAL_PRECISION,
            field.scale if field.scale is not None else DEFAULT_DECIMAL_SCALE,
        )
    else:
        factory = _ARROW_TYPES.get(field.type)
        if factory is None:
            raise UnsupportedTypeError(
                f"Field '{field.name}' has no columnar type",
                type_name=field.type.value if field.type else "dynamic",
                field_name=field.name,
            )
        value_type = factory()
    return pa.list_(value_type) if field.is_array else value_type


def arrow_schema(schema: ExportSchema) -> pa.Schema:
    return pa.schema([pa.field(f.name, arrow_type(f), nullable=f.nullable) for f in schema.fields])


def _columnar_value(field: Field) -> Optional[Callable[[Any], Any]]:
    if field.type is SemanticType.BIG_INTEGER:
        convert: Callable[[Any], Any] = Decimal
    elif field.type is SemanticType.UUID:
        convert = lambda value: value.bytes  # noqa: E731
    else:
        return None
    if field.is_array:
        return lambda values: None if values is None else [None if v is None else convert(v) for v in values]
    return lambda value: None if value is None else convert(value)


class ParquetWriter(FormatWriter):
    """Writes one Parquet row group per ``row_group_size`` rows.

    The Arrow schema is fixed from the cursor's declared and inferred types
    before anything reaches the sink. A full row group is flushed as soon as it reaches capacity and the
    final partial group is flushed once the cursor is exhausted, so N rows
    produce ceil(N / capacity) row groups. If the cursor fails mid-stream the
    file is closed with the row groups already flushed.
    """

    output_format = OutputFormat.PARQUET
    strict_schema = True

    def _write_rows(self, sink: BinaryIO, schema: ExportSchema, rows: Iterable[Dict[str, Any]]) -> int:
        capacity = self.config.row_group_size
        pa_schema = arrow_schema(schema)
        converters = [_columnar_value(f) for f in schema.fields]
        columns: List[List[Any]] = [[] for _ in schema.fields]
        pending = 0

        try:
            with pq.ParquetWriter(sink, pa_schema) as writer:
                for row in rows:
                    for column, value in zip(columns, schema.values(row)):
                        column.append(value)
                    pending += 1
                    self._row_written()
                    if pending == capacity:
                        self._flush(writer, pa_schema, converters, columns, capacity)
                        pending = 0
                if pending:
                    self._flush(writer, pa_schema, converters, columns, capacity)
        except OSError as e:
            raise SinkWriteError(
                "Failed to write parquet output",
                output_format=self.output_format.value,
                rows_written=self._rows_written,
                original_error=e,
            ) from e

        return self._rows_written

    def _flush(
        self,
        writer: pq.ParquetWriter,
        pa_schema: pa.Schema,
        converters: List[Optional[Callable[[Any], Any]]],
        columns: List[List[Any]],
        capacity: int,
    ) -> None:
        arrays = []
        for pa_field, convert, column in zip(pa_schema, converters, columns):
            values = [convert(v) for v in column] if convert else column
            try:
                arrays.append(pa.array(values, type=pa_field.type))
            except (pa.ArrowInvalid, pa.ArrowTypeError, pa.ArrowNotImplementedError, OverflowError) as e:
                raise UnsupportedTypeError(
                    f"Values of field '{pa_field.name}' cannot be written as {pa_field.type}: {e}",
                    type_name=str(pa_field.type),
                    field_name=pa_field.name,
                ) from e

        table = pa.Table.from_arrays(arrays, schema=pa_schema)
        writer.write_table(table, row_group_size=capacity)
        for column in columns:
            column.clear()
        logger.debug(f"Flushed row group of {table.num_rows} rows")
