"""Shared streaming contract for the format writers."""

import itertools
import logging
from abc import ABC, abstractmethod
from typing import Any, BinaryIO, Callable, Dict, Iterable, Iterator, List, Optional, Sequence

from lakeexport.config import DestinationConfig, OutputFormat
from lakeexport.cursor import RowCursor
from lakeexport.exceptions import SinkWriteError
from lakeexport.schema.builder import ExportSchema
from lakeexport.schema.projector import TypeProjector
from lakeexport.transform import ChangeType, FieldTransformer

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int], None]


class FormatWriter(ABC):
    """Streams rows from a cursor into a binary sink.

    Subclasses implement ``_write_rows``; ``RowWriter`` covers formats that
    emit one record per row.
    """

    output_format: OutputFormat
    # Columnar output fixes every field type, inferred or not, before writing
    strict_schema = False

    def __init__(
        self,
        config: Optional[DestinationConfig] = None,
        projector: Optional[TypeProjector] = None,
        transformer: Optional[FieldTransformer] = None,
        progress_callback: Optional[ProgressCallback] = None,
    ):
        self.config = config or DestinationConfig(output_format=self.output_format)
        self.projector = projector or self.config.build_projector()
        self.transformer = transformer or self.config.build_transformer()
        self.progress_callback = progress_callback
        self.schema_builder = self.config.build_schema_builder(self.projector, self.transformer)
        self._rows_written = 0

    def write(
        self,
        sink: BinaryIO,
        field_names: Optional[Sequence[str]],
        cursor: RowCursor,
        is_initial_export: bool = False,
    ) -> int:
        """Write every row of ``cursor`` to ``sink`` and return the row count."""
        names = list(field_names) if field_names is not None else cursor.field_names
        logger.info("Begin writing output")
        self._rows_written = 0

        rows: Iterator[Dict[str, Any]] = self._rows(cursor, is_initial_export)
        if self.strict_schema:
            schema = self.schema_builder.build_from_cursor(cursor, names, strict=True)
        else:
            first = next(rows, None)
            declared = {name: cursor.field_type(name) for name in names if not cursor.is_type_inferred(name)}
            nullability = {name: cursor.is_nullable(name) for name in names}
            schema = self.schema_builder.build(names, declared, sample_row=first, nullability=nullability)
            if first is not None:
                rows = itertools.chain([first], rows)

        count = self._write_rows(sink, schema, rows)
        logger.info(f"End writing output. Total processed: {count}")
        return count

    def _rows(self, cursor: RowCursor, is_initial_export: bool) -> Iterator[Dict[str, Any]]:
        skip_deletes = self.config.is_delta_mode and is_initial_export
        field = self.config.change_type_field
        for row in cursor:
            if skip_deletes and row.get(field) is not None:
                if ChangeType.from_value(row[field], field_name=field) is ChangeType.DELETE:
                    continue
            yield row

    @abstractmethod
    def _write_rows(self, sink: BinaryIO, schema: ExportSchema, rows: Iterable[Dict[str, Any]]) -> int:
        """Write ``rows`` under ``schema`` and return the number written."""

    def _row_written(self, count: int = 1) -> None:
        interval = self.config.progress_interval
        before = self._rows_written
        self._rows_written += count
        if self._rows_written // interval > before // interval:
            self._report_progress(self._rows_written)

    def _report_progress(self, total: int) -> None:
        logger.debug(f"Processed {total} rows")
        if self.progress_callback is None:
            return
        try:
            self.progress_callback(total)
        except Exception as e:
            logger.warning(f"Progress callback failed at {total} rows: {e}")

    def _emit(self, sink: BinaryIO, data: bytes) -> None:
        try:
            sink.write(data)
        except OSError as e:
            raise SinkWriteError(
                f"Failed to write {self.output_format.value} output",
                output_format=self.output_format.value,
                rows_written=self._rows_written,
                original_error=e,
            ) from e


class RowWriter(FormatWriter):
    """Writer that frames the output in ``_begin``/``_end`` and emits one record per row."""

    def _write_rows(self, sink: BinaryIO, schema: ExportSchema, rows: Iterable[Dict[str, Any]]) -> int:
        self._begin(sink, schema)
        for row in rows:
            self._write_row(sink, schema, schema.values(row))
            self._row_written()
        self._end(sink, schema)
        return self._rows_written

    def _begin(self, sink: BinaryIO, schema: ExportSchema) -> None:
        pass

    @abstractmethod
    def _write_row(self, sink: BinaryIO, schema: ExportSchema, values: List[Any]) -> None:
        ...

    def _end(self, sink: BinaryIO, schema: ExportSchema) -> None:
        pass
