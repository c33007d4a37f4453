"""Delimited-text output."""

import csv
import io
from typing import Any, BinaryIO, List

from lakeexport.config import OutputFormat
from lakeexport.schema.builder import ExportSchema
from lakeexport.schema.values import to_invariant_text
from lakeexport.writers.base import RowWriter


class CsvWriter(RowWriter):
    """Header record of field names, then one record per row.

    Values are rendered as locale-invariant text; arrays and structured
    values are flattened to JSON text. Each record reaches the sink in a
    single write, so a cancelled export ends on a record boundary.
    """

    output_format = OutputFormat.CSV

    def _begin(self, sink: BinaryIO, schema: ExportSchema) -> None:
        self._buffer = io.StringIO()
        self._csv = csv.writer(self._buffer)
        self._write_record(sink, schema.names)

    def _write_row(self, sink: BinaryIO, schema: ExportSchema, values: List[Any]) -> None:
        self._write_record(sink, [to_invariant_text(v) for v in values])

    def _write_record(self, sink: BinaryIO, record: List[str]) -> None:
        self._buffer.seek(0)
        self._buffer.truncate()
        self._csv.writerow(record)
        self._emit(sink, self._buffer.getvalue().encode("utf-8"))
