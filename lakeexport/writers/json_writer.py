"""Structured-document output: one top-level array of row objects."""

import json
import logging
from typing import Any, BinaryIO, Dict, List

from lakeexport.config import OutputFormat
from lakeexport.schema.builder import ExportSchema
from lakeexport.schema.types import Field, SemanticType
from lakeexport.schema.values import to_json_compatible
from lakeexport.writers.base import RowWriter

logger = logging.getLogger(__name__)


class JsonWriter(RowWriter):
    output_format = OutputFormat.JSON

    def _begin(self, sink: BinaryIO, schema: ExportSchema) -> None:
        self._emit(sink, b"[")

    def _write_row(self, sink: BinaryIO, schema: ExportSchema, values: List[Any]) -> None:
        obj: Dict[str, Any] = {}
        for field, value in zip(schema.fields, values):
            obj[field.name] = self._json_value(field, value)
        separator = b"\n" if self._rows_written == 0 else b",\n"
        self._emit(sink, separator + json.dumps(obj, ensure_ascii=False, separators=(",", ":")).encode("utf-8"))

    def _end(self, sink: BinaryIO, schema: ExportSchema) -> None:
        self._emit(sink, b"\n]" if self._rows_written else b"]")

    def _json_value(self, field: Field, value: Any) -> Any:
        if isinstance(value, str) and (field.type is SemanticType.JSON or value[:1] in ("{", "[")):
            try:
                return json.loads(value)
            except ValueError:
                # Not structured text after all; keep the scalar
                logger.debug(f"Field '{field.name}' value is not valid JSON; writing as text")
                return value
        return to_json_compatible(value)
