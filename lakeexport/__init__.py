"""Streaming tabular export to CSV, JSON and Parquet for lake destinations."""

__version__ = "1.0.0"

from lakeexport.config import BufferConfig, DestinationConfig, OutputFormat
from lakeexport.cursor import DataFrameCursor, RecordCursor, RowCursor, SqlCursor
from lakeexport.export import ExportResult, run_export
from lakeexport.transform import ChangeMarkerTransformer, ChangeType, MarkerDialect

__all__ = [
    "BufferConfig",
    "ChangeMarkerTransformer",
    "ChangeType",
    "DataFrameCursor",
    "DestinationConfig",
    "ExportResult",
    "MarkerDialect",
    "OutputFormat",
    "RecordCursor",
    "RowCursor",
    "SqlCursor",
    "__version__",
    "run_export",
]
