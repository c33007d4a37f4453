"""Format writers and the writer factory."""

from dataclasses import replace
from typing import Dict, Optional, Type, Union

from lakeexport.config import DestinationConfig, OutputFormat
from lakeexport.writers.base import FormatWriter, ProgressCallback, RowWriter
from lakeexport.writers.csv_writer import CsvWriter
from lakeexport.writers.json_writer import JsonWriter
from lakeexport.writers.parquet_writer import ParquetWriter

WRITERS: Dict[OutputFormat, Type[FormatWriter]] = {
    OutputFormat.CSV: CsvWriter,
    OutputFormat.JSON: JsonWriter,
    OutputFormat.PARQUET: ParquetWriter,
}


def get_writer(
    output_format: Union[OutputFormat, str, None] = None,
    config: Optional[DestinationConfig] = None,
    progress_callback: Optional[ProgressCallback] = None,
) -> FormatWriter:
    """Create the writer for ``output_format`` (defaults to the config's format)."""
    if output_format is None:
        output_format = config.output_format if config else OutputFormat.CSV
    elif not isinstance(output_format, OutputFormat):
        output_format = OutputFormat.from_string(output_format)

    if config is not None and config.output_format is not output_format:
        config = replace(config, output_format=output_format)
    elif config is None:
        config = DestinationConfig(output_format=output_format)

    return WRITERS[output_format](config=config, progress_callback=progress_callback)


__all__ = [
    "CsvWriter",
    "FormatWriter",
    "JsonWriter",
    "OutputFormat",
    "ParquetWriter",
    "RowWriter",
    "WRITERS",
    "get_writer",
]
