"""Export orchestration: destination config + cursor + sink."""

import logging
import time
from dataclasses import dataclass
from typing import Any, BinaryIO, Dict, Optional, Sequence

from lakeexport.config import DestinationConfig, OutputFormat
from lakeexport.cursor import RowCursor
from lakeexport.logging_config import log_performance
from lakeexport.writers import get_writer
from lakeexport.writers.base import ProgressCallback

logger = logging.getLogger(__name__)


@dataclass
class ExportResult:
    rows: int
    output_format: OutputFormat
    duration_seconds: float

    @property
    def rows_per_second(self) -> float:
        if self.duration_seconds <= 0:
            return 0.0
        return self.rows / self.duration_seconds

    def to_dict(self) -> Dict[str, Any]:
        return {
            "rows": self.rows,
            "output_format": self.output_format.value,
            "duration_seconds": round(self.duration_seconds, 3),
            "rows_per_second": round(self.rows_per_second, 1),
        }


def run_export(
    cursor: RowCursor,
    field_names: Optional[Sequence[str]],
    config: DestinationConfig,
    sink: BinaryIO,
    is_initial_export: bool = False,
    progress_callback: Optional[ProgressCallback] = None,
) -> ExportResult:
    """Write every row of ``cursor`` to ``sink`` in ``config.output_format``.

    Errors propagate unchanged; the sink is left open for the caller.
    """
    writer = get_writer(config=config, progress_callback=progress_callback)
    logger.info(
        f"Starting {config.output_format.value} export "
        f"(cdc={'yes' if config.is_cdc_aware else 'no'}, initial={'yes' if is_initial_export else 'no'})"
    )

    start = time.perf_counter()
    rows = writer.write(sink, field_names, cursor, is_initial_export=is_initial_export)
    duration = time.perf_counter() - start

    result = ExportResult(rows=rows, output_format=config.output_format, duration_seconds=duration)
    log_performance(
        logger,
        f"{config.output_format.value}_export",
        duration_seconds=duration,
        rows_written=rows,
    )
    return result
