"""Custom exception classes for lake-export-foundry.

Every failure surfaced to a caller is one of these typed errors. Logging is
observational only; these exceptions are what callers act on.
"""

from typing import Any, Dict, List, Optional


class LakeExportError(Exception):
    """Base exception for all lake-export-foundry errors."""

    error_code: str = "ERR000"  # Override in subclasses

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None, error_code: Optional[str] = None):
        """
        Initialize lake-export-foundry exception.

        Args:
            message: Human-readable error message
            details: Optional dictionary with additional context
            error_code: Optional error code override
        """
        super().__init__(message)
        self.message = message
        self.details = details or {}
        if error_code:
            self.error_code = error_code

    def __str__(self) -> str:
        """Return string representation with error code and details."""
        parts = [f"[{self.error_code}] {self.message}"]
        if self.details:
            detail_str = ", ".join(f"{k}={v}" for k, v in self.details.items())
            parts.append(f"({detail_str})")
        return " ".join(parts)


class ConfigValidationError(LakeExportError):
    """Raised when destination or buffer configuration is invalid.

    Examples:
        - Unknown output format or marker dialect
        - Non-positive row-group capacity or buffer capacity
        - Missing cache connection string
    """

    error_code = "CFG001"

    def __init__(self, message: str, config_path: Optional[str] = None, key: Optional[str] = None):
        details = {}
        if config_path:
            details['config_path'] = config_path
        if key:
            details['config_key'] = key
        super().__init__(message, details)


class UnsupportedTypeError(LakeExportError):
    """Raised when a value or declared type cannot be projected to an output type.

    Fatal for the export; never retried.
    """

    error_code = "TYPE001"

    def __init__(
        self,
        message: str,
        type_name: Optional[str] = None,
        field_name: Optional[str] = None,
    ):
        """
        Initialize unsupported type error.

        Args:
            message: Description of the projection failure
            type_name: Name of the offending type
            field_name: Field whose value or declared type failed
        """
        details = {}
        if type_name:
            details['type'] = type_name
        if field_name:
            details['field'] = field_name
        super().__init__(message, details)
        self.type_name = type_name
        self.field_name = field_name


class SchemaCollisionError(LakeExportError):
    """Raised when field renaming produces duplicate output names.

    Detected while the schema is built, before any row reaches the sink.
    """

    error_code = "SCHEMA001"

    def __init__(self, message: str, field_name: Optional[str] = None, sources: Optional[List[str]] = None):
        details: Dict[str, Any] = {}
        if field_name:
            details['field'] = field_name
        if sources:
            details['sources'] = sources
        super().__init__(message, details)
        self.field_name = field_name
        self.sources = sources or []


class SinkWriteError(LakeExportError):
    """Raised when the output sink rejects a write.

    No internal retry is attempted; retry policy belongs to the orchestrator.
    """

    error_code = "SINK001"

    def __init__(
        self,
        message: str,
        output_format: Optional[str] = None,
        rows_written: Optional[int] = None,
        original_error: Optional[Exception] = None,
    ):
        details: Dict[str, Any] = {}
        if output_format:
            details['output_format'] = output_format
        if rows_written is not None:
            details['rows_written'] = rows_written
        if original_error:
            details['original_error'] = str(original_error)
            details['error_type'] = type(original_error).__name__
        super().__init__(message, details)
        self.original_error = original_error


class BufferFlushError(LakeExportError):
    """Raised when the delivery action of a write buffer fails.

    The drained batch is not restored; delivery is at-most-once.
    """

    error_code = "BUF001"

    def __init__(
        self,
        message: str,
        buffer_name: Optional[str] = None,
        item_count: Optional[int] = None,
        original_error: Optional[Exception] = None,
    ):
        details: Dict[str, Any] = {}
        if buffer_name:
            details['buffer'] = buffer_name
        if item_count is not None:
            details['item_count'] = item_count
        if original_error:
            details['original_error'] = str(original_error)
            details['error_type'] = type(original_error).__name__
        super().__init__(message, details)
        self.original_error = original_error


class InvalidChangeTypeError(LakeExportError):
    """Raised when a change-type value is not a recognised mutation kind."""

    error_code = "CDC001"

    def __init__(self, message: str, value: Optional[Any] = None, field_name: Optional[str] = None):
        details: Dict[str, Any] = {}
        if value is not None:
            details['value'] = value
        if field_name:
            details['field'] = field_name
        super().__init__(message, details)


class ExportCancelledError(LakeExportError):
    """Raised when the row cursor is closed while an export is reading it."""

    error_code = "EXP001"


class CacheStoreError(LakeExportError):
    """Raised when the durable cache store cannot be reached, queried or given an item it cannot encode."""

    error_code = "CACHE001"

    def __init__(self, message: str, operation: Optional[str] = None, original_error: Optional[Exception] = None):
        details: Dict[str, Any] = {}
        if operation:
            details['operation'] = operation
        if original_error:
            details['original_error'] = str(original_error)
            details['error_type'] = type(original_error).__name__
        super().__init__(message, details)
        self.original_error = original_error
