"""Tests for the error taxonomy and error codes."""

import pytest

from lakeexport.exceptions import (
    BufferFlushError,
    CacheStoreError,
    ConfigValidationError,
    ExportCancelledError,
    InvalidChangeTypeError,
    LakeExportError,
    SchemaCollisionError,
    SinkWriteError,
    UnsupportedTypeError,
)


def test_base_error_code():
    """Test that base exception has error code."""
    err = LakeExportError("Test error")
    assert err.error_code == "ERR000"
    assert str(err) == "[ERR000] Test error"


def test_error_code_override():
    err = LakeExportError("Custom", error_code="X999")
    assert err.error_code == "X999"


def test_config_validation_error_code():
    """Test ConfigValidationError carries path and key."""
    err = ConfigValidationError("Invalid config", config_path="/path/to/export.yaml", key="row_group_size")
    assert err.error_code == "CFG001"
    assert str(err) == "[CFG001] Invalid config (config_path=/path/to/export.yaml, config_key=row_group_size)"


def test_unsupported_type_error():
    err = UnsupportedTypeError("No output type for dict", type_name="dict", field_name="payload")
    assert err.error_code == "TYPE001"
    assert err.field_name == "payload"
    assert err.details == {"type": "dict", "field": "payload"}


def test_schema_collision_error():
    err = SchemaCollisionError("Duplicate", field_name="a_b", sources=["a.b", "a_b"])
    assert err.error_code == "SCHEMA001"
    assert err.sources == ["a.b", "a_b"]
    assert "sources=['a.b', 'a_b']" in str(err)


def test_sink_write_error_wraps_original():
    original = OSError("disk full")
    err = SinkWriteError("Write failed", output_format="csv", rows_written=0, original_error=original)

    assert err.error_code == "SINK001"
    assert err.original_error is original
    assert err.details == {
        "output_format": "csv",
        "rows_written": 0,
        "original_error": "disk full",
        "error_type": "OSError",
    }


@pytest.mark.parametrize(
    "err,code",
    [
        (BufferFlushError("x", buffer_name="b", item_count=3), "BUF001"),
        (InvalidChangeTypeError("x", value="Upserted", field_name="__ChangeType__"), "CDC001"),
        (ExportCancelledError("x"), "EXP001"),
        (CacheStoreError("x", operation="add"), "CACHE001"),
    ],
)
def test_error_codes(err, code):
    assert err.error_code == code
    assert isinstance(err, LakeExportError)
    assert str(err).startswith(f"[{code}] x")
