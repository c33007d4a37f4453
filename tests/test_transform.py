"""Tests for change-type parsing and field transformers."""

import json
from enum import Enum

import pytest

from lakeexport.exceptions import ConfigValidationError, InvalidChangeTypeError
from lakeexport.schema.types import Field, SemanticType
from lakeexport.transform import (
    ChangeMarkerTransformer,
    ChangeType,
    DefaultFieldTransformer,
    FieldTransformer,
    MarkerDialect,
)


class LegacyKind(Enum):
    Added = 1
    Removed = 2


class TestChangeType:
    @pytest.mark.parametrize(
        "value,expected",
        [
            ("Added", ChangeType.INSERT),
            ("insert", ChangeType.INSERT),
            ("Changed", ChangeType.UPDATE),
            ("UPDATE", ChangeType.UPDATE),
            ("Removed", ChangeType.DELETE),
            ("delete", ChangeType.DELETE),
            ("Upsert", ChangeType.UPSERT),
            ('"Removed"', ChangeType.DELETE),
            (" added ", ChangeType.INSERT),
            (ChangeType.UPSERT, ChangeType.UPSERT),
            (LegacyKind.Removed, ChangeType.DELETE),
        ],
    )
    def test_from_value(self, value, expected):
        assert ChangeType.from_value(value) is expected

    @pytest.mark.parametrize("value", ["Renamed", "", 3, None])
    def test_unknown_values_raise(self, value):
        with pytest.raises(InvalidChangeTypeError) as exc_info:
            ChangeType.from_value(value)
        assert exc_info.value.error_code == "CDC001"


class TestMarkerDialect:
    def test_codes(self):
        assert MarkerDialect.OPEN_MIRRORING.codes[ChangeType.DELETE] == "2"
        assert MarkerDialect.OPEN_MIRRORING.codes[ChangeType.UPDATE] == "3"
        assert MarkerDialect.OPEN_MIRRORING_LEGACY.codes[ChangeType.DELETE] == "2"
        assert MarkerDialect.OPEN_MIRRORING_LEGACY.codes[ChangeType.INSERT] == "4"

    @pytest.mark.parametrize(
        "text,expected",
        [
            ("a", MarkerDialect.OPEN_MIRRORING),
            ("B", MarkerDialect.OPEN_MIRRORING_LEGACY),
            ("open-mirroring", MarkerDialect.OPEN_MIRRORING),
            ("open_mirroring_legacy", MarkerDialect.OPEN_MIRRORING_LEGACY),
        ],
    )
    def test_from_string(self, text, expected):
        assert MarkerDialect.from_string(text) is expected

    def test_unknown_dialect(self):
        with pytest.raises(ConfigValidationError, match="Unknown marker dialect"):
            MarkerDialect.from_string("delta")


class TestChangeMarkerTransformer:
    @pytest.mark.parametrize("dialect", list(MarkerDialect))
    def test_removed_maps_to_two_in_both_dialects(self, dialect):
        transformer = ChangeMarkerTransformer(dialect)
        assert transformer.transform_row({"__ChangeType__": "Removed"}) == {"__rowMarker__": "2"}

    @pytest.mark.parametrize(
        "dialect,code",
        [(MarkerDialect.OPEN_MIRRORING, "3"), (MarkerDialect.OPEN_MIRRORING_LEGACY, "4")],
    )
    @pytest.mark.parametrize("kind", ["Added", "Changed", "Upsert"])
    def test_non_delete_codes(self, dialect, code, kind):
        transformer = ChangeMarkerTransformer(dialect)
        assert transformer.transform_row({"__ChangeType__": kind}) == {"__rowMarker__": code}

    def test_marker_name_follows_configuration(self):
        transformer = ChangeMarkerTransformer(
            MarkerDialect.OPEN_MIRRORING, marker_name="row_marker", change_type_field="op"
        )
        row = {"id": 1, "op": "Changed"}
        assert transformer.transform_row(row) == {"id": 1, "row_marker": "3"}

    def test_transform_field_renames_marker(self):
        transformer = ChangeMarkerTransformer("a")
        [field] = transformer.transform_field(Field("__ChangeType__", SemanticType.JSON))

        assert field.name == "__rowMarker__"
        assert field.type == SemanticType.STRING
        assert field.source_name == "__ChangeType__"

    def test_transform_value_for_marker(self):
        transformer = ChangeMarkerTransformer("b")
        field = Field("__ChangeType__")
        assert transformer.transform_value(field, '"Added"') == ["4"]
        assert transformer.transform_value(field, None) == [None]

    def test_text_arrays_serialized_without_native_support(self):
        transformer = ChangeMarkerTransformer(array_native_support=False)
        tags = Field("tags", SemanticType.STRING, is_array=True)

        [out] = transformer.transform_field(tags)
        assert out.type == SemanticType.JSON
        assert not out.is_array
        assert transformer.transform_value(tags, ["a", "b"]) == ['["a", "b"]']
        assert transformer.transform_row({"tags": ["x"]}) == {"tags": '["x"]'}

    def test_text_arrays_kept_with_native_support(self):
        transformer = ChangeMarkerTransformer(array_native_support=True)
        tags = Field("tags", SemanticType.STRING, is_array=True)

        assert transformer.transform_field(tags) == [tags]
        assert transformer.transform_value(tags, ["a"]) == [["a"]]

    def test_invalid_change_type_raises(self):
        transformer = ChangeMarkerTransformer()
        with pytest.raises(InvalidChangeTypeError):
            transformer.transform_row({"__ChangeType__": "Archived"})


class TestDefaultFieldTransformer:
    def test_passthrough(self):
        field = Field("tags", SemanticType.STRING, is_array=True)
        transformer = DefaultFieldTransformer()

        assert transformer.transform_field(field) == [field]
        assert transformer.transform_value(field, ["a"]) == [["a"]]
        assert transformer.marker_name() is None

    def test_serialized_array_companion(self):
        field = Field("tags", SemanticType.STRING, is_array=True)
        transformer = DefaultFieldTransformer(serialize_array_columns=True)

        fields = transformer.transform_field(field)
        assert [f.name for f in fields] == ["tags", "tags_String"]
        assert fields[1].type == SemanticType.JSON

        values = transformer.transform_value(field, ["a", "b"])
        assert values[0] == ["a", "b"]
        assert json.loads(values[1]) == ["a", "b"]
        assert transformer.transform_value(field, None) == [None, None]

    def test_non_array_fields_have_no_companion(self):
        transformer = DefaultFieldTransformer(serialize_array_columns=True)
        field = Field("id", SemanticType.INT64)
        assert transformer.transform_field(field) == [field]

    def test_base_transformer_is_identity(self):
        transformer = FieldTransformer()
        field = Field("x")
        assert transformer.transform_value(field, 1) == [1]
