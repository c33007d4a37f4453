"""Tests for semantic types, fields and schemas."""

import pytest

from lakeexport.exceptions import SchemaCollisionError
from lakeexport.schema.types import Field, Schema, SemanticType, integer_range


class TestSemanticTypeFromString:
    @pytest.mark.parametrize(
        "name,expected",
        [
            ("bigint", SemanticType.INT64),
            ("Integer", SemanticType.INT32),
            ("Number", SemanticType.FLOAT),
            ("Money", SemanticType.DECIMAL),
            ("Guid", SemanticType.UUID),
            ("uniqueidentifier", SemanticType.UUID),
            ("datetimeoffset", SemanticType.TIMESTAMP_OFFSET),
            ("Uri", SemanticType.STRING),
            ("Email", SemanticType.STRING),
            ("timespan", SemanticType.DURATION),
            ("decimal", SemanticType.DECIMAL),
            (" Big Integer ", SemanticType.BIG_INTEGER),
            ("big_integer", SemanticType.BIG_INTEGER),
        ],
    )
    def test_aliases(self, name, expected):
        assert SemanticType.from_string(name) == expected

    def test_unknown_falls_back_to_string(self, caplog):
        assert SemanticType.from_string("hologram") == SemanticType.STRING
        assert "Unknown data type 'hologram'" in caplog.text

    def test_is_integer(self):
        assert SemanticType.UINT16.is_integer
        assert not SemanticType.DECIMAL.is_integer
        assert not SemanticType.BIG_INTEGER.is_integer

    def test_integer_range(self):
        assert integer_range(SemanticType.UINT8) == (0, 255)
        assert integer_range(SemanticType.INT64) == (-(2 ** 63), 2 ** 63 - 1)


class TestField:
    def test_from_dict_round_trip(self):
        data = {"name": "amount", "type": "money", "precision": 10, "scale": 2}
        field = Field.from_dict(data)

        assert field.type == SemanticType.DECIMAL
        assert field.to_dict() == {
            "name": "amount",
            "type": "decimal",
            "nullable": True,
            "precision": 10,
            "scale": 2,
        }

    def test_from_dict_requires_name(self):
        with pytest.raises(ValueError, match="must have a 'name'"):
            Field.from_dict({"type": "string"})

    def test_renamed_keeps_source(self):
        field = Field(name="__ChangeType__").renamed("__rowMarker__")
        assert field.name == "__rowMarker__"
        assert field.source_name == "__ChangeType__"


class TestSchema:
    def test_names_and_lookup(self):
        schema = Schema([Field("id", SemanticType.INT64), Field("name")])

        assert schema.names == ["id", "name"]
        assert schema.get("id").type == SemanticType.INT64
        assert schema.get("missing") is None
        assert len(schema) == 2

    def test_duplicate_names_raise(self):
        with pytest.raises(SchemaCollisionError) as exc_info:
            Schema([Field("a_b"), Field("a_b", source="a-b")])

        assert exc_info.value.error_code == "SCHEMA001"
        assert exc_info.value.sources == ["a_b", "a-b"]
