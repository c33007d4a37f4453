"""Tests for run_export and the lake-export CLI."""

import io
import json
import logging

import pandas as pd
import pytest
from sqlalchemy import Column, Integer, MetaData, String, Table, create_engine, insert, text

import lake_export
from lakeexport.config import DestinationConfig, OutputFormat
from lakeexport.cursor import RecordCursor
from lakeexport.exceptions import ConfigValidationError, SinkWriteError
from lakeexport.export import ExportResult, run_export
from lakeexport.transform import MarkerDialect


@pytest.fixture
def source_url(tmp_path):
    url = f"sqlite:///{tmp_path / 'source.db'}"
    engine = create_engine(url)
    metadata = MetaData()
    orders = Table(
        "orders",
        metadata,
        Column("id", Integer, primary_key=True),
        Column("customer", String(50)),
        Column("change_type", String(10)),
    )
    metadata.create_all(engine)
    with engine.begin() as conn:
        conn.execute(
            insert(orders),
            [
                {"id": 1, "customer": "acme", "change_type": "Added"},
                {"id": 2, "customer": "initech", "change_type": "Removed"},
                {"id": 3, "customer": "globex", "change_type": "Changed"},
            ],
        )
    engine.dispose()
    return url


@pytest.fixture
def amounts_url(tmp_path):
    url = f"sqlite:///{tmp_path / 'amounts.db'}"
    engine = create_engine(url)
    with engine.begin() as conn:
        conn.execute(text("CREATE TABLE amounts (id INTEGER PRIMARY KEY, amount NUMERIC)"))
        conn.execute(text("INSERT INTO amounts (id, amount) VALUES (1, 1), (2, 2.5), (3, NULL)"))
    engine.dispose()
    return url


class TestRunExport:
    def test_returns_result(self, sink, people_cursor, caplog):
        config = DestinationConfig(output_format=OutputFormat.JSON)
        with caplog.at_level(logging.INFO):
            result = run_export(people_cursor, ["id", "name"], config, sink)

        assert isinstance(result, ExportResult)
        assert result.rows == 3
        assert result.output_format is OutputFormat.JSON
        assert result.duration_seconds >= 0
        assert result.to_dict()["rows"] == 3
        assert "Performance: json_export completed" in caplog.text
        assert len(json.loads(sink.getvalue())) == 3

    def test_rows_per_second_with_zero_duration(self):
        assert ExportResult(rows=5, output_format=OutputFormat.CSV, duration_seconds=0).rows_per_second == 0.0

    def test_progress_callback_passed_through(self, sink):
        seen = []
        config = DestinationConfig(progress_interval=2)
        cursor = RecordCursor([{"id": i} for i in range(4)])

        run_export(cursor, ["id"], config, sink, progress_callback=seen.append)
        assert seen == [2, 4]

    def test_errors_propagate(self, people_cursor, failing_sink):
        with pytest.raises(SinkWriteError):
            run_export(people_cursor, ["id"], DestinationConfig(), failing_sink())

    def test_cdc_initial_export_in_delta_mode(self, sink):
        config = DestinationConfig(
            output_format=OutputFormat.CSV,
            marker_dialect=MarkerDialect.OPEN_MIRRORING,
            is_delta_mode=True,
        )
        rows = [
            {"__ChangeType__": "Added", "id": 1},
            {"__ChangeType__": "Removed", "id": 2},
        ]

        result = run_export(RecordCursor(rows), None, config, sink, is_initial_export=True)

        assert result.rows == 1
        assert sink.getvalue() == b"__rowMarker__,id\r\n3,1\r\n"


class TestCli:
    @pytest.fixture(autouse=True)
    def restore_logging(self):
        root = logging.getLogger()
        handlers, level = list(root.handlers), root.level
        yield
        root.handlers[:] = handlers
        root.setLevel(level)

    def test_csv_export_inferred_from_extension(self, source_url, tmp_path):
        out = tmp_path / "out" / "orders.csv"
        rc = lake_export.main(
            ["--url", source_url, "--query", "SELECT id, customer FROM orders ORDER BY id", "-o", str(out), "-q"]
        )

        assert rc == 0
        assert out.read_bytes() == b"id,customer\r\n1,acme\r\n2,initech\r\n3,globex\r\n"

    def test_parquet_format_flag(self, source_url, tmp_path):
        out = tmp_path / "orders.dat"
        rc = lake_export.main(
            [
                "--url", source_url,
                "--query", "SELECT id, customer FROM orders ORDER BY id",
                "--output", str(out),
                "--format", "parquet",
                "--quiet",
            ]
        )

        assert rc == 0
        df = pd.read_parquet(out)
        assert df["id"].dtype.kind == "i"
        assert df["id"].tolist() == [1, 2, 3]
        assert df["customer"].tolist() == ["acme", "initech", "globex"]

    def test_mixed_numeric_column_to_csv(self, amounts_url, tmp_path):
        out = tmp_path / "amounts.csv"
        rc = lake_export.main(
            ["--url", amounts_url, "--query", "SELECT id, amount FROM amounts ORDER BY id", "-o", str(out), "-q"]
        )

        assert rc == 0
        assert out.read_bytes() == b"id,amount\r\n1,1\r\n2,2.5\r\n3,\r\n"

    def test_mixed_numeric_column_to_json(self, amounts_url, tmp_path):
        out = tmp_path / "amounts.json"
        rc = lake_export.main(
            ["--url", amounts_url, "--query", "SELECT amount FROM amounts ORDER BY id", "-o", str(out), "-q"]
        )

        assert rc == 0
        assert json.loads(out.read_text(encoding="utf-8")) == [{"amount": 1}, {"amount": 2.5}, {"amount": None}]

    def test_mixed_numeric_column_to_parquet(self, amounts_url, tmp_path):
        out = tmp_path / "amounts.parquet"
        rc = lake_export.main(
            ["--url", amounts_url, "--query", "SELECT id, amount FROM amounts ORDER BY id", "-o", str(out), "-q"]
        )

        assert rc == 0
        df = pd.read_parquet(out)
        assert df["id"].dtype.kind == "i"
        assert df["amount"].dtype.kind == "f"
        assert df["amount"].tolist()[:2] == [1.0, 2.5]
        assert df["amount"].isna().tolist() == [False, False, True]

    def test_config_file_with_env_url(self, source_url, tmp_path, monkeypatch):
        cfg = tmp_path / "export.yaml"
        cfg.write_text(
            "destination:\n"
            "  output_format: json\n"
            "  marker_dialect: open_mirroring\n"
            "  change_type_field: change_type\n",
            encoding="utf-8",
        )
        out = tmp_path / "orders.out"
        monkeypatch.setenv(lake_export.DATABASE_URL_ENV, source_url)

        rc = lake_export.main(
            ["--config", str(cfg), "--query", "SELECT change_type, id FROM orders ORDER BY id", "-o", str(out), "-q"]
        )

        assert rc == 0
        assert json.loads(out.read_text(encoding="utf-8")) == [
            {"__rowMarker__": "3", "id": 1},
            {"__rowMarker__": "2", "id": 2},
            {"__rowMarker__": "3", "id": 3},
        ]

    def test_missing_url_is_usage_error(self, tmp_path, monkeypatch):
        monkeypatch.delenv(lake_export.DATABASE_URL_ENV, raising=False)
        with pytest.raises(SystemExit) as exc_info:
            lake_export.main(["--query", "SELECT 1", "-o", str(tmp_path / "x.csv"), "-q"])
        assert exc_info.value.code == 2

    def test_bad_query_returns_one(self, source_url, tmp_path):
        rc = lake_export.main(
            ["--url", source_url, "--query", "SELECT * FROM missing", "-o", str(tmp_path / "x.csv"), "-q"]
        )
        assert rc == 1

    def test_unknown_extension_returns_one(self, source_url, tmp_path):
        rc = lake_export.main(["--url", source_url, "--query", "SELECT 1", "-o", str(tmp_path / "x.xml"), "-q"])
        assert rc == 1

    def test_resolve_config_prefers_format_flag(self, tmp_path):
        args = lake_export.build_parser().parse_args(
            ["--query", "SELECT 1", "-o", str(tmp_path / "x.csv"), "--format", "json"]
        )
        assert lake_export.resolve_config(args).output_format is OutputFormat.JSON

    def test_version_flag(self, capsys):
        with pytest.raises(SystemExit):
            lake_export.main(["--version"])
        assert "lake-export-foundry" in capsys.readouterr().out


def test_output_format_from_string_rejects_unknown():
    with pytest.raises(ConfigValidationError):
        OutputFormat.from_string("xml")


def test_in_memory_sink_is_left_open(people_cursor):
    sink = io.BytesIO()
    run_export(people_cursor, ["id"], DestinationConfig(), sink)
    assert not sink.closed
