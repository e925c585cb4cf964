"""Tests for the export encoders.

Each format must keep installation ids and timestamps as text and every
consumption column as a float, including values that look like integers.
"""

from __future__ import annotations

import io
import json

import pandas as pd
import pyarrow as pa
import pyarrow.parquet as pq
import pytest

from energiapro.client.models import Installation, Measurement, RecordPolicy
from energiapro.client.parsers import normalize_measurements
from energiapro.export import (
    CsvEncoder,
    JsonEncoder,
    JsonLinesEncoder,
    OutputFormat,
    ParquetEncoder,
    TableEncoder,
    arrow_schema,
    create_encoder,
    pandas_dtypes,
)


def _measurement(hour: int = 0, installation_id: str = "5806.000") -> Measurement:
    return Measurement(
        installation_id=installation_id,
        timestamp=f"2024-01-01T{hour:02d}:00:00",
        index_m3=1000 + hour,
        consumption_m3=1,
        consumption_kwh=10.5,
    )


@pytest.fixture
def records():
    return [_measurement(hour) for hour in range(3)]


def _encode(encoder_cls, records, **kwargs) -> bytes:
    buffer = io.BytesIO()
    with encoder_cls(buffer, Measurement, **kwargs) as encoder:
        encoder.write_all(records)
    return buffer.getvalue()


class TestJsonEncoder:
    def test_single_array_document(self, records):
        payload = json.loads(_encode(JsonEncoder, records))
        assert isinstance(payload, list)
        assert [row["timestamp"] for row in payload] == [r.timestamp for r in records]

    def test_types(self, records):
        row = json.loads(_encode(JsonEncoder, records))[0]
        assert row["installation_id"] == "5806.000"
        assert isinstance(row["index_m3"], float)
        assert isinstance(row["consumption_m3"], float)
        assert isinstance(row["consumption_kwh"], float)

    def test_empty(self):
        assert json.loads(_encode(JsonEncoder, [])) == []

    def test_non_finite_values_never_reach_output(self):
        rows = [
            {"num_inst": "5806.000", "date": "2024-01-01T00:00:00", "index_m3": "NaN",
             "quantite_m3": "inf", "consommation_kw_h": 1},
            {"num_inst": "5806.000", "date": "2024-01-01T01:00:00", "index_m3": 1001,
             "quantite_m3": "1", "consommation_kw_h": 2},
        ]
        records = normalize_measurements(rows, "5806.000", policy=RecordPolicy.SKIP)
        payload = json.loads(_encode(JsonEncoder, records))
        assert len(payload) == 1
        for column in ("index_m3", "consumption_m3", "consumption_kwh"):
            assert isinstance(payload[0][column], float)


class TestJsonLinesEncoder:
    def test_one_object_per_line(self, records):
        lines = _encode(JsonLinesEncoder, records).decode("utf-8").splitlines()
        assert len(lines) == 3
        rows = [json.loads(line) for line in lines]
        assert list(rows[0]) == list(Measurement.model_fields)
        assert all(isinstance(row["consumption_m3"], float) for row in rows)

    def test_empty(self):
        assert _encode(JsonLinesEncoder, []) == b""

    def test_streams_before_close(self):
        buffer = io.BytesIO()
        encoder = JsonLinesEncoder(buffer, Measurement)
        encoder.write(_measurement())
        assert buffer.getvalue().endswith(b"\n")


class TestCsvEncoder:
    def test_round_trip_keeps_types(self, records):
        data = _encode(CsvEncoder, records)
        frame = pd.read_csv(io.BytesIO(data), dtype=pandas_dtypes(Measurement))

        assert list(frame.columns) == list(Measurement.model_fields)
        assert frame["installation_id"].tolist() == ["5806.000"] * 3
        assert frame["timestamp"].tolist() == [r.timestamp for r in records]
        for column in ("index_m3", "consumption_m3", "consumption_kwh"):
            assert frame[column].dtype == "float64"
        assert frame["consumption_kwh"].tolist() == [10.5] * 3

    def test_float_columns_written_as_floats(self, records):
        lines = _encode(CsvEncoder, records).decode("utf-8").splitlines()
        assert lines[0] == "installation_id,timestamp,index_m3,consumption_m3,consumption_kwh"
        assert lines[1] == "5806.000,2024-01-01T00:00:00,1000.0,1.0,10.5"

    def test_batches_share_one_header(self):
        records = [_measurement(hour) for hour in range(5)]
        lines = _encode(CsvEncoder, records, batch_size=2).decode("utf-8").splitlines()
        assert len(lines) == 6
        assert sum(line.startswith("installation_id") for line in lines) == 1

    def test_empty_writes_header(self):
        lines = _encode(CsvEncoder, []).decode("utf-8").splitlines()
        assert lines == ["installation_id,timestamp,index_m3,consumption_m3,consumption_kwh"]

    def test_installations(self):
        installation = Installation(
            id="5806.000",
            street_name="Rue du Lac",
            street_address="Rue du Lac 12",
            building_number=12,
            postal_code="1000",
            city="Lausanne",
        )
        buffer = io.BytesIO()
        with CsvEncoder(buffer, Installation) as encoder:
            encoder.write(installation)
        frame = pd.read_csv(io.BytesIO(buffer.getvalue()), dtype=pandas_dtypes(Installation))
        assert frame.loc[0, "id"] == "5806.000"
        assert frame.loc[0, "postal_code"] == "1000"
        assert frame["building_number"].dtype == "int64"


class TestParquetEncoder:
    def test_schema_and_values(self, records):
        table = pq.read_table(io.BytesIO(_encode(ParquetEncoder, records)))

        assert table.schema.field("installation_id").type == pa.string()
        assert table.schema.field("timestamp").type == pa.string()
        for column in ("index_m3", "consumption_m3", "consumption_kwh"):
            assert table.schema.field(column).type == pa.float64()
        assert table.column("installation_id").to_pylist() == ["5806.000"] * 3
        assert table.column("consumption_m3").to_pylist() == [1.0] * 3

    def test_batches_become_row_groups(self):
        records = [_measurement(hour) for hour in range(5)]
        data = _encode(ParquetEncoder, records, batch_size=2)
        parquet_file = pq.ParquetFile(io.BytesIO(data))
        assert parquet_file.metadata.num_row_groups == 3
        assert parquet_file.metadata.num_rows == 5

    def test_empty_keeps_schema(self):
        table = pq.read_table(io.BytesIO(_encode(ParquetEncoder, [])))
        assert table.num_rows == 0
        assert table.schema.equals(arrow_schema(Measurement))


class TestTableEncoder:
    def test_renders_columns(self, records):
        text = _encode(TableEncoder, records).decode("utf-8")
        header = text.splitlines()[0]
        for column in Measurement.model_fields:
            assert column in header
        assert "5806.000" in text
        assert len(text.splitlines()) == 4

    def test_empty_message(self):
        assert _encode(TableEncoder, []) == b"No results.\n"


class TestEncoderContract:
    def test_create_encoder(self):
        buffer = io.BytesIO()
        for fmt, expected in [
            ("json", JsonEncoder),
            ("jsonl", JsonLinesEncoder),
            ("csv", CsvEncoder),
            (OutputFormat.PARQUET, ParquetEncoder),
            ("table", TableEncoder),
        ]:
            assert isinstance(create_encoder(fmt, buffer), expected)

    def test_unknown_format(self):
        with pytest.raises(ValueError, match="Unsupported output format 'xml'"):
            create_encoder("xml", io.BytesIO())

    def test_write_after_close_rejected(self):
        encoder = JsonLinesEncoder(io.BytesIO(), Measurement)
        encoder.close()
        with pytest.raises(ValueError, match="closed"):
            encoder.write(_measurement())

    def test_wrong_record_type_rejected(self):
        encoder = JsonLinesEncoder(io.BytesIO(), Installation)
        with pytest.raises(TypeError, match="expected Installation"):
            encoder.write(_measurement())

    def test_count_and_idempotent_close(self, records):
        buffer = io.BytesIO()
        encoder = JsonEncoder(buffer, Measurement)
        assert encoder.write_all(records) == 3
        encoder.close()
        encoder.close()
        assert encoder.count == 3
        assert buffer.getvalue().count(b"]") == 1
