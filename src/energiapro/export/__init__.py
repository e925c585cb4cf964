"""Record export encoders (JSON, JSON Lines, CSV, Parquet, text table)."""

from __future__ import annotations

from .encoders import (
    CsvEncoder,
    JsonEncoder,
    JsonLinesEncoder,
    OutputFormat,
    ParquetEncoder,
    RecordEncoder,
    TableEncoder,
    arrow_schema,
    create_encoder,
    pandas_dtypes,
    records_to_dataframe,
)

__all__ = [
    "OutputFormat",
    "RecordEncoder",
    "JsonEncoder",
    "JsonLinesEncoder",
    "CsvEncoder",
    "ParquetEncoder",
    "TableEncoder",
    "create_encoder",
    "arrow_schema",
    "pandas_dtypes",
    "records_to_dataframe",
]
