"""Output encoders for installations and measurements.

Every encoder is a sink: records are written one at a time and the encoder
emits bytes to a binary stream as soon as its format allows. Column order and
types come from the record model, so an empty export still carries the full
schema (CSV header, Parquet schema).

Type rules: text fields stay text in every format (an installation id such as
``5806.000`` must never turn into a number), decimal fields are float64 and
integer fields int64.
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import Any, BinaryIO, Dict, Iterable, List, Optional, Type

import pandas as pd
import pyarrow as pa
import pyarrow.parquet as pq
from pydantic import BaseModel

from energiapro.client.models import Measurement

LOGGER = logging.getLogger(__name__)

DEFAULT_BATCH_SIZE = 1000
EMPTY_TABLE_MESSAGE = "No results."

_ARROW_TYPES = {
    str: pa.string(),
    float: pa.float64(),
    int: pa.int64(),
}
_PANDAS_DTYPES = {
    str: "object",
    float: "float64",
    int: "int64",
}


class OutputFormat(str, Enum):
    JSON = "json"
    JSONL = "jsonl"
    CSV = "csv"
    PARQUET = "parquet"
    TABLE = "table"


# ─────────────────────────────────────────────────────────────────────────────
# Schema Helpers
# ─────────────────────────────────────────────────────────────────────────────

def column_names(model: Type[BaseModel]) -> List[str]:
    return list(model.model_fields)


def arrow_schema(model: Type[BaseModel]) -> pa.Schema:
    """Arrow schema matching the model's field order and types."""
    return pa.schema(
        [(name, _ARROW_TYPES[field.annotation]) for name, field in model.model_fields.items()]
    )


def pandas_dtypes(model: Type[BaseModel]) -> Dict[str, str]:
    """Column dtypes for building (or reading back) a DataFrame of ``model`` records."""
    return {name: _PANDAS_DTYPES[field.annotation] for name, field in model.model_fields.items()}


def records_to_dataframe(records: Iterable[BaseModel], model: Type[BaseModel]) -> pd.DataFrame:
    rows = [record.model_dump() for record in records]
    return pd.DataFrame(rows, columns=column_names(model)).astype(pandas_dtypes(model))


# ─────────────────────────────────────────────────────────────────────────────
# Encoders
# ─────────────────────────────────────────────────────────────────────────────

class RecordEncoder:
    """Base sink writing records of ``model`` to a binary stream."""

    format: OutputFormat

    def __init__(self, stream: BinaryIO, model: Type[BaseModel] = Measurement) -> None:
        self._stream = stream
        self._model = model
        self._count = 0
        self._closed = False

    @property
    def count(self) -> int:
        """Number of records written so far."""
        return self._count

    def write(self, record: BaseModel) -> None:
        if self._closed:
            raise ValueError("encoder is closed")
        if not isinstance(record, self._model):
            raise TypeError(
                f"expected {self._model.__name__}, got {type(record).__name__}"
            )
        self._write(record)
        self._count += 1

    def write_all(self, records: Iterable[BaseModel]) -> int:
        """Write every record and return how many were written."""
        written = 0
        for record in records:
            self.write(record)
            written += 1
        return written

    def close(self) -> None:
        """Finish the document. Does not close the underlying stream."""
        if self._closed:
            return
        self._closed = True
        self._finish()
        self._stream.flush()
        LOGGER.debug("Wrote %d %s record(s) as %s", self._count, self._model.__name__, self.format.value)

    def __enter__(self) -> "RecordEncoder":
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self.close()

    def _write(self, record: BaseModel) -> None:
        raise NotImplementedError

    def _finish(self) -> None:
        pass


class JsonEncoder(RecordEncoder):
    """A single JSON array, streamed element by element."""

    format = OutputFormat.JSON

    def _write(self, record: BaseModel) -> None:
        prefix = b"[" if self._count == 0 else b",\n"
        self._stream.write(prefix + record.model_dump_json().encode("utf-8"))

    def _finish(self) -> None:
        self._stream.write(b"[]\n" if self._count == 0 else b"]\n")


class JsonLinesEncoder(RecordEncoder):
    format = OutputFormat.JSONL

    def _write(self, record: BaseModel) -> None:
        self._stream.write(record.model_dump_json().encode("utf-8") + b"\n")


class _BatchingEncoder(RecordEncoder):
    """Buffers up to ``batch_size`` records and flushes them as one chunk."""

    def __init__(
        self,
        stream: BinaryIO,
        model: Type[BaseModel] = Measurement,
        batch_size: int = DEFAULT_BATCH_SIZE,
    ) -> None:
        super().__init__(stream, model)
        if batch_size < 1:
            raise ValueError("batch_size must be at least 1")
        self._batch_size = batch_size
        self._batch: List[BaseModel] = []

    def _write(self, record: BaseModel) -> None:
        self._batch.append(record)
        if len(self._batch) >= self._batch_size:
            self._flush_batch()

    def _flush_batch(self) -> None:
        batch, self._batch = self._batch, []
        self._write_batch(batch)

    def _write_batch(self, batch: List[BaseModel]) -> None:
        raise NotImplementedError


class CsvEncoder(_BatchingEncoder):
    """Header plus rows, written in batches through pandas."""

    format = OutputFormat.CSV

    def __init__(self, *args: Any, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self._header_written = False

    def _write_batch(self, batch: List[BaseModel]) -> None:
        frame = records_to_dataframe(batch, self._model)
        text = frame.to_csv(index=False, header=not self._header_written, lineterminator="\n")
        self._stream.write(text.encode("utf-8"))
        self._header_written = True

    def _finish(self) -> None:
        if self._batch or not self._header_written:
            self._flush_batch()


class ParquetEncoder(_BatchingEncoder):
    """Typed Parquet file; each batch becomes one row group."""

    format = OutputFormat.PARQUET

    def __init__(self, *args: Any, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self._schema = arrow_schema(self._model)
        self._writer: Optional[pq.ParquetWriter] = None

    def _get_writer(self) -> pq.ParquetWriter:
        if self._writer is None:
            self._writer = pq.ParquetWriter(self._stream, self._schema)
        return self._writer

    def _write_batch(self, batch: List[BaseModel]) -> None:
        table = pa.Table.from_pylist([record.model_dump() for record in batch], schema=self._schema)
        self._get_writer().write_table(table)

    def _finish(self) -> None:
        if self._batch:
            self._flush_batch()
        # Schema-only file when nothing was written
        self._get_writer().close()


class TableEncoder(RecordEncoder):
    """Aligned plain-text table. Buffers everything to size the columns."""

    format = OutputFormat.TABLE

    def __init__(self, stream: BinaryIO, model: Type[BaseModel] = Measurement) -> None:
        super().__init__(stream, model)
        self._records: List[BaseModel] = []

    def _write(self, record: BaseModel) -> None:
        self._records.append(record)

    def _finish(self) -> None:
        if not self._records:
            self._stream.write(f"{EMPTY_TABLE_MESSAGE}\n".encode("utf-8"))
            return
        frame = records_to_dataframe(self._records, self._model)
        self._stream.write((frame.to_string(index=False) + "\n").encode("utf-8"))


ENCODERS: Dict[OutputFormat, Type[RecordEncoder]] = {
    OutputFormat.JSON: JsonEncoder,
    OutputFormat.JSONL: JsonLinesEncoder,
    OutputFormat.CSV: CsvEncoder,
    OutputFormat.PARQUET: ParquetEncoder,
    OutputFormat.TABLE: TableEncoder,
}


def create_encoder(
    output_format: "OutputFormat | str",
    stream: BinaryIO,
    model: Type[BaseModel] = Measurement,
    **kwargs: Any,
) -> RecordEncoder:
    """Instantiate the encoder registered for ``output_format``.

    Example:
        >>> with create_encoder("jsonl", sys.stdout.buffer) as encoder:
        ...     encoder.write_all(records)
    """
    try:
        encoder_cls = ENCODERS[OutputFormat(output_format)]
    except ValueError as exc:
        supported = ", ".join(fmt.value for fmt in OutputFormat)
        raise ValueError(f"Unsupported output format '{output_format}' (expected {supported})") from exc
    return encoder_cls(stream, model, **kwargs)


__all__ = [
    "OutputFormat",
    "DEFAULT_BATCH_SIZE",
    "EMPTY_TABLE_MESSAGE",
    "column_names",
    "arrow_schema",
    "pandas_dtypes",
    "records_to_dataframe",
    "RecordEncoder",
    "JsonEncoder",
    "JsonLinesEncoder",
    "CsvEncoder",
    "ParquetEncoder",
    "TableEncoder",
    "ENCODERS",
    "create_encoder",
]
