"""Row cursors feeding the format writers.

A cursor exposes its column names and declared types up front and yields
rows as dicts. A type the cursor only guessed from values is reported by
``is_type_inferred``; writers that accept any value per row ignore it.
Closing a cursor while a writer is reading it makes the next step raise
``ExportCancelledError``.
"""

import itertools
import logging
import math
from abc import ABC, abstractmethod
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, Iterable, Iterator, List, Mapping, Optional, Sequence, Set, Tuple, Union

import pandas as pd
from sqlalchemy import create_engine, text
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import OperationalError
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from lakeexport.exceptions import ExportCancelledError
from lakeexport.schema.types import SemanticType, integer_range

logger = logging.getLogger(__name__)

DEFAULT_FETCH_SIZE = 10000


class RowCursor(ABC):
    """Forward-only source of rows."""

    def __init__(self) -> None:
        self._closed = False

    @property
    @abstractmethod
    def field_names(self) -> List[str]:
        ...

    def field_type(self, name: str) -> Any:
        """Declared type of a column, or ``None`` when unknown."""
        return None

    def is_type_inferred(self, name: str) -> bool:
        """True when ``field_type`` was derived from sampled values."""
        return False

    def is_nullable(self, name: str) -> bool:
        return True

    @abstractmethod
    def _rows(self) -> Iterator[Dict[str, Any]]:
        ...

    def __iter__(self) -> Iterator[Dict[str, Any]]:
        if self._closed:
            raise ExportCancelledError("Cursor is closed")
        for row in self._rows():
            if self._closed:
                raise ExportCancelledError("Cursor was closed during iteration")
            yield row

    @property
    def closed(self) -> bool:
        return self._closed

    def close(self) -> None:
        self._closed = True

    def __enter__(self) -> "RowCursor":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()


def declared_type_of(value: Any) -> Any:
    """Best declared type for a concrete value."""
    if isinstance(value, datetime) and value.utcoffset() is not None:
        return SemanticType.TIMESTAMP_OFFSET
    if isinstance(value, int) and not isinstance(value, bool):
        low, high = integer_range(SemanticType.INT64)
        if not low <= value <= high:
            return SemanticType.BIG_INTEGER
    if isinstance(value, list):
        for element in value:
            if element is not None:
                return List[type(element)]
        return list
    return type(value)


# Wider numeric types absorb narrower ones when sampled values disagree
_NUMERIC_RANK: Dict[Any, int] = {int: 0, SemanticType.BIG_INTEGER: 1, float: 2, Decimal: 3}


def infer_field_types(records: Iterable[Mapping[str, Any]], names: Sequence[str]) -> Dict[str, Any]:
    """Declared types covering the non-null values of ``records``.

    The first non-null value of a column decides its type, except that
    integers, floats and decimals widen to the widest numeric type seen.
    Columns without a value are left out.
    """
    inferred: Dict[str, Any] = {}
    for record in records:
        for name in names:
            value = record.get(name)
            if value is None:
                continue
            declared = declared_type_of(value)
            current = inferred.get(name)
            if current is None:
                inferred[name] = declared
            elif current in _NUMERIC_RANK and _NUMERIC_RANK.get(declared, -1) > _NUMERIC_RANK[current]:
                inferred[name] = declared
    return inferred


class RecordCursor(RowCursor):
    """Cursor over in-memory mappings.

    Declared types are taken from ``field_types``; other columns are typed
    from their values (see ``infer_field_types``) and reported as inferred.
    Iterators are peeked once; lists are scanned in full.
    """

    def __init__(
        self,
        records: Iterable[Mapping[str, Any]],
        field_types: Optional[Mapping[str, Any]] = None,
        field_names: Optional[Sequence[str]] = None,
    ):
        super().__init__()
        if isinstance(records, (list, tuple)):
            self._records: Iterable[Mapping[str, Any]] = records
            sample: Sequence[Mapping[str, Any]] = records
        else:
            iterator = iter(records)
            first = next(iterator, None)
            sample = [first] if first is not None else []
            self._records = itertools.chain(sample, iterator)

        if field_names is None:
            field_names = list(sample[0].keys()) if sample else []
        self._field_names = list(field_names)

        explicit = dict(field_types or {})
        self._field_types = infer_field_types(sample, [n for n in self._field_names if n not in explicit])
        self._inferred: Set[str] = set(self._field_types)
        self._field_types.update(explicit)

    @property
    def field_names(self) -> List[str]:
        return list(self._field_names)

    def field_type(self, name: str) -> Any:
        return self._field_types.get(name)

    def is_type_inferred(self, name: str) -> bool:
        return name in self._inferred

    def _rows(self) -> Iterator[Dict[str, Any]]:
        for record in self._records:
            yield dict(record)


def _dtype_to_type(dtype: Any) -> Any:
    if isinstance(dtype, pd.DatetimeTZDtype):
        return SemanticType.TIMESTAMP_OFFSET
    if pd.api.types.is_bool_dtype(dtype):
        return bool
    if pd.api.types.is_integer_dtype(dtype):
        return int
    if pd.api.types.is_float_dtype(dtype):
        return float
    if pd.api.types.is_datetime64_any_dtype(dtype):
        return datetime
    if pd.api.types.is_timedelta64_dtype(dtype):
        return SemanticType.DURATION
    if isinstance(dtype, pd.StringDtype):
        return str
    return None


def _native(value: Any) -> Any:
    if value is None or value is pd.NaT or value is pd.NA:
        return None
    if isinstance(value, float) and math.isnan(value):
        return None
    if isinstance(value, pd.Timestamp):
        return value.to_pydatetime()
    if isinstance(value, pd.Timedelta):
        return value.to_pytimedelta()
    return value


class DataFrameCursor(RowCursor):
    """Cursor over a pandas DataFrame, materialized one chunk at a time."""

    def __init__(self, df: pd.DataFrame, chunk_size: int = DEFAULT_FETCH_SIZE):
        super().__init__()
        self.df = df
        self.chunk_size = chunk_size

    @property
    def field_names(self) -> List[str]:
        return [str(c) for c in self.df.columns]

    def field_type(self, name: str) -> Any:
        return _dtype_to_type(self.df[name].dtype)

    def is_nullable(self, name: str) -> bool:
        return bool(self.df[name].isna().any()) or not pd.api.types.is_integer_dtype(self.df[name].dtype)

    def _rows(self) -> Iterator[Dict[str, Any]]:
        names = self.field_names
        for start in range(0, len(self.df), self.chunk_size):
            chunk = self.df.iloc[start : start + self.chunk_size]
            for values in chunk.itertuples(index=False, name=None):
                yield {name: _native(value) for name, value in zip(names, values)}


class SqlCursor(RowCursor):
    """Cursor over a SQLAlchemy result, fetched in batches of ``fetch_size``.

    Declared types come from the statement's selected columns when the
    statement is a typed construct (``select()`` or ``text().columns()``),
    then from the driver's result description where it reports Python
    types. Columns still untyped are inferred from the first fetched batch,
    which is held back and yielded first.
    """

    def __init__(
        self,
        bind: Union[Connection, Engine],
        statement: Any,
        params: Optional[Mapping[str, Any]] = None,
        field_types: Optional[Mapping[str, Any]] = None,
        fetch_size: int = DEFAULT_FETCH_SIZE,
    ):
        super().__init__()
        if isinstance(statement, str):
            statement = text(statement)
        self.statement = statement
        self.fetch_size = fetch_size

        self._owns_connection = isinstance(bind, Engine)
        self._connection: Connection = bind.connect() if isinstance(bind, Engine) else bind

        logger.debug(f"Executing query with fetch_size={fetch_size}")
        self._result = self._connection.execute(statement, dict(params or {}))
        self._field_names = [str(k) for k in self._result.keys()]

        self._field_types: Dict[str, Any] = {}
        self._nullable: Dict[str, bool] = {}
        for column in getattr(statement, "selected_columns", []):
            name = getattr(column, "name", None) or getattr(column, "key", None)
            if name is None:
                continue
            try:
                self._field_types[name] = column.type.python_type
            except NotImplementedError:
                self._field_types[name] = None
            self._nullable[name] = getattr(column, "nullable", True)
        for name, type_code in self._description_types():
            if self._field_types.get(name) is None:
                self._field_types[name] = type_code
        self._field_types.update(field_types or {})

        self._pending: List[Any] = []
        self._inferred: Set[str] = set()
        untyped = [name for name in self._field_names if self._field_types.get(name) is None]
        if untyped:
            self._pending = list(self._result.fetchmany(fetch_size))
            guessed = infer_field_types((row._mapping for row in self._pending), untyped)
            self._field_types.update(guessed)
            self._inferred = set(guessed)
            logger.debug(f"Inferred types of {sorted(guessed)} from {len(self._pending)} rows")

    def _description_types(self) -> List[Tuple[str, type]]:
        dbapi_cursor = getattr(self._result, "cursor", None)
        description = getattr(dbapi_cursor, "description", None) or ()
        return [(str(entry[0]), entry[1]) for entry in description if isinstance(entry[1], type)]

    @property
    def field_names(self) -> List[str]:
        return list(self._field_names)

    def field_type(self, name: str) -> Any:
        return self._field_types.get(name)

    def is_type_inferred(self, name: str) -> bool:
        return name in self._inferred

    def is_nullable(self, name: str) -> bool:
        return self._nullable.get(name, True)

    def _rows(self) -> Iterator[Dict[str, Any]]:
        total_rows = 0
        rows, self._pending = self._pending, []
        while True:
            if self._closed:
                raise ExportCancelledError("Cursor was closed during iteration")
            if not rows:
                rows = self._result.fetchmany(self.fetch_size)
                if not rows:
                    break
            for row in rows:
                yield dict(row._mapping)
            total_rows += len(rows)
            logger.debug(f"Fetched {len(rows)} rows (total: {total_rows})")
            rows = []

    def close(self) -> None:
        if self._closed:
            return
        super().close()
        self._result.close()
        if self._owns_connection:
            self._connection.close()


@retry(
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=1, min=2, max=10),
    retry=retry_if_exception_type(OperationalError),
    reraise=True,
)
def _connect(url: str) -> Connection:
    return create_engine(url).connect()


def open_sql_cursor(
    url: str,
    query: str,
    params: Optional[Mapping[str, Any]] = None,
    fetch_size: int = DEFAULT_FETCH_SIZE,
) -> SqlCursor:
    """Connect to ``url`` (retrying transient connect failures) and run ``query``."""
    connection = _connect(url)
    try:
        cursor = SqlCursor(connection, query, params=params, fetch_size=fetch_size)
    except Exception:
        connection.close()
        raise
    cursor._owns_connection = True
    return cursor
