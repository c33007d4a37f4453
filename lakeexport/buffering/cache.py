"""Backing stores for write buffers.

A store holds ``(item, configuration)`` pairs. The configuration tags each
item with the logical batch it belongs to, so several buffers can share one
store and clear only their own items.
"""

import json
import logging
import os
import threading
from abc import ABC, abstractmethod
from typing import Any, List, Optional, Tuple, Union

from sqlalchemy import Column, MetaData, Table, Text, create_engine, delete, func, insert, inspect, select
from sqlalchemy.engine import Engine
from sqlalchemy.exc import OperationalError, SQLAlchemyError
from sqlalchemy.schema import CreateSchema
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from lakeexport.exceptions import CacheStoreError, ConfigValidationError

logger = logging.getLogger(__name__)

CACHE_URL_ENV = "LAKE_EXPORT_CACHE_URL"
FALLBACK_URL_ENV = "LAKE_EXPORT_DATABASE_URL"
DEFAULT_TABLE_NAME = "SqlCaching"

CachedItem = Tuple[Any, Any]


class CacheStore(ABC):
    """Storage contract used by ``WriteBuffer``.

    ``configuration=None`` on reads and clears means every item in the store.
    """

    @abstractmethod
    def add_item(self, item: Any, configuration: Any = None) -> None:
        ...

    @abstractmethod
    def get_items(self, configuration: Any = None) -> List[CachedItem]:
        ...

    @abstractmethod
    def count(self, configuration: Any = None) -> int:
        ...

    @abstractmethod
    def clear(self, configuration: Any = None) -> None:
        ...


class InMemoryCacheStore(CacheStore):
    """List-backed store; contents are lost with the process."""

    def __init__(self) -> None:
        self._items: List[CachedItem] = []
        self._lock = threading.Lock()

    def add_item(self, item: Any, configuration: Any = None) -> None:
        with self._lock:
            self._items.append((item, configuration))

    def get_items(self, configuration: Any = None) -> List[CachedItem]:
        with self._lock:
            return [entry for entry in self._items if configuration is None or entry[1] == configuration]

    def count(self, configuration: Any = None) -> int:
        with self._lock:
            if configuration is None:
                return len(self._items)
            return sum(1 for _, config in self._items if config == configuration)

    def clear(self, configuration: Any = None) -> None:
        with self._lock:
            if configuration is None:
                self._items.clear()
            else:
                self._items = [entry for entry in self._items if entry[1] != configuration]


def _dumps(value: Any, operation: str) -> str:
    try:
        return json.dumps(value, sort_keys=True)
    except (TypeError, ValueError) as e:
        raise CacheStoreError(
            f"Value of type '{type(value).__name__}' is not JSON serializable",
            operation=operation,
            original_error=e,
        ) from e


def _loads(text: Optional[str]) -> Any:
    if text is None:
        return None
    return json.loads(text)


class SqlCacheStore(CacheStore):
    """Durable store in a two-column ``(Data, Configuration)`` table.

    Items and configurations are stored as JSON text; a ``None`` item is
    stored as ``null`` and a value ``json`` cannot encode raises
    ``CacheStoreError`` before anything is written. The table, and the
    schema where the database supports schemas, is created on first use.
    Every ``add_item`` is one INSERT round-trip.
    """

    def __init__(
        self,
        bind: Union[str, Engine],
        table_name: str = DEFAULT_TABLE_NAME,
        schema: Optional[str] = None,
    ):
        self.engine = create_engine(bind) if isinstance(bind, str) else bind
        self.schema = schema
        self.table = Table(
            table_name,
            MetaData(schema=schema),
            Column("Data", Text, nullable=False),
            Column("Configuration", Text, nullable=True),
        )
        self._ensure_table()

    @classmethod
    def from_env(
        cls,
        connection_string: Optional[str] = None,
        table_name: str = DEFAULT_TABLE_NAME,
        schema: Optional[str] = None,
    ) -> "SqlCacheStore":
        """Build a store from an explicit URL or the cache URL environment variables."""
        url = connection_string or os.environ.get(CACHE_URL_ENV) or os.environ.get(FALLBACK_URL_ENV)
        if not url:
            raise ConfigValidationError(
                f"No cache connection string: set {CACHE_URL_ENV} or {FALLBACK_URL_ENV}",
                key=CACHE_URL_ENV,
            )
        return cls(url, table_name=table_name, schema=schema)

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        retry=retry_if_exception_type(OperationalError),
        reraise=True,
    )
    def _create_table(self) -> None:
        with self.engine.begin() as conn:
            if self.schema and self.engine.dialect.name != "sqlite":
                if not inspect(conn).has_schema(self.schema):
                    logger.info(f"Creating cache schema '{self.schema}'")
                    conn.execute(CreateSchema(self.schema))
            self.table.metadata.create_all(conn, checkfirst=True)

    def _ensure_table(self) -> None:
        try:
            self._create_table()
        except SQLAlchemyError as e:
            raise CacheStoreError("Failed to create cache table", operation="create", original_error=e) from e
        logger.debug(f"Cache table '{self.table.fullname}' ready")

    def _where(self, statement: Any, configuration: Any, operation: str) -> Any:
        if configuration is None:
            return statement
        return statement.where(self.table.c.Configuration == _dumps(configuration, operation))

    def add_item(self, item: Any, configuration: Any = None) -> None:
        data = _dumps(item, "add")
        tag = None if configuration is None else _dumps(configuration, "add")
        statement = insert(self.table).values(Data=data, Configuration=tag)
        try:
            with self.engine.begin() as conn:
                conn.execute(statement)
        except SQLAlchemyError as e:
            raise CacheStoreError("Failed to add cached item", operation="add", original_error=e) from e

    def get_items(self, configuration: Any = None) -> List[CachedItem]:
        statement = self._where(select(self.table.c.Data, self.table.c.Configuration), configuration, "get")
        try:
            with self.engine.connect() as conn:
                rows = conn.execute(statement).all()
        except SQLAlchemyError as e:
            raise CacheStoreError("Failed to read cached items", operation="get", original_error=e) from e
        return [(_loads(data), _loads(config)) for data, config in rows]

    def count(self, configuration: Any = None) -> int:
        statement = self._where(select(func.count()).select_from(self.table), configuration, "count")
        try:
            with self.engine.connect() as conn:
                return int(conn.execute(statement).scalar_one())
        except SQLAlchemyError as e:
            raise CacheStoreError("Failed to count cached items", operation="count", original_error=e) from e

    def clear(self, configuration: Any = None) -> None:
        statement = self._where(delete(self.table), configuration, "clear")
        try:
            with self.engine.begin() as conn:
                conn.execute(statement)
        except SQLAlchemyError as e:
            raise CacheStoreError("Failed to clear cached items", operation="clear", original_error=e) from e
