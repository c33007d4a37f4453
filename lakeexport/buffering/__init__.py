"""Write buffering over pluggable cache stores."""

from typing import Any, Optional

from lakeexport.buffering.buffer import (
    BufferState,
    BufferStats,
    DeliveryAction,
    PartitionedWriteBuffer,
    WriteBuffer,
)
from lakeexport.buffering.cache import CacheStore, InMemoryCacheStore, SqlCacheStore
from lakeexport.config import BufferConfig, CacheBacking


def create_store(config: BufferConfig) -> CacheStore:
    """Backing store selected by ``config.backing``."""
    if config.backing is CacheBacking.DURABLE:
        return SqlCacheStore.from_env(config.connection_string, table_name=config.table_name)
    return InMemoryCacheStore()


def create_buffer(
    config: BufferConfig,
    deliver: DeliveryAction,
    configuration: Any = None,
    name: Optional[str] = None,
) -> WriteBuffer:
    return WriteBuffer(
        deliver,
        capacity=config.capacity,
        idle_timeout=config.idle_timeout_seconds,
        store=create_store(config),
        configuration=configuration,
        name=name,
    )


__all__ = [
    "BufferState",
    "BufferStats",
    "CacheStore",
    "InMemoryCacheStore",
    "PartitionedWriteBuffer",
    "SqlCacheStore",
    "WriteBuffer",
    "create_buffer",
    "create_store",
]
