"""Debounced batch accumulation with capacity and idle-timeout flushes."""

import logging
import threading
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, Hashable, List, Optional

from lakeexport.buffering.cache import CacheStore, InMemoryCacheStore
from lakeexport.exceptions import BufferFlushError, ConfigValidationError

logger = logging.getLogger(__name__)

DEFAULT_CAPACITY = 50
DEFAULT_IDLE_TIMEOUT_SECONDS = 60.0

DeliveryAction = Callable[[List[Any]], None]


class BufferState(str, Enum):
    IDLE = "idle"
    ACCUMULATING = "accumulating"
    FLUSHING = "flushing"


@dataclass
class BufferStats:
    flush_count: int = 0
    items_delivered: int = 0
    error_count: int = 0


class WriteBuffer:
    """Accumulates items and hands them to ``deliver`` in batches.

    A batch is flushed when it reaches ``capacity`` items or when
    ``idle_timeout`` seconds have passed since its first item, whichever
    comes first. ``add`` may be called from many threads.

    Locking: ``_flush_lock`` admits one flush at a time and is always taken
    before ``_store_lock``, which guards the backing store and the pending
    count. Delivery runs outside ``_store_lock`` so adds continue while a
    batch is delivered. Each drain bumps ``_generation``; an idle timer only
    flushes the generation it was armed for.

    Delivery is at-most-once: if ``deliver`` raises, the drained batch is not
    restored and ``BufferFlushError`` is raised to the flushing caller.
    """

    def __init__(
        self,
        deliver: DeliveryAction,
        capacity: int = DEFAULT_CAPACITY,
        idle_timeout: float = DEFAULT_IDLE_TIMEOUT_SECONDS,
        store: Optional[CacheStore] = None,
        configuration: Any = None,
        name: Optional[str] = None,
    ):
        if capacity <= 0:
            raise ConfigValidationError(f"capacity must be positive, got {capacity}", key="capacity")
        if idle_timeout <= 0:
            raise ConfigValidationError(f"idle_timeout must be positive, got {idle_timeout}", key="idle_timeout")

        self.deliver = deliver
        self.capacity = capacity
        self.idle_timeout = idle_timeout
        self.store = store if store is not None else InMemoryCacheStore()
        self.configuration = configuration
        self.name = name or "write-buffer"
        self.stats = BufferStats()

        self._flush_lock = threading.Lock()
        self._store_lock = threading.Lock()
        self._timer: Optional[threading.Timer] = None
        self._generation = 0
        self._closed = False

        # Durable stores may still hold items from a previous process
        self._pending = self.store.count(self.configuration)
        self._state = BufferState.IDLE
        if self._pending:
            logger.info(f"Buffer '{self.name}' resumed with {self._pending} pending items")
            with self._store_lock:
                self._state = BufferState.ACCUMULATING
                self._arm_timer()

    @property
    def state(self) -> BufferState:
        return self._state

    @property
    def pending(self) -> int:
        return self._pending

    def add(self, item: Any) -> None:
        with self._store_lock:
            if self._closed:
                raise BufferFlushError("Buffer is closed", buffer_name=self.name)
            self.store.add_item(item, self.configuration)
            self._pending += 1
            if self._pending == 1:
                self._arm_timer()
                if self._state is BufferState.IDLE:
                    self._state = BufferState.ACCUMULATING
            full = self._pending >= self.capacity

        if full:
            self._flush(threshold=self.capacity)

    def flush(self) -> int:
        """Deliver everything buffered now; returns the number of items delivered."""
        return self._flush(threshold=1)

    def clear(self) -> None:
        """Discard buffered items without delivering them."""
        with self._flush_lock, self._store_lock:
            self.store.clear(self.configuration)
            self._pending = 0
            self._generation += 1
            self._cancel_timer()
            self._state = BufferState.IDLE

    def close(self) -> None:
        """Stop the idle timer and flush what remains."""
        with self._store_lock:
            if self._closed:
                return
            self._closed = True
            self._cancel_timer()
        self._flush(threshold=1)

    def __enter__(self) -> "WriteBuffer":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def _flush(self, threshold: int, generation: Optional[int] = None) -> int:
        with self._flush_lock:
            with self._store_lock:
                if generation is not None and generation != self._generation:
                    return 0
                if self._pending < threshold:
                    return 0
                items = [item for item, _ in self.store.get_items(self.configuration)]
                self.store.clear(self.configuration)
                self._pending = 0
                self._generation += 1
                self._cancel_timer()
                self._state = BufferState.FLUSHING

            logger.debug(f"Flushing {len(items)} items from buffer '{self.name}'")
            try:
                self.deliver(items)
            except Exception as e:
                self.stats.error_count += 1
                logger.error(f"Delivery failed for buffer '{self.name}' ({len(items)} items): {e}")
                raise BufferFlushError(
                    f"Delivery action failed for buffer '{self.name}'",
                    buffer_name=self.name,
                    item_count=len(items),
                    original_error=e,
                ) from e
            finally:
                with self._store_lock:
                    self._state = BufferState.ACCUMULATING if self._pending else BufferState.IDLE

            self.stats.flush_count += 1
            self.stats.items_delivered += len(items)
            return len(items)

    def _arm_timer(self) -> None:
        self._cancel_timer()
        if self._closed:
            return
        timer = threading.Timer(self.idle_timeout, self._on_idle, args=(self._generation,))
        timer.daemon = True
        self._timer = timer
        timer.start()

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _on_idle(self, generation: int) -> None:
        try:
            self._flush(threshold=1, generation=generation)
        except BufferFlushError:
            # Logged and counted in _flush
            pass


class PartitionedWriteBuffer:
    """One ``WriteBuffer`` per partition key over a shared store.

    Each partition's items are tagged with ``{"partition": key}`` merged into
    ``configuration``. ``deliver`` receives the partition key and its items.
    """

    def __init__(
        self,
        deliver: Callable[[Hashable, List[Any]], None],
        capacity: int = DEFAULT_CAPACITY,
        idle_timeout: float = DEFAULT_IDLE_TIMEOUT_SECONDS,
        store: Optional[CacheStore] = None,
        configuration: Optional[Dict[str, Any]] = None,
        name: Optional[str] = None,
    ):
        self.deliver = deliver
        self.capacity = capacity
        self.idle_timeout = idle_timeout
        self.store = store if store is not None else InMemoryCacheStore()
        self.configuration = dict(configuration or {})
        self.name = name or "partitioned-buffer"
        self._buffers: Dict[Hashable, WriteBuffer] = {}
        self._lock = threading.Lock()

    def _buffer(self, key: Hashable) -> WriteBuffer:
        with self._lock:
            buffer = self._buffers.get(key)
            if buffer is None:
                buffer = WriteBuffer(
                    lambda items, key=key: self.deliver(key, items),
                    capacity=self.capacity,
                    idle_timeout=self.idle_timeout,
                    store=self.store,
                    configuration={**self.configuration, "partition": str(key)},
                    name=f"{self.name}[{key}]",
                )
                self._buffers[key] = buffer
            return buffer

    @property
    def partitions(self) -> List[Hashable]:
        with self._lock:
            return list(self._buffers)

    def add(self, key: Hashable, item: Any) -> None:
        self._buffer(key).add(item)

    def flush(self, key: Optional[Hashable] = None) -> int:
        if key is not None:
            return self._buffer(key).flush()
        with self._lock:
            buffers = list(self._buffers.values())
        return sum(buffer.flush() for buffer in buffers)

    def close(self) -> None:
        with self._lock:
            buffers = list(self._buffers.values())
        for buffer in buffers:
            buffer.close()

    def __enter__(self) -> "PartitionedWriteBuffer":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()
