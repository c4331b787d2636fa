# Persistence layer for ingested data
"""
Persistence Layer for Event Ingestion.

Stores canonical events exactly once per identity key. The store's atomic
"insert if absent" write is the idempotency guarantee: re-ingesting the same
source data maps onto existing keys and leaves the stored records untouched.

Backends:
- InMemoryEventStore: process-local dict (tests, dry runs, local development)
- PostgresEventStore: one row per key, JSONB item plus category and date
  columns for the secondary access patterns
"""

import asyncio
import copy
import logging
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

import psycopg2
from psycopg2 import sql
from psycopg2.extras import Json
from psycopg2.pool import PoolError, ThreadedConnectionPool

from touchgrass.ingestion.errors import StorageError, StoreUnavailableError
from touchgrass.ingestion.identity import generate_event_id, storage_key, title_prefix
from touchgrass.ingestion.normalization.category import parse_categories
from touchgrass.ingestion.rate_limit import NoThrottle, Throttle
from touchgrass.schemas.event import EventRecord, GroupRecord, NormalizedEvent

logger = logging.getLogger(__name__)

DEFAULT_ITEM_TIMEOUT_SECONDS = 10.0
DEFAULT_QUERY_LIMIT = 100
DEFAULT_MAX_CONNECTIONS = 10


# ============================================================================
# STORES
# ============================================================================


class EventStore(ABC):
    """Primary key-value store for event and group items."""

    @abstractmethod
    async def insert_if_absent(self, key: str, item: dict[str, Any]) -> bool:
        """
        Write `item` under `key` only if the key does not exist yet.

        Returns:
            True when the item was written, False when the key already existed
        """
        pass

    @abstractmethod
    async def put(self, key: str, item: dict[str, Any]) -> None:
        """Unconditional write."""
        pass

    @abstractmethod
    async def get(self, key: str) -> dict[str, Any] | None:
        pass

    @abstractmethod
    async def query_by_category(
        self, category: str, limit: int = DEFAULT_QUERY_LIMIT
    ) -> list[dict[str, Any]]:
        pass

    @abstractmethod
    async def query_by_date_range(
        self, start_date: str, end_date: str, limit: int = DEFAULT_QUERY_LIMIT
    ) -> list[dict[str, Any]]:
        """Items whose start_date falls within [start_date, end_date] (ISO dates)."""
        pass

    async def close(self) -> None:
        return None


class InMemoryEventStore(EventStore):
    """Dict-backed store; the lock makes insert_if_absent atomic per process."""

    def __init__(self) -> None:
        self._items: dict[str, dict[str, Any]] = {}
        self._lock = asyncio.Lock()

    def __len__(self) -> int:
        return len(self._items)

    @property
    def items(self) -> dict[str, dict[str, Any]]:
        return copy.deepcopy(self._items)

    async def insert_if_absent(self, key: str, item: dict[str, Any]) -> bool:
        async with self._lock:
            if key in self._items:
                return False
            self._items[key] = copy.deepcopy(item)
            return True

    async def put(self, key: str, item: dict[str, Any]) -> None:
        async with self._lock:
            self._items[key] = copy.deepcopy(item)

    async def get(self, key: str) -> dict[str, Any] | None:
        item = self._items.get(key)
        return copy.deepcopy(item) if item is not None else None

    async def query_by_category(
        self, category: str, limit: int = DEFAULT_QUERY_LIMIT
    ) -> list[dict[str, Any]]:
        wanted = category.strip().casefold()
        matches = [
            copy.deepcopy(item)
            for item in self._items.values()
            if wanted in {tag.casefold() for tag in parse_categories(item.get("category"))}
        ]
        return matches[:limit]

    async def query_by_date_range(
        self, start_date: str, end_date: str, limit: int = DEFAULT_QUERY_LIMIT
    ) -> list[dict[str, Any]]:
        matches = [
            copy.deepcopy(item)
            for item in self._items.values()
            if item.get("start_date") and start_date <= item["start_date"] <= end_date
        ]
        matches.sort(key=lambda item: item["start_date"])
        return matches[:limit]


class PostgresEventStore(EventStore):
    """
    PostgreSQL-backed store.

    psycopg2 is blocking, so every statement runs in a worker thread via
    asyncio.to_thread. Each statement checks out its own connection from a
    ThreadedConnectionPool, so concurrent batches never share a transaction.
    Connection-level failures are reported as StoreUnavailableError;
    statement failures as StorageError.
    """

    def __init__(
        self,
        conn_params: dict[str, Any] | None = None,
        table: str = "events",
        pool=None,
        minconn: int = 1,
        maxconn: int = DEFAULT_MAX_CONNECTIONS,
    ) -> None:
        """
        Initialize with psycopg2 connection parameters or an existing pool.

        Args:
            conn_params: Keyword arguments for psycopg2.connect
            table: Table holding the items
            pool: Already-built connection pool (takes precedence)
            minconn: Connections opened when the pool is created
            maxconn: Upper bound on concurrently checked-out connections
        """
        if pool is None and conn_params is None:
            raise ValueError("Either conn_params or pool is required")
        self.conn_params = conn_params
        self.table = table
        self.pool = pool
        self.minconn = minconn
        self.maxconn = maxconn
        self._pool_lock = threading.Lock()

    # ------------------------------------------------------------------
    # Connection handling
    # ------------------------------------------------------------------

    def _get_pool(self):
        with self._pool_lock:
            if self.pool is None:
                try:
                    self.pool = ThreadedConnectionPool(
                        self.minconn, self.maxconn, **self.conn_params
                    )
                except psycopg2.OperationalError as e:
                    raise StoreUnavailableError(f"Cannot connect to event store: {e}") from e
            return self.pool

    def _run(self, statement: sql.Composable, params: tuple, fetch: str | None = None):
        pool = self._get_pool()
        try:
            conn = pool.getconn()
        except PoolError as e:
            raise StoreUnavailableError(f"No event store connection available: {e}") from e
        except psycopg2.OperationalError as e:
            raise StoreUnavailableError(f"Cannot connect to event store: {e}") from e

        broken = False
        try:
            with conn.cursor() as cur:
                cur.execute(statement, params)
                if fetch == "one":
                    result = cur.fetchone()
                elif fetch == "all":
                    result = cur.fetchall()
                else:
                    result = None
            conn.commit()
            return result
        except (psycopg2.OperationalError, psycopg2.InterfaceError) as e:
            broken = True
            raise StoreUnavailableError(f"Event store unavailable: {e}") from e
        except psycopg2.Error as e:
            conn.rollback()
            raise StorageError(f"Event store write failed: {e}") from e
        finally:
            pool.putconn(conn, close=broken)

    def _table(self) -> sql.Identifier:
        return sql.Identifier(self.table)

    # ------------------------------------------------------------------
    # Schema
    # ------------------------------------------------------------------

    def _ensure_schema_sync(self) -> None:
        self._run(
            sql.SQL(
                """
                CREATE TABLE IF NOT EXISTS {table} (
                    pk TEXT PRIMARY KEY,
                    sk TEXT NOT NULL,
                    item JSONB NOT NULL,
                    categories TEXT[] NOT NULL DEFAULT '{{}}',
                    start_date DATE,
                    title_prefix TEXT,
                    created_at_ms BIGINT,
                    updated_at_ms BIGINT
                );
                CREATE INDEX IF NOT EXISTS {category_index} ON {table} USING GIN (categories);
                CREATE INDEX IF NOT EXISTS {date_index} ON {table} (start_date);
                """
            ).format(
                table=self._table(),
                category_index=sql.Identifier(f"{self.table}_categories_idx"),
                date_index=sql.Identifier(f"{self.table}_start_date_idx"),
            ),
            (),
        )

    async def ensure_schema(self) -> None:
        """Create the items table and its secondary indexes if missing."""
        await asyncio.to_thread(self._ensure_schema_sync)

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    @staticmethod
    def _row_values(key: str, item: dict[str, Any]) -> tuple:
        categories = [tag.casefold() for tag in parse_categories(item.get("category"))]
        return (
            key,
            item.get("sk", key),
            Json(item),
            categories,
            item.get("start_date"),
            item.get("title_prefix"),
            item.get("created_at_ms"),
            item.get("updated_at_ms"),
        )

    def _insert_if_absent_sync(self, key: str, item: dict[str, Any]) -> bool:
        row = self._run(
            sql.SQL(
                """
                INSERT INTO {table} (
                    pk, sk, item, categories, start_date, title_prefix,
                    created_at_ms, updated_at_ms
                ) VALUES (%s, %s, %s, %s, %s, %s, %s, %s)
                ON CONFLICT (pk) DO NOTHING
                RETURNING pk;
                """
            ).format(table=self._table()),
            self._row_values(key, item),
            fetch="one",
        )
        return row is not None

    def _put_sync(self, key: str, item: dict[str, Any]) -> None:
        self._run(
            sql.SQL(
                """
                INSERT INTO {table} (
                    pk, sk, item, categories, start_date, title_prefix,
                    created_at_ms, updated_at_ms
                ) VALUES (%s, %s, %s, %s, %s, %s, %s, %s)
                ON CONFLICT (pk) DO UPDATE SET
                    sk = EXCLUDED.sk,
                    item = EXCLUDED.item,
                    categories = EXCLUDED.categories,
                    start_date = EXCLUDED.start_date,
                    title_prefix = EXCLUDED.title_prefix,
                    updated_at_ms = EXCLUDED.updated_at_ms;
                """
            ).format(table=self._table()),
            self._row_values(key, item),
        )

    async def insert_if_absent(self, key: str, item: dict[str, Any]) -> bool:
        return await asyncio.to_thread(self._insert_if_absent_sync, key, item)

    async def put(self, key: str, item: dict[str, Any]) -> None:
        await asyncio.to_thread(self._put_sync, key, item)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get(self, key: str) -> dict[str, Any] | None:
        row = await asyncio.to_thread(
            self._run,
            sql.SQL("SELECT item FROM {table} WHERE pk = %s;").format(
                table=self._table()
            ),
            (key,),
            "one",
        )
        return row[0] if row else None

    async def query_by_category(
        self, category: str, limit: int = DEFAULT_QUERY_LIMIT
    ) -> list[dict[str, Any]]:
        rows = await asyncio.to_thread(
            self._run,
            sql.SQL(
                "SELECT item FROM {table} WHERE %s = ANY(categories) "
                "ORDER BY start_date NULLS LAST LIMIT %s;"
            ).format(table=self._table()),
            (category.strip().casefold(), limit),
            "all",
        )
        return [row[0] for row in rows or []]

    async def query_by_date_range(
        self, start_date: str, end_date: str, limit: int = DEFAULT_QUERY_LIMIT
    ) -> list[dict[str, Any]]:
        rows = await asyncio.to_thread(
            self._run,
            sql.SQL(
                "SELECT item FROM {table} WHERE start_date BETWEEN %s AND %s "
                "ORDER BY start_date LIMIT %s;"
            ).format(table=self._table()),
            (start_date, end_date, limit),
            "all",
        )
        return [row[0] for row in rows or []]

    async def close(self) -> None:
        with self._pool_lock:
            pool, self.pool = self.pool, None
        if pool is not None:
            await asyncio.to_thread(pool.closeall)


# ============================================================================
# GATEWAY
# ============================================================================


@dataclass
class SaveResult:
    """Outcome of a single save."""

    event_id: str
    was_newly_created: bool
    record: EventRecord | GroupRecord


@dataclass
class SaveBatchResult:
    """Outcome of a batch save; only successful saves appear in the records."""

    event_ids: list[str] = field(default_factory=list)
    saved_records: list[EventRecord] = field(default_factory=list)
    created_ids: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)

    @property
    def inserted_count(self) -> int:
        return len(self.created_ids)


class EventPersistenceGateway:
    """
    Stores NormalizedEvents exactly once per identity key.

    The store and the write throttle are injected; their lifecycle belongs to
    the caller.
    """

    def __init__(
        self,
        store: EventStore,
        throttle: Throttle | None = None,
        item_timeout: float | None = DEFAULT_ITEM_TIMEOUT_SECONDS,
    ) -> None:
        self.store = store
        self.throttle = throttle or NoThrottle()
        self.item_timeout = item_timeout

    def build_record(
        self,
        event: NormalizedEvent,
        source: str | None = None,
        now: datetime | None = None,
    ) -> EventRecord:
        """
        Build the persisted form of an event: identity key, numeric and ISO
        timestamps, title prefix.
        """
        now = now or datetime.now(timezone.utc)
        now_ms = int(now.timestamp() * 1000)

        data = event.model_dump(exclude_none=True)
        if source and not event.source:
            data["source"] = source
            event = event.model_copy(update={"source": source})

        key = generate_event_id(event)
        data.update(
            pk=key,
            sk=key,
            created_at_ms=now_ms,
            updated_at_ms=now_ms,
            created_at=now,
            updated_at=now,
            title_prefix=title_prefix(event.title),
        )
        return EventRecord.model_validate(data)

    async def save(self, event: NormalizedEvent, source: str | None = None) -> SaveResult:
        """
        Conditionally insert an event.

        A key that already exists is not an error: the stored record is
        returned untouched with was_newly_created=False. Any other failure
        propagates.
        """
        record = self.build_record(event, source)
        created = await self.store.insert_if_absent(record.pk, record.to_item())

        if created:
            logger.info(
                f"Saved event {record.pk}",
                extra={"event_id": record.pk, "source": record.source, "stage": "persist"},
            )
            return SaveResult(event_id=record.pk, was_newly_created=True, record=record)

        logger.info(
            f"Event {record.pk} already exists, skipping",
            extra={"event_id": record.pk, "source": record.source, "stage": "persist"},
        )
        existing = await self.store.get(record.pk)
        if existing is not None:
            record = EventRecord.model_validate(existing)
        return SaveResult(event_id=record.pk, was_newly_created=False, record=record)

    async def save_many(
        self, events: list[NormalizedEvent], source: str | None = None
    ) -> SaveBatchResult:
        """
        Save events one at a time, throttled, with a per-item timeout.

        Per-item failures (including timeouts) are logged and collected; the
        batch continues. StoreUnavailableError aborts the batch.
        """
        result = SaveBatchResult()

        for event in events:
            await self.throttle.acquire()
            try:
                saved = await asyncio.wait_for(
                    self.save(event, source), timeout=self.item_timeout
                )
            except StoreUnavailableError:
                raise
            except asyncio.TimeoutError:
                message = f"{event.title}: timed out after {self.item_timeout}s"
                logger.error(f"Failed to save event '{event.title}': timed out")
                result.errors.append(message)
                continue
            except Exception as e:
                logger.error(f"Failed to save event '{event.title}': {e}")
                result.errors.append(f"{event.title}: {e}")
                continue

            result.event_ids.append(saved.event_id)
            result.saved_records.append(saved.record)
            if saved.was_newly_created:
                result.created_ids.append(saved.event_id)

        logger.info(
            f"Saved {len(result.saved_records)}/{len(events)} events "
            f"({result.inserted_count} new, {len(result.errors)} failed)",
            extra={"source": source, "stage": "persist"},
        )
        return result

    async def save_group(self, group: GroupRecord | dict[str, Any]) -> SaveResult:
        """
        Write a pre-keyed group item unconditionally.

        Groups are edited in place, so the write overwrites; the original
        creation timestamps are kept when the item already exists.
        """
        record = group if isinstance(group, GroupRecord) else GroupRecord.model_validate(group)
        key = storage_key(record.pk, record.sk)

        now = datetime.now(timezone.utc)
        now_ms = int(now.timestamp() * 1000)
        existing = await self.store.get(key)

        update: dict[str, Any] = {"updated_at": now, "updated_at_ms": now_ms}
        if existing and existing.get("created_at_ms"):
            update["created_at_ms"] = existing["created_at_ms"]
            update["created_at"] = existing.get("created_at") or now
        else:
            update["created_at_ms"] = record.created_at_ms or now_ms
            update["created_at"] = record.created_at or now

        record = GroupRecord.model_validate({**record.model_dump(), **update})
        await self.store.put(key, record.to_item())
        logger.info(f"Saved group {key}", extra={"event_id": key, "stage": "persist"})
        return SaveResult(event_id=key, was_newly_created=existing is None, record=record)
