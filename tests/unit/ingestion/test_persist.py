"""
Unit tests for the persistence layer.

Tests the in-memory and Postgres stores and the EventPersistenceGateway
(idempotent saves, batch saves, groups).
"""

import asyncio
from datetime import datetime, timezone
from unittest.mock import MagicMock, patch

import psycopg2
import pytest
from psycopg2.pool import PoolError

from touchgrass.ingestion.errors import StorageError, StoreUnavailableError
from touchgrass.ingestion.normalizer import EventNormalizer, RawEventShape
from touchgrass.ingestion.persist import (
    EventPersistenceGateway,
    InMemoryEventStore,
    PostgresEventStore,
)
from touchgrass.ingestion.rate_limit import Throttle

# =============================================================================
# HELPERS
# =============================================================================


class CountingThrottle(Throttle):
    def __init__(self):
        self.calls = 0

    async def acquire(self):
        self.calls += 1


class FailingStore(InMemoryEventStore):
    """Raises the given error for titles listed in `fail_keys`."""

    def __init__(self, error, fail_keys=None):
        super().__init__()
        self.error = error
        self.fail_keys = fail_keys

    async def insert_if_absent(self, key, item):
        if self.fail_keys is None or key in self.fail_keys:
            raise self.error
        return await super().insert_if_absent(key, item)


class SlowStore(InMemoryEventStore):
    async def insert_if_absent(self, key, item):
        await asyncio.sleep(5)
        return True


def _mock_connection(fetchone=None, fetchall=None, execute_error=None):
    conn = MagicMock()
    cursor = conn.cursor.return_value.__enter__.return_value
    cursor.fetchone.return_value = fetchone
    cursor.fetchall.return_value = fetchall or []
    if execute_error is not None:
        cursor.execute.side_effect = execute_error
    return conn, cursor


def _mock_pool(*connections):
    """A pool handing out the given connections in order."""
    pool = MagicMock()
    pool.getconn.side_effect = list(connections)
    return pool


# =============================================================================
# IN-MEMORY STORE
# =============================================================================


class TestInMemoryEventStore:
    """Tests for InMemoryEventStore."""

    def test_insert_if_absent(self, store):
        first = asyncio.run(store.insert_if_absent("k", {"title": "a"}))
        second = asyncio.run(store.insert_if_absent("k", {"title": "b"}))

        assert first is True
        assert second is False
        assert asyncio.run(store.get("k")) == {"title": "a"}

    def test_items_are_copies(self, store):
        item = {"title": "a", "socials": {"website": "x"}}
        asyncio.run(store.insert_if_absent("k", item))
        item["socials"]["website"] = "changed"

        assert asyncio.run(store.get("k"))["socials"]["website"] == "x"

    def test_concurrent_inserts_create_once(self, store):
        async def _run():
            return await asyncio.gather(
                *(store.insert_if_absent("k", {"n": n}) for n in range(10))
            )

        results = asyncio.run(_run())
        assert results.count(True) == 1
        assert len(store) == 1

    def test_query_by_category(self, store):
        asyncio.run(store.put("a", {"category": "Music,jazz"}))
        asyncio.run(store.put("b", {"category": "comedy"}))

        results = asyncio.run(store.query_by_category("music"))
        assert results == [{"category": "Music,jazz"}]

    def test_query_by_date_range(self, store):
        asyncio.run(store.put("a", {"start_date": "2025-03-08"}))
        asyncio.run(store.put("b", {"start_date": "2025-03-01"}))
        asyncio.run(store.put("c", {"start_date": "2025-04-01"}))
        asyncio.run(store.put("d", {"title": "undated"}))

        results = asyncio.run(store.query_by_date_range("2025-03-01", "2025-03-31"))
        assert [r["start_date"] for r in results] == ["2025-03-01", "2025-03-08"]

    def test_get_missing(self, store):
        assert asyncio.run(store.get("missing")) is None


# =============================================================================
# POSTGRES STORE
# =============================================================================


class TestPostgresEventStore:
    """Tests for PostgresEventStore against a mocked psycopg2 connection."""

    def test_requires_params_or_connection(self):
        with pytest.raises(ValueError):
            PostgresEventStore()

    def test_insert_if_absent_created(self):
        conn, cursor = _mock_connection(fetchone=("EVENT-x",))
        store = PostgresEventStore(pool=_mock_pool(conn))

        created = asyncio.run(
            store.insert_if_absent("EVENT-x", {"sk": "EVENT-x", "category": "Music,Jazz"})
        )

        assert created is True
        params = cursor.execute.call_args.args[1]
        assert params[0] == "EVENT-x"
        assert params[3] == ["music", "jazz"]
        conn.commit.assert_called_once()

    def test_insert_if_absent_conflict(self):
        conn, _ = _mock_connection(fetchone=None)
        store = PostgresEventStore(pool=_mock_pool(conn))

        assert asyncio.run(store.insert_if_absent("EVENT-x", {})) is False

    def test_get(self):
        conn, _ = _mock_connection(fetchone=({"pk": "EVENT-x"},))
        store = PostgresEventStore(pool=_mock_pool(conn))

        assert asyncio.run(store.get("EVENT-x")) == {"pk": "EVENT-x"}

    def test_query_by_category(self):
        conn, cursor = _mock_connection(fetchall=[({"pk": "a"},), ({"pk": "b"},)])
        store = PostgresEventStore(pool=_mock_pool(conn))

        results = asyncio.run(store.query_by_category(" Music "))
        assert results == [{"pk": "a"}, {"pk": "b"}]
        assert cursor.execute.call_args.args[1] == ("music", 100)

    def test_operational_error_is_unavailable(self):
        conn, _ = _mock_connection(execute_error=psycopg2.OperationalError("down"))
        pool = _mock_pool(conn)
        store = PostgresEventStore(pool=pool)

        with pytest.raises(StoreUnavailableError):
            asyncio.run(store.insert_if_absent("EVENT-x", {}))
        pool.putconn.assert_called_once_with(conn, close=True)

    def test_statement_error_rolls_back(self):
        conn, _ = _mock_connection(execute_error=psycopg2.DataError("bad date"))
        pool = _mock_pool(conn)
        store = PostgresEventStore(pool=pool)

        with pytest.raises(StorageError) as exc_info:
            asyncio.run(store.put("EVENT-x", {"start_date": "nope"}))
        assert not isinstance(exc_info.value, StoreUnavailableError)
        conn.rollback.assert_called_once()
        pool.putconn.assert_called_once_with(conn, close=False)

    def test_connect_failure_is_unavailable(self):
        store = PostgresEventStore(conn_params={"host": "db"})
        with patch(
            "touchgrass.ingestion.persist.ThreadedConnectionPool",
            side_effect=psycopg2.OperationalError("refused"),
        ):
            with pytest.raises(StoreUnavailableError):
                asyncio.run(store.get("EVENT-x"))

    def test_pool_exhausted_is_unavailable(self):
        pool = MagicMock()
        pool.getconn.side_effect = PoolError("connection pool exhausted")
        store = PostgresEventStore(pool=pool)

        with pytest.raises(StoreUnavailableError):
            asyncio.run(store.get("EVENT-x"))
        pool.putconn.assert_not_called()

    def test_concurrent_writes_use_separate_connections(self):
        """A failing statement only rolls back its own connection."""
        ok_conn, _ = _mock_connection(fetchone=("EVENT-a",))
        bad_conn, _ = _mock_connection(execute_error=psycopg2.DataError("NUL in title"))
        pool = _mock_pool(ok_conn, bad_conn)
        store = PostgresEventStore(pool=pool)

        async def _run():
            return await asyncio.gather(
                store.insert_if_absent("EVENT-a", {}),
                store.insert_if_absent("EVENT-b", {}),
                return_exceptions=True,
            )

        results = asyncio.run(_run())

        assert True in results
        assert any(isinstance(r, StorageError) for r in results)
        ok_conn.commit.assert_called_once()
        ok_conn.rollback.assert_not_called()
        bad_conn.rollback.assert_called_once()
        bad_conn.commit.assert_not_called()
        assert pool.putconn.call_count == 2

    def test_pool_created_once_under_concurrency(self):
        conn, _ = _mock_connection(fetchone=None)
        store = PostgresEventStore(conn_params={"host": "db"})

        with patch("touchgrass.ingestion.persist.ThreadedConnectionPool") as pool_cls:
            pool_cls.return_value.getconn.return_value = conn

            async def _run():
                await asyncio.gather(*(store.get(f"EVENT-{n}") for n in range(5)))

            asyncio.run(_run())

        pool_cls.assert_called_once_with(1, 10, host="db")

    def test_ensure_schema_and_close(self):
        conn, cursor = _mock_connection()
        pool = _mock_pool(conn)
        store = PostgresEventStore(pool=pool, table="events")

        asyncio.run(store.ensure_schema())
        asyncio.run(store.close())

        cursor.execute.assert_called_once()
        pool.closeall.assert_called_once()
        assert store.pool is None
        assert store.conn is None


# =============================================================================
# GATEWAY
# =============================================================================


class TestBuildRecord:
    """Tests for EventPersistenceGateway.build_record."""

    def test_record_fields(self, gateway, sample_event):
        now = datetime(2025, 3, 1, 12, 0, tzinfo=timezone.utc)
        record = gateway.build_record(sample_event, now=now)

        assert record.pk == record.sk == "EVENT-test-event-2025-06-15"
        assert record.created_at_ms == record.updated_at_ms == 1740830400000
        assert record.created_at == now
        assert record.title_prefix == "tes"
        assert record.title == sample_event.title

    def test_source_filled_when_missing(self, gateway, create_event):
        record = gateway.build_record(
            create_event(source=None, external_id="99"), source="crawler"
        )
        assert record.source == "crawler"
        assert record.pk == "EVENT-CRAWLER-99"

    def test_event_source_wins(self, gateway, create_event):
        record = gateway.build_record(create_event(source="washingtonian"), source="other")
        assert record.source == "washingtonian"


class TestSave:
    """Tests for EventPersistenceGateway.save."""

    def test_jazz_night_scenario(self, gateway, store, listing_event):
        """Normalize once, save twice: one record, second save is not new."""
        event = EventNormalizer().normalize(listing_event, RawEventShape.LISTING)

        assert event.title == "Jazz Night"
        assert event.start_date == "2025-03-01"
        assert event.category == "music"
        assert event.cost.type == "fixed"
        assert event.cost.amount == 25.0
        assert event.cost.currency == "USD"

        first = asyncio.run(gateway.save(event))
        second = asyncio.run(gateway.save(event))

        assert first.was_newly_created is True
        assert second.was_newly_created is False
        assert first.event_id == second.event_id
        assert len(store) == 1

    def test_second_save_leaves_record_unchanged(self, gateway, store, sample_event):
        asyncio.run(gateway.save(sample_event))
        stored_after_first = store.items

        changed = sample_event.model_copy(update={"description": "Updated text"})
        result = asyncio.run(gateway.save(changed))

        assert result.was_newly_created is False
        assert store.items == stored_after_first
        assert result.record.description is None

    def test_store_errors_propagate(self, sample_event):
        gateway = EventPersistenceGateway(store=FailingStore(StorageError("disk full")))
        with pytest.raises(StorageError):
            asyncio.run(gateway.save(sample_event))


class TestSaveMany:
    """Tests for EventPersistenceGateway.save_many."""

    def test_saves_all_and_throttles_each_write(self, store, create_event):
        throttle = CountingThrottle()
        gateway = EventPersistenceGateway(store=store, throttle=throttle)
        events = [create_event(title=f"Event {i}") for i in range(3)]

        result = asyncio.run(gateway.save_many(events))

        assert throttle.calls == 3
        assert result.inserted_count == 3
        assert len(result.saved_records) == 3
        assert result.errors == []

    def test_repeats_counted_but_not_inserted(self, gateway, sample_event):
        asyncio.run(gateway.save(sample_event))
        result = asyncio.run(gateway.save_many([sample_event]))

        assert result.inserted_count == 0
        assert result.event_ids == ["EVENT-test-event-2025-06-15"]
        assert len(result.saved_records) == 1

    def test_item_failure_does_not_stop_batch(self, create_event):
        store = FailingStore(StorageError("bad row"), fail_keys={"EVENT-broken-2025-06-15"})
        gateway = EventPersistenceGateway(store=store)
        events = [
            create_event(title="Good"),
            create_event(title="Broken"),
            create_event(title="Fine"),
        ]

        result = asyncio.run(gateway.save_many(events))

        assert result.inserted_count == 2
        assert result.errors == ["Broken: bad row"]
        assert len(store) == 2

    def test_store_unavailable_aborts(self, create_event):
        gateway = EventPersistenceGateway(store=FailingStore(StoreUnavailableError("down")))
        with pytest.raises(StoreUnavailableError):
            asyncio.run(gateway.save_many([create_event()]))

    def test_item_timeout(self, sample_event):
        gateway = EventPersistenceGateway(store=SlowStore(), item_timeout=0.01)
        result = asyncio.run(gateway.save_many([sample_event]))

        assert result.inserted_count == 0
        assert result.errors == ["Test Event: timed out after 0.01s"]


class TestSaveGroup:
    """Tests for EventPersistenceGateway.save_group."""

    def test_group_info_written(self, gateway, store):
        result = asyncio.run(
            gateway.save_group({"pk": "GROUP#book-club", "title": "Book Club"})
        )

        assert result.event_id == "GROUP#book-club"
        assert result.was_newly_created is True
        assert store.items["GROUP#book-club"]["title"] == "Book Club"

    def test_schedule_entry_key(self, gateway, store):
        result = asyncio.run(
            gateway.save_group(
                {"pk": "GROUP#book-club", "sk": "SCHEDULE#tue", "scheduleDay": "Tuesday"}
            )
        )
        assert result.event_id == "GROUP#book-club|SCHEDULE#tue"
        assert store.items[result.event_id]["schedule_day"] == "Tuesday"

    def test_overwrite_keeps_creation_time(self, gateway, store):
        first = asyncio.run(gateway.save_group({"pk": "GROUP#run", "title": "Run Club"}))
        second = asyncio.run(gateway.save_group({"pk": "GROUP#run", "title": "Run Club DC"}))

        assert second.was_newly_created is False
        assert second.record.created_at_ms == first.record.created_at_ms
        assert store.items["GROUP#run"]["title"] == "Run Club DC"
