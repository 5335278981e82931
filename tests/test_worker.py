# tests/test_worker.py

import asyncio
import pytest
from datetime import datetime
from unittest.mock import MagicMock

from pgmirror.core.config import SyncOptions
from pgmirror.core.enums import EventType, TickPolicy, WorkerState
from pgmirror.core.exceptions import SchemaError
from pgmirror.core.models import PrimaryKey
from pgmirror.sync.checkpoint import CheckpointStore
from pgmirror.sync.worker import TableSyncWorker
from pgmirror.utils.retry import RetryConfig, RetryStrategy

from conftest import FakeCatalog, user_rows


def make_worker(catalog, source, destination, store, reporter, options, **kwargs):
    return TableSyncWorker(
        table=kwargs.pop("table", "users"),
        catalog=catalog,
        source=source,
        sink=destination,
        store=store,
        reporter=reporter,
        options=options,
        **kwargs
    )

def drain(subscription):
    events = []
    while (event := subscription.get_nowait()) is not None:
        events.append(event)
    return events


@pytest.mark.asyncio
async def test_users_scenario(users_catalog, source, destination, store, reporter, options):
    """Three rows mirrored in one tick, then a new row in the next"""
    subscription = reporter.subscribe()
    source.add("users", *user_rows([1, 2, 3]))
    worker = make_worker(users_catalog, source, destination, store, reporter, options)

    assert await worker.resolve()
    assert worker.state == WorkerState.POLLING

    result = await worker.tick()
    assert result.fetched == 3
    assert result.inserted == 3
    assert destination.keys("users") == [1, 2, 3]
    assert store.get("users") == 3

    source.add("users", *user_rows([4]))
    result = await worker.tick()
    assert destination.keys("users") == [1, 2, 3, 4]
    assert store.get("users") == 4
    assert source.queries == [0, 3]

    traces = [str(e) for e in drain(subscription) if e.type == EventType.TRACE]
    assert traces == ["[sync:users] syncing with id > 0", "[sync:users] syncing with id > 3"]


@pytest.mark.asyncio
async def test_users_scenario_in_chunks_of_two(users_catalog, source, destination, store, reporter):
    options = SyncOptions(chunk=2, sync_interval=0.01)
    source.add("users", *user_rows([1, 2, 3]))
    worker = make_worker(users_catalog, source, destination, store, reporter, options)
    await worker.resolve()

    first = await worker.tick()
    assert destination.keys("users") == [1, 2]
    assert store.get("users") == 2

    second = await worker.tick()
    assert destination.keys("users") == [1, 2, 3]
    assert store.get("users") == 3

    third = await worker.tick()
    assert (third.fetched, third.inserted) == (0, 0)
    assert store.get("users") == 3
    assert [first.inserted, second.inserted] == [2, 1]


@pytest.mark.asyncio
async def test_convergence_with_small_chunks(users_catalog, source, destination, store, reporter):
    options = SyncOptions(chunk=2, sync_interval=0.01)
    source.add("users", *user_rows([5, 1, 4, 2, 3]))
    worker = make_worker(users_catalog, source, destination, store, reporter, options)
    await worker.resolve()

    results = [await worker.tick() for _ in range(4)]

    assert [r.inserted for r in results] == [2, 2, 1, 0]
    assert destination.keys("users") == [1, 2, 3, 4, 5]
    assert store.get("users") == 5
    assert not results[-1].advanced


@pytest.mark.asyncio
async def test_idle_tick_is_idempotent(users_catalog, source, destination, store, reporter, options):
    source.add("users", *user_rows([1, 2]))
    worker = make_worker(users_catalog, source, destination, store, reporter, options)
    await worker.resolve()
    await worker.tick()

    attempts = len(destination.attempts)
    result = await worker.tick()

    assert result.fetched == 0
    assert len(destination.attempts) == attempts
    assert store.get("users") == 2


@pytest.mark.asyncio
async def test_partial_failure_freezes_watermark(users_catalog, source, destination, store, reporter, options):
    """Rows after a failed insert are written but the watermark stays before it"""
    subscription = reporter.subscribe()
    source.add("users", *user_rows([1, 2, 3, 4]))
    destination.reject = {2}
    worker = make_worker(users_catalog, source, destination, store, reporter, options)
    await worker.resolve()

    result = await worker.tick()

    assert result.inserted == 3
    assert result.failed == 1
    assert store.get("users") == 1
    assert destination.keys("users") == [1, 3, 4]

    errors = [e for e in drain(subscription) if e.type == EventType.ERROR]
    assert len(errors) == 1
    assert errors[0].table == "users"
    assert errors[0].error_type == "InsertError"


@pytest.mark.asyncio
async def test_transient_failure_converges_to_max_key(users_catalog, source, destination, store, reporter, options):
    source.add("users", *user_rows([1, 2, 3, 4]))
    destination.reject = {2}
    worker = make_worker(users_catalog, source, destination, store, reporter, options)
    await worker.resolve()
    await worker.tick()

    destination.reject.clear()
    result = await worker.tick()

    # Row 2 is inserted; 3 and 4 are already present and still advance
    assert (result.inserted, result.present, result.failed) == (1, 2, 0)
    assert store.get("users") == 4
    assert sorted(destination.keys("users")) == [1, 2, 3, 4]

    for _ in range(3):
        result = await worker.tick()
        assert result.fetched == 0
    assert store.get("users") == 4


@pytest.mark.asyncio
async def test_restart_with_destination_ahead_of_checkpoint(users_catalog, source, destination, reporter, options):
    """Rows mirrored after the last snapshot are skipped over, not retried forever"""
    subscription = reporter.subscribe()
    store = CheckpointStore()
    store.hydrate(b'{"users": 3}')
    source.add("users", *user_rows(range(1, 8)))
    destination.tables["users"] = user_rows(range(1, 6))
    worker = make_worker(users_catalog, source, destination, store, reporter, options)
    await worker.resolve()

    result = await worker.tick()

    assert (result.inserted, result.present, result.failed) == (2, 2, 0)
    assert store.get("users") == 7
    assert sorted(destination.keys("users")) == list(range(1, 8))

    events = drain(subscription)
    assert not [e for e in events if e.type == EventType.ERROR]
    assert "[sync:users] row id=4 already present" in [str(e) for e in events]


@pytest.mark.asyncio
async def test_text_keys_follow_database_order(source, destination, store, reporter, options):
    """Case-insensitive collation puts 'apple' before 'Banana'"""
    catalog = FakeCatalog({"fruits": PrimaryKey(column="id", data_type="text")})
    source.sort_key = str.lower
    source.add("fruits", {"id": "Banana"}, {"id": "apple"})
    worker = make_worker(catalog, source, destination, store, reporter, options, table="fruits")
    await worker.resolve()

    for _ in range(3):
        await worker.tick()

    assert store.get("fruits") == "Banana"
    assert source.queries == ["", "Banana", "Banana"]
    assert destination.attempts == ["apple", "Banana"]


@pytest.mark.asyncio
async def test_crash_recovery_resumes_after_watermark(users_catalog, source, destination, reporter, options):
    store = CheckpointStore()
    store.hydrate(b'{"users": 5}')
    source.add("users", *user_rows(range(1, 11)))
    worker = make_worker(users_catalog, source, destination, store, reporter, options)
    await worker.resolve()

    await worker.tick()

    assert source.queries == [5]
    assert destination.keys("users") == [6, 7, 8, 9, 10]
    assert store.get("users") == 10


@pytest.mark.asyncio
async def test_watermark_never_decreases(users_catalog, source, destination, store, reporter, options):
    store.set("users", 7)
    source.add("users", *user_rows([3, 8, 9]))
    worker = make_worker(users_catalog, source, destination, store, reporter, options)
    await worker.resolve()

    history = [store.get("users")]
    for _ in range(3):
        await worker.tick()
        history.append(store.get("users"))

    assert history == sorted(history)
    assert 3 not in destination.keys("users")


@pytest.mark.asyncio
async def test_timestamp_key_uses_epoch_minimum(source, destination, store, reporter, options):
    catalog = FakeCatalog({"events": PrimaryKey(column="id", data_type="timestamp without time zone")})
    source.add("events", {"id": datetime(2024, 1, 1, 12, 0), "payload": "a"})
    worker = make_worker(catalog, source, destination, store, reporter, options, table="events")
    await worker.resolve()

    await worker.tick()

    assert source.queries == [datetime(1970, 1, 1)]
    assert store.get("events") == datetime(2024, 1, 1, 12, 0)


@pytest.mark.asyncio
async def test_schema_failure_is_permanent(source, destination, store, reporter, options):
    subscription = reporter.subscribe()
    catalog = FakeCatalog({"logs": SchemaError("Composite primary key (a, b) is not supported", "logs")})
    worker = make_worker(catalog, source, destination, store, reporter, options, table="logs")

    await asyncio.wait_for(worker.run(), timeout=1)

    assert worker.state == WorkerState.FAILED
    assert catalog.resolve_calls == ["logs"]
    assert source.queries == []
    events = drain(subscription)
    assert [e.error_type for e in events] == ["SchemaError"]
    assert events[0].table == "logs"


@pytest.mark.asyncio
async def test_query_error_leaves_watermark(users_catalog, source, destination, store, reporter, options):
    metrics = MagicMock()
    store.set("users", 2)
    source.add("users", *user_rows([1, 2, 3]))
    source.fail_next = 1
    worker = make_worker(users_catalog, source, destination, store, reporter, options, metrics=metrics)
    await worker.resolve()

    result = await worker.tick()
    assert result.query_failed
    assert store.get("users") == 2
    assert destination.attempts == []
    metrics.record_query_error.assert_called_once_with("users")
    metrics.record_tick.assert_not_called()

    result = await worker.tick()
    assert result.inserted == 1
    assert store.get("users") == 3
    metrics.record_tick.assert_called_once()


@pytest.mark.asyncio
async def test_invalid_stored_watermark_is_reported(users_catalog, source, destination, store, reporter, options):
    subscription = reporter.subscribe()
    store.set("users", "not-a-number")
    worker = make_worker(users_catalog, source, destination, store, reporter, options)
    await worker.resolve()

    result = await worker.tick()

    assert result.query_failed
    assert source.queries == []
    assert drain(subscription)[0].error_type == "QueryError"


@pytest.mark.asyncio
async def test_run_polls_until_cancelled(users_catalog, source, destination, store, reporter, options):
    source.add("users", *user_rows([1, 2, 3]))
    worker = make_worker(users_catalog, source, destination, store, reporter, options)

    task = asyncio.create_task(worker.run())
    for _ in range(200):
        if worker.ticks >= 2:
            break
        await asyncio.sleep(0.01)
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task

    assert worker.ticks >= 2
    assert worker.state == WorkerState.STOPPED
    assert destination.keys("users") == [1, 2, 3]


def test_skip_policy_drops_elapsed_slots(users_catalog, source, destination, store, reporter):
    options = SyncOptions(sync_interval=10.0, tick_policy=TickPolicy.SKIP)
    worker = make_worker(users_catalog, source, destination, store, reporter, options)

    assert worker.plan_next(100.0) == 10.0      # first slot at 110
    assert worker.plan_next(113.0) == 7.0       # tick ran 3s, next slot at 120
    # Tick from 120 ran until 145: slots 130 and 140 are dropped
    assert worker.plan_next(145.0) == 5.0
    assert worker.skipped_slots == 2


def test_serialize_policy_starts_immediately(users_catalog, source, destination, store, reporter):
    options = SyncOptions(sync_interval=10.0, tick_policy=TickPolicy.SERIALIZE)
    worker = make_worker(users_catalog, source, destination, store, reporter, options)

    worker.plan_next(100.0)
    assert worker.plan_next(135.0) == 0.0
    assert worker.plan_next(137.0) == 8.0
    assert worker.skipped_slots == 0


def test_backoff_grows_with_consecutive_query_failures(users_catalog, source, destination, store, reporter, options):
    strategy = RetryStrategy(RetryConfig(base_delay=1.0, max_delay=5.0))
    worker = make_worker(users_catalog, source, destination, store, reporter, options, backoff=strategy)
    failed = MagicMock(query_failed=True)
    ok = MagicMock(query_failed=False)

    assert [worker._backoff_delay(failed) for _ in range(4)] == [1.0, 2.0, 4.0, 5.0]
    assert worker._backoff_delay(ok) == 0.0
    assert worker.consecutive_failures == 0


def test_backoff_disabled_by_default(users_catalog, source, destination, store, reporter, options):
    worker = make_worker(users_catalog, source, destination, store, reporter, options)

    assert worker._backoff_delay(MagicMock(query_failed=True)) == 0.0
    assert worker.consecutive_failures == 1
