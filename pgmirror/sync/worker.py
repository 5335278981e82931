import asyncio
import time
from typing import Optional

from ..core.config import SyncOptions
from ..core.enums import TickPolicy, WorkerState
from ..core.exceptions import DuplicateRowError, InsertError, QueryError, SchemaError
from ..core.models import PrimaryKey, TickResult, describe_row
from ..core.protocols import RowSink, RowSource, TableCatalog
from ..utils.logger import LoggerSetup
from ..utils.retry import RetryConfig, RetryStrategy
from .checkpoint import CheckpointStore
from .events import EventReporter
from .metrics import SyncMetrics

logger = LoggerSetup.setup(__name__)

EVENT_SOURCE = "sync"


def default_backoff(interval: float) -> RetryStrategy:
    """Exponential delay added after consecutive query failures"""
    return RetryStrategy(RetryConfig(
        base_delay=interval,
        max_delay=max(interval * 16, 300.0),
        jitter_factor=0.0
    ))


class TableSyncWorker:
    """
    Mirrors one table: resolve its primary key once, then poll forever.

    Each tick reads the table watermark, fetches the next chunk of rows with
    a greater key in ascending key order and inserts them one by one. The
    watermark advances right after each row that is inserted or already
    present in the destination, and is frozen for the rest of the tick after
    the first failed insert, so the failed row is fetched again on the next
    tick.
    """

    def __init__(self,
                 table: str,
                 catalog: TableCatalog,
                 source: RowSource,
                 sink: RowSink,
                 store: CheckpointStore,
                 reporter: EventReporter,
                 options: SyncOptions,
                 metrics: Optional[SyncMetrics] = None,
                 backoff: Optional[RetryStrategy] = None):
        self.table = table
        self._catalog = catalog
        self._source = source
        self._sink = sink
        self._store = store
        self._reporter = reporter
        self._options = options
        self._metrics = metrics
        self._backoff = backoff
        if backoff is None and options.backoff:
            self._backoff = default_backoff(options.sync_interval)

        self.state = WorkerState.RESOLVING
        self.primary_key: Optional[PrimaryKey] = None
        self.ticks = 0
        self.skipped_slots = 0
        self.consecutive_failures = 0
        self.last_result: Optional[TickResult] = None
        self.last_sync: Optional[float] = None
        self.last_error: Optional[Exception] = None
        self._next_slot: Optional[float] = None

    async def resolve(self) -> bool:
        """
        Resolve the primary key; a failure is permanent for this worker.

        Returns:
            bool: True when the worker can start polling
        """
        try:
            self.primary_key = await self._catalog.resolve_primary_key(self.table)
        except SchemaError as e:
            self.state = WorkerState.FAILED
            self._reporter.error(EVENT_SOURCE, e, self.table)
            logger.warning(f"Table {self.table} will not be mirrored: {e}")
            return False

        self.state = WorkerState.POLLING
        logger.debug(
            f"Worker for {self.table} keyed on {self.primary_key.column} "
            f"({self.primary_key.domain.value})"
        )
        return True

    async def tick(self) -> TickResult:
        """Run one fetch -> insert -> advance cycle"""
        if self.primary_key is None:
            raise SchemaError("Primary key not resolved", self.table)

        pk = self.primary_key
        domain = pk.domain
        self.ticks += 1

        try:
            watermark = domain.coerce(self._store.get(self.table, default=domain.minimum))
        except ValueError as e:
            error = QueryError(f"Stored watermark is not a valid {domain.value} key: {e}", self.table)
            self._reporter.error(EVENT_SOURCE, error)
            return TickResult(table=self.table, query_failed=True)

        result = TickResult(
            table=self.table,
            watermark_before=watermark,
            watermark_after=watermark
        )

        try:
            rows = await self._source.fetch_rows(self.table, pk, watermark, self._options.chunk)
        except QueryError as e:
            result.query_failed = True
            self.last_error = e
            self._reporter.error(EVENT_SOURCE, e, self.table)
            if self._metrics:
                self._metrics.record_query_error(self.table)
            return result

        result.fetched = len(rows)
        self._reporter.trace(EVENT_SOURCE, f"syncing with {pk.column} > {watermark}", self.table)

        # Rows arrive in the database's key order; keys are never compared here
        frozen = False
        for row in rows:
            key = row.get(pk.column)
            try:
                await self._sink.insert_row(self.table, row)
                result.inserted += 1
            except DuplicateRowError:
                result.present += 1
                self._reporter.trace(
                    EVENT_SOURCE, f"row {pk.column}={key} already present", self.table
                )
            except InsertError as e:
                e.key = key
                result.failed += 1
                frozen = True
                self._reporter.error(EVENT_SOURCE, e, self.table)
                logger.debug(f"Failed row {pk.column}={key} of {self.table}: {describe_row(row)}")
                continue

            if not frozen and key is not None:
                self._store.set(self.table, key)
                result.watermark_after = key

        self.last_sync = time.time()
        if self._metrics:
            self._metrics.record_tick(self.table, self.last_sync, result.inserted, result.failed)

        return result

    def plan_next(self, now: float) -> float:
        """
        Seconds to wait before the next tick, given the current monotonic time.

        The schedule is fixed-rate, anchored at the first call. When a tick
        overran its slot, SKIP waits for the next future slot and SERIALIZE
        starts immediately and re-anchors on the current time.
        """
        interval = self._options.sync_interval
        if self._next_slot is None:
            self._next_slot = now + interval
            return interval

        self._next_slot += interval
        if now <= self._next_slot:
            return self._next_slot - now

        if self._options.tick_policy == TickPolicy.SERIALIZE:
            self._next_slot = now
            return 0.0

        missed = int((now - self._next_slot) // interval) + 1
        self.skipped_slots += missed
        self._next_slot += missed * interval
        logger.debug(f"Tick for {self.table} overran, skipped {missed} slot(s)")
        return self._next_slot - now

    def _backoff_delay(self, result: Optional[TickResult]) -> float:
        if result is not None and result.query_failed:
            self.consecutive_failures += 1
        else:
            self.consecutive_failures = 0

        if self._backoff is None or self.consecutive_failures == 0:
            return 0.0
        return self._backoff.get_delay(self.consecutive_failures - 1, self.last_error)

    async def run(self) -> None:
        """Resolve, then tick on the fixed interval until cancelled"""
        loop = asyncio.get_running_loop()
        if not await self.resolve():
            return

        try:
            await asyncio.sleep(self.plan_next(loop.time()))
            while True:
                result: Optional[TickResult] = None
                try:
                    result = await self.tick()
                    self.last_result = result
                except Exception as e:
                    self._reporter.error(EVENT_SOURCE, e, self.table)
                    logger.exception(f"Unexpected error during tick for {self.table}")

                extra = self._backoff_delay(result)
                if extra:
                    self._reporter.trace(
                        EVENT_SOURCE,
                        f"backing off {extra:.1f}s after {self.consecutive_failures} failed queries",
                        self.table
                    )
                    await asyncio.sleep(extra)
                await asyncio.sleep(self.plan_next(loop.time()))
        finally:
            if self.state == WorkerState.POLLING:
                self.state = WorkerState.STOPPED
