import asyncio
from typing import Dict, List, Optional

from ..core.config import SyncOptions
from ..core.enums import ServiceStatus, WorkerState
from ..core.exceptions import PersistenceError, QueryError, ServiceError
from ..core.protocols import RowSink, RowSource, TableCatalog
from ..utils.error import ErrorTracker
from ..utils.logger import LoggerSetup
from ..utils.time import get_current_timestamp, format_duration
from .checkpoint import CheckpointStore
from .events import EventReporter
from .metrics import SyncMetrics
from .persistence import PersistenceLoop
from .worker import TableSyncWorker

EVENT_SOURCE = "discovery"


class MirrorService:
    """
    Top-level mirroring service.

    Features:
    - Restores table watermarks from the last checkpoint snapshot
    - Discovers tables once and runs one worker task per table
    - Persists watermarks periodically
    - Reports every failure through a shared event reporter
    - Lifecycle through start/stop and a multi-line status report
    """
    def __init__(self,
                 catalog: TableCatalog,
                 source: RowSource,
                 sink: RowSink,
                 config: SyncOptions,
                 store: Optional[CheckpointStore] = None,
                 reporter: Optional[EventReporter] = None,
                 metrics: Optional[SyncMetrics] = None):
        self._config = config

        # Core dependencies
        self._catalog = catalog
        self._source = source
        self._sink = sink
        self.store = store or CheckpointStore()
        self.reporter = reporter or EventReporter(config.event_buffer)
        self.metrics = metrics
        self.error_tracker = ErrorTracker()

        self.persistence = PersistenceLoop(
            store=self.store,
            path=config.checkpoint_path,
            reporter=self.reporter,
            interval=config.persist_interval
        )

        # Service state
        self._status: ServiceStatus = ServiceStatus.STOPPED
        self._start_time: Optional[int] = None
        self._last_error: Optional[Exception] = None
        self.workers: Dict[str, TableSyncWorker] = {}

        # Task management
        self._tasks: List[asyncio.Task] = []

        self.logger = LoggerSetup.setup(__class__.__name__)

    @property
    def status(self) -> ServiceStatus:
        return self._status

    def _restore_checkpoint(self) -> None:
        try:
            self.store.load(self._config.checkpoint_path)
        except PersistenceError as e:
            # Corrupt snapshot: every table starts from its minimum
            self._last_error = e
            self.reporter.error(EVENT_SOURCE, e)

    async def start(self) -> None:
        """
        Restore state, discover tables and launch the workers.

        A failed discovery is reported and leaves the service in the ERROR
        state without workers; it does not raise.

        Raises:
            ServiceError: If the service is already running
        """
        if self._status in (ServiceStatus.STARTING, ServiceStatus.RUNNING):
            raise ServiceError("Mirror service is already running")

        self._status = ServiceStatus.STARTING
        self._start_time = get_current_timestamp()
        self.logger.info("Starting mirror service")

        self._restore_checkpoint()

        try:
            tables = await self._catalog.list_tables()
        except QueryError as e:
            self._status = ServiceStatus.ERROR
            self._last_error = e
            self.reporter.error(EVENT_SOURCE, e)
            self.logger.error(f"Table discovery failed, nothing will be mirrored: {e}")
            return

        self.logger.info(f"Mirroring {len(tables)} tables: {', '.join(tables) or '-'}")

        for table in tables:
            worker = TableSyncWorker(
                table=table,
                catalog=self._catalog,
                source=self._source,
                sink=self._sink,
                store=self.store,
                reporter=self.reporter,
                options=self._config,
                metrics=self.metrics
            )
            self.workers[table] = worker
            self._tasks.append(asyncio.create_task(worker.run(), name=f"sync:{table}"))

        self._tasks.append(asyncio.create_task(self.persistence.run(), name="persist"))

        self._status = ServiceStatus.RUNNING
        self.logger.info("Mirror service started successfully")

    async def stop(self) -> None:
        """Cancel every worker and the persistence loop without a final flush"""
        self._status = ServiceStatus.STOPPING
        self.logger.info("Stopping mirror service")

        for task in self._tasks:
            task.cancel()
        results = await asyncio.gather(*self._tasks, return_exceptions=True)
        for task, result in zip(self._tasks, results):
            if isinstance(result, Exception):
                self.logger.error(f"Task {task.get_name()} ended with error: {result}")
        self._tasks.clear()

        self._status = ServiceStatus.STOPPED
        self.logger.info("Mirror service stopped")

    def get_service_status(self) -> str:
        """
        Generate detailed service status report.

        Returns:
            str: Multi-line status report
        """
        uptime = "-"
        if self._start_time is not None:
            uptime = format_duration((get_current_timestamp() - self._start_time) / 1000)

        status_lines = [
            "Mirror Service Status:",
            f"Service State: {self._status.value}",
            f"Uptime: {uptime}",
            f"Tables: {len(self.workers)}",
            "",
            "Workers:"
        ]

        watermarks = self.store.snapshot()
        for table, worker in sorted(self.workers.items()):
            line = f"  {table}: {worker.state.value}"
            if worker.state != WorkerState.FAILED:
                line += f", watermark={watermarks.get(table, '-')}, ticks={worker.ticks}"
                if worker.skipped_slots:
                    line += f", skipped={worker.skipped_slots}"
            status_lines.append(line)

        status_lines.extend([
            "",
            f"Checkpoints: {self.persistence.saves} saved, {self.persistence.failures} failed",
            f"Events: {self.reporter.published} published, {self.reporter.dropped} dropped"
        ])

        errors = self.error_tracker.get_error_summary()
        if errors:
            status_lines.append("Recent Errors:")
            for error_type, count in sorted(errors.items()):
                tables = ", ".join(sorted(self.error_tracker.get_affected_entities(error_type)))
                status_lines.append(f"  {error_type}: {count} ({tables or '-'})")

        if self._last_error is not None:
            status_lines.append(
                f"Last Service Error: {type(self._last_error).__name__} {self._last_error}"
            )

        return "\n".join(status_lines)
