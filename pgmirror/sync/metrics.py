from typing import Optional

from prometheus_client import CollectorRegistry, Counter, Gauge, generate_latest


class SyncMetrics:
    """
    Prometheus metrics for table synchronization.

    Metrics:
    - Unix time of the last successful tick per table
    - Rows mirrored, insert errors and query errors per table
    """

    def __init__(self, registry: Optional[CollectorRegistry] = None):
        self.registry = registry or CollectorRegistry()

        self.last_table_sync = Gauge(
            'pgmirror_last_table_sync_timestamp_seconds',
            'Timestamp of the last successful table sync.',
            ['table_name'],
            registry=self.registry
        )

        self.rows_mirrored = Counter(
            'pgmirror_rows_mirrored',
            'Rows inserted into the destination.',
            ['table_name'],
            registry=self.registry
        )

        self.insert_errors = Counter(
            'pgmirror_insert_errors',
            'Destination inserts that failed.',
            ['table_name'],
            registry=self.registry
        )

        self.query_errors = Counter(
            'pgmirror_query_errors',
            'Source range queries that failed.',
            ['table_name'],
            registry=self.registry
        )

    def record_tick(self, table: str, timestamp: float, inserted: int, failed: int) -> None:
        self.last_table_sync.labels(table_name=table).set(timestamp)
        if inserted:
            self.rows_mirrored.labels(table_name=table).inc(inserted)
        if failed:
            self.insert_errors.labels(table_name=table).inc(failed)

    def record_query_error(self, table: str) -> None:
        self.query_errors.labels(table_name=table).inc()

    def render(self) -> bytes:
        """Text exposition of every registered metric"""
        return generate_latest(self.registry)
