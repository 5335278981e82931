import argparse
import asyncio
import signal
import sys
from contextlib import contextmanager
from typing import List, Optional

import uvicorn

from . import __version__
from .api.app import create_app
from .core.config import Config
from .core.exceptions import ConfigurationError, DatabaseConnectionError
from .database import DatabaseConnection, DestinationWriter, PostgresCatalog, SourceReader
from .sync import EventReporter, MirrorService, SyncMetrics, log_events
from .utils.logger import LoggerSetup

logger = LoggerSetup.setup(__name__)


class MetricsServer(uvicorn.Server):
    """uvicorn server that leaves signal handling to the host process"""

    def install_signal_handlers(self) -> None:
        pass

    @contextmanager
    def capture_signals(self):
        yield


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="pgmirror",
        description="Incrementally mirror Postgres tables into another database"
    )
    parser.add_argument("-i", "--src", help="source database DSN")
    parser.add_argument("-d", "--dest", help="destination database DSN")
    parser.add_argument("-x", "--exclude", help="comma separated tables to skip")
    parser.add_argument("-s", "--only", help="comma separated tables to mirror")
    parser.add_argument("-t", "--sync_interval", help="interval between ticks, e.g. 1m or 30s (default 1m)")
    parser.add_argument("-p", "--prometheus_port", help="metrics listen address, e.g. :9090")
    parser.add_argument("-c", "--chunk", type=int, help="max rows fetched per tick (default 1000)")
    parser.add_argument("-v", "--verbose", action="store_true", default=None, help="log trace events and debug output")
    parser.add_argument("--checkpoint", help="checkpoint snapshot path (default .storage)")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return parser


async def run(config: Config) -> int:
    """
    Connect, mirror until SIGINT/SIGTERM, then shut down without a final flush.

    Returns:
        int: Process exit code
    """
    source_db = DatabaseConnection(config.source, "source")
    dest_db = DatabaseConnection(config.destination, "destination")
    try:
        await source_db.initialize()
        await dest_db.initialize()
    except DatabaseConnectionError as e:
        logger.error(str(e))
        await source_db.close()
        await dest_db.close()
        return 1

    options = config.sync
    metrics = SyncMetrics()
    reporter = EventReporter(options.event_buffer)
    service = MirrorService(
        catalog=PostgresCatalog(
            source_db,
            schema=options.schema,
            include=options.include_tables,
            exclude=options.exclude_tables
        ),
        source=SourceReader(source_db, options.schema),
        sink=DestinationWriter(dest_db, options.schema),
        config=options,
        reporter=reporter,
        metrics=metrics
    )

    tasks: List[asyncio.Task] = [
        asyncio.create_task(
            log_events(reporter.subscribe(), service.error_tracker),
            name="event-log"
        )
    ]

    server: Optional[MetricsServer] = None
    if config.metrics.enabled:
        host, port = config.metrics.host_port
        server = MetricsServer(uvicorn.Config(
            create_app(metrics, service),
            host=host,
            port=port,
            log_level="warning",
            access_log=False
        ))
        tasks.append(asyncio.create_task(server.serve(), name="metrics"))
        logger.info(f"Serving metrics on {host}:{port}")

    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    received: List[str] = []

    def _on_signal(sig: signal.Signals) -> None:
        received.append(sig.name)
        stop_event.set()

    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, _on_signal, sig)

    try:
        await service.start()
        await stop_event.wait()
        logger.info(f"Received {received[0] if received else 'stop'}, exiting gracefully...")
        logger.debug(service.get_service_status())
    finally:
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.remove_signal_handler(sig)

        await service.stop()
        if server is not None:
            server.should_exit = True
        reporter.close()
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

        await source_db.close()
        await dest_db.close()

    return 0


def main(argv: Optional[List[str]] = None) -> None:
    args = build_parser().parse_args(argv)

    try:
        config = Config(overrides=vars(args))
    except ConfigurationError as e:
        logger.error(f"Invalid configuration: {e}")
        sys.exit(1)

    LoggerSetup.configure(
        logs_dir=config.logging.directory,
        verbose=config.logging.verbose or config.logging.level == "DEBUG"
    )

    sys.exit(asyncio.run(run(config)))


if __name__ == "__main__":
    main()
