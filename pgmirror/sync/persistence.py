import asyncio

from ..core.exceptions import PersistenceError
from ..utils.logger import LoggerSetup
from .checkpoint import CheckpointStore
from .events import EventReporter

logger = LoggerSetup.setup(__name__)

EVENT_SOURCE = "persist"


class PersistenceLoop:
    """
    Periodically writes the checkpoint store to disk.

    A failed write is reported and retried on the next interval; the loop
    itself only ends when cancelled. Nothing is flushed on cancellation.
    """

    def __init__(self,
                 store: CheckpointStore,
                 path: str,
                 reporter: EventReporter,
                 interval: float = 5.0):
        self._store = store
        self._path = path
        self._reporter = reporter
        self._interval = interval
        self.saves = 0
        self.failures = 0

    @property
    def path(self) -> str:
        return self._path

    async def flush(self) -> bool:
        """
        Save one snapshot off the event loop.

        Returns:
            bool: True when the snapshot was written
        """
        try:
            await asyncio.to_thread(self._store.save, self._path)
        except PersistenceError as e:
            self.failures += 1
            self._reporter.error(EVENT_SOURCE, e)
            return False

        self.saves += 1
        logger.debug(f"Checkpoint written to {self._path}")
        return True

    async def run(self) -> None:
        logger.info(f"Persisting checkpoints to {self._path} every {self._interval}s")
        while True:
            await asyncio.sleep(self._interval)
            await self.flush()
