"""Table mirroring: checkpoints, workers, persistence and orchestration"""

from .checkpoint import CheckpointStore
from .events import EventReporter, Subscription, log_events
from .metrics import SyncMetrics
from .orchestrator import MirrorService
from .persistence import PersistenceLoop
from .worker import TableSyncWorker

__all__ = [
    "CheckpointStore",
    "EventReporter",
    "Subscription",
    "log_events",
    "SyncMetrics",
    "MirrorService",
    "PersistenceLoop",
    "TableSyncWorker",
]
