import json
import os
import tempfile
import threading
from datetime import date, datetime, time
from decimal import Decimal
from typing import Any, Dict

from pydantic import ValidationError

from ..core.exceptions import PersistenceError
from ..core.models import CheckpointSnapshot
from ..utils.logger import LoggerSetup

logger = LoggerSetup.setup(__name__)


def _encode_watermark(value: Any) -> Any:
    """
    Numbers stay numbers when a float holds them exactly; decimals that
    would lose digits, timestamps and anything else become strings.
    """
    if isinstance(value, Decimal):
        if value == value.to_integral_value():
            return int(value)
        if Decimal(float(value)) == value:
            return float(value)
        return str(value)
    if isinstance(value, (datetime, date, time)):
        return value.isoformat()
    return str(value)


class CheckpointStore:
    """
    Table name to watermark mapping shared by every table worker.

    Every read and write of an entry happens under one lock, so no reader
    ever observes a half-written value. Serialization produces a flat JSON
    object that a fresh process can hydrate after a restart.
    """

    def __init__(self):
        self._lock = threading.RLock()
        self._watermarks: Dict[str, Any] = {}

    def get(self, table: str, default: Any = 0) -> Any:
        """Current watermark for a table, or `default` when none is stored"""
        with self._lock:
            value = self._watermarks.get(table)
        return default if value is None else value

    def set(self, table: str, watermark: Any) -> None:
        with self._lock:
            self._watermarks[table] = watermark

    def snapshot(self) -> Dict[str, Any]:
        """Copy of the current mapping"""
        with self._lock:
            return dict(self._watermarks)

    def __len__(self) -> int:
        with self._lock:
            return len(self._watermarks)

    def __contains__(self, table: str) -> bool:
        with self._lock:
            return table in self._watermarks

    def serialize(self) -> bytes:
        return json.dumps(
            self.snapshot(),
            default=_encode_watermark,
            sort_keys=True
        ).encode("utf-8")

    def hydrate(self, data: bytes) -> None:
        """
        Replace the store contents with a serialized snapshot.

        Empty input is treated as an empty snapshot.

        Raises:
            PersistenceError: If the data is not a flat table -> watermark object.
                The store is left untouched in that case.
        """
        if not data or not data.strip():
            return
        try:
            snapshot = CheckpointSnapshot.model_validate_json(data)
        except ValidationError as e:
            raise PersistenceError(f"Invalid checkpoint snapshot: {e}") from e

        with self._lock:
            self._watermarks = dict(snapshot.root)

    def load(self, path: str) -> bool:
        """
        Hydrate from a snapshot file.

        Returns:
            bool: False when the file does not exist

        Raises:
            PersistenceError: If the file cannot be read or parsed
        """
        try:
            with open(path, "rb") as f:
                data = f.read()
        except FileNotFoundError:
            logger.info(f"No checkpoint found at {path}, starting from scratch")
            return False
        except OSError as e:
            raise PersistenceError(f"Failed to read checkpoint {path}: {e}") from e

        self.hydrate(data)
        logger.info(f"Loaded {len(self)} table watermarks from {path}")
        return True

    def save(self, path: str) -> None:
        """
        Write the snapshot atomically: temporary file in the same directory,
        fsync, then rename over the previous snapshot.

        Raises:
            PersistenceError: If any step fails
        """
        data = self.serialize()
        directory = os.path.dirname(os.path.abspath(path))
        fd, tmp_path = None, None
        try:
            fd, tmp_path = tempfile.mkstemp(prefix=".checkpoint-", dir=directory)
            with os.fdopen(fd, "wb") as f:
                fd = None
                f.write(data)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_path, path)
            tmp_path = None
        except OSError as e:
            raise PersistenceError(f"Failed to write checkpoint {path}: {e}") from e
        finally:
            if fd is not None:
                os.close(fd)
            if tmp_path is not None and os.path.exists(tmp_path):
                os.unlink(tmp_path)
