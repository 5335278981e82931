from datetime import date, datetime, timezone
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any


class ServiceStatus(str, Enum):
    """Lifecycle of the mirror service"""
    STOPPED = "stopped"
    STARTING = "starting"
    RUNNING = "running"
    STOPPING = "stopping"
    ERROR = "error"


class WorkerState(str, Enum):
    """Table worker state machine"""
    RESOLVING = "resolving"
    POLLING = "polling"
    FAILED = "failed"
    STOPPED = "stopped"


class EventType(str, Enum):
    """Kinds of events carried by the event reporter"""
    ERROR = "error"
    TRACE = "trace"


class TickPolicy(str, Enum):
    """
    What a worker does when a tick outlasts the sync interval.

    SKIP drops the timer slots that elapsed during the tick and waits for the
    next future slot. SERIALIZE starts the next tick right away. Ticks of one
    table never run concurrently under either policy.
    """
    SKIP = "skip"
    SERIALIZE = "serialize"


_EPOCH = datetime(1970, 1, 1)


class WatermarkDomain(str, Enum):
    """
    Value domain of a primary-key column.

    Decides the minimum watermark used when a table has no checkpoint yet and
    how persisted JSON values are turned back into comparable Python values.
    """
    INTEGER = "integer"
    NUMERIC = "numeric"
    STRING = "string"
    TIMESTAMP = "timestamp"
    TIMESTAMPTZ = "timestamptz"
    DATE = "date"

    @classmethod
    def from_data_type(cls, data_type: str | None) -> 'WatermarkDomain':
        """Map an information_schema data_type to a domain"""
        t = (data_type or "").lower()
        if t in ("smallint", "integer", "bigint"):
            return cls.INTEGER
        if t in ("numeric", "decimal", "real", "double precision"):
            return cls.NUMERIC
        if t == "timestamp with time zone":
            return cls.TIMESTAMPTZ
        if t == "timestamp without time zone":
            return cls.TIMESTAMP
        if t == "date":
            return cls.DATE
        return cls.STRING

    @property
    def minimum(self) -> Any:
        """Watermark used for tables without a checkpoint"""
        if self in (WatermarkDomain.INTEGER, WatermarkDomain.NUMERIC):
            return 0
        if self == WatermarkDomain.TIMESTAMP:
            return _EPOCH
        if self == WatermarkDomain.TIMESTAMPTZ:
            return _EPOCH.replace(tzinfo=timezone.utc)
        if self == WatermarkDomain.DATE:
            return _EPOCH.date()
        return ""

    def coerce(self, value: Any) -> Any:
        """
        Convert a stored watermark into this domain's native type.

        Raises:
            ValueError: If the value cannot represent a key of this domain
        """
        if value is None:
            return self.minimum

        if self == WatermarkDomain.INTEGER:
            if isinstance(value, bool):
                raise ValueError(f"Invalid integer watermark {value!r}")
            if isinstance(value, float) and not value.is_integer():
                raise ValueError(f"Invalid integer watermark {value!r}")
            return int(value)

        if self == WatermarkDomain.NUMERIC:
            if isinstance(value, (int, float, Decimal)) and not isinstance(value, bool):
                return value
            try:
                return Decimal(str(value))
            except InvalidOperation as e:
                raise ValueError(f"Invalid numeric watermark {value!r}") from e

        if self == WatermarkDomain.DATE:
            if isinstance(value, datetime):
                return value.date()
            if isinstance(value, date):
                return value
            if isinstance(value, str):
                return date.fromisoformat(value[:10])
            raise ValueError(f"Invalid date watermark {value!r}")

        if self in (WatermarkDomain.TIMESTAMP, WatermarkDomain.TIMESTAMPTZ):
            if isinstance(value, datetime):
                dt = value
            elif isinstance(value, str):
                dt = datetime.fromisoformat(value)
            else:
                raise ValueError(f"Invalid timestamp watermark {value!r}")
            if self == WatermarkDomain.TIMESTAMPTZ and dt.tzinfo is None:
                dt = dt.replace(tzinfo=timezone.utc)
            if self == WatermarkDomain.TIMESTAMP and dt.tzinfo is not None:
                dt = dt.astimezone(timezone.utc).replace(tzinfo=None)
            return dt

        return value if isinstance(value, str) else str(value)
