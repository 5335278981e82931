from dataclasses import dataclass
from datetime import date, datetime, time
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, RootModel, StrictFloat, StrictInt

from .enums import EventType, WatermarkDomain

Row = Dict[str, Any]
"""Column name to driver-decoded value, in source column order"""


class ValueKind(str, Enum):
    """Tag describing the scalar carried by a row column"""
    INTEGER = "integer"
    FLOAT = "float"
    STRING = "string"
    TIMESTAMP = "timestamp"
    NULL = "null"
    OTHER = "other"

    @classmethod
    def of(cls, value: Any) -> 'ValueKind':
        """Classify a driver-decoded value"""
        if value is None:
            return cls.NULL
        if isinstance(value, bool):
            return cls.OTHER
        if isinstance(value, int):
            return cls.INTEGER
        if isinstance(value, (float, Decimal)):
            return cls.FLOAT
        if isinstance(value, str):
            return cls.STRING
        if isinstance(value, (datetime, date, time)):
            return cls.TIMESTAMP
        return cls.OTHER


def describe_row(row: Row) -> Dict[str, ValueKind]:
    """Tagged view of a row, used in debug output"""
    return {column: ValueKind.of(value) for column, value in row.items()}


@dataclass(frozen=True)
class PrimaryKey:
    """Single orderable primary-key column of a table"""
    column: str
    data_type: str

    @property
    def domain(self) -> WatermarkDomain:
        return WatermarkDomain.from_data_type(self.data_type)


@dataclass
class TickResult:
    """Outcome of one fetch -> insert -> advance cycle"""
    table: str
    fetched: int = 0
    inserted: int = 0
    failed: int = 0
    present: int = 0
    watermark_before: Any = None
    watermark_after: Any = None
    query_failed: bool = False

    @property
    def advanced(self) -> bool:
        return self.watermark_after != self.watermark_before


class SyncEvent(BaseModel):
    """Error or trace line emitted by a component"""
    model_config = ConfigDict(frozen=True)

    source: str
    type: EventType
    timestamp: int = Field(description="Unix timestamp in milliseconds")
    message: str
    table: Optional[str] = None
    error_type: Optional[str] = None

    def __str__(self) -> str:
        prefix = f"[{self.source}:{self.table}]" if self.table else f"[{self.source}]"
        return f"{prefix} {self.message}"


WatermarkValue = Union[StrictInt, StrictFloat, str, None]


class CheckpointSnapshot(RootModel[Dict[str, WatermarkValue]]):
    """Persisted checkpoint file: flat mapping of table name to watermark"""
    pass
