import pytest
from typing import Any, Callable, Dict, Iterable, List, Optional, Set

from pgmirror.core.config import SyncOptions
from pgmirror.core.exceptions import DuplicateRowError, InsertError, QueryError, SchemaError
from pgmirror.core.models import PrimaryKey, Row
from pgmirror.sync.checkpoint import CheckpointStore
from pgmirror.sync.events import EventReporter


class FakeCatalog:
    """In-memory catalog: table name -> primary key, or an error to raise"""

    def __init__(self, keys: Dict[str, Any], list_error: Optional[Exception] = None):
        self.keys = keys
        self.list_error = list_error
        self.resolve_calls: List[str] = []

    async def list_tables(self) -> List[str]:
        if self.list_error:
            raise self.list_error
        return sorted(self.keys)

    async def resolve_primary_key(self, table: str) -> PrimaryKey:
        self.resolve_calls.append(table)
        key = self.keys.get(table)
        if key is None:
            raise SchemaError("Table has no primary key", table)
        if isinstance(key, Exception):
            raise key
        return key


class FakeSource:
    """
    Source tables held as lists of rows, served in ascending key order.

    `sort_key` mimics the database collation used for both the range filter
    and the ordering.
    """

    def __init__(self, tables: Optional[Dict[str, List[Row]]] = None,
                 sort_key: Callable[[Any], Any] = lambda key: key):
        self.sort_key = sort_key
        self.tables: Dict[str, List[Row]] = tables or {}
        self.fail_next = 0
        self.queries: List[Any] = []

    def add(self, table: str, *rows: Row) -> None:
        self.tables.setdefault(table, []).extend(rows)

    async def fetch_rows(self, table: str, primary_key: PrimaryKey,
                         after: Any, limit: int) -> List[Row]:
        self.queries.append(after)
        if self.fail_next:
            self.fail_next -= 1
            raise QueryError("connection reset", table)
        column = primary_key.column
        rows = sorted(self.tables.get(table, []), key=lambda r: self.sort_key(r[column]))
        return [dict(r) for r in rows if self.sort_key(r[column]) > self.sort_key(after)][:limit]


class FakeDestination:
    """Destination that rejects duplicate keys and any key listed in `reject`"""

    def __init__(self, key_column: str = "id"):
        self.key_column = key_column
        self.tables: Dict[str, List[Row]] = {}
        self.reject: Set[Any] = set()
        self.attempts: List[Any] = []

    async def insert_row(self, table: str, row: Row) -> None:
        key = row[self.key_column]
        self.attempts.append(key)
        rows = self.tables.setdefault(table, [])
        if key in self.reject:
            raise InsertError(f"rejected row {key}", table)
        if any(r[self.key_column] == key for r in rows):
            raise DuplicateRowError(f"duplicate key value violates unique constraint ({key})", table)
        rows.append(dict(row))

    def keys(self, table: str) -> List[Any]:
        return [r[self.key_column] for r in self.tables.get(table, [])]


def user_rows(keys: Iterable[int]) -> List[Row]:
    return [{"id": k, "name": f"user-{k}"} for k in keys]


@pytest.fixture
def options() -> SyncOptions:
    return SyncOptions(chunk=1000, sync_interval=0.01, persist_interval=0.01)

@pytest.fixture
def store() -> CheckpointStore:
    return CheckpointStore()

@pytest.fixture
def reporter() -> EventReporter:
    return EventReporter(buffer_size=100)

@pytest.fixture
def users_catalog() -> FakeCatalog:
    return FakeCatalog({"users": PrimaryKey(column="id", data_type="integer")})

@pytest.fixture
def source() -> FakeSource:
    return FakeSource()

@pytest.fixture
def destination() -> FakeDestination:
    return FakeDestination()
