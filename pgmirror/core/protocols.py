from typing import Any, List, Protocol

from .models import PrimaryKey, Row


class TableCatalog(Protocol):
    """
    Source catalog access.

    Features:
    - Table discovery in the configured schema
    - Single-column primary key resolution
    """
    async def list_tables(self) -> List[str]:
        """
        List candidate table names.

        Raises:
            QueryError: If the catalog query fails
        """
        ...

    async def resolve_primary_key(self, table: str) -> PrimaryKey:
        """
        Resolve the single primary-key column of a table.

        Raises:
            SchemaError: If the table has no primary key or a composite one
        """
        ...


class RowSource(Protocol):
    """Reads ordered key ranges from the source database"""
    async def fetch_rows(self, table: str, primary_key: PrimaryKey,
                         after: Any, limit: int) -> List[Row]:
        """
        Fetch up to `limit` rows with key greater than `after`, ascending by key.

        Raises:
            QueryError: If the range query fails
        """
        ...


class RowSink(Protocol):
    """Writes single rows into the destination database"""
    async def insert_row(self, table: str, row: Row) -> None:
        """
        Insert one row in its own transaction.

        Raises:
            InsertError: If the insert fails
        """
        ...
