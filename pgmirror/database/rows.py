from typing import Any, List

from sqlalchemy import Insert, Select, bindparam, column, insert, literal_column, select, table
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from .connection import DatabaseConnection
from ..core.exceptions import DuplicateRowError, InsertError, QueryError
from ..core.models import PrimaryKey, Row
from ..utils.logger import LoggerSetup

logger = LoggerSetup.setup(__name__)

UNIQUE_VIOLATION = "23505"


def build_range_query(table_name: str, primary_key: PrimaryKey,
                      after: Any, limit: int, schema: str | None = None) -> Select:
    """SELECT * ... WHERE pk > :watermark ORDER BY pk ASC LIMIT :limit"""
    source = table(table_name, column(primary_key.column), schema=schema)
    key = source.c[primary_key.column]
    return (
        select(literal_column("*"))
        .select_from(source)
        .where(key > bindparam("watermark", after))
        .order_by(key.asc())
        .limit(limit)
    )


def is_unique_violation(error: IntegrityError) -> bool:
    """True when the driver reports SQLSTATE 23505 for the failed statement"""
    orig = error.orig
    for candidate in (orig, getattr(orig, "__cause__", None)):
        code = getattr(candidate, "sqlstate", None) or getattr(candidate, "pgcode", None)
        if code == UNIQUE_VIOLATION:
            return True
    return False


def build_insert(table_name: str, row: Row, schema: str | None = None) -> Insert:
    """Parameterized INSERT using the row's own column names"""
    target = table(table_name, *(column(name) for name in row), schema=schema)
    return insert(target).values(row)


class SourceReader:
    """Reads ascending key ranges from the source database"""

    def __init__(self, connection: DatabaseConnection, schema: str = "public"):
        self._db = connection
        self.schema = schema

    async def fetch_rows(self, table_name: str, primary_key: PrimaryKey,
                         after: Any, limit: int) -> List[Row]:
        query = build_range_query(table_name, primary_key, after, limit, self.schema)
        try:
            async with self._db.session() as session:
                result = await session.execute(query)
                return [dict(row) for row in result.mappings().all()]
        except SQLAlchemyError as e:
            raise QueryError(f"Failed to query table: {e}", table_name) from e


class DestinationWriter:
    """Inserts rows one at a time, each in its own transaction"""

    def __init__(self, connection: DatabaseConnection, schema: str = "public"):
        self._db = connection
        self.schema = schema

    async def insert_row(self, table_name: str, row: Row) -> None:
        if not row:
            raise InsertError("Cannot insert an empty row", table_name)
        statement = build_insert(table_name, row, self.schema)
        try:
            async with self._db.session() as session:
                await session.execute(statement)
        except IntegrityError as e:
            if is_unique_violation(e):
                raise DuplicateRowError(f"Row already present: {e.orig}", table_name) from e
            raise InsertError(f"Failed to insert values: {e}", table_name) from e
        except SQLAlchemyError as e:
            raise InsertError(f"Failed to insert values: {e}", table_name) from e
