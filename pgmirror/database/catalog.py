from typing import Iterable, List

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from .connection import DatabaseConnection
from ..core.exceptions import QueryError, SchemaError
from ..core.models import PrimaryKey
from ..utils.logger import LoggerSetup

logger = LoggerSetup.setup(__name__)

LIST_TABLES_QUERY = text("""
    SELECT table_name
    FROM information_schema.tables
    WHERE table_schema = :schema
      AND table_type = 'BASE TABLE'
""")

PRIMARY_KEY_QUERY = text("""
    SELECT kcu.column_name, c.data_type
    FROM information_schema.table_constraints tc
    JOIN information_schema.key_column_usage kcu
      ON tc.constraint_name = kcu.constraint_name
     AND tc.table_schema    = kcu.table_schema
     AND tc.table_name      = kcu.table_name
    JOIN information_schema.columns c
      ON c.table_schema = kcu.table_schema
     AND c.table_name   = kcu.table_name
     AND c.column_name  = kcu.column_name
    WHERE tc.constraint_type = 'PRIMARY KEY'
      AND tc.table_schema = :schema
      AND tc.table_name   = :table
    ORDER BY kcu.ordinal_position
""")


def filter_tables(tables: Iterable[str],
                  include: Iterable[str] = (),
                  exclude: Iterable[str] = ()) -> List[str]:
    """
    Apply include/exclude name sets to discovered tables.

    An empty include set keeps everything; exclude always removes.
    """
    include_set = set(include)
    exclude_set = set(exclude)
    selected = [
        name for name in tables
        if (not include_set or name in include_set) and name not in exclude_set
    ]
    return sorted(set(selected))


class PostgresCatalog:
    """
    Table discovery and primary key resolution against information_schema.

    Discovery runs once at startup; any failure aborts it with QueryError.
    Key resolution failures are permanent for the table and raise SchemaError.
    """

    def __init__(self,
                 connection: DatabaseConnection,
                 schema: str = "public",
                 include: Iterable[str] = (),
                 exclude: Iterable[str] = ()):
        self._db = connection
        self.schema = schema
        self.include = frozenset(include)
        self.exclude = frozenset(exclude)

    async def list_tables(self) -> List[str]:
        try:
            async with self._db.session() as session:
                result = await session.execute(LIST_TABLES_QUERY, {"schema": self.schema})
                names = [row[0] for row in result.fetchall()]
        except SQLAlchemyError as e:
            raise QueryError(f"Failed to list tables in schema {self.schema}: {e}") from e

        tables = filter_tables(names, self.include, self.exclude)
        logger.info(
            f"Discovered {len(names)} tables in {self.schema}, "
            f"{len(tables)} selected for sync"
        )
        return tables

    async def resolve_primary_key(self, table: str) -> PrimaryKey:
        try:
            async with self._db.session() as session:
                result = await session.execute(
                    PRIMARY_KEY_QUERY, {"schema": self.schema, "table": table}
                )
                rows = result.fetchall()
        except SQLAlchemyError as e:
            raise SchemaError(f"Failed to resolve primary key: {e}", table) from e

        if not rows:
            raise SchemaError("Table has no primary key", table)
        if len(rows) > 1:
            columns = ", ".join(row[0] for row in rows)
            raise SchemaError(f"Composite primary key ({columns}) is not supported", table)

        column, data_type = rows[0][0], rows[0][1]
        logger.debug(f"Primary key for {self.schema}.{table}: {column} ({data_type})")
        return PrimaryKey(column=column, data_type=data_type)
