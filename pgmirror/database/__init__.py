"""Database access: connection management, catalog queries and row I/O"""

from .connection import DatabaseConnection
from .catalog import PostgresCatalog, filter_tables
from .rows import DestinationWriter, SourceReader, build_insert, build_range_query

__all__ = [
    "DatabaseConnection",
    "PostgresCatalog",
    "filter_tables",
    "SourceReader",
    "DestinationWriter",
    "build_range_query",
    "build_insert",
]
