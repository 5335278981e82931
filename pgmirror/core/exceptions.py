# pgmirror/core/exceptions.py

from typing import Optional

class PgMirrorError(Exception):
    """Base exception for all application errors"""
    pass

class ConfigurationError(PgMirrorError):
    """Base exception for configuration errors"""
    pass

class ServiceError(PgMirrorError):
    """Base exception for service layer errors"""
    pass

class DatabaseConnectionError(PgMirrorError):
    """A source or destination database could not be reached at startup"""
    pass

class TableError(PgMirrorError):
    """Base exception for errors scoped to a single table"""

    def __init__(self, message: str, table: Optional[str] = None):
        super().__init__(message)
        self.table = table

class SchemaError(TableError):
    """Table has no usable single-column primary key"""
    pass

class QueryError(TableError):
    """Catalog or range fetch query failed"""
    pass

class InsertError(TableError):
    """Destination insert failed for one row"""

    def __init__(self, message: str, table: Optional[str] = None, key: object = None):
        super().__init__(message, table)
        self.key = key

class PersistenceError(PgMirrorError):
    """Checkpoint snapshot could not be read or written"""
    pass

class DuplicateRowError(InsertError):
    """Destination already holds a row with this primary key"""
    pass
