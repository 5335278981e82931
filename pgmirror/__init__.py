"""Incremental one-way mirroring of Postgres tables"""

__version__ = "1.0.0"
