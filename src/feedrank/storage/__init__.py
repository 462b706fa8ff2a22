"""Storage layer — SQLite database access and schema management."""

from feedrank.storage.connection import get_connection, get_readonly_connection
from feedrank.storage.gateway import Storage
from feedrank.storage.schema import init_db

__all__ = ["Storage", "get_connection", "get_readonly_connection", "init_db"]
