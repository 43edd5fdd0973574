"""SQLite database layer: connection management and the credential store implementation."""

from accounts.db.connection import Database
from accounts.db.credential_store import SqliteCredentialStore

__all__ = [
    "Database",
    "SqliteCredentialStore",
]
