"""
StoreHub Persistence module.

This module contains the database implementation for build job storage.
Currently supports SQLite, but can be extended to PostgreSQL, MySQL, etc.

The persistence layer depends on storehub_common for domain models and
interfaces, and is used by both storehub_worker and storehub_admin.
"""

from .sqlite_repository import SQLiteJobRepository

__all__ = ["SQLiteJobRepository"]
