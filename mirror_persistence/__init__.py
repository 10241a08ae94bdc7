"""
Mirror Persistence module.

This module contains the database implementation for run storage.
Currently supports SQLite, but can be extended to PostgreSQL, MySQL, etc.

The persistence layer depends on mirror_common for domain models and
interfaces, and is used by mirror_server, mirror_controller and mirror_admin.
"""

from .sqlite_repository import SQLiteRunRepository

__all__ = ["SQLiteRunRepository"]
