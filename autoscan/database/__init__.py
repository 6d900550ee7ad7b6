"""Database module: SQLAlchemy async engine, write lock and ORM models.

Usage:
    from autoscan.database import Database

    db = Database(settings.database_url)
    await db.create_all()
"""

from .connection import Database, get_async_database_url
from .orm import Base


__all__ = ["Base", "Database", "get_async_database_url"]
