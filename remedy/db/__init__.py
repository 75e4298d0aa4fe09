"""Database package."""

from remedy.db.models import Base
from remedy.db.session import close_db, init_db

__all__ = ["Base", "close_db", "init_db"]
