"""Storage layer for tokens and bills."""

from .base import Database
from .bills import BillStore
from .database import DatabaseClient
from .memory import InMemoryDatabase
from .tokens import TokenStore

__all__ = ["Database", "DatabaseClient", "InMemoryDatabase", "TokenStore", "BillStore"]
