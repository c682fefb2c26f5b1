from slotbook.storage.base import DuplicateKeyError
from slotbook.storage.memory import InMemoryStore
from slotbook.storage.sql import SqlStore

__all__ = ["DuplicateKeyError", "InMemoryStore", "SqlStore"]
