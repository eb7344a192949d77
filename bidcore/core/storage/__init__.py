"""
Persistent Storage Module.

Provides SQLite-backed persistence for:
- Auctions (version-checked)
- Bids and their status history
- Trust records
"""

from bidcore.core.storage.sqlite_adapter import SQLiteAdapter
from bidcore.core.storage.storage_manager import StorageManager

__all__ = ["SQLiteAdapter", "StorageManager"]
