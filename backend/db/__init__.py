"""
Database Layer
Storage contracts and the SQLite adapter.
"""

from .interfaces import RecordReader, RuleStore, NotificationSink
from .sqlite import SQLiteStorage, get_storage

__all__ = ["RecordReader", "RuleStore", "NotificationSink", "SQLiteStorage", "get_storage"]
