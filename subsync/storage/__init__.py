"""Durable stores for change records, conflicts, subscribers and audit events."""

from subsync.storage.audit_log import AuditEvent, SQLiteAuditLog
from subsync.storage.change_store import ChangeRecordStore, SQLiteChangeRecordStore
from subsync.storage.conflict_store import ConflictStore, SQLiteConflictStore
from subsync.storage.database import SQLiteDatabase
from subsync.storage.mirror_source import YamlMirrorSource
from subsync.storage.subscriber_store import SQLiteSubscriberStore, SubscriberStore

__all__ = [
    "AuditEvent",
    "ChangeRecordStore",
    "ConflictStore",
    "SQLiteAuditLog",
    "SQLiteChangeRecordStore",
    "SQLiteConflictStore",
    "SQLiteDatabase",
    "SQLiteSubscriberStore",
    "SubscriberStore",
    "YamlMirrorSource",
]
