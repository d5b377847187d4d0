"""
Storage layer for Aivora.

- RecordStore: SQLite persistence shared by every entity kind
- Collection: schema-checked handle for one kind
"""

from .collection import Collection
from .record_store import (
    RecordStore,
    StoredRecord,
    is_valid_field_name,
    is_valid_record_id,
    new_record_id,
)

__all__ = [
    "Collection",
    "RecordStore",
    "StoredRecord",
    "is_valid_field_name",
    "is_valid_record_id",
    "new_record_id",
]
