"""
Schema-bound collection handle.

A Collection pairs one CompiledSchema with the shared RecordStore and is
the only path through which entity records are created or changed.

Invariants:
    - Every insert is checked against the compiled schema before storage
    - Updates validate only the fields they provide
    - Undeclared fields are stored and returned unchanged
    - Unique fields are enforced within the collection's kind
"""

from __future__ import annotations

import json
import logging
from typing import Any, Mapping

from ..errors import RecordNotFoundError, ValidationError
from ..schema.types import CompiledSchema, utc_now_iso, values_equal
from .record_store import RecordStore, is_valid_field_name

logger = logging.getLogger(__name__)

# Ordering between values of different JSON types when sorting
_TYPE_RANK = {type(None): 0, int: 1, float: 1, str: 2, dict: 3, list: 4, bool: 5}


def _sort_key(value: Any) -> tuple[int, Any]:
    rank = _TYPE_RANK.get(type(value), 6)
    if rank == 0:
        return rank, 0
    if rank in (3, 4, 6):
        return rank, json.dumps(value, sort_keys=True, default=str)
    return rank, value


def _matches(record: Mapping[str, Any], filters: Mapping[str, Any]) -> bool:
    """Structural equality on top-level field/value pairs.

    A None filter value matches an absent or null field. A scalar filter
    value matches an array field containing it.
    """
    for name, expected in filters.items():
        actual = record.get(name)
        if expected is None:
            if actual is not None:
                return False
            continue
        if values_equal(actual, expected):
            continue
        if isinstance(actual, list) and not isinstance(expected, list):
            if any(values_equal(item, expected) for item in actual):
                continue
        return False
    return True


class Collection:
    """Persistent collection for one entity kind.

    Example:
        >>> tasks = registry.resolve("Task")
        >>> task = await tasks.insert({"title": "Write docs"})
        >>> await tasks.find({"status": "todo"}, sort="-created_date")
    """

    def __init__(self, schema: CompiledSchema, store: RecordStore) -> None:
        self.schema = schema
        self.store = store

    @property
    def name(self) -> str:
        return self.schema.name

    def __repr__(self) -> str:
        return f"Collection({self.name!r})"

    def _unique_values(self, record: Mapping[str, Any]) -> dict[str, Any]:
        return {
            name: record[name]
            for name in self.schema.unique_fields
            if record.get(name) is not None
        }

    def _prepare(self, record: Mapping[str, Any]) -> dict[str, Any]:
        if not isinstance(record, Mapping):
            raise ValidationError(
                f"{self.name} record must be an object", kind=self.name
            )
        payload = dict(record)
        payload.pop("id", None)
        prepared, errors = self.schema.prepare_insert(payload)
        if errors:
            raise ValidationError(
                f"{self.name} validation failed: {'; '.join(errors)}",
                errors=errors,
                kind=self.name,
            )
        return prepared

    async def insert(self, record: Mapping[str, Any]) -> dict[str, Any]:
        """Validate and store a new record.

        Raises:
            ValidationError: If required fields are missing or values are invalid
            DuplicateRecordError: If a unique field value is taken
        """
        prepared = self._prepare(record)
        stored = await self.store.insert_record(
            self.name, prepared, unique=self._unique_values(prepared)
        )
        logger.debug(f"Created {self.name} {stored.record_id}")
        return stored.to_record()

    async def insert_many(self, records: list[Mapping[str, Any]]) -> list[dict[str, Any]]:
        """Validate all records, then store them in one transaction."""
        prepared = [self._prepare(record) for record in records]
        stored = await self.store.insert_records(
            self.name,
            prepared,
            unique=[self._unique_values(p) for p in prepared],
        )
        return [s.to_record() for s in stored]

    async def update_by_id(self, record_id: str, patch: Mapping[str, Any]) -> dict[str, Any]:
        """Apply a partial update.

        Raises:
            RecordNotFoundError: If no record has this id
            ValidationError: If a provided field is invalid
        """
        changes = dict(patch)
        changes.pop("id", None)
        changes.pop("created_date", None)
        changes["updated_date"] = utc_now_iso()

        prepared, errors = self.schema.prepare_update(changes)
        if errors:
            raise ValidationError(
                f"{self.name} validation failed: {'; '.join(errors)}",
                errors=errors,
                kind=self.name,
            )

        stored = await self.store.update_record(
            self.name, record_id, prepared, unique=self._unique_values(prepared)
        )
        if stored is None:
            raise RecordNotFoundError(self.name, record_id)
        return stored.to_record()

    async def delete_by_id(self, record_id: str) -> None:
        """Delete a record.

        Raises:
            RecordNotFoundError: If no record has this id
        """
        if not await self.store.delete_record(self.name, record_id):
            raise RecordNotFoundError(self.name, record_id)
        logger.debug(f"Deleted {self.name} {record_id}")

    async def get(self, record_id: str) -> dict[str, Any] | None:
        stored = await self.store.get_record(self.name, record_id)
        return stored.to_record() if stored else None

    async def find(
        self,
        filters: Mapping[str, Any] | None = None,
        sort: str | None = None,
    ) -> list[dict[str, Any]]:
        """Find records matching every filter pair.

        Args:
            filters: Field name -> expected value
            sort: Field name to sort by, prefixed with "-" for descending

        Returns:
            Matching records, in insertion order unless sorted
        """
        normalized = {
            name: self.schema.normalize_filter_value(name, value)
            for name, value in (filters or {}).items()
        }
        # String equality narrows the scan in SQL; _matches stays authoritative
        equals = {
            name: value
            for name, value in normalized.items()
            if isinstance(value, str) and is_valid_field_name(name) and name != "id"
        }
        records = [
            stored.to_record()
            for stored in await self.store.list_records(self.name, equals=equals)
        ]
        results = [r for r in records if _matches(r, normalized)]

        if sort:
            descending = sort.startswith("-")
            key = sort.lstrip("-")
            results.sort(key=lambda r: _sort_key(r.get(key)), reverse=descending)
        return results

    async def find_one(self, filters: Mapping[str, Any] | None = None) -> dict[str, Any] | None:
        results = await self.find(filters)
        return results[0] if results else None

    async def count(self) -> int:
        return await self.store.count_records(self.name)

