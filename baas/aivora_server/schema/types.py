"""
Core type definitions for the Aivora schema system.

This module defines the compiled representation of entity descriptors:
- StorageType: The storage-level value types
- LeafField: A primitive field wrapped in a type/enum/default envelope
- ArrayField: A sequence field whose element is itself a compiled field
- RecordShape: A nested object, represented directly as its field map
- EntityDefinition: One declarative descriptor for an entity kind
- CompiledSchema: The validated shape bound to an entity kind

Invariants:
    - Compiled fields are immutable once built
    - RecordShape never carries an envelope (no enum, default or required)
    - Integers and floats share the NUMBER storage type
    - Timestamps are stored as ISO-8601 UTC strings
    - Fields not declared in a shape pass through validation untouched

How to change safely:
    - Add new storage types at the end of StorageType
    - Keep to_dict() output stable, it feeds the schema fingerprint
    - Never make RecordShape fields mandatory, callers rely on the asymmetry

Example:
    >>> from baas.aivora_server.schema.types import LeafField, StorageType
    >>> priority = LeafField(StorageType.TEXT, enum=("low", "high"), default="low")
    >>> priority.check("urgent", "priority")
    ('urgent', ["Field 'priority' must be one of ['low', 'high'], got 'urgent'"])
"""

from __future__ import annotations

import copy
import hashlib
import json
from dataclasses import dataclass
from dataclasses import field as dataclass_field
from datetime import date, datetime, timezone
from enum import Enum
from types import MappingProxyType
from typing import Any, ClassVar, Mapping, Union


class StorageType(Enum):
    """Storage representations a descriptor can compile to."""

    TEXT = "text"
    NUMBER = "number"  # integer and float collapse into one type
    BOOLEAN = "boolean"
    TIMESTAMP = "timestamp"  # ISO-8601 string, UTC
    MIXED = "mixed"  # opaque JSON value


class _CurrentTime:
    """Default marker resolved to the current time when applied."""

    def __repr__(self) -> str:
        return "CURRENT_TIME"


CURRENT_TIME = _CurrentTime()


def utc_now_iso() -> str:
    """Current UTC time as an ISO-8601 string with millisecond precision."""
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds")


def normalize_timestamp(value: Any) -> str | None:
    """Convert a timestamp-like value to an ISO-8601 UTC string.

    Accepts datetime and date objects, ISO-8601 strings (a trailing ``Z``
    is allowed) and Unix epoch milliseconds.

    Returns:
        Normalized string, or None if the value is not a timestamp
    """
    if isinstance(value, bool):
        return None
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc).isoformat(timespec="milliseconds")
    if isinstance(value, date):
        return normalize_timestamp(datetime(value.year, value.month, value.day))
    if isinstance(value, (int, float)):
        try:
            parsed = datetime.fromtimestamp(value / 1000, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None
        return parsed.isoformat(timespec="milliseconds")
    if isinstance(value, str):
        try:
            parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            return None
        return normalize_timestamp(parsed)
    return None


def values_equal(left: Any, right: Any) -> bool:
    """Structural equality that keeps booleans distinct from numbers."""
    if isinstance(left, bool) or isinstance(right, bool):
        return isinstance(left, bool) and isinstance(right, bool) and left == right
    if isinstance(left, dict) and isinstance(right, dict):
        return left.keys() == right.keys() and all(
            values_equal(left[k], right[k]) for k in left
        )
    if isinstance(left, (list, tuple)) and isinstance(right, (list, tuple)):
        return len(left) == len(right) and all(
            values_equal(a, b) for a, b in zip(left, right)
        )
    return left == right


def _in_enum(value: Any, allowed: tuple[Any, ...]) -> bool:
    return any(values_equal(value, candidate) for candidate in allowed)


def _join(path: str, name: str) -> str:
    return f"{path}.{name}" if path else name


def _describe_default(default: Any) -> Any:
    if default is CURRENT_TIME:
        return "CURRENT_TIME"
    return default


def _check_storage_type(
    storage_type: StorageType, value: Any, path: str
) -> tuple[Any, str | None]:
    """Check a non-null value against a storage type.

    Returns:
        Tuple of (normalized_value, error_message)
    """
    if storage_type is StorageType.TEXT:
        if isinstance(value, str):
            return value, None
        return value, f"Field '{path}' must be a string, got {type(value).__name__}"

    if storage_type is StorageType.NUMBER:
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return value, None
        return value, f"Field '{path}' must be a number, got {type(value).__name__}"

    if storage_type is StorageType.BOOLEAN:
        if isinstance(value, bool):
            return value, None
        return value, f"Field '{path}' must be a boolean, got {type(value).__name__}"

    if storage_type is StorageType.TIMESTAMP:
        normalized = normalize_timestamp(value)
        if normalized is None:
            return value, f"Field '{path}' must be a timestamp, got {value!r}"
        return normalized, None

    return value, None


@dataclass(frozen=True)
class LeafField:
    """A primitive field inside the type/enum/default envelope.

    Attributes:
        storage_type: How the value is stored and checked
        enum: Allowed literal values (None = unconstrained)
        default: Value applied when the field is absent on create
        required: Whether the field must be present and non-null
        unique: Whether the value must be unique within the collection
    """

    storage_type: StorageType
    enum: tuple[Any, ...] | None = None
    default: Any = None
    required: bool = False
    unique: bool = False

    kind: ClassVar[str] = "leaf"

    @property
    def has_default(self) -> bool:
        return self.default is not None

    def default_value(self) -> Any:
        """Materialize the default for a new record."""
        if self.default is CURRENT_TIME:
            return utc_now_iso()
        return copy.deepcopy(self.default)

    def check(self, value: Any, path: str) -> tuple[Any, list[str]]:
        """Validate a value against this field.

        Args:
            value: The value to validate (None means absent)
            path: Field path used in error messages

        Returns:
            Tuple of (normalized_value, list_of_errors)
        """
        if value is None:
            if self.required:
                return None, [f"Field '{path}' is required"]
            return None, []

        normalized, error = _check_storage_type(self.storage_type, value, path)
        if error:
            return value, [error]

        if self.required and self.storage_type is StorageType.TEXT and normalized == "":
            return normalized, [f"Field '{path}' is required"]

        if self.enum is not None and not _in_enum(normalized, self.enum):
            return normalized, [
                f"Field '{path}' must be one of {list(self.enum)}, got {value!r}"
            ]

        return normalized, []

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary representation."""
        result: dict[str, Any] = {"kind": self.kind, "type": self.storage_type.value}
        if self.enum is not None:
            result["enum"] = list(self.enum)
        if self.default is not None:
            result["default"] = _describe_default(self.default)
        if self.required:
            result["required"] = True
        if self.unique:
            result["unique"] = True
        return result


@dataclass(frozen=True)
class ArrayField:
    """A sequence field.

    Arrays default to an empty list when absent. An enum on the array
    constrains each element.

    Attributes:
        element: Compiled shape of each element
        enum: Allowed element values
        default: Explicit default list
        required: Whether the field must be present and non-null
    """

    element: "CompiledField"
    enum: tuple[Any, ...] | None = None
    default: Any = None
    required: bool = False

    kind: ClassVar[str] = "array"

    @property
    def has_default(self) -> bool:
        return True

    def default_value(self) -> Any:
        if self.default is None:
            return []
        return copy.deepcopy(self.default)

    def fill_defaults(self, value: list[Any]) -> list[Any]:
        """Apply element defaults to each record in a list of records."""
        if not isinstance(self.element, RecordShape):
            return value
        return [
            self.element.fill_defaults(item) if isinstance(item, dict) else item
            for item in value
        ]

    def check(self, value: Any, path: str) -> tuple[Any, list[str]]:
        if value is None:
            if self.required:
                return None, [f"Field '{path}' is required"]
            return None, []

        if not isinstance(value, list):
            return value, [f"Field '{path}' must be an array, got {type(value).__name__}"]

        normalized: list[Any] = []
        errors: list[str] = []
        for index, item in enumerate(value):
            item_path = f"{path}[{index}]"
            item_value, item_errors = self.element.check(item, item_path)
            if not item_errors and self.enum is not None and not _in_enum(item_value, self.enum):
                item_errors = [
                    f"Field '{item_path}' must be one of {list(self.enum)}, got {item!r}"
                ]
            errors.extend(item_errors)
            normalized.append(item_value)
        return normalized, errors

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {"kind": self.kind, "element": self.element.to_dict()}
        if self.enum is not None:
            result["enum"] = list(self.enum)
        if self.default is not None:
            result["default"] = self.default
        if self.required:
            result["required"] = True
        return result


@dataclass(frozen=True)
class RecordShape:
    """A nested object, represented directly by its compiled fields.

    Shapes have no envelope: they cannot carry an enum or a default and
    are never required. Keys not declared in the shape are kept as-is.

    Attributes:
        fields: Read-only mapping of field name to compiled field
    """

    fields: Mapping[str, "CompiledField"] = dataclass_field(default_factory=dict)

    kind: ClassVar[str] = "record"
    required: ClassVar[bool] = False

    def __post_init__(self) -> None:
        object.__setattr__(self, "fields", MappingProxyType(dict(self.fields)))

    def fill_defaults(self, value: dict[str, Any]) -> dict[str, Any]:
        """Return a copy of value with defaults applied to absent fields.

        Nested shapes are materialized only when they end up non-empty.
        """
        result = dict(value)
        for name, child in self.fields.items():
            if name not in result:
                if isinstance(child, RecordShape):
                    nested = child.fill_defaults({})
                    if nested:
                        result[name] = nested
                elif child.has_default:
                    result[name] = child.default_value()
                continue

            current = result[name]
            if isinstance(child, RecordShape) and isinstance(current, dict):
                result[name] = child.fill_defaults(current)
            elif isinstance(child, ArrayField) and isinstance(current, list):
                result[name] = child.fill_defaults(current)
        return result

    def check(self, value: Any, path: str) -> tuple[Any, list[str]]:
        if value is None:
            return None, []
        if not isinstance(value, dict):
            return value, [f"Field '{path}' must be an object, got {type(value).__name__}"]

        normalized = dict(value)
        errors: list[str] = []
        for name, child in self.fields.items():
            if name in value:
                child_value, child_errors = child.check(value[name], _join(path, name))
                normalized[name] = child_value
                errors.extend(child_errors)
        return normalized, errors

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind,
            "fields": {name: self.fields[name].to_dict() for name in sorted(self.fields)},
        }


CompiledField = Union[LeafField, ArrayField, RecordShape]


@dataclass(frozen=True)
class EntityDefinition:
    """Declarative descriptor for one entity kind.

    Attributes:
        name: Entity kind identifier (e.g. "Task")
        properties: Field name -> raw type descriptor
        required: Field names that must be present on create
        source: Where the definition came from (file name or "<builtin>")
        description: Human-readable description

    Example:
        >>> Task = EntityDefinition.from_dict(
        ...     {"name": "Task", "properties": {"title": {"type": "string"}}},
        ...     source="Task.json",
        ... )
    """

    name: str
    properties: Mapping[str, Any] = dataclass_field(default_factory=dict)
    required: tuple[str, ...] = ()
    source: str = "<memory>"
    description: str = ""

    @classmethod
    def from_dict(
        cls,
        data: Mapping[str, Any],
        source: str = "<memory>",
        default_name: str | None = None,
    ) -> EntityDefinition:
        """Create from a parsed descriptor document.

        Args:
            data: Parsed JSON/YAML document
            source: Source identifier for error reporting
            default_name: Name used when the document has none

        Raises:
            ValueError: If the document has no usable name or required list
        """
        name = data.get("name") or default_name
        if not isinstance(name, str) or not name:
            raise ValueError(f"Entity definition in {source} has no name")

        required = data.get("required") or ()
        if not isinstance(required, (list, tuple)) or not all(
            isinstance(r, str) for r in required
        ):
            raise ValueError(f"'required' in {source} must be a list of field names")

        return cls(
            name=name,
            properties=data.get("properties") or {},
            required=tuple(required),
            source=source,
            description=data.get("description") or "",
        )


@dataclass(frozen=True)
class CompiledSchema:
    """Runtime-checked shape of an entity kind.

    Consulted on every create and update. Existing stored records are
    never re-validated.

    Attributes:
        name: Entity kind identifier
        shape: Top-level compiled fields
        source: Source of the definition this schema was compiled from
    """

    name: str
    shape: RecordShape
    source: str = "<memory>"

    @property
    def fields(self) -> Mapping[str, CompiledField]:
        return self.shape.fields

    def get_field(self, name: str) -> CompiledField | None:
        return self.shape.fields.get(name)

    @property
    def required_fields(self) -> list[str]:
        return [name for name, f in self.fields.items() if f.required]

    @property
    def unique_fields(self) -> list[str]:
        return [
            name for name, f in self.fields.items()
            if isinstance(f, LeafField) and f.unique
        ]

    def prepare_insert(self, record: Mapping[str, Any]) -> tuple[dict[str, Any], list[str]]:
        """Apply defaults and validate a record about to be created.

        Returns:
            Tuple of (prepared_record, list_of_errors)
        """
        filled = self.shape.fill_defaults(dict(record))
        prepared = dict(filled)
        errors: list[str] = []
        for name, compiled in self.fields.items():
            value, field_errors = compiled.check(filled.get(name), name)
            if name in filled:
                prepared[name] = value
            errors.extend(field_errors)
        return prepared, errors

    def prepare_update(self, patch: Mapping[str, Any]) -> tuple[dict[str, Any], list[str]]:
        """Validate only the fields present in a partial update."""
        prepared = dict(patch)
        errors: list[str] = []
        for name, value in patch.items():
            compiled = self.fields.get(name)
            if compiled is None:
                continue
            normalized, field_errors = compiled.check(value, name)
            prepared[name] = normalized
            errors.extend(field_errors)
        return prepared, errors

    def normalize_filter_value(self, name: str, value: Any) -> Any:
        """Bring a filter value into stored form (timestamps only)."""
        compiled = self.fields.get(name)
        if isinstance(compiled, LeafField) and compiled.storage_type is StorageType.TIMESTAMP:
            return normalize_timestamp(value) or value
        return value

    def to_dict(self) -> dict[str, Any]:
        """Canonical structural representation (source excluded)."""
        return {"name": self.name, "fields": self.shape.to_dict()["fields"]}

    @property
    def fingerprint(self) -> str:
        canonical = json.dumps(self.to_dict(), sort_keys=True, separators=(",", ":"), default=str)
        return "sha256:" + hashlib.sha256(canonical.encode("utf-8")).hexdigest()
