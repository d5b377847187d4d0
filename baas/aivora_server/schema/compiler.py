"""
Type descriptor compiler.

Translates JSON-schema-like type descriptors into compiled fields:

    string              -> LeafField(TEXT)
    string + date(-time) -> LeafField(TIMESTAMP)
    number / integer    -> LeafField(NUMBER)
    boolean             -> LeafField(BOOLEAN)
    array of object     -> ArrayField(element=RecordShape(...))
    array of primitive  -> ArrayField(element=<compiled items>)
    array, no items     -> ArrayField(element=LeafField(MIXED))
    object              -> RecordShape(...)   (no envelope)
    anything else       -> LeafField(MIXED)

Invariants:
    - Compilation is deterministic: same descriptor, same result
    - Unknown kinds never fail, they compile to MIXED
    - Conflicting or missing kind information fails with SchemaCompileError
    - Self-referential descriptors fail instead of recursing forever
    - Nesting deeper than MAX_NESTING_DEPTH fails with SchemaCompileError
    - Field names are strings (YAML may parse keys like "on" as booleans)
    - Only scalar leaves (not MIXED) can be unique
    - The compiler never marks a field required; the registry builder does
"""

from __future__ import annotations

import logging
from dataclasses import replace
from typing import Any, Mapping

from ..errors import SchemaCompileError
from .types import (
    CURRENT_TIME,
    ArrayField,
    CompiledField,
    CompiledSchema,
    EntityDefinition,
    LeafField,
    RecordShape,
    StorageType,
)

logger = logging.getLogger(__name__)

PRIMITIVE_KINDS = {
    "string": StorageType.TEXT,
    "number": StorageType.NUMBER,
    "integer": StorageType.NUMBER,
    "boolean": StorageType.BOOLEAN,
}

TEMPORAL_FORMATS = frozenset({"date", "date-time"})

# Added to every compiled schema, regardless of the descriptor
IMPLICIT_FIELDS = ("created_date", "updated_date")

# Descriptor levels below an entity property
MAX_NESTING_DEPTH = 32


def compile_descriptor(descriptor: Any, path: str = "") -> CompiledField:
    """Compile one type descriptor, recursively.

    Args:
        descriptor: Parsed descriptor (a dict)
        path: Dotted location used in error messages

    Returns:
        LeafField, ArrayField or RecordShape

    Raises:
        SchemaCompileError: If the descriptor is malformed

    Example:
        >>> compile_descriptor({"type": "string", "enum": ["a", "b"]})
        LeafField(storage_type=<StorageType.TEXT: 'text'>, enum=('a', 'b'), ...)
    """
    return _compile(descriptor, path, set(), 0)


def _resolve_kind(descriptor: Mapping[str, Any], path: str) -> Any:
    kind = descriptor.get("type")
    has_items = "items" in descriptor
    has_properties = "properties" in descriptor

    if kind is None:
        if has_properties and has_items:
            raise SchemaCompileError("descriptor declares both 'items' and 'properties'", path)
        if has_properties:
            return "object"
        if has_items:
            return "array"
        raise SchemaCompileError("descriptor has no 'type', 'items' or 'properties'", path)

    if not isinstance(kind, str):
        return kind

    if kind in PRIMITIVE_KINDS and (has_items or has_properties):
        raise SchemaCompileError(f"primitive type '{kind}' cannot declare items/properties", path)
    if kind == "array" and has_properties:
        raise SchemaCompileError("array type cannot declare 'properties'", path)
    if kind == "object" and has_items:
        raise SchemaCompileError("object type cannot declare 'items'", path)
    return kind


def _enum_of(descriptor: Mapping[str, Any], path: str) -> tuple[Any, ...] | None:
    values = descriptor.get("enum")
    if values is None:
        return None
    if not isinstance(values, (list, tuple)):
        raise SchemaCompileError("'enum' must be a list", path)
    return tuple(values)


def _compile(descriptor: Any, path: str, active: set[int], depth: int) -> CompiledField:
    if not isinstance(descriptor, Mapping):
        raise SchemaCompileError(
            f"descriptor must be an object, got {type(descriptor).__name__}", path
        )
    if depth > MAX_NESTING_DEPTH:
        raise SchemaCompileError(
            f"descriptor nested too deeply (limit {MAX_NESTING_DEPTH})", path
        )

    marker = id(descriptor)
    if marker in active:
        raise SchemaCompileError("self-referential descriptor", path)
    active.add(marker)
    try:
        return _compile_resolved(descriptor, path, active, depth)
    finally:
        active.discard(marker)


def _compile_resolved(
    descriptor: Mapping[str, Any], path: str, active: set[int], depth: int
) -> CompiledField:
    kind = _resolve_kind(descriptor, path)

    if kind == "object":
        return _compile_properties(descriptor.get("properties"), path, active, depth)

    enum = _enum_of(descriptor, path)
    default = descriptor.get("default")

    if kind == "array":
        items = descriptor.get("items")
        if isinstance(items, Mapping) and any(k in items for k in ("type", "items", "properties")):
            element = _compile(items, f"{path}[]", active, depth + 1)
        else:
            element = LeafField(StorageType.MIXED)
        return ArrayField(element=element, enum=enum, default=default)

    if isinstance(kind, str) and kind in PRIMITIVE_KINDS:
        storage_type = PRIMITIVE_KINDS[kind]
        fmt = descriptor.get("format")
        if storage_type is StorageType.TEXT and isinstance(fmt, str) and fmt in TEMPORAL_FORMATS:
            storage_type = StorageType.TIMESTAMP
    else:
        logger.debug(f"Unknown descriptor type {kind!r} at '{path}', storing as mixed")
        storage_type = StorageType.MIXED

    unique = bool(descriptor.get("unique", False))
    if unique and storage_type is StorageType.MIXED:
        logger.warning(f"'{path}' has no scalar type, ignoring 'unique'")
        unique = False

    return LeafField(
        storage_type=storage_type,
        enum=enum,
        default=default,
        unique=unique,
    )


def _check_field_name(name: Any, path: str) -> None:
    if not isinstance(name, str):
        raise SchemaCompileError(
            f"field name must be a string, got {type(name).__name__} {name!r}", path
        )


def _compile_properties(
    properties: Any, path: str, active: set[int], depth: int
) -> RecordShape:
    if properties is None:
        return RecordShape({})
    if not isinstance(properties, Mapping):
        raise SchemaCompileError("'properties' must be an object", path)
    fields = {}
    for name, child in properties.items():
        _check_field_name(name, path)
        fields[name] = _compile(child, f"{path}.{name}" if path else name, active, depth + 1)
    return RecordShape(fields)


def implicit_fields() -> dict[str, CompiledField]:
    """Timestamp fields present on every entity kind."""
    return {
        name: LeafField(StorageType.TIMESTAMP, default=CURRENT_TIME)
        for name in IMPLICIT_FIELDS
    }


def compile_definition(definition: EntityDefinition) -> CompiledSchema:
    """Compile an entity definition into a CompiledSchema.

    Fields listed in ``required`` become mandatory only when the compiled
    field has a concrete type (LeafField or ArrayField). A bare nested
    object stays optional even when listed.

    Args:
        definition: The entity definition

    Returns:
        Immutable CompiledSchema

    Raises:
        SchemaCompileError: If any property descriptor is malformed
    """
    if not isinstance(definition.properties, Mapping):
        raise SchemaCompileError("'properties' must be an object", definition.name)

    required = set(definition.required)
    fields = implicit_fields()

    for name, descriptor in definition.properties.items():
        _check_field_name(name, definition.name)
        if name in IMPLICIT_FIELDS:
            logger.debug(f"{definition.name}.{name} is implicit, descriptor ignored")
            continue

        compiled = compile_descriptor(descriptor, f"{definition.name}.{name}")
        if name in required and not isinstance(compiled, RecordShape):
            compiled = replace(compiled, required=True)
        fields[name] = compiled

    return CompiledSchema(
        name=definition.name,
        shape=RecordShape(fields),
        source=definition.source,
    )
