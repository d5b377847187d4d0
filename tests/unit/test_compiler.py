"""
Unit tests for the descriptor compiler.

Tests cover:
- Primitive, temporal and unknown kinds
- Arrays of records and primitives
- Nested objects without an envelope
- Required handling and implicit timestamps
- Malformed, self-referential and over-nested descriptors
"""

import pytest

from baas.aivora_server.errors import SchemaCompileError
from baas.aivora_server.schema.compiler import (
    IMPLICIT_FIELDS,
    MAX_NESTING_DEPTH,
    compile_definition,
    compile_descriptor,
)
from baas.aivora_server.schema.types import (
    CURRENT_TIME,
    ArrayField,
    EntityDefinition,
    LeafField,
    RecordShape,
    StorageType,
)

TASK = {
    "name": "Task",
    "properties": {
        "title": {"type": "string"},
        "priority": {
            "type": "string",
            "enum": ["low", "medium", "high", "urgent"],
            "default": "medium",
        },
        "meta": {"type": "object", "properties": {"source": {"type": "string"}}},
        "subtasks": {
            "type": "array",
            "items": {
                "type": "object",
                "properties": {"name": {"type": "string"}, "done": {"type": "boolean"}},
            },
        },
    },
    "required": ["title", "meta"],
}


class TestCompileDescriptor:
    """Tests for compile_descriptor."""

    def test_string(self):
        assert compile_descriptor({"type": "string"}) == LeafField(StorageType.TEXT)

    @pytest.mark.parametrize("fmt", ["date", "date-time"])
    def test_temporal_string(self, fmt):
        compiled = compile_descriptor({"type": "string", "format": fmt})
        assert compiled.storage_type is StorageType.TIMESTAMP

    def test_other_format_stays_text(self):
        compiled = compile_descriptor({"type": "string", "format": "email"})
        assert compiled.storage_type is StorageType.TEXT

    def test_integer_and_number_collapse(self):
        assert compile_descriptor({"type": "integer"}) == compile_descriptor({"type": "number"})
        assert compile_descriptor({"type": "integer"}).storage_type is StorageType.NUMBER

    def test_boolean(self):
        assert compile_descriptor({"type": "boolean"}).storage_type is StorageType.BOOLEAN

    def test_unknown_kind_is_mixed(self):
        assert compile_descriptor({"type": "geopoint"}) == LeafField(StorageType.MIXED)

    def test_non_string_kind_is_mixed(self):
        assert compile_descriptor({"type": ["string", "null"]}) == LeafField(StorageType.MIXED)

    def test_enum_and_default(self):
        compiled = compile_descriptor({"type": "string", "enum": ["a", "b"], "default": "a"})
        assert compiled.enum == ("a", "b")
        assert compiled.default == "a"
        assert compiled.required is False

    def test_unique(self):
        assert compile_descriptor({"type": "string", "unique": True}).unique is True

    def test_object_has_no_envelope(self):
        properties = {"a": {"type": "string"}, "b": {"type": "number", "default": 1}}
        compiled = compile_descriptor(
            {"type": "object", "properties": properties, "enum": [{}], "default": {}}
        )
        direct = RecordShape({name: compile_descriptor(d) for name, d in properties.items()})
        assert isinstance(compiled, RecordShape)
        assert compiled.to_dict() == direct.to_dict()

    def test_properties_without_type_is_object(self):
        compiled = compile_descriptor({"properties": {"a": {"type": "string"}}})
        assert isinstance(compiled, RecordShape)

    def test_object_without_properties(self):
        assert compile_descriptor({"type": "object"}).to_dict() == RecordShape({}).to_dict()

    def test_array_of_records(self):
        properties = {"name": {"type": "string"}, "done": {"type": "boolean"}}
        compiled = compile_descriptor(
            {"type": "array", "items": {"type": "object", "properties": properties}}
        )
        assert isinstance(compiled, ArrayField)
        assert isinstance(compiled.element, RecordShape)
        direct = compile_descriptor({"type": "object", "properties": properties})
        assert compiled.element.to_dict() == direct.to_dict()

    def test_array_of_primitives(self):
        compiled = compile_descriptor({"type": "array", "items": {"type": "string"}})
        assert compiled.element == LeafField(StorageType.TEXT)

    def test_array_items_keep_format(self):
        compiled = compile_descriptor(
            {"type": "array", "items": {"type": "string", "format": "date"}}
        )
        assert compiled.element.storage_type is StorageType.TIMESTAMP

    def test_array_without_items_is_mixed(self):
        assert compile_descriptor({"type": "array"}).element == LeafField(StorageType.MIXED)
        assert compile_descriptor({"type": "array", "items": {}}).element == LeafField(
            StorageType.MIXED
        )

    def test_items_without_type_is_array(self):
        compiled = compile_descriptor({"items": {"type": "number"}})
        assert isinstance(compiled, ArrayField)
        assert compiled.element.storage_type is StorageType.NUMBER

    def test_shared_descriptor_is_not_a_cycle(self):
        child = {"type": "string"}
        compiled = compile_descriptor({"type": "object", "properties": {"a": child, "b": child}})
        assert set(compiled.fields) == {"a", "b"}


class TestMalformedDescriptors:
    """Tests for descriptors that must fail to compile."""

    def test_empty_descriptor(self):
        with pytest.raises(SchemaCompileError, match="no 'type', 'items' or 'properties'"):
            compile_descriptor({})

    def test_non_object_descriptor(self):
        with pytest.raises(SchemaCompileError, match="must be an object"):
            compile_descriptor("string")

    def test_primitive_with_items(self):
        with pytest.raises(SchemaCompileError, match="cannot declare"):
            compile_descriptor({"type": "string", "items": {"type": "string"}})

    def test_items_and_properties(self):
        with pytest.raises(SchemaCompileError):
            compile_descriptor({"items": {"type": "string"}, "properties": {}})

    def test_array_with_properties(self):
        with pytest.raises(SchemaCompileError):
            compile_descriptor({"type": "array", "properties": {}})

    def test_object_with_items(self):
        with pytest.raises(SchemaCompileError):
            compile_descriptor({"type": "object", "items": {"type": "string"}})

    def test_nested_error_reports_path(self):
        with pytest.raises(SchemaCompileError) as exc_info:
            compile_descriptor(
                {"type": "object", "properties": {"inner": {"type": "object", "properties": {"x": {}}}}}
            )
        assert exc_info.value.path == "inner.x"

    def test_enum_must_be_list(self):
        with pytest.raises(SchemaCompileError, match="'enum' must be a list"):
            compile_descriptor({"type": "string", "enum": "abc"})

    def test_self_reference(self):
        node = {"type": "object", "properties": {}}
        node["properties"]["child"] = node
        with pytest.raises(SchemaCompileError, match="self-referential"):
            compile_descriptor(node)

    def test_self_reference_through_array(self):
        node = {"type": "object", "properties": {}}
        node["properties"]["children"] = {"type": "array", "items": node}
        with pytest.raises(SchemaCompileError, match="self-referential"):
            compile_descriptor(node)

    def test_deep_nesting(self):
        descriptor = {"type": "string"}
        for _ in range(400):
            descriptor = {"type": "object", "properties": {"inner": descriptor}}
        with pytest.raises(SchemaCompileError, match="nested too deeply"):
            compile_descriptor(descriptor)

    def test_nesting_within_limit(self):
        descriptor = {"type": "string"}
        for _ in range(MAX_NESTING_DEPTH):
            descriptor = {"type": "array", "items": descriptor}
        assert isinstance(compile_descriptor(descriptor), ArrayField)

    def test_non_string_field_name(self):
        with pytest.raises(SchemaCompileError, match="field name must be a string"):
            compile_descriptor(
                {"type": "object", "properties": {True: {"type": "boolean"}}}
            )

    def test_unique_ignored_on_mixed(self):
        compiled = compile_descriptor({"type": "object-ish", "unique": True})
        assert compiled.storage_type is StorageType.MIXED
        assert compiled.unique is False


class TestCompileDefinition:
    """Tests for compile_definition."""

    def test_deterministic(self):
        definition = EntityDefinition.from_dict(TASK, source="Task.json")
        first = compile_definition(definition)
        second = compile_definition(definition)
        assert first.to_dict() == second.to_dict()
        assert first.fingerprint == second.fingerprint

    def test_required_applies_to_leaf(self):
        schema = compile_definition(EntityDefinition.from_dict(TASK))
        assert schema.get_field("title").required is True
        assert schema.get_field("priority").required is False

    def test_required_never_applies_to_nested_object(self):
        schema = compile_definition(EntityDefinition.from_dict(TASK))
        assert isinstance(schema.get_field("meta"), RecordShape)
        assert schema.get_field("meta").required is False
        assert "meta" not in schema.required_fields

    def test_required_applies_to_array(self):
        definition = EntityDefinition.from_dict(
            {"name": "T", "properties": {"tags": {"type": "array"}}, "required": ["tags"]}
        )
        assert compile_definition(definition).get_field("tags").required is True

    def test_required_unknown_name_is_ignored(self):
        definition = EntityDefinition.from_dict(
            {"name": "T", "properties": {}, "required": ["ghost"]}
        )
        assert compile_definition(definition).get_field("ghost") is None

    def test_implicit_timestamps(self):
        schema = compile_definition(EntityDefinition.from_dict(TASK))
        for name in IMPLICIT_FIELDS:
            field = schema.get_field(name)
            assert field.storage_type is StorageType.TIMESTAMP
            assert field.default is CURRENT_TIME

    def test_implicit_timestamps_cannot_be_overridden(self):
        definition = EntityDefinition.from_dict(
            {"name": "T", "properties": {"created_date": {"type": "number"}}}
        )
        field = compile_definition(definition).get_field("created_date")
        assert field.storage_type is StorageType.TIMESTAMP

    def test_enum_without_default_accepts_and_rejects(self):
        definition = EntityDefinition.from_dict(
            {"name": "Grade", "properties": {"grade": {"type": "string", "enum": ["a", "b"]}}}
        )
        schema = compile_definition(definition)
        for value in ("a", "b"):
            _, errors = schema.prepare_insert({"grade": value})
            assert errors == []
        _, errors = schema.prepare_insert({"grade": "c"})
        assert errors == ["Field 'grade' must be one of ['a', 'b'], got 'c'"]

    def test_bad_property_fails_whole_definition(self):
        definition = EntityDefinition.from_dict(
            {"name": "T", "properties": {"ok": {"type": "string"}, "bad": {}}}
        )
        with pytest.raises(SchemaCompileError, match="T.bad"):
            compile_definition(definition)

    def test_properties_must_be_mapping(self):
        definition = EntityDefinition(name="T", properties=["a"])
        with pytest.raises(SchemaCompileError):
            compile_definition(definition)

    def test_top_level_field_names_must_be_strings(self):
        definition = EntityDefinition(
            name="Light", properties={True: {"type": "boolean"}, "label": {"type": "string"}}
        )
        with pytest.raises(SchemaCompileError, match="field name must be a string"):
            compile_definition(definition)

    def test_unique_mixed_field_is_not_a_unique_field(self):
        definition = EntityDefinition.from_dict(
            {"name": "T", "properties": {"blob": {"unique": True, "type": "json"}}}
        )
        assert compile_definition(definition).unique_fields == []


class TestEntityDefinition:
    """Tests for EntityDefinition.from_dict."""

    def test_default_name(self):
        definition = EntityDefinition.from_dict({"properties": {}}, default_name="Note")
        assert definition.name == "Note"

    def test_missing_name(self):
        with pytest.raises(ValueError, match="has no name"):
            EntityDefinition.from_dict({"properties": {}})

    def test_required_must_be_names(self):
        with pytest.raises(ValueError, match="'required'"):
            EntityDefinition.from_dict({"name": "T", "required": "title"})
