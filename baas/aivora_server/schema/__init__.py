"""
Schema module for Aivora.

This module turns declarative entity descriptors into runtime-checked
schemas:
- Compiled field types (LeafField, ArrayField, RecordShape)
- Descriptor compiler (compile_descriptor, compile_definition)
- Definition discovery from a directory (load_definitions)

Invariants:
    - Compiled schemas are immutable
    - Compilation is a pure function of the descriptor
    - Loading never raises for a single bad file

How to change safely:
    - Add new descriptor keywords as optional keys
    - Keep unknown descriptor types compiling to MIXED
"""

from .compiler import IMPLICIT_FIELDS, compile_definition, compile_descriptor
from .loader import LoadIssue, load_definition_file, load_definitions
from .types import (
    CURRENT_TIME,
    ArrayField,
    CompiledField,
    CompiledSchema,
    EntityDefinition,
    LeafField,
    RecordShape,
    StorageType,
    normalize_timestamp,
    values_equal,
)

__all__ = [
    # Types
    "StorageType",
    "LeafField",
    "ArrayField",
    "RecordShape",
    "CompiledField",
    "CompiledSchema",
    "EntityDefinition",
    "CURRENT_TIME",
    "normalize_timestamp",
    "values_equal",
    # Compiler
    "compile_descriptor",
    "compile_definition",
    "IMPLICIT_FIELDS",
    # Loading
    "LoadIssue",
    "load_definition_file",
    "load_definitions",
]
