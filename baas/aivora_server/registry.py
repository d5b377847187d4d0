"""
Entity registry for Aivora.

The EntityRegistry is the central authority for entity kinds. It maps
each kind name to its compiled schema and the Collection bound to it.

It provides:
- Registration of compiled schemas during startup
- Lookup by kind name (explicit None for unknown kinds)
- A build report of load errors, compile errors and collisions
- Schema fingerprinting over every registered kind
- The account-kind fallback applied after every build

Invariants:
    - Registry is mutable while building, frozen before serving
    - Once frozen, no kind can be registered or replaced
    - A later definition with the same name replaces the earlier one
    - After build_registry() returns, resolve("User") is never None
    - One bad definition never prevents the rest from registering

How to change safely:
    - Keep FALLBACK_USER_DEFINITION a superset of what accounts need
    - Build through build_registry(); it owns the fallback check
    - Never mutate a registry after freeze

Example:
    >>> store = RecordStore("/tmp/aivora.db")
    >>> await store.initialize()
    >>> registry = build_registry_from_directory("definitions/", store)
    >>> tasks = registry.resolve("Task")
    >>> registry.resolve("Nope") is None
    True
"""

from __future__ import annotations

import hashlib
import json
import logging
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterable, Iterator, List, Optional

from .errors import RegistryFrozenError, SchemaCompileError
from .schema.compiler import compile_definition
from .schema.loader import LoadIssue, load_definitions
from .schema.types import CompiledSchema, EntityDefinition
from .storage.collection import Collection
from .storage.record_store import RecordStore

logger = logging.getLogger(__name__)

ACCOUNT_KIND = "User"
BUILTIN_SOURCE = "<builtin>"

# Minimal account kind, registered when no definition provides one
FALLBACK_USER_DEFINITION: Dict[str, Any] = {
    "name": ACCOUNT_KIND,
    "description": "Built-in account kind",
    "properties": {
        "email": {"type": "string", "unique": True},
        "password": {"type": "string"},
        "full_name": {"type": "string"},
        "role": {"type": "string", "default": "user"},
        "tenant_id": {"type": "string"},
        "created_date": {"type": "string", "format": "date-time"},
    },
    "required": ["email", "password"],
}


@dataclass
class BuildReport:
    """Outcome of a registry build.

    Attributes:
        loaded: Kind name -> source it was compiled from
        warnings: Non-fatal issues (collisions, fallback, missing directory)
        errors: Definitions that were skipped
        used_fallback_user: Whether the built-in account kind was injected
    """

    loaded: Dict[str, str] = field(default_factory=dict)
    warnings: List[LoadIssue] = field(default_factory=list)
    errors: List[LoadIssue] = field(default_factory=list)
    used_fallback_user: bool = False

    def add(self, issue: LoadIssue) -> None:
        if issue.severity == "warning":
            self.warnings.append(issue)
        else:
            self.errors.append(issue)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "loaded": dict(self.loaded),
            "warnings": [w.to_dict() for w in self.warnings],
            "errors": [e.to_dict() for e in self.errors],
            "used_fallback_user": self.used_fallback_user,
        }


class EntityRegistry:
    """Name -> (CompiledSchema, Collection) mapping.

    Thread-safety:
        - Registration is thread-safe (uses internal lock)
        - Lookups after freeze are lock-free
        - Freeze is atomic and irreversible

    Attributes:
        store: Record store every collection writes to
        report: Build report (filled by build_registry)
    """

    def __init__(self, store: RecordStore) -> None:
        self.store = store
        self.report = BuildReport()
        self._schemas: Dict[str, CompiledSchema] = {}
        self._collections: Dict[str, Collection] = {}
        self._frozen = False
        self._fingerprint: Optional[str] = None
        self._lock = threading.Lock()

    @property
    def frozen(self) -> bool:
        return self._frozen

    @property
    def fingerprint(self) -> Optional[str]:
        """Schema fingerprint (available after freeze)."""
        return self._fingerprint

    def register(self, schema: CompiledSchema) -> Optional[CompiledSchema]:
        """Register a compiled schema, replacing any previous one of that name.

        Returns:
            The schema that was replaced, or None

        Raises:
            RegistryFrozenError: If registry is frozen
        """
        with self._lock:
            if self._frozen:
                raise RegistryFrozenError(
                    f"Cannot register entity kind '{schema.name}': registry is frozen"
                )
            previous = self._schemas.get(schema.name)
            self._schemas[schema.name] = schema
            self._collections[schema.name] = Collection(schema, self.store)
            logger.debug(f"Registered entity kind: {schema.name} (source={schema.source})")
            return previous

    def resolve(self, name: str) -> Optional[Collection]:
        """Get the collection for a kind, or None if the kind is unknown."""
        return self._collections.get(name)

    def get_schema(self, name: str) -> Optional[CompiledSchema]:
        return self._schemas.get(name)

    def kinds(self) -> List[str]:
        """Registered kind names, sorted."""
        return sorted(self._schemas)

    def __contains__(self, name: object) -> bool:
        return name in self._schemas

    def __len__(self) -> int:
        return len(self._schemas)

    def __iter__(self) -> Iterator[str]:
        return iter(self.kinds())

    def freeze(self) -> str:
        """Freeze the registry and compute its fingerprint.

        Raises:
            RegistryFrozenError: If already frozen
        """
        with self._lock:
            if self._frozen:
                raise RegistryFrozenError("Registry is already frozen")

            self._fingerprint = self._compute_fingerprint()
            self._frozen = True
            logger.info(
                f"Entity registry frozen with {len(self._schemas)} kinds, "
                f"fingerprint={self._fingerprint}"
            )
            return self._fingerprint

    def _compute_fingerprint(self) -> str:
        canonical = json.dumps(
            self.to_dict(), sort_keys=True, separators=(",", ":"), default=str
        )
        return "sha256:" + hashlib.sha256(canonical.encode("utf-8")).hexdigest()

    def to_dict(self) -> Dict[str, Any]:
        """Registry as a dictionary, kinds sorted by name."""
        return {"kinds": [self._schemas[name].to_dict() for name in self.kinds()]}


def _register_definition(
    registry: EntityRegistry, definition: EntityDefinition
) -> bool:
    report = registry.report
    try:
        schema = compile_definition(definition)
        # freeze() fingerprints every schema; an unserializable one must fail here
        fingerprint = schema.fingerprint
    except (SchemaCompileError, TypeError, ValueError) as e:
        logger.error(f"Skipping entity {definition.name} from {definition.source}: {e}")
        report.add(LoadIssue(source=definition.source, message=str(e)))
        return False
    logger.debug(f"Compiled entity {schema.name}: {fingerprint}")

    previous = registry.register(schema)
    if previous is not None:
        message = (
            f"Entity '{schema.name}' from {schema.source} replaces "
            f"the definition from {previous.source}"
        )
        logger.warning(message)
        report.add(LoadIssue(source=schema.source, message=message, severity="warning"))
    report.loaded[schema.name] = schema.source
    return True


def fallback_user_definition() -> EntityDefinition:
    return EntityDefinition.from_dict(FALLBACK_USER_DEFINITION, source=BUILTIN_SOURCE)


def build_registry(
    definitions: Iterable[EntityDefinition],
    store: RecordStore,
    issues: Iterable[LoadIssue] = (),
) -> EntityRegistry:
    """Compile definitions into a frozen registry.

    Definitions are processed in order, so a later definition wins a name
    collision. The account kind is checked only after every definition
    has been processed.

    Args:
        definitions: Entity definitions in load order
        store: Record store backing every collection
        issues: Problems already found while loading the definitions

    Returns:
        Frozen EntityRegistry
    """
    registry = EntityRegistry(store)
    for issue in issues:
        registry.report.add(issue)

    for definition in definitions:
        _register_definition(registry, definition)

    if ACCOUNT_KIND not in registry:
        logger.warning(f"No {ACCOUNT_KIND} definition found, using built-in fallback")
        _register_definition(registry, fallback_user_definition())
        registry.report.used_fallback_user = True
        registry.report.add(
            LoadIssue(
                source=BUILTIN_SOURCE,
                message=f"Using built-in {ACCOUNT_KIND} definition",
                severity="warning",
            )
        )

    registry.freeze()
    return registry


def build_registry_from_directory(
    directory: str | Path, store: RecordStore
) -> EntityRegistry:
    """Load every definition in a directory and build the registry."""
    definitions, issues = load_definitions(directory)
    return build_registry(definitions, store, issues=issues)
