"""
Entity definition discovery.

Reads one descriptor document per entity kind from a directory.
JSON is the primary format; YAML documents (.yaml/.yml) are accepted
with the same structure.

Invariants:
    - Sources are processed in lexicographic file-name order, so the
      last-write-wins collision rule does not depend on the platform
    - A missing directory is a warning, never an error
    - An unlistable directory is an error issue, never an exception
    - One unreadable or malformed file never prevents loading the others
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml

from .types import EntityDefinition

logger = logging.getLogger(__name__)

DEFINITION_SUFFIXES = (".json", ".yaml", ".yml")


@dataclass(frozen=True)
class LoadIssue:
    """A problem encountered while loading or compiling a definition.

    Attributes:
        source: File name (or "<builtin>") the issue relates to
        message: Human-readable description
        severity: "error" (definition skipped) or "warning"
    """

    source: str
    message: str
    severity: str = "error"

    def to_dict(self) -> dict[str, str]:
        return {"source": self.source, "message": self.message, "severity": self.severity}


def _parse_document(path: Path) -> Any:
    text = path.read_text(encoding="utf-8")
    if path.suffix == ".json":
        return json.loads(text)
    return yaml.safe_load(text)


def load_definition_file(path: Path) -> EntityDefinition:
    """Load a single definition file.

    The entity name defaults to the file stem when the document has none.

    Raises:
        OSError: If the file cannot be read
        ValueError: If the document is not a valid definition
            (json.JSONDecodeError is a ValueError)
        yaml.YAMLError: If a YAML document cannot be parsed
    """
    data = _parse_document(path)
    if not isinstance(data, dict):
        raise ValueError(f"top-level value must be an object, got {type(data).__name__}")
    return EntityDefinition.from_dict(data, source=path.name, default_name=path.stem)


def load_definitions(directory: str | Path) -> tuple[list[EntityDefinition], list[LoadIssue]]:
    """Load every definition in a directory.

    Args:
        directory: Directory containing descriptor files

    Returns:
        Tuple of (definitions in file-name order, load issues)
    """
    root = Path(directory)
    if not root.is_dir():
        message = f"Definitions directory not found: {root}"
        logger.warning(message)
        return [], [LoadIssue(source=str(root), message=message, severity="warning")]

    definitions: list[EntityDefinition] = []
    issues: list[LoadIssue] = []

    try:
        paths = sorted(
            (p for p in root.iterdir() if p.is_file() and p.suffix in DEFINITION_SUFFIXES),
            key=lambda p: p.name,
        )
    except OSError as e:
        message = f"Cannot list definitions directory {root}: {e}"
        logger.error(message)
        return [], [LoadIssue(source=str(root), message=message)]

    for path in paths:
        try:
            definition = load_definition_file(path)
        except (OSError, ValueError, RecursionError, yaml.YAMLError) as e:
            logger.error(f"Failed to load definition {path.name}: {e}")
            issues.append(LoadIssue(source=path.name, message=str(e)))
            continue
        definitions.append(definition)

    logger.info(f"Loaded {len(definitions)} entity definitions from {root}")
    return definitions, issues
