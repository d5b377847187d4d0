"""
Error types for the Aivora server.

This module defines the exceptions raised by the schema, storage and
account layers:
- AivoraError: Base exception
- SchemaCompileError: A descriptor could not be compiled
- RegistryFrozenError: Registration attempted after startup
- ValidationError: Record validation failures
- RecordNotFoundError: Unknown record id
- DuplicateRecordError: Unique field collision
- AuthenticationError / AccountExistsError: Account failures

Invariants:
    - All errors inherit from AivoraError
    - Every error carries a stable code for the HTTP layer
    - Error messages never contain secrets (passwords, tokens)
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional


class AivoraError(Exception):
    """Base exception for all Aivora errors.

    Attributes:
        message: Error message
        code: Error code for programmatic handling
        details: Additional error context
    """

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or "AIVORA_ERROR"
        self.details = details or {}


class SchemaCompileError(AivoraError):
    """A type descriptor is malformed or self-referential.

    Attributes:
        path: Dotted location of the offending descriptor
    """

    def __init__(self, message: str, path: str = "") -> None:
        super().__init__(
            f"{path}: {message}" if path else message,
            code="SCHEMA_COMPILE_ERROR",
            details={"path": path},
        )
        self.path = path


class RegistryFrozenError(AivoraError):
    """Raised when attempting to modify a frozen registry."""

    def __init__(self, message: str) -> None:
        super().__init__(message, code="REGISTRY_FROZEN")


class ValidationError(AivoraError):
    """Record validation failed.

    Raised when:
    - Required field is missing
    - Field value has wrong type
    - Enum value is invalid
    """

    def __init__(
        self,
        message: str,
        errors: Optional[List[str]] = None,
        kind: Optional[str] = None,
    ) -> None:
        super().__init__(
            message,
            code="VALIDATION_ERROR",
            details={"kind": kind, "errors": errors or []},
        )
        self.errors = errors or []
        self.kind = kind


class RecordNotFoundError(AivoraError):
    """No record with the given id exists in the collection."""

    def __init__(self, kind: str, record_id: str) -> None:
        super().__init__(
            f"{kind} record not found: {record_id}",
            code="NOT_FOUND",
            details={"kind": kind, "record_id": record_id},
        )
        self.kind = kind
        self.record_id = record_id


class DuplicateRecordError(AivoraError):
    """A unique field value is already taken by another record."""

    def __init__(self, kind: str, field_name: str) -> None:
        super().__init__(
            f"{kind} with this {field_name} already exists",
            code="DUPLICATE_RECORD",
            details={"kind": kind, "field": field_name},
        )
        self.kind = kind
        self.field_name = field_name


class StoreNotInitializedError(AivoraError):
    """The record database has not been created yet."""

    def __init__(self, path: str) -> None:
        super().__init__(
            f"Record store not initialized: {path}",
            code="STORE_NOT_INITIALIZED",
            details={"path": path},
        )


class AuthenticationError(AivoraError):
    """Credentials or token could not be verified."""

    def __init__(self, message: str = "Invalid credentials") -> None:
        super().__init__(message, code="AUTHENTICATION_ERROR")


class AccountExistsError(AivoraError):
    """An account with the same login already exists."""

    def __init__(self, email: str) -> None:
        super().__init__(
            "User already exists",
            code="ACCOUNT_EXISTS",
            details={"email": email},
        )
        self.email = email
