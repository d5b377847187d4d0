"""
Aivora Test Suite.

This package contains:
- unit/: Unit tests (schema, registry, storage, security, config)
- integration/: Integration tests (accounts and HTTP API over SQLite)
"""
