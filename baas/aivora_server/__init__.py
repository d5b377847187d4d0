"""
Aivora Server - Multi-tenant project-management backend.

Entity kinds (Task, Project, Tenant, User, ...) are not hard-coded:
each one is described by a declarative JSON descriptor that is compiled
at startup into a runtime-checked schema bound to a persistent
collection.

Architecture:
    definitions/*.json ──▶ Compiler ──▶ EntityRegistry (name -> Collection)
                                              │
                      ┌───────────────────────┼──────────────────┐
                      ▼                       ▼                  ▼
                 Entity API              AccountService      /api/schema
                 (FastAPI)               (User kind)
                      │                       │
                      └───────────┬───────────┘
                                  ▼
                      RecordStore (SQLite, WAL)

Invariants:
    - The registry is built once and frozen before requests are served
    - The User kind always exists, from a definition or the built-in fallback
    - Unknown kind names resolve to None, never raise
    - Records may carry fields their schema does not declare

How to change safely:
    - Add entity kinds by dropping a descriptor into the definitions directory
    - Keep the built-in User definition compatible with the accounts service
"""

from ._version import __version__

__all__ = ["__version__"]
