"""
Generic entity routes.

Every registered entity kind is reachable by name:

    POST /api/entities/{entity}/filter   {"filters": {...}, "sort": "-created_date"}
    POST /api/entities/{entity}/create   {...record...}
    POST /api/entities/{entity}/update   {"id": "...", "data": {...}}
    POST /api/entities/{entity}/delete   {"id": "..."}

Unknown kinds answer 400 "Entity not found". Account passwords are
hashed on the way in and never returned.
"""

import logging
from typing import Any

from fastapi import APIRouter, Body, Depends, HTTPException
from pydantic import BaseModel, Field

from ..accounts.security import hash_password
from ..accounts.service import public_user
from ..registry import ACCOUNT_KIND, EntityRegistry
from ..storage.collection import Collection
from ..storage.record_store import is_valid_record_id
from .dependencies import get_registry

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/entities", tags=["Entities"])


# --- Request Models ---


class FilterRequest(BaseModel):
    """Request to list records of a kind."""

    filters: dict[str, Any] = Field(default_factory=dict, description="Field equality filters")
    sort: str | None = Field(None, description="Sort field, '-' prefix for descending")


class UpdateRequest(BaseModel):
    """Request to update a record."""

    id: str | None = Field(None, description="Record ID")
    data: dict[str, Any] = Field(default_factory=dict, description="Fields to update")


class DeleteRequest(BaseModel):
    """Request to delete a record."""

    id: str | None = Field(None, description="Record ID")


# --- Helpers ---


def resolve_collection(entity: str, registry: EntityRegistry) -> Collection:
    collection = registry.resolve(entity)
    if collection is None:
        raise HTTPException(status_code=400, detail="Entity not found")
    return collection


def require_record_id(record_id: str | None) -> str:
    if not is_valid_record_id(record_id):
        raise HTTPException(status_code=400, detail="Invalid ID")
    return record_id


def _incoming(entity: str, data: dict[str, Any]) -> dict[str, Any]:
    if entity == ACCOUNT_KIND and isinstance(data.get("password"), str):
        return {**data, "password": hash_password(data["password"])}
    return data


def _outgoing(entity: str, record: dict[str, Any]) -> dict[str, Any]:
    return public_user(record) if entity == ACCOUNT_KIND else record


# --- Routes ---


@router.post("/{entity}/filter")
async def filter_records(
    entity: str,
    request: FilterRequest | None = None,
    registry: EntityRegistry = Depends(get_registry),
) -> list[dict[str, Any]]:
    """List records matching the non-empty filters."""
    request = request or FilterRequest()
    collection = resolve_collection(entity, registry)
    filters = {k: v for k, v in request.filters.items() if v is not None and v != ""}
    records = await collection.find(filters, sort=request.sort)
    return [_outgoing(entity, r) for r in records]


@router.post("/{entity}/create")
async def create_record(
    entity: str,
    record: dict[str, Any] = Body(...),
    registry: EntityRegistry = Depends(get_registry),
) -> dict[str, Any]:
    """Create a record."""
    collection = resolve_collection(entity, registry)
    created = await collection.insert(_incoming(entity, record))
    return _outgoing(entity, created)


@router.post("/{entity}/update")
async def update_record(
    entity: str,
    request: UpdateRequest,
    registry: EntityRegistry = Depends(get_registry),
) -> dict[str, Any]:
    """Apply a partial update to a record."""
    collection = resolve_collection(entity, registry)
    record_id = require_record_id(request.id)
    updated = await collection.update_by_id(record_id, _incoming(entity, request.data))
    return _outgoing(entity, updated)


@router.post("/{entity}/delete")
async def delete_record(
    entity: str,
    request: DeleteRequest,
    registry: EntityRegistry = Depends(get_registry),
) -> dict[str, bool]:
    """Delete a record."""
    collection = resolve_collection(entity, registry)
    await collection.delete_by_id(require_record_id(request.id))
    return {"success": True}
