"""Entity CRUD API. Every mutation is reported to the realtime sync trigger."""
from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, HTTPException, Request

from lifesync.db.factory import get_entity_repository
from lifesync.db.repositories import ENTITY_TABLES

logger = logging.getLogger("lifesync.api")

entities_router = APIRouter(prefix="/api/entities", tags=["entities"])


def _get_entity_repo(request: Request, entity_type: str):
    if entity_type not in ENTITY_TABLES:
        raise HTTPException(status_code=404, detail=f"Unknown entity type: {entity_type}")
    db = getattr(request.app.state, "db", None)
    if db is None:
        raise HTTPException(status_code=503, detail="Database not initialized")
    return get_entity_repository(db)


def _notify(request: Request, entity_type: str, entity_id: str, operation: str) -> None:
    scheduler = getattr(request.app.state, "sync_scheduler", None)
    if scheduler:
        scheduler.notify_change(entity_type, entity_id, operation)


@entities_router.get("/{entity_type}")
async def list_entities(request: Request, entity_type: str):
    repo = _get_entity_repo(request, entity_type)
    rows = await repo.list_all(entity_type)
    return {"count": len(rows), "items": rows}


@entities_router.get("/{entity_type}/{entity_id}")
async def get_entity(request: Request, entity_type: str, entity_id: str):
    repo = _get_entity_repo(request, entity_type)
    row = await repo.get(entity_type, entity_id)
    if not row:
        raise HTTPException(status_code=404, detail=f"{entity_type} {entity_id} not found")
    return row


@entities_router.post("/{entity_type}", status_code=201)
async def create_entity(request: Request, entity_type: str, body: dict[str, Any]):
    repo = _get_entity_repo(request, entity_type)
    try:
        row = await repo.insert(entity_type, body)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    _notify(request, entity_type, row["id"], "create")
    return row


@entities_router.patch("/{entity_type}/{entity_id}")
async def update_entity(request: Request, entity_type: str, entity_id: str, body: dict[str, Any]):
    repo = _get_entity_repo(request, entity_type)
    try:
        updated = await repo.update(entity_type, entity_id, body)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    if not updated:
        raise HTTPException(status_code=404, detail=f"{entity_type} {entity_id} not found")
    _notify(request, entity_type, entity_id, "update")
    return await repo.get(entity_type, entity_id)


@entities_router.delete("/{entity_type}/{entity_id}")
async def delete_entity(request: Request, entity_type: str, entity_id: str):
    repo = _get_entity_repo(request, entity_type)
    if not await repo.delete(entity_type, entity_id):
        raise HTTPException(status_code=404, detail=f"{entity_type} {entity_id} not found")
    _notify(request, entity_type, entity_id, "delete")
    return {"status": "deleted", "entityType": entity_type, "id": entity_id}
