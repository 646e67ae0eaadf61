"""Sync engine API: status, issue feed, resolutions, settings and run history."""
from __future__ import annotations

import logging
from typing import Literal, Optional

from fastapi import APIRouter, BackgroundTasks, HTTPException, Query, Request
from pydantic import BaseModel

from lifesync.models import Resolution, SyncSettingsPatch
from lifesync.sync.errors import IssueNotFoundError, ResolutionError, SyncAlreadyRunningError

logger = logging.getLogger("lifesync.api")

sync_router = APIRouter(prefix="/api/sync", tags=["sync"])


class RunSyncRequest(BaseModel):
    layer1: bool = True
    layer2: bool = True
    layer3: bool = True
    background: bool = False


class ResolveIssueRequest(BaseModel):
    resolution: Resolution
    newLinkId: Optional[str] = None


def _get_sync_service(request: Request):
    service = getattr(request.app.state, "sync_service", None)
    if not service:
        raise HTTPException(status_code=503, detail="Sync service not initialized")
    return service


def _get_scheduler(request: Request):
    return getattr(request.app.state, "sync_scheduler", None)


async def _run_in_background(service, body: RunSyncRequest) -> None:
    try:
        await service.run_sync(body.layer1, body.layer2, body.layer3, run_type="manual")
    except SyncAlreadyRunningError:
        logger.info("Background manual sync skipped: a run is already active")
    except Exception as e:
        logger.error(f"Background manual sync failed: {e}")


@sync_router.get("/status")
async def get_sync_status(request: Request):
    """Read model for the sync UI: issues, run state, last run and settings."""
    service = _get_sync_service(request)
    scheduler = _get_scheduler(request)
    snapshot = service.snapshot().model_dump()
    snapshot["scheduler"] = {
        "running": bool(scheduler and scheduler.is_running),
        "backgroundActive": bool(scheduler and scheduler.background_active),
        "pendingChanges": scheduler.pending_changes if scheduler else 0,
    }
    return snapshot


@sync_router.get("/issues")
async def list_sync_issues(
    request: Request,
    layer: Optional[int] = Query(None, ge=1, le=3),
    severity: Optional[Literal["critical", "warning", "info"]] = None,
):
    service = _get_sync_service(request)
    issues = await service.ledger.get_unresolved_issues(layer=layer, severity=severity)
    return {"count": len(issues), "items": [issue.model_dump() for issue in issues]}


@sync_router.post("/run")
async def trigger_sync_run(request: Request, background_tasks: BackgroundTasks, body: RunSyncRequest):
    """Run a manual sync. Returns 409 when a run is already in progress."""
    service = _get_sync_service(request)
    if body.background:
        if service.is_running:
            raise HTTPException(status_code=409, detail="A sync run is already in progress")
        background_tasks.add_task(_run_in_background, service, body)
        return {"status": "accepted"}
    try:
        result = await service.run_sync(body.layer1, body.layer2, body.layer3, run_type="manual")
    except SyncAlreadyRunningError as e:
        raise HTTPException(status_code=409, detail=str(e))
    return result.model_dump()


@sync_router.post("/issues/{issue_id}/resolve")
async def resolve_sync_issue(request: Request, issue_id: str, body: ResolveIssueRequest):
    service = _get_sync_service(request)
    try:
        issue = await service.resolve_issue(issue_id, body.resolution, body.newLinkId)
    except IssueNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except ResolutionError as e:
        raise HTTPException(status_code=422, detail=str(e))
    return issue.model_dump()


@sync_router.post("/issues/{issue_id}/dismiss")
async def dismiss_sync_issue(request: Request, issue_id: str):
    service = _get_sync_service(request)
    try:
        issue = await service.dismiss_issue(issue_id)
    except IssueNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except ResolutionError as e:
        raise HTTPException(status_code=422, detail=str(e))
    return issue.model_dump()


@sync_router.get("/settings")
async def get_sync_settings(request: Request):
    return _get_sync_service(request).settings.model_dump()


@sync_router.patch("/settings")
async def update_sync_settings(request: Request, body: SyncSettingsPatch):
    service = _get_sync_service(request)
    scheduler = _get_scheduler(request)
    if scheduler:
        settings = await scheduler.update_settings(body)
    else:
        settings = service.update_settings(body)
    return settings.model_dump()


@sync_router.get("/runs")
async def list_sync_runs(request: Request, limit: int = Query(20, ge=1, le=200)):
    service = _get_sync_service(request)
    runs = await service.list_runs(limit)
    return {"count": len(runs), "items": runs}


@sync_router.get("/coherence/{task_id}")
async def get_task_coherence(
    request: Request,
    task_id: str,
    feedback: bool = False,
    tone: Literal["gentle", "balanced", "intense"] = "balanced",
):
    """Inline coherence judgment for one task; nothing is written to the issue feed."""
    service = _get_sync_service(request)
    analysis = await service.analyze_task(task_id)
    payload = {
        "taskId": task_id,
        "available": analysis is not None,
        "analysis": analysis.model_dump() if analysis else None,
        "feedback": None,
    }
    if feedback and analysis is not None:
        payload["feedback"] = await service.get_coherence_feedback(task_id, tone)
    return payload


@sync_router.get("/suggestions/{entity_type}/{entity_id}")
async def get_connection_suggestion(request: Request, entity_type: str, entity_id: str):
    service = _get_sync_service(request)
    try:
        suggestion = await service.suggest_connection(entity_type, entity_id)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return {
        "entityType": entity_type,
        "entityId": entity_id,
        "suggestion": suggestion.model_dump() if suggestion else None,
    }
