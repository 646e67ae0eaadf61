"""Issue ledger: the deduplicated, resolvable feed of sync findings.

Layers only append unresolved issues through ``record_issues``; resolution
stamps (``resolved_at`` / ``resolution``) are written here and nowhere else.
Both paths run inside ``connection.transaction`` so the dedupe check always
sees the current unresolved set and a resolution's entity change and stamp
land together or not at all.
"""
from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Iterable

from lifesync.db.connection import transaction
from lifesync.db.factory import get_entity_repository, get_issue_repository
from lifesync.models import SyncIssue
from lifesync.sync.errors import IssueNotFoundError, ResolutionError
from lifesync.sync.references import cleared_value, reference_for, relinked_value

logger = logging.getLogger("lifesync.sync")

RESOLUTIONS = ("linked", "unlinked", "ignored", "deleted")


def utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


def identity_key(layer: int, entity_type: str, entity_id: str, linked_entity_id: str | None = None) -> str:
    """Deterministic key identifying one logical finding within a layer."""
    if layer == 2:
        return f"{entity_type}:{entity_id}"
    return f"{entity_type}:{entity_id}:{linked_entity_id or ''}"


def issue_key(issue: SyncIssue) -> str:
    return identity_key(issue.layer, issue.entityType, issue.entityId, issue.linkedEntityId)


def new_issue(**fields: Any) -> SyncIssue:
    """Build an unresolved issue with a fresh id and detection time."""
    fields.setdefault("id", f"SI-{uuid.uuid4().hex[:20]}")
    fields.setdefault("detectedAt", utc_now())
    return SyncIssue(**fields)


def issue_from_row(row: dict) -> SyncIssue:
    return SyncIssue(
        id=str(row["id"]),
        type=row["type"],
        severity=row["severity"],
        entityType=str(row["entity_type"]),
        entityId=str(row["entity_id"]),
        entityTitle=str(row.get("entity_title") or ""),
        linkedEntityType=row.get("linked_entity_type"),
        linkedEntityId=row.get("linked_entity_id"),
        suggestedGoalId=row.get("suggested_goal_id"),
        suggestedGoalTitle=row.get("suggested_goal_title"),
        description=str(row.get("description") or ""),
        suggestion=row.get("suggestion"),
        confidence=float(row.get("confidence") if row.get("confidence") is not None else 1.0),
        layer=int(row["layer"]),
        detectedAt=str(row["detected_at"]),
        resolvedAt=row.get("resolved_at"),
        resolution=row.get("resolution"),
    )


def _issue_to_row(issue: SyncIssue) -> dict:
    return {
        "id": issue.id,
        "identity_key": issue_key(issue),
        "type": issue.type,
        "severity": issue.severity,
        "layer": issue.layer,
        "entity_type": issue.entityType,
        "entity_id": issue.entityId,
        "entity_title": issue.entityTitle,
        "linked_entity_type": issue.linkedEntityType,
        "linked_entity_id": issue.linkedEntityId,
        "suggested_goal_id": issue.suggestedGoalId,
        "suggested_goal_title": issue.suggestedGoalTitle,
        "description": issue.description,
        "suggestion": issue.suggestion,
        "confidence": issue.confidence,
        "detected_at": issue.detectedAt,
        "resolved_at": None,
        "resolution": None,
    }


class IssueLedger:
    """Owns the issue store and the resolution lifecycle."""

    def __init__(self, db: Any):
        self.db = db
        self.issue_repo = get_issue_repository(db)
        self.entity_repo = get_entity_repository(db)

    async def get_unresolved_issues(
        self,
        layer: int | None = None,
        severity: str | None = None,
    ) -> list[SyncIssue]:
        rows = await self.issue_repo.list_unresolved(layer=layer, severity=severity)
        return [issue_from_row(row) for row in rows]

    async def get_issues_by_severity(self, severity: str) -> list[SyncIssue]:
        return await self.get_unresolved_issues(severity=severity)

    async def get_issues_for_entity(self, entity_type: str, entity_id: str) -> list[SyncIssue]:
        rows = await self.issue_repo.list_unresolved_for_entity(entity_type, entity_id)
        return [issue_from_row(row) for row in rows]

    async def get_issue(self, issue_id: str) -> SyncIssue:
        row = await self.issue_repo.get_by_id(issue_id)
        if not row:
            raise IssueNotFoundError(f"Issue {issue_id} not found")
        return issue_from_row(row)

    async def open_keys(self, layer: int) -> set[str]:
        return await self.issue_repo.open_identity_keys(layer)

    async def record_issues(self, layer: int, issues: Iterable[SyncIssue]) -> list[SyncIssue]:
        """Insert issues whose identity key is not already open. Returns the inserted ones."""
        candidates = [issue for issue in issues if issue.layer == layer]
        if not candidates:
            return []
        async with transaction(self.db):
            seen = await self.issue_repo.open_identity_keys(layer)
            fresh: list[SyncIssue] = []
            for issue in candidates:
                key = issue_key(issue)
                if key in seen:
                    continue
                seen.add(key)
                fresh.append(issue)
            await self.issue_repo.bulk_insert([_issue_to_row(issue) for issue in fresh], commit=False)
        if fresh:
            logger.info("Layer %s recorded %s new issue(s)", layer, len(fresh))
        return fresh

    async def dismiss_issue(self, issue_id: str) -> SyncIssue:
        return await self.resolve_issue(issue_id, "ignored")

    async def resolve_issue(
        self,
        issue_id: str,
        resolution: str,
        new_link_id: str | None = None,
    ) -> SyncIssue:
        """Apply a resolution and stamp the issue, atomically."""
        if resolution not in RESOLUTIONS:
            raise ResolutionError(f"Unknown resolution: {resolution}")

        resolved_at = utc_now()
        async with transaction(self.db):
            row = await self.issue_repo.get_by_id(issue_id)
            if not row:
                raise IssueNotFoundError(f"Issue {issue_id} not found")
            issue = issue_from_row(row)
            if issue.resolvedAt:
                raise ResolutionError(f"Issue {issue_id} is already resolved ({issue.resolution})")

            if resolution == "linked":
                await self._link(issue, new_link_id or issue.suggestedGoalId)
            elif resolution == "unlinked":
                await self._unlink(issue)
            elif resolution == "deleted":
                await self._delete(issue)

            await self.issue_repo.mark_resolved(issue.id, resolution, resolved_at, commit=False)
            if resolution == "deleted":
                await self.issue_repo.resolve_open_for_entity(
                    issue.entityType, issue.entityId, "deleted", resolved_at, commit=False,
                )

        logger.info("Issue %s resolved as %s", issue.id, resolution)
        return issue.model_copy(update={"resolvedAt": resolved_at, "resolution": resolution})

    async def _link(self, issue: SyncIssue, target_id: str | None) -> None:
        ref = reference_for(issue.entityType, issue.linkedEntityType)
        if ref is None:
            raise ResolutionError(f"{issue.entityType} has no link that can be set")
        if not target_id:
            raise ResolutionError(f"Issue {issue.id} has no goal to link to")
        if ref.target_type == issue.entityType and target_id == issue.entityId:
            raise ResolutionError(f"{issue.entityType} {issue.entityId} cannot link to itself")
        if not await self.entity_repo.exists(ref.target_type, target_id):
            raise ResolutionError(f"{ref.target_type} {target_id} does not exist")
        value = target_id
        if ref.many:
            row = await self._subject(issue)
            value = relinked_value(ref, row, issue.linkedEntityId, target_id)
        updated = await self.entity_repo.update(
            issue.entityType, issue.entityId, {ref.field: value}, commit=False,
        )
        if not updated:
            raise ResolutionError(f"{issue.entityType} {issue.entityId} no longer exists")

    async def _unlink(self, issue: SyncIssue) -> None:
        ref = reference_for(issue.entityType, issue.linkedEntityType)
        if ref is None:
            raise ResolutionError(f"{issue.entityType} has no link that can be cleared")
        value = None
        if ref.many:
            row = await self._subject(issue)
            value = cleared_value(ref, row, issue.linkedEntityId or "")
        updated = await self.entity_repo.update(
            issue.entityType, issue.entityId, {ref.field: value}, commit=False,
        )
        if not updated:
            raise ResolutionError(f"{issue.entityType} {issue.entityId} no longer exists")

    async def _subject(self, issue: SyncIssue) -> dict:
        row = await self.entity_repo.get(issue.entityType, issue.entityId)
        if row is None:
            raise ResolutionError(f"{issue.entityType} {issue.entityId} no longer exists")
        return row

    async def _delete(self, issue: SyncIssue) -> None:
        deleted = await self.entity_repo.delete(issue.entityType, issue.entityId, commit=False)
        if not deleted:
            raise ResolutionError(f"{issue.entityType} {issue.entityId} no longer exists")
