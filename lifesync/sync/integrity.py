"""Layer 1: referential integrity checks over the entity graph."""
from __future__ import annotations

import logging
from typing import Any

from lifesync import observability as otel
from lifesync.models import SyncIssue
from lifesync.sync.ledger import IssueLedger, new_issue
from lifesync.sync.references import REFERENCES, Reference, cleared_value, entity_title, target_ids

logger = logging.getLogger("lifesync.sync")


def _orphan_issue(ref: Reference, row: dict, target_id: str) -> SyncIssue:
    title = entity_title(ref.entity_type, row)
    return new_issue(
        type="orphaned_link",
        severity="critical",
        entityType=ref.entity_type,
        entityId=str(row["id"]),
        entityTitle=title,
        linkedEntityType=ref.target_type,
        linkedEntityId=target_id,
        description=f'{ref.entity_type} "{title}" references a {ref.label} that no longer exists',
        suggestion=f"Link it to another {ref.label}, clear the link, or delete the {ref.entity_type}",
        confidence=1.0,
        layer=1,
    )


class IntegrityChecker:
    """Finds dangling references and clears the ones that are safe to clear."""

    def __init__(self, db: Any, ledger: IssueLedger | None = None):
        self.db = db
        self.ledger = ledger or IssueLedger(db)
        self.entity_repo = self.ledger.entity_repo

    async def find_dangling(self) -> list[tuple[Reference, dict, str]]:
        """Every (reference, record, missing target id) in the current graph."""
        dangling: list[tuple[Reference, dict, str]] = []
        known: dict[str, set[str]] = {}
        for ref in REFERENCES:
            if ref.target_type not in known:
                known[ref.target_type] = await self.entity_repo.list_ids(ref.target_type)
            existing = known[ref.target_type]
            for row in await self.entity_repo.list_all(ref.entity_type):
                for value in target_ids(ref, row):
                    if value not in existing:
                        dangling.append((ref, row, value))
        return dangling

    async def _clear(self, ref: Reference, entity_id: str, target_id: str) -> bool:
        # re-read: a list field may already have lost other ids in this pass
        current = await self.entity_repo.get(ref.entity_type, entity_id)
        if current is None:
            return False
        return await self.entity_repo.update(
            ref.entity_type, entity_id, {ref.field: cleared_value(ref, current, target_id)},
        )

    async def run_integrity_check(self, auto_resolve: bool = False) -> dict[str, Any]:
        stats: dict[str, Any] = {
            "ran": True,
            "issuesFound": 0,
            "issuesFixed": 0,
            "newIssues": 0,
            "issues": [],
        }
        with otel.start_span("sync.layer1", {"auto_resolve": auto_resolve}):
            dangling = await self.find_dangling()
            stats["issuesFound"] = len(dangling)

            issues: list[SyncIssue] = []
            for ref, row, target_id in dangling:
                if auto_resolve and ref.optional:
                    fixed = await self._clear(ref, str(row["id"]), target_id)
                    if fixed:
                        stats["issuesFixed"] += 1
                        logger.info(
                            "Cleared dangling %s.%s on %s (missing %s)",
                            ref.entity_type, ref.field, row["id"], target_id,
                        )
                    continue
                issues.append(_orphan_issue(ref, row, target_id))

            inserted = await self.ledger.record_issues(1, issues)
            stats["newIssues"] = len(inserted)
            stats["issues"] = issues
            otel.record_issues(1, "orphaned_link", len(inserted))

        logger.info(
            "Integrity check: %s dangling, %s fixed, %s new issue(s)",
            stats["issuesFound"], stats["issuesFixed"], stats["newIssues"],
        )
        return stats
