"""Sync orchestrator: sequences the three layers and owns the run state.

``SyncService`` is the single owner of the transient run status
(``is_running`` / ``current_layer``) and of the UI read model (the
unresolved issue list). Other components receive the service explicitly;
nothing here is module-global.
"""
from __future__ import annotations

import logging
import time
import uuid
from typing import Any

from lifesync import observability as otel
from lifesync.db.factory import get_sync_run_repository
from lifesync.models import (
    CoherenceAnalysis,
    CoherenceLayerResult,
    ConnectionSuggestion,
    ConnectionsLayerResult,
    IntegrityLayerResult,
    SyncIssue,
    SyncRunResult,
    SyncSettings,
    SyncSettingsPatch,
    SyncSnapshot,
)
from lifesync.reasoning import ReasoningClient
from lifesync.state_store import SyncStateStore
from lifesync.sync.coherence import CoherenceAuditor
from lifesync.sync.connections import SmartConnections
from lifesync.sync.errors import SyncAlreadyRunningError
from lifesync.sync.integrity import IntegrityChecker
from lifesync.sync.ledger import IssueLedger, utc_now

logger = logging.getLogger("lifesync.sync")


def _layer_result(model: type, stats: dict[str, Any]):
    return model(**{key: value for key, value in stats.items() if key != "issues"})


class SyncService:
    """Runs sync passes and exposes commands plus a read-only snapshot."""

    def __init__(
        self,
        db: Any,
        reasoning: ReasoningClient | None = None,
        state_store: SyncStateStore | None = None,
        *,
        ledger: IssueLedger | None = None,
        integrity: IntegrityChecker | None = None,
        connections: SmartConnections | None = None,
        coherence: CoherenceAuditor | None = None,
    ):
        self.db = db
        self.ledger = ledger or IssueLedger(db)
        self.integrity = integrity or IntegrityChecker(db, self.ledger)
        self.connections = connections or SmartConnections(db, reasoning, self.ledger)
        self.coherence = coherence or CoherenceAuditor(db, reasoning, self.ledger)
        self.run_repo = get_sync_run_repository(db)
        self.state_store = state_store or SyncStateStore(None)

        self.issues: list[SyncIssue] = []
        self.unresolved_count = 0
        self.last_run: SyncRunResult | None = None
        self.is_running = False
        self.current_layer: int | None = None
        self.error: str | None = None

        history = self.state_store.run_history
        if history:
            self.last_run = history[0]

    @property
    def settings(self) -> SyncSettings:
        return self.state_store.settings

    @property
    def run_history(self) -> list[SyncRunResult]:
        return self.state_store.run_history

    def snapshot(self) -> SyncSnapshot:
        return SyncSnapshot(
            issues=[issue.model_copy() for issue in self.issues],
            unresolvedCount=self.unresolved_count,
            lastRun=self.last_run.model_copy(deep=True) if self.last_run else None,
            runHistory=self.run_history,
            isRunning=self.is_running,
            currentLayer=self.current_layer,
            error=self.error,
            settings=self.settings.model_copy(),
        )

    async def load_issues(self) -> list[SyncIssue]:
        """Reload the unresolved issue list from the store in one step."""
        issues = await self.ledger.get_unresolved_issues()
        self.issues = issues
        self.unresolved_count = len(issues)
        return issues

    async def run_sync(
        self,
        layer1: bool = True,
        layer2: bool = True,
        layer3: bool = True,
        run_type: str = "manual",
    ) -> SyncRunResult:
        """Run the requested (and enabled) layers in order 1 → 2 → 3.

        Raises ``SyncAlreadyRunningError`` immediately when a run is active.
        A failed run records ``error``, leaves the previous issue list in
        place, and is not added to the run history.
        """
        if self.is_running:
            raise SyncAlreadyRunningError("A sync run is already in progress")
        self.is_running = True
        self.current_layer = None
        self.error = None

        settings = self.settings
        result = SyncRunResult(id=f"SR-{uuid.uuid4().hex[:20]}", runType=run_type, startedAt=utc_now())
        t0 = time.monotonic()
        logger.info("Sync run started [%s] type=%s", result.id, run_type)

        try:
            with otel.start_span("sync.run", {"run_id": result.id, "run_type": run_type}):
                if layer1 and settings.layer1Enabled:
                    self.current_layer = 1
                    stats = await self.integrity.run_integrity_check(settings.autoResolveOrphanedLinks)
                    result.layer1 = _layer_result(IntegrityLayerResult, stats)

                if layer2 and settings.layer2Enabled:
                    self.current_layer = 2
                    stats = await self.connections.run_smart_connections()
                    result.layer2 = _layer_result(ConnectionsLayerResult, stats)

                if layer3 and settings.layer3Enabled:
                    self.current_layer = 3
                    stats = await self.coherence.run_coherence_audit()
                    result.layer3 = _layer_result(CoherenceLayerResult, stats)

                self.current_layer = None
                issues = await self.ledger.get_unresolved_issues()

                result.completedAt = utc_now()
                result.duration = int((time.monotonic() - t0) * 1000)
                result.totalIssues = (
                    result.layer1.issuesFound
                    + result.layer2.suggestionsGenerated
                    + result.layer3.coherenceIssues
                )
                result.newIssues = result.layer1.newIssues + result.layer2.newIssues + result.layer3.newIssues
                result.resolvedIssues = result.layer1.issuesFixed
                result.unresolvedCount = len(issues)

                await self.run_repo.add(result.model_dump())
                self.state_store.add_run(result)
        except Exception as exc:
            self.error = str(exc) or exc.__class__.__name__
            duration = int((time.monotonic() - t0) * 1000)
            otel.record_sync_run(run_type, "failed", duration)
            logger.error("Sync run failed [%s]: %s", result.id, self.error)
            raise
        finally:
            self.is_running = False
            self.current_layer = None

        self.issues = issues
        self.unresolved_count = len(issues)
        self.last_run = result
        otel.record_sync_run(run_type, "completed", result.duration)
        logger.info(
            "Sync run finished [%s]: %s total, %s new, %s fixed, %s unresolved in %sms",
            result.id,
            result.totalIssues,
            result.newIssues,
            result.resolvedIssues,
            result.unresolvedCount,
            result.duration,
        )
        return result

    async def resolve_issue(self, issue_id: str, resolution: str, new_link_id: str | None = None) -> SyncIssue:
        issue = await self.ledger.resolve_issue(issue_id, resolution, new_link_id)
        await self.load_issues()
        return issue

    async def dismiss_issue(self, issue_id: str) -> SyncIssue:
        issue = await self.ledger.dismiss_issue(issue_id)
        await self.load_issues()
        return issue

    def update_settings(self, patch: SyncSettingsPatch | dict) -> SyncSettings:
        """Merge a partial update into the settings and persist it immediately."""
        if isinstance(patch, dict):
            patch = SyncSettingsPatch(**patch)
        updates = patch.model_dump(exclude_none=True)
        settings = SyncSettings(**{**self.settings.model_dump(), **updates})
        self.state_store.save_settings(settings)
        if updates:
            logger.info("Sync settings updated: %s", ", ".join(sorted(updates)))
        return settings

    async def list_runs(self, limit: int = 20) -> list[dict]:
        return await self.run_repo.list_recent(limit)

    async def analyze_task(self, task_id: str) -> CoherenceAnalysis | None:
        return await self.coherence.analyze_task_coherence_realtime(task_id)

    async def get_coherence_feedback(self, task_id: str, coach_tone: str = "balanced") -> str | None:
        return await self.coherence.get_coherence_feedback(task_id, coach_tone)

    async def suggest_connection(self, entity_type: str, entity_id: str) -> ConnectionSuggestion | None:
        return await self.connections.suggest_connection_for_entity(entity_type, entity_id)
