"""Layer 2: suggest goal links for entities that have none.

Matching is tiered. When the reasoning service is reachable each item is
offered to it first; anything it cannot place (or any failed call) falls
back to deterministic aspect + keyword rules, so the layer works the same
with no external service at all, only with plainer suggestions.
"""
from __future__ import annotations

import logging
import math
from typing import Any

from lifesync import config
from lifesync import observability as otel
from lifesync.models import (
    ConnectionSuggestion,
    GoalCandidate,
    GoalMatch,
    SuggestedGoal,
    SyncIssue,
    UnlinkedItem,
)
from lifesync.reasoning import ReasoningClient, ReasoningUnavailableError, extract_json_object
from lifesync.sync.ledger import IssueLedger, identity_key, new_issue
from lifesync.sync.references import entity_title

logger = logging.getLogger("lifesync.sync")

# entity type -> (goal link field, aspect when the record carries none)
_LINKABLE: dict[str, tuple[str, str | None]] = {
    "task": ("weekly_goal_id", None),
    "training": ("linked_goal_id", "fitness"),
    "meal": ("linked_goal_id", "nutrition"),
}


def _keyword_score(item_title: str, goal_title: str) -> int:
    goal_words = goal_title.lower().split()
    score = 0
    for word in item_title.lower().split():
        if len(word) > 3 and any(word in goal_word for goal_word in goal_words):
            score += 1
    return score


def build_match_prompt(item: UnlinkedItem, goals: list[GoalCandidate]) -> str:
    goals_text = "\n".join(
        f'{index}. "{goal.title}" ({goal.aspect or "unknown"})'
        for index, goal in enumerate(goals, start=1)
    )
    context_line = f"- Context: {item.context}\n" if item.context else ""
    return (
        "You are analyzing task-goal alignment for a personal productivity app.\n\n"
        "Given this item:\n"
        f"- Type: {item.type}\n"
        f'- Title: "{item.title}"\n'
        f"- Category: {item.aspect or 'unknown'}\n"
        f"{context_line}\n"
        "And these active goals:\n"
        f"{goals_text}\n\n"
        "Which goal (if any) does this item most likely support? Consider:\n"
        "1. Direct relevance (does completing this item directly advance the goal?)\n"
        "2. Indirect support (does this item create conditions for goal progress?)\n"
        "3. Category alignment (is the item in the same life area as the goal?)\n\n"
        "Respond in JSON format:\n"
        "{\n"
        f'  "goalNumber": <number 1-{len(goals)} or null if no good match>,\n'
        '  "confidence": <0.0-1.0>,\n'
        '  "reason": "<brief explanation>"\n'
        "}\n\n"
        "If no goal is a reasonable match (confidence would be below 0.3), "
        "respond with goalNumber: null."
    )


class SmartConnections:
    """Proposes a weekly goal for unlinked tasks, training sessions and meals."""

    def __init__(
        self,
        db: Any,
        reasoning: ReasoningClient | None = None,
        ledger: IssueLedger | None = None,
        *,
        batch_size: int | None = None,
        timeout_ms: int | None = None,
        reasoning_floor: float | None = None,
        accept_floor: float | None = None,
        single_aspect_confidence: float | None = None,
        keyword_base: float | None = None,
        keyword_step: float | None = None,
        keyword_cap: float | None = None,
        aspect_only_confidence: float | None = None,
    ):
        self.db = db
        self.reasoning = reasoning
        self.ledger = ledger or IssueLedger(db)
        self.entity_repo = self.ledger.entity_repo
        self.batch_size = batch_size if batch_size is not None else config.CONNECTIONS_BATCH_SIZE
        self.timeout_ms = timeout_ms or config.CONNECTIONS_TIMEOUT_MS
        self.reasoning_floor = reasoning_floor if reasoning_floor is not None else config.CONNECTIONS_REASONING_FLOOR
        self.accept_floor = accept_floor if accept_floor is not None else config.CONNECTIONS_ACCEPT_FLOOR
        self.single_aspect_confidence = (
            single_aspect_confidence
            if single_aspect_confidence is not None
            else config.CONNECTIONS_SINGLE_ASPECT_CONFIDENCE
        )
        self.keyword_base = keyword_base if keyword_base is not None else config.CONNECTIONS_KEYWORD_BASE
        self.keyword_step = keyword_step if keyword_step is not None else config.CONNECTIONS_KEYWORD_STEP
        self.keyword_cap = keyword_cap if keyword_cap is not None else config.CONNECTIONS_KEYWORD_CAP
        self.aspect_only_confidence = (
            aspect_only_confidence
            if aspect_only_confidence is not None
            else config.CONNECTIONS_ASPECT_ONLY_CONFIDENCE
        )

    async def get_unlinked_items(self) -> list[UnlinkedItem]:
        items: list[UnlinkedItem] = []
        for entity_type, (field, default_aspect) in _LINKABLE.items():
            for row in await self.entity_repo.query_by_field(entity_type, field, None):
                if entity_type == "task" and row.get("status") == "done":
                    continue
                items.append(
                    UnlinkedItem(
                        id=str(row["id"]),
                        type=entity_type,
                        title=entity_title(entity_type, row),
                        aspect=row.get("aspect") or default_aspect,
                        context=row.get("notes") or None,
                    )
                )
        return items

    async def get_active_goals(self) -> list[GoalCandidate]:
        rows = await self.entity_repo.query_by_status("weeklyGoal", "active")
        return [
            GoalCandidate(id=str(row["id"]), title=str(row.get("title") or ""), aspect=row.get("aspect"))
            for row in rows
        ]

    def match_by_rules(self, item: UnlinkedItem, goals: list[GoalCandidate]) -> GoalMatch | None:
        aspect_matches = [goal for goal in goals if goal.aspect and goal.aspect == item.aspect]
        if not aspect_matches:
            return None

        if len(aspect_matches) == 1:
            goal = aspect_matches[0]
            return GoalMatch(
                goalId=goal.id,
                goalTitle=goal.title,
                confidence=self.single_aspect_confidence,
                reason=f"Same aspect: {item.aspect}",
                method="rule-based",
            )

        best: GoalCandidate | None = None
        best_score = 0
        for goal in aspect_matches:
            score = _keyword_score(item.title, goal.title)
            if score > best_score:
                best_score = score
                best = goal

        if best is not None:
            return GoalMatch(
                goalId=best.id,
                goalTitle=best.title,
                confidence=min(self.keyword_base + self.keyword_step * best_score, self.keyword_cap),
                reason=f"Keyword match in {item.aspect}",
                method="rule-based",
            )

        goal = aspect_matches[0]
        return GoalMatch(
            goalId=goal.id,
            goalTitle=goal.title,
            confidence=self.aspect_only_confidence,
            reason=f"Only matching {item.aspect} goal",
            method="rule-based",
        )

    async def match_with_reasoning(self, item: UnlinkedItem, goals: list[GoalCandidate]) -> GoalMatch | None:
        """Ask the reasoning service; any failure for this item yields None."""
        if self.reasoning is None or not goals:
            return None
        try:
            response = await self.reasoning.generate(build_match_prompt(item, goals), timeout_ms=self.timeout_ms)
        except ReasoningUnavailableError as exc:
            logger.warning("Reasoning match failed for %s %s: %s", item.type, item.id, exc)
            otel.record_reasoning_call(2, "error")
            return None

        parsed = extract_json_object(response)
        if parsed is None:
            logger.warning("Reasoning match for %s %s returned no JSON", item.type, item.id)
            otel.record_reasoning_call(2, "malformed")
            return None

        goal_number = parsed.get("goalNumber")
        if goal_number is None:
            otel.record_reasoning_call(2, "ok")
            return None
        try:
            confidence = float(parsed.get("confidence"))
        except (TypeError, ValueError):
            confidence = math.nan
        if not math.isfinite(confidence):
            logger.warning("Reasoning match for %s %s returned no usable confidence", item.type, item.id)
            otel.record_reasoning_call(2, "malformed")
            return None
        otel.record_reasoning_call(2, "ok")

        if isinstance(goal_number, float) and goal_number.is_integer():
            goal_number = int(goal_number)
        if isinstance(goal_number, bool) or not isinstance(goal_number, int):
            return None
        if not 1 <= goal_number <= len(goals) or confidence < self.reasoning_floor:
            return None

        goal = goals[goal_number - 1]
        return GoalMatch(
            goalId=goal.id,
            goalTitle=goal.title,
            confidence=min(max(confidence, 0.0), 1.0),
            reason=str(parsed.get("reason") or ""),
            method="llm",
        )

    async def find_match(
        self,
        item: UnlinkedItem,
        goals: list[GoalCandidate],
        reasoning_available: bool,
    ) -> GoalMatch | None:
        match = None
        if reasoning_available:
            match = await self.match_with_reasoning(item, goals)
        if match is None:
            match = self.match_by_rules(item, goals)
        return match

    async def _reasoning_available(self) -> bool:
        if self.reasoning is None:
            return False
        return await self.reasoning.check_availability()

    async def run_smart_connections(self) -> dict[str, Any]:
        stats: dict[str, Any] = {
            "ran": True,
            "reasoningAvailable": False,
            "suggestionsGenerated": 0,
            "newIssues": 0,
            "issues": [],
        }
        with otel.start_span("sync.layer2"):
            open_keys = await self.ledger.open_keys(2)
            items = [
                item for item in await self.get_unlinked_items()
                if identity_key(2, item.type, item.id) not in open_keys
            ]
            goals = await self.get_active_goals()
            if not items or not goals:
                logger.info("Smart connections: nothing to match (%s items, %s goals)", len(items), len(goals))
                return stats

            reasoning_available = await self._reasoning_available()
            stats["reasoningAvailable"] = reasoning_available
            if not reasoning_available:
                logger.info("Reasoning service unavailable; using rule-based matching")

            issues: list[SyncIssue] = []
            for item in items[: self.batch_size]:
                match = await self.find_match(item, goals, reasoning_available)
                if match is None or match.confidence < self.accept_floor:
                    continue
                issues.append(
                    new_issue(
                        type="unlinked_item",
                        severity="info",
                        entityType=item.type,
                        entityId=item.id,
                        entityTitle=item.title,
                        linkedEntityType="weeklyGoal",
                        suggestedGoalId=match.goalId,
                        suggestedGoalTitle=match.goalTitle,
                        description=f'{item.type} "{item.title}" could be linked to a goal',
                        suggestion=match.reason,
                        confidence=match.confidence,
                        layer=2,
                    )
                )

            inserted = await self.ledger.record_issues(2, issues)
            stats["suggestionsGenerated"] = len(issues)
            stats["newIssues"] = len(inserted)
            stats["issues"] = issues
            otel.record_issues(2, "unlinked_item", len(inserted))

        logger.info(
            "Smart connections: %s suggestion(s), %s new issue(s) (reasoning=%s)",
            stats["suggestionsGenerated"], stats["newIssues"], stats["reasoningAvailable"],
        )
        return stats

    async def suggest_connection_for_item(self, item: UnlinkedItem) -> ConnectionSuggestion | None:
        """Best goal for one item, for inline use while it is being created. Nothing is recorded."""
        goals = await self.get_active_goals()
        if not goals:
            return None
        match = await self.find_match(item, goals, await self._reasoning_available())
        if match is None:
            return None
        return ConnectionSuggestion(
            entityId=item.id,
            entityTitle=item.title,
            entityType=item.type,
            suggestedGoals=[
                SuggestedGoal(
                    goalId=match.goalId,
                    goalTitle=match.goalTitle,
                    goalLevel="weekly",
                    confidence=match.confidence,
                    reasoning=match.reason,
                )
            ],
            method=match.method,
        )

    async def suggest_connection_for_entity(self, entity_type: str, entity_id: str) -> ConnectionSuggestion | None:
        """``suggest_connection_for_item`` for a stored record."""
        if entity_type not in _LINKABLE:
            raise ValueError(f"{entity_type} cannot be linked to a goal")
        row = await self.entity_repo.get(entity_type, entity_id)
        if row is None:
            return None
        _, default_aspect = _LINKABLE[entity_type]
        item = UnlinkedItem(
            id=str(row["id"]),
            type=entity_type,
            title=entity_title(entity_type, row),
            aspect=row.get("aspect") or default_aspect,
            context=row.get("notes") or None,
        )
        return await self.suggest_connection_for_item(item)
