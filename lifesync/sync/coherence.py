"""Layer 3: audit whether linked tasks actually serve their goal chain.

Coherence is a judgment call, so this layer has no rule-based fallback:
without the reasoning service it reports that it ran and found nothing.
"""
from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Any

from lifesync import config
from lifesync import observability as otel
from lifesync.models import CoherenceAnalysis, SyncIssue
from lifesync.reasoning import ReasoningClient, ReasoningUnavailableError, extract_json_object
from lifesync.sync.ledger import IssueLedger, identity_key, new_issue

logger = logging.getLogger("lifesync.sync")

_TONE_INSTRUCTIONS = {
    "gentle": "Be encouraging and supportive, framing any concerns as gentle suggestions.",
    "balanced": "Be direct but constructive, balancing honesty with encouragement.",
    "intense": "Be straightforward and challenging, pushing for clarity and focus.",
}


@dataclass
class TaskWithGoals:
    task: dict
    weekly_goal: dict
    monthly_goal: dict | None = None
    yearly_goal: dict | None = None


@dataclass
class AlignmentJudgment:
    is_aligned: bool
    alignment_score: float
    reasoning: str
    suggestions: list[str]


def build_coherence_prompt(item: TaskWithGoals) -> str:
    task = item.task
    lines = [
        "You are a productivity coach analyzing task-goal alignment.",
        "",
        f'Task: "{task.get("title") or ""}"',
    ]
    if task.get("notes"):
        lines.append(f"Task notes: {task['notes']}")
    if task.get("aspect"):
        lines.append(f"Life area: {task['aspect']}")
    lines += ["", "Goal Hierarchy:", f'- Weekly Goal: "{item.weekly_goal.get("title") or ""}"']
    if item.monthly_goal:
        lines.append(f'- Monthly Goal: "{item.monthly_goal.get("title") or ""}"')
    if item.yearly_goal:
        lines.append(f'- Yearly Goal: "{item.yearly_goal.get("title") or ""}"')
    lines += [
        "",
        "Analyze whether completing this task would meaningfully contribute to achieving the weekly goal.",
        "",
        "Consider:",
        "1. Direct Contribution: Does the task directly advance the goal?",
        "2. Indirect Support: Does it create conditions for goal progress?",
        "3. Alignment: Is the task in the spirit of what the goal is trying to achieve?",
        "4. Drift Risk: Could this task be a distraction from the actual goal?",
        "",
        "Respond in JSON format:",
        "{",
        '  "isAligned": <true/false>,',
        '  "alignmentScore": <0.0-1.0>,',
        '  "reasoning": "<brief explanation of alignment or misalignment>",',
        '  "suggestions": ["<improvement suggestion 1>", "<improvement suggestion 2>"]',
        "}",
        "",
        "Be honest but constructive. A task doesn't need to be perfectly aligned, but flag clear misalignments.",
    ]
    return "\n".join(lines)


def parse_judgment(payload: dict[str, Any] | None) -> AlignmentJudgment | None:
    if not payload:
        return None
    try:
        score = float(payload.get("alignmentScore"))
    except (TypeError, ValueError):
        return None
    if not math.isfinite(score):
        return None
    is_aligned = payload.get("isAligned")
    if not isinstance(is_aligned, bool):
        return None
    suggestions = payload.get("suggestions") or []
    if not isinstance(suggestions, list):
        suggestions = []
    return AlignmentJudgment(
        is_aligned=is_aligned,
        alignment_score=min(max(score, 0.0), 1.0),
        reasoning=str(payload.get("reasoning") or ""),
        suggestions=[str(s) for s in suggestions if s],
    )


def _sort_key(item: TaskWithGoals) -> tuple[int, str]:
    return (int(item.task.get("defer_count") or 0), str(item.task.get("created_at") or ""))


class CoherenceAuditor:
    """Scores task ↔ goal alignment with the reasoning service."""

    def __init__(
        self,
        db: Any,
        reasoning: ReasoningClient | None = None,
        ledger: IssueLedger | None = None,
        *,
        batch_size: int | None = None,
        timeout_ms: int | None = None,
        feedback_timeout_ms: int | None = None,
        alignment_floor: float | None = None,
        warning_floor: float | None = None,
    ):
        self.db = db
        self.reasoning = reasoning
        self.ledger = ledger or IssueLedger(db)
        self.entity_repo = self.ledger.entity_repo
        self.batch_size = batch_size if batch_size is not None else config.COHERENCE_BATCH_SIZE
        self.timeout_ms = timeout_ms or config.COHERENCE_TIMEOUT_MS
        self.feedback_timeout_ms = feedback_timeout_ms or config.COHERENCE_FEEDBACK_TIMEOUT_MS
        self.alignment_floor = alignment_floor if alignment_floor is not None else config.COHERENCE_ALIGNMENT_FLOOR
        self.warning_floor = warning_floor if warning_floor is not None else config.COHERENCE_WARNING_FLOOR

    async def _reasoning_available(self) -> bool:
        if self.reasoning is None:
            return False
        return await self.reasoning.check_availability()

    async def get_tasks_with_goals(self) -> list[TaskWithGoals]:
        weekly = {str(g["id"]): g for g in await self.entity_repo.list_all("weeklyGoal")}
        monthly = {str(g["id"]): g for g in await self.entity_repo.list_all("monthlyGoal")}
        yearly = {str(g["id"]): g for g in await self.entity_repo.list_all("yearlyGoal")}

        result: list[TaskWithGoals] = []
        for task in await self.entity_repo.list_all("task"):
            if task.get("status") == "done" or not task.get("weekly_goal_id"):
                continue
            weekly_goal = weekly.get(str(task["weekly_goal_id"]))
            if weekly_goal is None:
                continue
            monthly_goal = monthly.get(str(weekly_goal.get("monthly_goal_id") or ""))
            yearly_goal = yearly.get(str(monthly_goal.get("yearly_goal_id") or "")) if monthly_goal else None
            result.append(TaskWithGoals(task, weekly_goal, monthly_goal, yearly_goal))
        return result

    async def _load_chain(self, task_id: str) -> TaskWithGoals | None:
        task = await self.entity_repo.get("task", task_id)
        if not task or not task.get("weekly_goal_id"):
            return None
        weekly_goal = await self.entity_repo.get("weeklyGoal", str(task["weekly_goal_id"]))
        if not weekly_goal:
            return None
        monthly_goal = None
        if weekly_goal.get("monthly_goal_id"):
            monthly_goal = await self.entity_repo.get("monthlyGoal", str(weekly_goal["monthly_goal_id"]))
        yearly_goal = None
        if monthly_goal and monthly_goal.get("yearly_goal_id"):
            yearly_goal = await self.entity_repo.get("yearlyGoal", str(monthly_goal["yearly_goal_id"]))
        return TaskWithGoals(task, weekly_goal, monthly_goal, yearly_goal)

    async def analyze_task_coherence(self, item: TaskWithGoals) -> AlignmentJudgment | None:
        """One reasoning call for one task; failures skip the task."""
        if self.reasoning is None:
            return None
        try:
            response = await self.reasoning.generate(build_coherence_prompt(item), timeout_ms=self.timeout_ms)
        except ReasoningUnavailableError as exc:
            logger.warning("Coherence analysis failed for task %s: %s", item.task.get("id"), exc)
            otel.record_reasoning_call(3, "error")
            return None
        judgment = parse_judgment(extract_json_object(response))
        if judgment is None:
            logger.warning("Coherence analysis for task %s returned an unreadable answer", item.task.get("id"))
            otel.record_reasoning_call(3, "malformed")
            return None
        otel.record_reasoning_call(3, "ok")
        return judgment

    def is_misaligned(self, judgment: AlignmentJudgment) -> bool:
        return not judgment.is_aligned or judgment.alignment_score < self.alignment_floor

    async def run_coherence_audit(self) -> dict[str, Any]:
        stats: dict[str, Any] = {
            "ran": True,
            "reasoningAvailable": False,
            "coherenceIssues": 0,
            "newIssues": 0,
            "issues": [],
        }
        with otel.start_span("sync.layer3"):
            if not await self._reasoning_available():
                logger.info("Coherence audit skipped: reasoning service unavailable")
                return stats
            stats["reasoningAvailable"] = True

            open_keys = await self.ledger.open_keys(3)
            candidates = [
                item for item in await self.get_tasks_with_goals()
                if identity_key(3, "task", str(item.task["id"]), str(item.weekly_goal["id"])) not in open_keys
            ]
            # defer count desc, then newest first
            candidates.sort(key=_sort_key, reverse=True)

            issues: list[SyncIssue] = []
            for item in candidates[: self.batch_size]:
                judgment = await self.analyze_task_coherence(item)
                if judgment is None or not self.is_misaligned(judgment):
                    continue
                score = judgment.alignment_score
                issues.append(
                    new_issue(
                        type="misaligned_task",
                        severity="warning" if score < self.warning_floor else "info",
                        entityType="task",
                        entityId=str(item.task["id"]),
                        entityTitle=str(item.task.get("title") or ""),
                        linkedEntityType="weeklyGoal",
                        linkedEntityId=str(item.weekly_goal["id"]),
                        description=f'Task may not effectively support goal "{item.weekly_goal.get("title") or ""}"',
                        suggestion=judgment.reasoning or None,
                        confidence=round(1.0 - score, 4),
                        layer=3,
                    )
                )

            inserted = await self.ledger.record_issues(3, issues)
            stats["coherenceIssues"] = len(issues)
            stats["newIssues"] = len(inserted)
            stats["issues"] = issues
            otel.record_issues(3, "misaligned_task", len(inserted))

        logger.info(
            "Coherence audit: %s misaligned task(s), %s new issue(s)",
            stats["coherenceIssues"], stats["newIssues"],
        )
        return stats

    async def analyze_task_coherence_realtime(self, task_id: str) -> CoherenceAnalysis | None:
        """Judge a single task for inline feedback. Nothing is written to the ledger."""
        if not await self._reasoning_available():
            return None
        item = await self._load_chain(task_id)
        if item is None:
            return None
        judgment = await self.analyze_task_coherence(item)
        if judgment is None:
            return None
        return CoherenceAnalysis(
            taskId=str(item.task["id"]),
            taskTitle=str(item.task.get("title") or ""),
            linkedGoalId=str(item.weekly_goal["id"]),
            linkedGoalTitle=str(item.weekly_goal.get("title") or ""),
            isAligned=judgment.is_aligned,
            alignmentScore=judgment.alignment_score,
            reasoning=judgment.reasoning,
            suggestions=judgment.suggestions,
        )

    async def get_coherence_feedback(self, task_id: str, coach_tone: str = "balanced") -> str | None:
        """Short coach feedback for a misaligned task; None when the task looks fine."""
        analysis = await self.analyze_task_coherence_realtime(task_id)
        if analysis is None or analysis.isAligned:
            return None

        prompt = (
            "You are a productivity coach giving brief feedback on task alignment.\n\n"
            f'Task: "{analysis.taskTitle}"\n'
            f"Analysis: {analysis.reasoning}\n\n"
            f"{_TONE_INSTRUCTIONS.get(coach_tone, _TONE_INSTRUCTIONS['balanced'])}\n\n"
            "Write 1-2 sentences of feedback for the user about this task's alignment with their goal.\n"
            "Be specific and actionable. Don't explain what coherence means - just give the feedback."
        )
        try:
            response = await self.reasoning.generate(prompt, timeout_ms=self.feedback_timeout_ms)
        except ReasoningUnavailableError as exc:
            logger.warning("Coherence feedback failed for task %s: %s", task_id, exc)
            return analysis.reasoning
        return response.strip() or analysis.reasoning
