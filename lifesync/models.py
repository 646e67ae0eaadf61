"""Pydantic models matching the frontend TypeScript types."""
from __future__ import annotations
from pydantic import BaseModel, Field
from typing import Literal, Optional

IssueType = Literal["orphaned_link", "unlinked_item", "misaligned_task"]
IssueSeverity = Literal["critical", "warning", "info"]
Resolution = Literal["linked", "unlinked", "ignored", "deleted"]
RunType = Literal["manual", "background", "realtime"]
CoachTone = Literal["gentle", "balanced", "intense"]

LIFE_ASPECTS = ("fitness", "nutrition", "career", "financial", "side-projects", "chores")

# ── Sync issues ─────────────────────────────────────────────────────

class SyncIssue(BaseModel):
    id: str
    type: IssueType
    severity: IssueSeverity
    entityType: str
    entityId: str
    entityTitle: str = ""
    linkedEntityType: Optional[str] = None
    linkedEntityId: Optional[str] = None
    suggestedGoalId: Optional[str] = None
    suggestedGoalTitle: Optional[str] = None
    description: str = ""
    suggestion: Optional[str] = None
    confidence: float = 1.0
    layer: int
    detectedAt: str
    resolvedAt: Optional[str] = None
    resolution: Optional[Resolution] = None


# ── Run results ─────────────────────────────────────────────────────

class IntegrityLayerResult(BaseModel):
    ran: bool = False
    issuesFound: int = 0
    issuesFixed: int = 0
    newIssues: int = 0


class ConnectionsLayerResult(BaseModel):
    ran: bool = False
    reasoningAvailable: bool = False
    suggestionsGenerated: int = 0
    newIssues: int = 0


class CoherenceLayerResult(BaseModel):
    ran: bool = False
    reasoningAvailable: bool = False
    coherenceIssues: int = 0
    newIssues: int = 0


class SyncRunResult(BaseModel):
    id: str
    runType: RunType = "manual"
    startedAt: str
    completedAt: str = ""
    duration: int = 0  # milliseconds
    layer1: IntegrityLayerResult = Field(default_factory=IntegrityLayerResult)
    layer2: ConnectionsLayerResult = Field(default_factory=ConnectionsLayerResult)
    layer3: CoherenceLayerResult = Field(default_factory=CoherenceLayerResult)
    totalIssues: int = 0
    newIssues: int = 0
    resolvedIssues: int = 0
    unresolvedCount: int = 0


# ── Settings ────────────────────────────────────────────────────────

class SyncSettings(BaseModel):
    layer1Enabled: bool = True
    layer2Enabled: bool = True
    layer3Enabled: bool = True
    backgroundSyncEnabled: bool = True
    backgroundSyncInterval: int = Field(30, ge=1)  # minutes
    realtimeSyncEnabled: bool = True
    realtimeSyncDebounce: int = Field(2000, ge=0)  # milliseconds
    showSyncNotifications: bool = True
    autoResolveOrphanedLinks: bool = False


class SyncSettingsPatch(BaseModel):
    layer1Enabled: Optional[bool] = None
    layer2Enabled: Optional[bool] = None
    layer3Enabled: Optional[bool] = None
    backgroundSyncEnabled: Optional[bool] = None
    backgroundSyncInterval: Optional[int] = Field(None, ge=1)
    realtimeSyncEnabled: Optional[bool] = None
    realtimeSyncDebounce: Optional[int] = Field(None, ge=0)
    showSyncNotifications: Optional[bool] = None
    autoResolveOrphanedLinks: Optional[bool] = None


class SyncSnapshot(BaseModel):
    """Read model handed to the UI."""
    issues: list[SyncIssue] = Field(default_factory=list)
    unresolvedCount: int = 0
    lastRun: Optional[SyncRunResult] = None
    runHistory: list[SyncRunResult] = Field(default_factory=list)
    isRunning: bool = False
    currentLayer: Optional[int] = None
    error: Optional[str] = None
    settings: SyncSettings = Field(default_factory=SyncSettings)


# ── Layer 2 / layer 3 inline results ────────────────────────────────

class UnlinkedItem(BaseModel):
    id: str
    type: str  # "task" | "training" | "meal"
    title: str
    aspect: Optional[str] = None
    context: Optional[str] = None


class GoalCandidate(BaseModel):
    id: str
    title: str
    aspect: Optional[str] = None


class GoalMatch(BaseModel):
    goalId: str
    goalTitle: str
    confidence: float
    reason: str = ""
    method: Literal["llm", "rule-based"] = "rule-based"


class SuggestedGoal(BaseModel):
    goalId: str
    goalTitle: str
    goalLevel: str = "weekly"
    confidence: float
    reasoning: str = ""


class ConnectionSuggestion(BaseModel):
    entityId: str
    entityTitle: str
    entityType: str
    suggestedGoals: list[SuggestedGoal] = Field(default_factory=list)
    method: Literal["llm", "rule-based"] = "rule-based"


class CoherenceAnalysis(BaseModel):
    taskId: str
    taskTitle: str
    linkedGoalId: str
    linkedGoalTitle: str
    isAligned: bool
    alignmentScore: float
    reasoning: str = ""
    suggestions: list[str] = Field(default_factory=list)
