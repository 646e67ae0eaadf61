"""Registry of foreign-key-shaped references in the entity graph."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any


@dataclass(frozen=True)
class Reference:
    entity_type: str
    field: str
    target_type: str
    optional: bool  # simple link that may be cleared without user input
    label: str
    many: bool = False  # field holds a list of target ids


REFERENCES: tuple[Reference, ...] = (
    Reference("task", "weekly_goal_id", "weeklyGoal", False, "weekly goal"),
    Reference("task", "parent_task_id", "task", False, "parent task"),
    Reference("task", "recurrence_template_id", "recurrenceTemplate", True, "recurrence template"),
    Reference("weeklyGoal", "monthly_goal_id", "monthlyGoal", False, "monthly goal"),
    Reference("monthlyGoal", "yearly_goal_id", "yearlyGoal", False, "yearly goal"),
    Reference("training", "linked_goal_id", "weeklyGoal", True, "goal"),
    Reference("meal", "linked_goal_id", "weeklyGoal", True, "goal"),
    Reference("meal", "recipe_id", "recipe", True, "recipe"),
    Reference("financial", "linked_goal_id", "weeklyGoal", True, "goal"),
    Reference("scheduleBlock", "linked_task_id", "task", True, "task"),
    Reference("scheduleBlock", "linked_goal_id", "weeklyGoal", True, "goal"),
    Reference("journal", "linked_goal_ids", "weeklyGoal", True, "goal", many=True),
    Reference("shoppingItem", "list_id", "shoppingList", False, "shopping list"),
)

_BY_PAIR = {(ref.entity_type, ref.target_type): ref for ref in REFERENCES}


def target_ids(ref: Reference, row: dict) -> list[str]:
    """The non-empty target ids a record holds for ``ref``."""
    value = row.get(ref.field)
    if not value:
        return []
    if ref.many:
        return [str(v) for v in value if v]
    return [str(value)]


def cleared_value(ref: Reference, row: dict, target_id: str) -> Any:
    """Field value with ``target_id`` removed (None for single links)."""
    if not ref.many:
        return None
    return [v for v in target_ids(ref, row) if v != target_id]


def relinked_value(ref: Reference, row: dict, old_id: str | None, new_id: str) -> Any:
    """Field value pointing at ``new_id`` instead of ``old_id``."""
    if not ref.many:
        return new_id
    ids = [v for v in target_ids(ref, row) if v != old_id]
    if new_id not in ids:
        ids.append(new_id)
    return ids


def reference_for(entity_type: str, linked_entity_type: str | None) -> Reference | None:
    """Find the reference an issue is about; defaults to the entity's goal link."""
    if linked_entity_type:
        ref = _BY_PAIR.get((entity_type, linked_entity_type))
        if ref:
            return ref
    return goal_link_for(entity_type)


_GOAL_TARGETS = {
    "weeklyGoal": "monthlyGoal",
    "monthlyGoal": "yearlyGoal",
}


def goal_link_for(entity_type: str) -> Reference | None:
    """The reference that links an entity to the goal it supports."""
    target = _GOAL_TARGETS.get(entity_type, "weeklyGoal")
    return _BY_PAIR.get((entity_type, target))


def entity_title(entity_type: str, row: dict) -> str:
    """Human label for a record, mirroring how the app lists it."""
    title = str(row.get("title") or "").strip()
    if title:
        return title
    if entity_type == "training":
        return f"{row.get('type') or 'other'} training on {row.get('date') or 'unknown date'}"
    if entity_type == "meal":
        return f"{row.get('type') or 'meal'} on {row.get('date') or 'unknown date'}"
    if entity_type == "financial":
        return f"Financial snapshot {row.get('date') or ''}".strip()
    if entity_type == "journal":
        return f"Journal entry from {str(row.get('timestamp') or '')[:10] or 'unknown date'}"
    if entity_type == "shoppingItem":
        return str(row.get("item") or row.get("id") or "")
    return str(row.get("id") or "")
