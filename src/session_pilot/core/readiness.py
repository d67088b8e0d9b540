"""Readiness evaluation: should an item get a session now, and how urgently.

Checks run in a fixed order and stop at the first failure:

1. label constraints (blocking, required, any-of)
2. dependency references and unfinished tracking issues in the body
3. bot-only feedback (items enriched with a comment list)
4. mergeable status (items enriched with a mergeable status)
5. combined attention flag
6. exact field values

Ready items get a priority score from label weights and age.
"""

import re
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any, Optional

from session_pilot.core.entities import Item, ReadinessResult
from session_pilot.core.feedback import has_actionable_feedback

DEPENDENCY_PATTERNS = [
    re.compile(r"blocked by #\d+", re.IGNORECASE),
    re.compile(r"blocked by [a-zA-Z0-9_-]+/[a-zA-Z0-9_.-]+#\d+", re.IGNORECASE),
    re.compile(r"depends on #\d+", re.IGNORECASE),
    re.compile(r"depends on [a-zA-Z0-9_-]+/[a-zA-Z0-9_.-]+#\d+", re.IGNORECASE),
    re.compile(r"requires #\d+", re.IGNORECASE),
    re.compile(r"waiting on #\d+", re.IGNORECASE),
    re.compile(r"waiting for #\d+", re.IGNORECASE),
    re.compile(r"after #\d+", re.IGNORECASE),
]

UNCHECKED_TASK = re.compile(r"^\s*[-*]\s*\[ \]", re.MULTILINE)
CHECKED_TASK = re.compile(r"^\s*[-*]\s*\[x\]", re.MULTILINE | re.IGNORECASE)

CONFLICTING = "CONFLICTING"

SECONDS_PER_DAY = 60 * 60 * 24


@dataclass
class ReadinessPolicy:
    """Readiness settings for a source or repository."""

    exclude: list[str] = field(default_factory=list)
    required: list[str] = field(default_factory=list)
    any_of: list[str] = field(default_factory=list)
    blocking_labels: list[str] = field(default_factory=list)
    check_body_references: bool = True
    require_conflicts: bool = False
    require_attention: bool = False
    fields: dict[str, Any] = field(default_factory=dict)
    label_weights: dict[str, float] = field(default_factory=dict)
    age_weight: float = 0.0

    @classmethod
    def from_dict(cls, data: Optional[dict[str, Any]]) -> "ReadinessPolicy":
        """Build a policy from the nested YAML readiness section."""
        data = data or {}
        labels = data.get("labels") or {}
        dependencies = data.get("dependencies") or {}
        priority = data.get("priority") or {}

        weights: dict[str, float] = {}
        for entry in priority.get("labels") or []:
            if isinstance(entry, dict) and entry.get("label"):
                weights[str(entry["label"]).lower()] = float(entry.get("weight") or 0)

        return cls(
            exclude=list(labels.get("exclude") or []),
            required=list(labels.get("required") or []),
            any_of=list(labels.get("any_of") or []),
            blocking_labels=list(dependencies.get("blocking_labels") or []),
            check_body_references=dependencies.get("check_body_references", True) is not False,
            require_conflicts=bool(data.get("require_conflicts", False)),
            require_attention=bool(data.get("require_attention", False)),
            fields=dict(data.get("fields") or {}),
            label_weights=weights,
            age_weight=float(priority.get("age_weight") or 0),
        )


def _label_names(item: Item) -> list[str]:
    return [label.lower() for label in item.labels]


def check_labels(item: Item, policy: ReadinessPolicy) -> ReadinessResult:
    """Check blocking, required and any-of label constraints."""
    labels = _label_names(item)

    blocked = dict.fromkeys(label.lower() for label in policy.exclude + policy.blocking_labels)
    for label in blocked:
        if label in labels:
            return ReadinessResult(False, f"Has blocking label: {label}")

    for label in policy.required:
        if label.lower() not in labels:
            return ReadinessResult(False, f"Missing required label: {label.lower()}")

    any_of = [label.lower() for label in policy.any_of]
    if any_of and not any(label in labels for label in any_of):
        return ReadinessResult(False, f"Missing one of required labels: {', '.join(any_of)}")

    return ReadinessResult(True)


def check_dependencies(item: Item, policy: ReadinessPolicy) -> ReadinessResult:
    """Reject items that reference unresolved work or unfinished subtasks."""
    if not policy.check_body_references:
        return ReadinessResult(True)

    body = item.body or ""
    found = [m.group(0).lower() for m in (p.search(body) for p in DEPENDENCY_PATTERNS) if m]
    if found:
        return ReadinessResult(False, f"Has dependency references: {', '.join(found)}")

    unchecked = len(UNCHECKED_TASK.findall(body))
    checked = len(CHECKED_TASK.findall(body))
    if unchecked > 0 and unchecked + checked > 1:
        return ReadinessResult(False, f"Has {unchecked} unchecked subtasks")

    return ReadinessResult(True)


def check_bot_comments(item: Item, policy: ReadinessPolicy) -> ReadinessResult:
    """Reject items whose only feedback comes from bots or the author."""
    comments = item.extra.get("comments")
    if not isinstance(comments, list) or policy.require_attention:
        return ReadinessResult(True)
    if not comments:
        return ReadinessResult(True)

    if not has_actionable_feedback(comments, item.author):
        return ReadinessResult(False, "Only bot or author comments, no actionable feedback")
    return ReadinessResult(True)


def check_mergeable(item: Item, policy: ReadinessPolicy) -> ReadinessResult:
    """With ``require_conflicts``, only conflicting PRs are ready."""
    status = item.extra.get("mergeable")
    if status is None or not policy.require_conflicts:
        return ReadinessResult(True)
    if str(status).upper() != CONFLICTING:
        return ReadinessResult(False, f"Mergeable status is {status}, not {CONFLICTING}")
    return ReadinessResult(True)


def check_attention(item: Item, policy: ReadinessPolicy) -> ReadinessResult:
    has_attention = item.extra.get("has_attention")
    if not policy.require_attention or has_attention is None:
        return ReadinessResult(True)
    if not has_attention:
        return ReadinessResult(False, "No attention needed (no conflicts or feedback)")
    return ReadinessResult(True)


def check_fields(item: Item, policy: ReadinessPolicy) -> ReadinessResult:
    for name, expected in policy.fields.items():
        actual = item.get(name)
        if actual != expected:
            return ReadinessResult(False, f"Field {name} is {actual!r}, expected {expected!r}")
    return ReadinessResult(True)


CHECKS = (
    check_labels,
    check_dependencies,
    check_bot_comments,
    check_mergeable,
    check_attention,
    check_fields,
)


def calculate_priority(item: Item, policy: ReadinessPolicy, now: Optional[datetime] = None) -> float:
    """Label weights plus linear age bonus, rounded to 2 decimals."""
    score = 0.0
    labels = _label_names(item)
    for label, weight in policy.label_weights.items():
        if label in labels:
            score += weight

    if policy.age_weight > 0 and item.created_at is not None:
        now = now or datetime.now(timezone.utc)
        created = item.created_at
        if created.tzinfo is None:
            created = created.replace(tzinfo=timezone.utc)
        age_days = (now - created).total_seconds() / SECONDS_PER_DAY
        score += age_days * policy.age_weight

    return round(score, 2)


def evaluate(item: Item, policy: ReadinessPolicy, now: Optional[datetime] = None) -> ReadinessResult:
    """Evaluate whether an item is ready and compute its priority."""
    for check in CHECKS:
        result = check(item, policy)
        if not result.ready:
            return replace(result, priority=0.0)
    return ReadinessResult(True, priority=calculate_priority(item, policy, now))


def sort_by_priority(evaluated: list[tuple[Item, ReadinessResult]]) -> list[tuple[Item, ReadinessResult]]:
    """Highest priority first; ties keep their fetch order."""
    return sorted(evaluated, key=lambda pair: pair[1].priority, reverse=True)
