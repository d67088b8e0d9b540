"""Tests for readiness evaluation."""

from datetime import datetime, timedelta, timezone

from session_pilot.core import Item, ReadinessPolicy, ReadinessResult, evaluate, sort_by_priority
from session_pilot.core.readiness import calculate_priority

NOW = datetime(2025, 6, 1, tzinfo=timezone.utc)


def make_item(**kwargs) -> Item:
    kwargs.setdefault("id", "item-1")
    kwargs.setdefault("title", "Add feature")
    return Item(**kwargs)


def test_ready_by_default() -> None:
    """An item with no constraints is ready with zero priority."""
    result = evaluate(make_item(), ReadinessPolicy())
    assert result == ReadinessResult(True, None, 0.0)


def test_blocking_label() -> None:
    """Blocking labels are matched case-insensitively."""
    policy = ReadinessPolicy(exclude=["WIP"])
    result = evaluate(make_item(labels=["wip", "bug"]), policy)

    assert not result.ready
    assert result.reason == "Has blocking label: wip"
    assert result.priority == 0.0


def test_dependency_blocking_labels() -> None:
    """Dependency blocking labels behave like excluded labels."""
    policy = ReadinessPolicy(blocking_labels=["blocked"])
    assert not evaluate(make_item(labels=["Blocked"]), policy).ready


def test_missing_required_label() -> None:
    """Every required label must be present."""
    policy = ReadinessPolicy(required=["ready", "agent"])
    result = evaluate(make_item(labels=["ready"]), policy)

    assert not result.ready
    assert result.reason == "Missing required label: agent"


def test_any_of_labels() -> None:
    """At least one any-of label must be present."""
    policy = ReadinessPolicy(any_of=["bug", "feature"])

    assert evaluate(make_item(labels=["feature"]), policy).ready
    result = evaluate(make_item(labels=["docs"]), policy)
    assert result.reason == "Missing one of required labels: bug, feature"


def test_body_dependency_reference() -> None:
    """Items that wait on other work are not ready."""
    result = evaluate(make_item(body="This is blocked by #12."), ReadinessPolicy())

    assert not result.ready
    assert "blocked by #12" in result.reason


def test_body_references_can_be_disabled() -> None:
    """Body scanning is skipped when turned off."""
    policy = ReadinessPolicy(check_body_references=False)
    assert evaluate(make_item(body="depends on #3"), policy).ready


def test_unchecked_subtasks() -> None:
    """A tracking issue with open subtasks is not ready."""
    body = "- [x] first\n- [ ] second\n- [ ] third\n"
    result = evaluate(make_item(body=body), ReadinessPolicy())

    assert not result.ready
    assert result.reason == "Has 2 unchecked subtasks"


def test_single_checkbox_is_not_a_tracking_issue() -> None:
    """One lone checkbox does not block."""
    assert evaluate(make_item(body="- [ ] confirm fix"), ReadinessPolicy()).ready


def test_bot_only_comments() -> None:
    """Only bot comments means there is nothing to act on."""
    comments = [
        {"user": {"login": "github-actions[bot]", "type": "Bot"}, "body": "CI passed"},
        {"user": {"login": "coderabbitai", "type": "User"}, "body": "Summary"},
    ]
    result = evaluate(make_item(author="alice", extra={"comments": comments}), ReadinessPolicy())

    assert not result.ready
    assert "bot" in result.reason


def test_human_comment_is_actionable() -> None:
    """A reviewer comment makes the item ready."""
    comments = [
        {"user": {"login": "dependabot[bot]"}, "body": "bump"},
        {"user": {"login": "bob", "type": "User"}, "body": "Please rename this"},
    ]
    assert evaluate(make_item(author="alice", extra={"comments": comments}), ReadinessPolicy()).ready


def test_empty_comment_list_passes() -> None:
    """Enriched items without comments are not rejected."""
    assert evaluate(make_item(extra={"comments": []}), ReadinessPolicy()).ready


def test_bot_check_skipped_when_attention_required() -> None:
    """With require_attention the combined flag decides instead."""
    comments = [{"user": {"login": "renovate[bot]"}, "body": "update"}]
    item = make_item(extra={"comments": comments, "has_attention": True})
    assert evaluate(item, ReadinessPolicy(require_attention=True)).ready


def test_require_conflicts() -> None:
    """Only conflicting PRs pass when conflicts are required."""
    policy = ReadinessPolicy(require_conflicts=True)

    assert evaluate(make_item(extra={"mergeable": "CONFLICTING"}), policy).ready
    result = evaluate(make_item(extra={"mergeable": "MERGEABLE"}), policy)
    assert result.reason == "Mergeable status is MERGEABLE, not CONFLICTING"
    assert evaluate(make_item(), policy).ready


def test_require_attention() -> None:
    """Items without conflicts or feedback are skipped."""
    policy = ReadinessPolicy(require_attention=True)
    result = evaluate(make_item(extra={"has_attention": False}), policy)

    assert not result.ready
    assert result.reason == "No attention needed (no conflicts or feedback)"


def test_field_constraints() -> None:
    """Field values must match exactly."""
    policy = ReadinessPolicy(fields={"state": "open", "team.key": "ENG"})

    assert evaluate(make_item(state="open", extra={"team": {"key": "ENG"}}), policy).ready
    result = evaluate(make_item(state="closed", extra={"team": {"key": "ENG"}}), policy)
    assert result.reason == "Field state is 'closed', expected 'open'"


def test_checks_stop_at_first_failure() -> None:
    """Labels are checked before the body."""
    policy = ReadinessPolicy(exclude=["wip"])
    result = evaluate(make_item(labels=["wip"], body="blocked by #1"), policy)
    assert result.reason == "Has blocking label: wip"


def test_priority_from_labels_and_age() -> None:
    """Priority adds label weights and an age bonus."""
    policy = ReadinessPolicy(label_weights={"critical": 100, "bug": 10}, age_weight=1.5)
    item = make_item(labels=["Critical", "docs"], created_at=NOW - timedelta(days=2))

    assert calculate_priority(item, policy, now=NOW) == 103.0
    assert evaluate(item, policy, now=NOW).priority == 103.0


def test_evaluate_is_pure() -> None:
    """The same inputs always give the same answer."""
    policy = ReadinessPolicy(label_weights={"bug": 5})
    item = make_item(labels=["bug"])
    assert evaluate(item, policy, now=NOW) == evaluate(item, policy, now=NOW)


def test_policy_from_nested_config() -> None:
    """The nested YAML shape maps onto policy fields."""
    policy = ReadinessPolicy.from_dict(
        {
            "labels": {"exclude": ["wip"], "required": ["ready"], "any_of": ["bug"]},
            "dependencies": {"blocking_labels": ["blocked"], "check_body_references": False},
            "priority": {"labels": [{"label": "Critical", "weight": 100}], "age_weight": 0.5},
            "require_attention": True,
            "fields": {"state": "open"},
        }
    )

    assert policy.exclude == ["wip"]
    assert policy.required == ["ready"]
    assert policy.any_of == ["bug"]
    assert policy.blocking_labels == ["blocked"]
    assert policy.check_body_references is False
    assert policy.label_weights == {"critical": 100.0}
    assert policy.age_weight == 0.5
    assert policy.require_attention is True
    assert policy.fields == {"state": "open"}


def test_sort_by_priority_descending_and_stable() -> None:
    """Higher priority first; ties keep fetch order."""
    a, b, c = make_item(id="a"), make_item(id="b"), make_item(id="c")
    evaluated = [
        (a, ReadinessResult(True, priority=1.0)),
        (b, ReadinessResult(True, priority=5.0)),
        (c, ReadinessResult(True, priority=1.0)),
    ]

    ordered = [item.id for item, _ in sort_by_priority(evaluated)]
    assert ordered == ["b", "a", "c"]
    priorities = [r.priority for _, r in sort_by_priority(evaluated)]
    assert priorities == sorted(priorities, reverse=True)
