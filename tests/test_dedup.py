"""Tests for dedup key extraction."""

from session_pilot.core import Item
from session_pilot.core.dedup import compute_dedup_keys, reference_keys, tracker_team


def test_linear_identifier() -> None:
    """A tracker identifier yields one key."""
    item = Item(id="lin-1", title="Login broken", identifier="ENG-123")
    assert compute_dedup_keys(item) == ["linear:ENG-123"]


def test_github_repository_and_number() -> None:
    """Repository plus number yields one key."""
    item = Item(id="gh-1", title="Login broken", repository="org/app", number=42)
    assert compute_dedup_keys(item) == ["github:org/app#42"]


def test_body_references() -> None:
    """Cross-repo and tracker references in the body are keys too."""
    item = Item(
        id="pr-9",
        title="Fix login",
        body="Fixes ENG-123, see also org/lib#7",
        repository="org/app",
        number=9,
    )

    keys = compute_dedup_keys(item)
    assert keys == ["github:org/app#9", "github:org/lib#7", "linear:ENG-123"]


def test_bare_reference_needs_repo_context() -> None:
    """Bare #N references are resolved only with a repository."""
    assert reference_keys("Closes #12") == []
    assert reference_keys("Closes #12", repo="org/app") == ["github:org/app#12"]


def test_cross_repo_reference_not_double_counted() -> None:
    """org/repo#N is not also read as a bare #N."""
    assert reference_keys("See org/app#5", repo="org/other") == ["github:org/app#5"]


def test_no_identity_yields_no_keys() -> None:
    """Items without identity never block anything."""
    assert compute_dedup_keys(Item(id="x", title="Plain note", body="nothing here")) == []


def test_keys_are_unique() -> None:
    """Repeated references are collapsed."""
    item = Item(id="lin-1", title="ENG-5", body="ENG-5 again", identifier="ENG-5")
    assert compute_dedup_keys(item) == ["linear:ENG-5"]


def test_standard_names_are_not_tracker_ids() -> None:
    """UTF-8, SHA-256 and friends look like tracker ids but are not."""
    text = "Store as UTF-8, hash with SHA-256, timestamps in ISO-8601 per RFC-3339"
    assert reference_keys(text) == []
    assert reference_keys("UTF-8 fix for ENG-12") == ["linear:ENG-12"]


def test_unrelated_items_mentioning_encodings_share_no_keys() -> None:
    first = Item(id="a", title="Read files as UTF-8")
    second = Item(id="b", title="Write logs as UTF-8")
    assert compute_dedup_keys(first) == []
    assert compute_dedup_keys(second) == []


def test_tracker_keys_allow_list() -> None:
    """Only references to configured teams are kept."""
    item = Item(id="pr", body="Fixes ENG-4, mentions K8S-2 and org/app#3", identifier="OPS-1")

    keys = compute_dedup_keys(item, tracker_keys=["eng"])

    assert keys == ["linear:OPS-1", "github:org/app#3", "linear:ENG-4"]
    assert "linear:K8S-2" in compute_dedup_keys(item)


def test_tracker_team() -> None:
    assert tracker_team("ENG-123") == "ENG"
