"""Canonical keys for recognizing the same work item across trackers.

A Linear issue ``ENG-123`` and the GitHub PR whose body says
"Fixes ENG-123" share the key ``linear:ENG-123``; whichever is processed
first owns it.
"""

import re
from dataclasses import dataclass
from typing import Callable, Iterable, Optional

from session_pilot.core.entities import Item

GITHUB = "github"
LINEAR = "linear"

IDENTIFIER_PATTERN = re.compile(r"^[A-Za-z][A-Za-z0-9]*-\d+$")

# Standards and encodings that look like tracker ids (UTF-8, SHA-256, ISO-8601)
NON_TRACKER_PREFIXES = frozenset(
    {"AES", "CVE", "ECMA", "HTTP", "ISO", "MD", "PEP", "RFC", "RSA", "SHA", "SSL", "TLS", "UTF"}
)


def github_key(repo: str, number: object) -> str:
    return f"{GITHUB}:{repo}#{number}"


def linear_key(identifier: str) -> str:
    return f"{LINEAR}:{identifier}"


@dataclass(frozen=True)
class ReferencePattern:
    """A free-text reference syntax and how to turn a match into a key.

    ``build`` gets the match and the context repository and returns a key,
    or None when the match cannot be resolved.
    """

    name: str
    regex: re.Pattern
    build: Callable[[re.Match, Optional[str]], Optional[str]]


REFERENCE_PATTERNS: list[ReferencePattern] = [
    ReferencePattern(
        name="cross-repo",
        regex=re.compile(r"(?<![\w/.-])([A-Za-z0-9_.-]+/[A-Za-z0-9_.-]+)#(\d+)\b"),
        build=lambda m, repo: github_key(m.group(1), m.group(2)),
    ),
    ReferencePattern(
        name="same-repo",
        regex=re.compile(r"(?<![\w/.#-])#(\d+)\b"),
        build=lambda m, repo: github_key(repo, m.group(1)) if repo else None,
    ),
    ReferencePattern(
        name="tracker",
        regex=re.compile(r"\b([A-Z][A-Z0-9]{1,9}-\d+)\b"),
        build=lambda m, repo: _tracker_key(m.group(1)),
    ),
]


def tracker_team(identifier: str) -> str:
    """Team prefix of a tracker id: ``ENG`` for ``ENG-123``."""
    return identifier.rsplit("-", 1)[0]


def _tracker_key(identifier: str) -> Optional[str]:
    if tracker_team(identifier) in NON_TRACKER_PREFIXES:
        return None
    return linear_key(identifier)


def identity_keys(item: Item) -> list[str]:
    """Keys derived from the item's own identity."""
    keys = []
    if item.identifier and IDENTIFIER_PATTERN.match(item.identifier):
        keys.append(linear_key(item.identifier))
    if item.repository and item.number is not None:
        keys.append(github_key(item.repository, item.number))
    return keys


def reference_keys(text: str, repo: Optional[str] = None) -> list[str]:
    """Keys for every resolvable reference found in free text."""
    keys = []
    for pattern in REFERENCE_PATTERNS:
        for match in pattern.regex.finditer(text):
            key = pattern.build(match, repo)
            if key:
                keys.append(key)
    return keys


def compute_dedup_keys(
    item: Item, repo: Optional[str] = None, tracker_keys: Optional[Iterable[str]] = None
) -> list[str]:
    """All dedup keys for an item, in discovery order without duplicates.

    Bare ``#123`` references are only resolved when ``repo`` is given.
    With ``tracker_keys`` (team prefixes such as ``ENG``), tracker references
    in the text are only kept for those teams.
    """
    text = f"{item.title or ''}\n{item.body or ''}"
    references = reference_keys(text, repo)
    if tracker_keys is not None:
        allowed = {key.upper() for key in tracker_keys}
        prefix = f"{LINEAR}:"
        references = [
            key for key in references
            if not key.startswith(prefix) or tracker_team(key[len(prefix):]) in allowed
        ]
    keys = identity_keys(item) + references
    return list(dict.fromkeys(keys))
