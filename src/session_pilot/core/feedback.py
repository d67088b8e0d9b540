"""Rules for telling actionable review feedback apart from noise."""

from typing import Any, Iterable, Mapping, Optional

BOT_SUFFIX = "[bot]"

# Service accounts that post as regular users.
KNOWN_BOT_ACCOUNTS = frozenset(
    {
        "copilot",
        "coderabbitai",
        "codecov-commenter",
        "linear",
        "sonarcloud",
        "vercel",
        "netlify",
    }
)

APPROVAL_STATES = frozenset({"APPROVED"})


def _user(comment: Mapping[str, Any]) -> tuple[str, Optional[str]]:
    user = comment.get("user") or comment.get("author") or {}
    if isinstance(user, str):
        return user, None
    return user.get("login") or "", user.get("type")


def is_bot(login: Optional[str], account_type: Optional[str] = None) -> bool:
    """Check if an account is a bot."""
    if account_type and account_type.lower() == "bot":
        return True
    if not login:
        return False
    lowered = login.lower()
    return lowered.endswith(BOT_SUFFIX) or lowered in KNOWN_BOT_ACCOUNTS


def is_approval_only(comment: Mapping[str, Any]) -> bool:
    """An approval review that carries no written feedback."""
    state = (comment.get("state") or "").upper()
    body = comment.get("body") or ""
    return state in APPROVAL_STATES and not body.strip()


def is_actionable(comment: Mapping[str, Any], author: Optional[str]) -> bool:
    """Decide whether a single comment or review asks for work.

    The item's own author is treated specially: their top-level comments and
    replies are status chatter, while their inline notes and formal reviews
    are self-review feedback.
    """
    login, account_type = _user(comment)
    if is_bot(login, account_type):
        return False
    if is_approval_only(comment):
        return False

    if author and login.lower() == author.lower():
        if comment.get("state"):
            return True
        if comment.get("in_reply_to_id"):
            return False
        return bool(comment.get("path"))

    return True


def has_actionable_feedback(
    comments: Optional[Iterable[Mapping[str, Any]]], author: Optional[str]
) -> bool:
    """True if at least one comment is actionable."""
    if not comments:
        return False
    return any(is_actionable(comment, author) for comment in comments)
