"""Pick an existing session to continue instead of starting a duplicate."""

from typing import Iterable, Mapping, Optional

from session_pilot.core.entities import Session, SessionStatus


def active_sessions(sessions: Iterable[Session]) -> list[Session]:
    return [session for session in sessions if not session.is_archived]


def select_session(
    candidates: list[Session], statuses: Mapping[str, SessionStatus]
) -> Optional[Session]:
    """Most recently updated idle session, else most recently updated busy one.

    A session without a status entry counts as idle.
    """
    idle: list[Session] = []
    other: list[Session] = []
    for session in candidates:
        status = statuses.get(session.id)
        if status is None or status.is_idle:
            idle.append(session)
        else:
            other.append(session)

    for group in (idle, other):
        if group:
            return max(group, key=lambda s: s.updated_at)
    return None
