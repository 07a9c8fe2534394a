"""Challenge status transitions shared by the store and the status scheduler."""

from __future__ import annotations

from .models import ChallengeStatus


PENDING = ChallengeStatus.PENDING.value
ACTIVE = ChallengeStatus.ACTIVE.value
LIVE = ChallengeStatus.LIVE.value
FINISHED = ChallengeStatus.FINISHED.value
CANCELLED = ChallengeStatus.CANCELLED.value

TRANSITIONS: dict[str, frozenset[str]] = {
    PENDING: frozenset({ACTIVE, LIVE, FINISHED, CANCELLED}),
    ACTIVE: frozenset({LIVE, FINISHED, CANCELLED}),
    LIVE: frozenset({FINISHED}),
    FINISHED: frozenset(),
    CANCELLED: frozenset(),
}

TERMINAL_STATUSES = frozenset({FINISHED, CANCELLED})
JOINABLE_STATUSES = frozenset({PENDING, ACTIVE})
LEAVABLE_STATUSES = frozenset({PENDING, ACTIVE})
SYNCABLE_STATUSES = frozenset({PENDING, ACTIVE, LIVE})


def is_valid_status(value) -> bool:
    return str(value) in TRANSITIONS


def is_terminal(status) -> bool:
    return str(status) in TERMINAL_STATUSES


def can_transition(current, target) -> bool:
    return str(target) in TRANSITIONS.get(str(current), frozenset())


def decide_sync_transition(current, snapshot) -> str | None:
    """Pick the status a challenge should move to given an observed game snapshot.

    Live wins over finished; a missing snapshot or an unknown game state
    means no change.
    """
    current = str(current)
    if snapshot is None or current not in SYNCABLE_STATUSES:
        return None

    target = None
    if snapshot.is_live and current != LIVE:
        target = LIVE
    elif snapshot.is_finished and current != FINISHED:
        target = FINISHED

    if target is None or not can_transition(current, target):
        return None
    return target
