"""Explicit construction of the lifecycle collaborators.

Entry points (management commands, Celery tasks, admin actions) build what
they need here; nothing in the core reaches for a process-wide instance.
"""

from __future__ import annotations

from pp_games.provider import GameStatusProvider

from .broadcaster import EventBroadcaster
from .scheduler import StatusSyncScheduler
from .store import ChallengeStore


def build_broadcaster(channel_layer=None) -> EventBroadcaster:
    return EventBroadcaster(channel_layer)


def build_store(broadcaster: EventBroadcaster | None = None) -> ChallengeStore:
    return ChallengeStore(broadcaster if broadcaster is not None else build_broadcaster())


def build_scheduler(
    *,
    broadcaster: EventBroadcaster | None = None,
    store: ChallengeStore | None = None,
    provider: GameStatusProvider | None = None,
    **options,
) -> StatusSyncScheduler:
    broadcaster = broadcaster if broadcaster is not None else build_broadcaster()
    return StatusSyncScheduler(
        store if store is not None else build_store(broadcaster),
        provider if provider is not None else GameStatusProvider(),
        broadcaster,
        **options,
    )
