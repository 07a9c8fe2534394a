from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone as dt_timezone
from typing import Any

from asgiref.sync import sync_to_async
from django.conf import settings
from django.core.cache import caches
from django.utils import timezone
from django.utils.dateparse import parse_datetime

from .client import NhlApiClient, UpstreamUnavailable


logger = logging.getLogger(__name__)

GAME_STATUS_CACHE_ALIAS = 'game_status'
GAME_STATUS_CACHE_KEY = 'games:status:v1:{game_id}'

LIVE_STATES = frozenset({'LIVE', 'CRIT', 'PRE'})
FINISHED_STATES = frozenset({'OFF', 'FINAL'})
SCHEDULED_STATES = frozenset({'FUT', 'SCHEDULED'})

POLL_LIVE_SECONDS = 30
POLL_FINISHED_SECONDS = 5 * 60
POLL_IMMINENT_SECONDS = 60
POLL_SOON_SECONDS = 5 * 60
POLL_DISTANT_SECONDS = 10 * 60


@dataclass(frozen=True)
class GameStatusSnapshot:
    game_id: str
    raw_state: str
    schedule_state: str
    is_live: bool
    is_finished: bool
    is_scheduled: bool
    start_time_utc: datetime | None
    observed_at: datetime

    def as_dict(self) -> dict[str, Any]:
        return {
            'game_id': self.game_id,
            'raw_state': self.raw_state,
            'schedule_state': self.schedule_state,
            'is_live': self.is_live,
            'is_finished': self.is_finished,
            'is_scheduled': self.is_scheduled,
            'start_time_utc': self.start_time_utc.isoformat() if self.start_time_utc else None,
            'observed_at': self.observed_at.isoformat(),
        }


def classify_state(raw_state: str) -> tuple[bool, bool, bool]:
    """Return (is_live, is_finished, is_scheduled) for an NHL gameState code.

    Unknown codes (postponed, suspended, ...) classify as none of the three.
    """
    state = str(raw_state or '').strip().upper()
    return state in LIVE_STATES, state in FINISHED_STATES, state in SCHEDULED_STATES


def _parse_start_time(value: Any) -> datetime | None:
    text = str(value or '').strip()
    if not text:
        return None
    try:
        parsed = parse_datetime(text)
    except ValueError:
        return None
    if parsed is None:
        return None
    if timezone.is_naive(parsed):
        parsed = timezone.make_aware(parsed, dt_timezone.utc)
    return parsed


def _find_scheduled_game(schedule: dict[str, Any], game_id: str) -> dict[str, Any] | None:
    for day in schedule.get('gameWeek') or []:
        if not isinstance(day, dict):
            continue
        games = day.get('games')
        if not isinstance(games, list):
            continue
        for game in games:
            if isinstance(game, dict) and str(game.get('id')) == str(game_id):
                return game
    return None


class GameStatusProvider:
    """Cached view of NHL game state for the challenge lifecycle.

    Snapshots are kept in the ``game_status`` cache alias and treated as fresh
    for ``ttl_seconds`` after they were observed. Entries are always replaced
    with ``cache.set``; nothing mutates a cached snapshot in place.
    """

    def __init__(
        self,
        client: NhlApiClient | None = None,
        *,
        cache=None,
        ttl_seconds: int | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.client = client or NhlApiClient()
        self.cache = cache if cache is not None else caches[GAME_STATUS_CACHE_ALIAS]
        self.ttl_seconds = int(ttl_seconds or getattr(settings, 'GAME_STATUS_CACHE_TTL_SECONDS', 30) or 30)
        self.clock = clock or timezone.now

    def _cache_key(self, game_id: str) -> str:
        return GAME_STATUS_CACHE_KEY.format(game_id=game_id)

    def _cached(self, game_id: str) -> GameStatusSnapshot | None:
        snapshot = self.cache.get(self._cache_key(game_id))
        if not isinstance(snapshot, GameStatusSnapshot):
            return None
        age = (self.clock() - snapshot.observed_at).total_seconds()
        if age < self.ttl_seconds:
            return snapshot
        return None

    def _store(self, snapshot: GameStatusSnapshot) -> None:
        # Backend expiry is only a backstop; freshness is decided by observed_at.
        self.cache.set(self._cache_key(snapshot.game_id), snapshot, timeout=self.ttl_seconds * 2)

    def _snapshot_from(self, game_id: str, node: dict[str, Any]) -> GameStatusSnapshot:
        raw_state = str(node.get('gameState') or 'FUT').strip().upper()
        is_live, is_finished, is_scheduled = classify_state(raw_state)
        return GameStatusSnapshot(
            game_id=str(game_id),
            raw_state=raw_state,
            schedule_state=str(node.get('gameScheduleState') or 'OK'),
            is_live=is_live,
            is_finished=is_finished,
            is_scheduled=is_scheduled,
            start_time_utc=_parse_start_time(node.get('startTimeUTC')),
            observed_at=self.clock(),
        )

    def _fetch(self, game_id: str) -> GameStatusSnapshot | None:
        schedule = self.client.fetch_schedule()
        node = _find_scheduled_game(schedule, game_id)
        if node is None:
            logger.warning('Game %s not found in current schedule, trying landing endpoint', game_id)
            node = self.client.fetch_game_landing(game_id)
            if not node:
                logger.warning('No data returned for game %s', game_id)
                return None
        return self._snapshot_from(game_id, node)

    def get_status(self, game_id: str) -> GameStatusSnapshot | None:
        """Return the current snapshot for ``game_id`` or None when unknown.

        None means "no information this cycle": the game could not be located
        or the upstream failed. It never means live or finished.
        """
        game_id = str(game_id or '').strip()
        if not game_id:
            return None

        cached = self._cached(game_id)
        if cached is not None:
            logger.debug('Using cached game status for %s', game_id)
            return cached

        try:
            snapshot = self._fetch(game_id)
        except UpstreamUnavailable as exc:
            logger.warning('Game status fetch failed for %s: %s', game_id, exc)
            return None
        except (TypeError, ValueError, AttributeError) as exc:
            logger.warning('Unreadable game status for %s: %r', game_id, exc)
            return None

        if snapshot is None:
            return None

        self._store(snapshot)
        logger.info(
            'Game %s status: %s (live=%s, finished=%s)',
            game_id,
            snapshot.raw_state,
            snapshot.is_live,
            snapshot.is_finished,
        )
        return snapshot

    async def aget_status(self, game_id: str) -> GameStatusSnapshot | None:
        # Network bound and DB free, so it may run off the main thread.
        return await sync_to_async(self.get_status, thread_sensitive=False)(game_id)

    def clear(self, game_id: str | None = None) -> None:
        if game_id:
            self.cache.delete(self._cache_key(str(game_id)))
            logger.debug('Cleared cached status for game %s', game_id)
        else:
            self.cache.clear()
            logger.debug('Cleared all cached game statuses')

    def seconds_until_start(self, snapshot: GameStatusSnapshot) -> float | None:
        if snapshot.start_time_utc is None:
            return None
        return (snapshot.start_time_utc - self.clock()).total_seconds()

    def suggested_poll_interval(self, snapshot: GameStatusSnapshot) -> int:
        """Advisory polling interval in seconds for a game in this state."""
        if snapshot.is_live:
            return POLL_LIVE_SECONDS
        if snapshot.is_finished:
            # Late stat corrections still arrive after the final horn.
            return POLL_FINISHED_SECONDS

        remaining = self.seconds_until_start(snapshot)
        if remaining is None or remaining < 0:
            return POLL_IMMINENT_SECONDS
        if remaining < timedelta(minutes=10).total_seconds():
            return POLL_IMMINENT_SECONDS
        if remaining < timedelta(hours=1).total_seconds():
            return POLL_SOON_SECONDS
        return POLL_DISTANT_SECONDS
