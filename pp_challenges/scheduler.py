"""Background reconciliation of challenge status against live NHL game state."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta

from asgiref.sync import sync_to_async
from django.conf import settings
from django.utils import timezone

from .exceptions import ChallengeNotFound
from .lifecycle import decide_sync_transition


logger = logging.getLogger(__name__)

DEFAULT_INTERVAL_SECONDS = 60
DEFAULT_BATCH_LIMIT = 1000


@dataclass
class SyncPassResult:
    checked: int = 0
    updated: int = 0
    skipped: int = 0
    failed: int = 0
    transitions: list[tuple[str, str, str]] = field(default_factory=list)


def _iso(value: datetime | None) -> str | None:
    return value.isoformat().replace('+00:00', 'Z') if value else None


class StatusSyncScheduler:
    """Periodically moves challenges to LIVE/FINISHED as their game progresses.

    One pass loads every PENDING/ACTIVE/LIVE challenge, asks the provider
    about each distinct game concurrently, and applies the resulting
    transitions through the store. A failing game or challenge never aborts
    the rest of the pass, and a failing pass never stops the timer.

    Runs on the caller's event loop; start it from async code (see the
    ``run_status_sync`` management command).
    """

    def __init__(
        self,
        store,
        provider,
        broadcaster,
        *,
        interval_seconds: float | None = None,
        batch_limit: int | None = None,
        adaptive: bool | None = None,
        on_pass_start=None,
    ):
        self.store = store
        self.provider = provider
        self.broadcaster = broadcaster
        self.interval_seconds = float(
            interval_seconds
            or getattr(settings, 'CHALLENGE_SYNC_INTERVAL_SECONDS', DEFAULT_INTERVAL_SECONDS)
            or DEFAULT_INTERVAL_SECONDS
        )
        self.batch_limit = int(
            batch_limit or getattr(settings, 'CHALLENGE_SYNC_BATCH_LIMIT', DEFAULT_BATCH_LIMIT) or DEFAULT_BATCH_LIMIT
        )
        if adaptive is None:
            adaptive = bool(getattr(settings, 'CHALLENGE_SYNC_ADAPTIVE', False))
        self.adaptive = adaptive
        # Sync callable run before each timed pass, e.g. close_old_connections.
        self.on_pass_start = on_pass_start

        self._task: asyncio.Task | None = None
        self._stop_event: asyncio.Event | None = None
        self._draining: set[asyncio.Task] = set()
        # game_id -> earliest time the game is worth asking about again (adaptive mode)
        self._next_due: dict[str, datetime] = {}
        self._last_pass_started_at: datetime | None = None
        self._last_pass_finished_at: datetime | None = None
        self._last_result: SyncPassResult | None = None
        self._last_error: str | None = None

    @property
    def running(self) -> bool:
        if self._task is None or self._task.done():
            return False
        return self._stop_event is not None and not self._stop_event.is_set()

    def start(self, interval_seconds: float | None = None) -> bool:
        if self.running:
            logger.warning('Challenge status sync is already running')
            return False
        if interval_seconds:
            self.interval_seconds = float(interval_seconds)

        if self._task is not None and not self._task.done():
            # A stopped loop may still be finishing its last pass.
            self._draining.add(self._task)
            self._task.add_done_callback(self._draining.discard)
        self._stop_event = asyncio.Event()
        self._task = asyncio.get_running_loop().create_task(
            self._run_loop(self._stop_event),
            name='challenge-status-sync',
        )
        logger.info('Starting challenge status sync (interval: %ss)', self.interval_seconds)
        return True

    def stop(self) -> bool:
        """Stop scheduling passes. A pass already running is left to finish."""
        if self._stop_event is None or self._stop_event.is_set():
            return False
        self._stop_event.set()
        logger.info('Challenge status sync stopped')
        return True

    async def wait_stopped(self) -> None:
        for task in [*self._draining, self._task]:
            if task is not None:
                await task

    def status(self) -> dict[str, object]:
        return {
            'running': self.running,
            'interval_seconds': self.interval_seconds,
            'adaptive': self.adaptive,
            'last_pass_started_at': _iso(self._last_pass_started_at),
            'last_pass_finished_at': _iso(self._last_pass_finished_at),
            'last_error': self._last_error,
            'last_result': vars(self._last_result) if self._last_result else None,
        }

    async def _run_loop(self, stop_event: asyncio.Event) -> None:
        while not stop_event.is_set():
            try:
                if self.on_pass_start is not None:
                    await sync_to_async(self.on_pass_start)()
                await self.run_pass()
            except Exception as exc:
                self._last_error = f'{exc.__class__.__name__}: {exc}'
                logger.exception('Error in challenge status sync pass')
            try:
                await asyncio.wait_for(stop_event.wait(), timeout=self.interval_seconds)
            except asyncio.TimeoutError:
                pass

    def _game_due(self, game_id: str, now: datetime) -> bool:
        if not self.adaptive:
            return True
        due = self._next_due.get(game_id)
        return due is None or now >= due

    def _remember_poll(self, game_id: str, snapshot, now: datetime) -> None:
        if not self.adaptive or snapshot is None:
            return
        interval = self.provider.suggested_poll_interval(snapshot)
        self._next_due[game_id] = now + timedelta(seconds=interval)

    async def _snapshot_for(self, game_id: str, now: datetime):
        snapshot = await self.provider.aget_status(game_id)
        self._remember_poll(game_id, snapshot, now)
        return snapshot

    async def run_pass(self) -> SyncPassResult:
        self._last_pass_started_at = timezone.now()
        result = SyncPassResult()
        logger.debug('Running challenge status sync pass')

        challenges = await sync_to_async(self.store.find_syncable)(self.batch_limit)
        if not challenges:
            logger.debug('No challenges require status checking')
            self._finish_pass(result)
            return result

        now = timezone.now()
        by_game: dict[str, list] = {}
        for challenge in challenges:
            game_id = str(challenge.game_id or '').strip()
            if not game_id:
                logger.warning('Challenge %s has no game_id', challenge.id)
                result.skipped += 1
                continue
            if not self._game_due(game_id, now):
                result.skipped += 1
                continue
            by_game.setdefault(game_id, []).append(challenge)

        logger.info(
            'Checking %d challenge(s) across %d game(s) for status updates',
            sum(len(v) for v in by_game.values()),
            len(by_game),
        )

        game_ids = list(by_game)
        snapshots = await asyncio.gather(
            *(self._snapshot_for(game_id, now) for game_id in game_ids),
            return_exceptions=True,
        )

        work = []
        for game_id, snapshot in zip(game_ids, snapshots):
            if isinstance(snapshot, BaseException):
                logger.error('Game status lookup for %s failed: %r', game_id, snapshot)
                result.failed += len(by_game[game_id])
                continue
            if snapshot is None:
                logger.warning('Could not fetch game status for game %s', game_id)
                result.skipped += len(by_game[game_id])
                continue
            work.extend((challenge, snapshot) for challenge in by_game[game_id])

        outcomes = await asyncio.gather(
            *(self._apply(challenge, snapshot) for challenge, snapshot in work),
            return_exceptions=True,
        )
        for (challenge, _snapshot), outcome in zip(work, outcomes):
            result.checked += 1
            if isinstance(outcome, BaseException):
                result.failed += 1
                logger.error('Error updating challenge %s status: %r', challenge.id, outcome)
            elif outcome is not None:
                result.updated += 1
                result.transitions.append((challenge.id, challenge.status, outcome))

        self._finish_pass(result)
        logger.info(
            'Challenge status sync pass done: checked=%d updated=%d skipped=%d failed=%d',
            result.checked,
            result.updated,
            result.skipped,
            result.failed,
        )
        return result

    def _finish_pass(self, result: SyncPassResult) -> None:
        self._last_result = result
        self._last_pass_finished_at = timezone.now()

    async def _apply(self, challenge, snapshot) -> str | None:
        """Write and announce the transition for one challenge, if any.

        Returns the new status, or None when nothing changed.
        """
        target = decide_sync_transition(challenge.status, snapshot)
        if target is None:
            logger.debug(
                'Challenge %s: no status change needed (game: %s, challenge: %s)',
                challenge.id,
                snapshot.raw_state,
                challenge.status,
            )
            return None

        updated = await sync_to_async(self.store.update_status)(
            challenge.id,
            target,
            expected_status=challenge.status,
        )
        if updated is None:
            # Deleted or moved by someone else since it was loaded.
            logger.info('Challenge %s changed before sync could move it to %s', challenge.id, target)
            return None

        await self.broadcaster.achallenge_status_changed(updated, target)
        logger.info('Challenge %s status updated: %s -> %s', challenge.id, challenge.status, target)
        return target

    async def sync_challenge(self, challenge_id: str) -> str | None:
        """Reconcile one challenge now. Errors propagate to the caller."""
        challenge = await sync_to_async(self.store.find_by_id)(challenge_id)
        if challenge is None:
            raise ChallengeNotFound(f'Challenge {challenge_id} not found')

        snapshot = await self.provider.aget_status(challenge.game_id)
        if snapshot is None:
            logger.warning(
                'Could not fetch game status for challenge %s (game %s)',
                challenge.id,
                challenge.game_id,
            )
            return None
        return await self._apply(challenge, snapshot)
