from __future__ import annotations

import json
import logging
from collections.abc import Iterable
from dataclasses import dataclass
from typing import Any

from django.core.exceptions import ValidationError
from django.db import connection, transaction
from django.db.models import Q

from .exceptions import ChallengeNotFound, InvalidTransition
from .lifecycle import (
    JOINABLE_STATUSES,
    LEAVABLE_STATUSES,
    PENDING,
    SYNCABLE_STATUSES,
    can_transition,
    is_valid_status,
)
from .models import Challenge


logger = logging.getLogger(__name__)

CREATE_FIELDS = frozenset({
    'title',
    'description',
    'game_id',
    'invited_user_ids',
    'max_members',
    'game_start_time',
    'ticket_id',
})
UPDATE_FIELDS = frozenset({'title', 'description', 'max_members', 'game_start_time'})

MAX_PAGE_SIZE = 1000

REASON_JOINED = 'joined'
REASON_LEFT = 'left'
REASON_NOT_FOUND = 'not_found'
REASON_ALREADY_MEMBER = 'already_member'
REASON_NOT_MEMBER = 'not_member'
REASON_FULL = 'full'
REASON_CLOSED = 'closed'
REASON_OWNER = 'owner_cannot_leave'


@dataclass(frozen=True)
class MembershipResult:
    """Outcome of a join/leave attempt.

    A failed precondition is a normal outcome (``ok=False``), not an
    exception. ``reason`` says which guard rejected the write; it is read from
    the same locked row, so it costs no extra query.
    """

    ok: bool
    challenge: Challenge | None = None
    reason: str = ''

    @property
    def conflict(self) -> bool:
        return not self.ok


def _clean_id(value: Any) -> str:
    return str(value if value is not None else '').strip()


def _unique_ids(values: Iterable[Any] | None, *, exclude: Iterable[str] = ()) -> list[str]:
    skip = set(exclude)
    out: list[str] = []
    for raw in values or []:
        uid = _clean_id(raw)
        if uid and uid not in skip:
            skip.add(uid)
            out.append(uid)
    return out


class ChallengeStore:
    """The only code that writes Challenge rows.

    Every mutation locks the single row it targets (``select_for_update``
    inside ``transaction.atomic``), checks its guard against the locked state
    and writes once. Two joins racing for the last seat therefore serialize on
    the row lock and exactly one of them sees room left.

    Events are handed to the broadcaster with ``transaction.on_commit`` so a
    rolled back write never produces a notification.
    """

    def __init__(self, broadcaster=None):
        self.broadcaster = broadcaster

    def _publish(self, event: str, *args) -> None:
        if self.broadcaster is None:
            return
        method = getattr(self.broadcaster, event)
        transaction.on_commit(lambda: method(*args))

    @staticmethod
    def _locked(challenge_id: Any, **conditions) -> Challenge | None:
        challenge_id = _clean_id(challenge_id)
        if not challenge_id:
            return None
        return Challenge.objects.select_for_update().filter(pk=challenge_id, **conditions).first()

    @staticmethod
    def _save(challenge: Challenge, *fields: str) -> None:
        challenge.version = int(challenge.version or 0) + 1
        challenge.save(update_fields=[*fields, 'version', 'updated'])

    # Writes

    def create(self, owner_id: Any, **fields) -> Challenge:
        owner_id = _clean_id(owner_id)
        if not owner_id:
            raise ValidationError({'owner_id': 'Owner is required.'})
        unknown = set(fields) - CREATE_FIELDS
        if unknown:
            raise ValidationError(f"Unknown challenge fields: {', '.join(sorted(unknown))}")

        ticket_id = _clean_id(fields.get('ticket_id'))
        challenge = Challenge(
            title=str(fields.get('title') or '').strip(),
            description=str(fields.get('description') or ''),
            owner_id=owner_id,
            game_id=_clean_id(fields.get('game_id')),
            status=PENDING,
            member_ids=[owner_id],
            invited_user_ids=_unique_ids(fields.get('invited_user_ids'), exclude=[owner_id]),
            ticket_ids={owner_id: ticket_id} if ticket_id else {},
            max_members=fields.get('max_members'),
            game_start_time=fields.get('game_start_time'),
        )
        challenge.full_clean()

        with transaction.atomic():
            challenge.save(force_insert=True)
            self._publish('challenge_created', challenge)

        logger.info('Challenge %s created by %s for game %s', challenge.id, owner_id, challenge.game_id)
        return challenge

    def join(self, challenge_id: Any, user_id: Any, ticket_id: Any) -> MembershipResult:
        user_id = _clean_id(user_id)
        ticket_id = _clean_id(ticket_id)
        if not user_id:
            raise ValidationError({'user_id': 'User ID is required.'})
        if not ticket_id:
            raise ValidationError({'ticket_id': 'Ticket ID is required.'})

        with transaction.atomic():
            challenge = self._locked(challenge_id)
            if challenge is None:
                return MembershipResult(False, reason=REASON_NOT_FOUND)
            if challenge.is_member(user_id):
                return MembershipResult(False, challenge, REASON_ALREADY_MEMBER)
            if challenge.status not in JOINABLE_STATUSES:
                return MembershipResult(False, challenge, REASON_CLOSED)
            if challenge.is_full:
                return MembershipResult(False, challenge, REASON_FULL)

            tickets = dict(challenge.ticket_ids or {})
            tickets[user_id] = ticket_id
            challenge.member_ids = [*(challenge.member_ids or []), user_id]
            challenge.invited_user_ids = [u for u in (challenge.invited_user_ids or []) if u != user_id]
            challenge.ticket_ids = tickets
            self._save(challenge, 'member_ids', 'invited_user_ids', 'ticket_ids')
            self._publish('user_joined_challenge', challenge, {'id': user_id})

        logger.info('User %s joined challenge %s (%s members)', user_id, challenge.id, challenge.member_count)
        return MembershipResult(True, challenge, REASON_JOINED)

    def leave(self, challenge_id: Any, user_id: Any) -> MembershipResult:
        user_id = _clean_id(user_id)

        with transaction.atomic():
            challenge = self._locked(challenge_id)
            if challenge is None:
                return MembershipResult(False, reason=REASON_NOT_FOUND)
            if not user_id or not challenge.is_member(user_id):
                return MembershipResult(False, challenge, REASON_NOT_MEMBER)
            if user_id == challenge.owner_id:
                return MembershipResult(False, challenge, REASON_OWNER)
            if challenge.status not in LEAVABLE_STATUSES:
                return MembershipResult(False, challenge, REASON_CLOSED)

            tickets = dict(challenge.ticket_ids or {})
            tickets.pop(user_id, None)
            challenge.member_ids = [u for u in challenge.member_ids if u != user_id]
            challenge.ticket_ids = tickets
            self._save(challenge, 'member_ids', 'ticket_ids')
            self._publish('user_left_challenge', challenge, {'id': user_id})

        logger.info('User %s left challenge %s', user_id, challenge.id)
        return MembershipResult(True, challenge, REASON_LEFT)

    def update_status(
        self,
        challenge_id: Any,
        new_status: Any,
        owner_id: Any = None,
        *,
        expected_status: str | None = None,
        force: bool = False,
    ) -> Challenge | None:
        """Move a challenge to ``new_status``.

        Returns the updated challenge, or None when no row matched: missing,
        not owned by ``owner_id`` (when given), or not currently in
        ``expected_status`` (when given). Illegal edges raise
        ``InvalidTransition`` unless ``force`` is set, which is reserved for
        administrative repair. Nothing is published here; callers decide.
        """
        new_status = _clean_id(new_status).lower()
        if not is_valid_status(new_status):
            raise ValidationError({'status': f'Unknown status {new_status!r}.'})

        conditions: dict[str, Any] = {}
        if owner_id:
            conditions['owner_id'] = _clean_id(owner_id)
        if expected_status:
            conditions['status'] = str(expected_status)

        with transaction.atomic():
            challenge = self._locked(challenge_id, **conditions)
            if challenge is None:
                return None
            previous = challenge.status
            if previous == new_status:
                return challenge
            if not force and not can_transition(previous, new_status):
                raise InvalidTransition(previous, new_status)

            challenge.status = new_status
            self._save(challenge, 'status')

        if force and not can_transition(previous, new_status):
            logger.warning('Challenge %s forced from %s to %s', challenge.id, previous, new_status)
        else:
            logger.info('Challenge %s status updated: %s -> %s', challenge.id, previous, new_status)
        return challenge

    def update(self, challenge_id: Any, owner_id: Any, **fields) -> Challenge:
        unknown = set(fields) - UPDATE_FIELDS
        if unknown:
            raise ValidationError(f"Fields cannot be updated: {', '.join(sorted(unknown))}")
        if not fields:
            raise ValidationError('Nothing to update.')

        with transaction.atomic():
            challenge = self._locked(challenge_id, owner_id=_clean_id(owner_id))
            if challenge is None:
                raise ChallengeNotFound(f'Challenge {challenge_id} not found or not owned by {owner_id}')
            for name, value in fields.items():
                setattr(challenge, name, value)
            # clean() rejects a max_members below the current head count.
            challenge.full_clean()
            self._save(challenge, *sorted(fields))
            self._publish('challenge_updated', challenge)

        logger.info('Challenge %s updated (%s)', challenge.id, ', '.join(sorted(fields)))
        return challenge

    def invite(self, challenge_id: Any, owner_id: Any, user_ids: Iterable[Any]) -> Challenge:
        requested = _unique_ids(user_ids)
        if not requested:
            raise ValidationError({'user_ids': 'At least one user ID required.'})

        with transaction.atomic():
            challenge = self._locked(challenge_id, owner_id=_clean_id(owner_id))
            if challenge is None:
                raise ChallengeNotFound(f'Challenge {challenge_id} not found or not owned by {owner_id}')
            if challenge.status not in JOINABLE_STATUSES:
                raise ValidationError('Challenge is no longer open for invitations.')

            added = _unique_ids(
                requested,
                exclude=[*(challenge.member_ids or []), *(challenge.invited_user_ids or [])],
            )
            if added:
                challenge.invited_user_ids = [*(challenge.invited_user_ids or []), *added]
                self._save(challenge, 'invited_user_ids')
                self._publish('challenge_invitation', challenge, added)

        logger.info('Challenge %s invited %d user(s)', challenge.id, len(added))
        return challenge

    def delete(self, challenge_id: Any, owner_id: Any) -> None:
        with transaction.atomic():
            challenge = self._locked(challenge_id, owner_id=_clean_id(owner_id))
            if challenge is None:
                raise ChallengeNotFound(f'Challenge {challenge_id} not found or not owned by {owner_id}')
            deleted_id = challenge.id
            challenge.delete()
            # delete() clears the pk on the instance; keep it for the event payload.
            challenge.id = deleted_id
            self._publish('challenge_deleted', challenge)

        logger.info('Challenge %s deleted by %s', deleted_id, owner_id)

    # Reads

    def find_by_id(self, challenge_id: Any) -> Challenge | None:
        challenge_id = _clean_id(challenge_id)
        if not challenge_id:
            return None
        return Challenge.objects.filter(pk=challenge_id).first()

    def find_all(self, page: int = 1, limit: int = 10) -> tuple[list[Challenge], int]:
        page = max(1, int(page or 1))
        limit = max(1, min(MAX_PAGE_SIZE, int(limit or 10)))
        offset = (page - 1) * limit
        qs = Challenge.objects.order_by('-created')
        return list(qs[offset:offset + limit]), qs.count()

    def find_by_game_id(self, game_id: Any) -> list[Challenge]:
        return list(Challenge.objects.filter(game_id=_clean_id(game_id)).order_by('-created'))

    def find_for_user(self, user_id: Any, status: str | None = None) -> list[Challenge]:
        user_id = _clean_id(user_id)
        if not user_id:
            return []
        if connection.features.supports_json_field_contains:
            member_q = Q(member_ids__contains=[user_id])
        else:
            # Matches the stored JSON text, which uses json.dumps escaping on
            # backends without JSON containment. Exact check happens below.
            member_q = Q(member_ids__icontains=json.dumps(user_id))
        qs = Challenge.objects.filter(Q(owner_id=user_id) | member_q)
        if status:
            qs = qs.filter(status=str(status))
        return [
            ch for ch in qs.order_by('-created')
            if ch.owner_id == user_id or ch.is_member(user_id)
        ]

    def find_syncable(self, limit: int = MAX_PAGE_SIZE) -> list[Challenge]:
        limit = max(1, min(MAX_PAGE_SIZE, int(limit or MAX_PAGE_SIZE)))
        return list(
            Challenge.objects.filter(status__in=SYNCABLE_STATUSES).order_by('-created')[:limit]
        )
