from __future__ import annotations

import hashlib
import logging
import re
from collections.abc import Iterable
from typing import Any

from asgiref.sync import async_to_sync
from channels.layers import get_channel_layer


logger = logging.getLogger(__name__)

ALL_SESSIONS_GROUP = 'broadcast.all'
CHANNEL_EVENT_TYPE = 'challenge.event'

_GROUP_UNSAFE_RE = re.compile(r'[^A-Za-z0-9_.-]')
_MAX_ID_LENGTH = 64


def _group_safe(value: Any) -> str:
    """Make an opaque id usable inside a Channels group name.

    Channels only accepts ASCII alphanumerics, hyphen, underscore and period
    (and < 100 chars). Ids that already fit are used as-is so topic names stay
    readable; anything else is replaced by a stable digest.
    """
    text = str(value if value is not None else '').strip()
    if text and len(text) <= _MAX_ID_LENGTH and not _GROUP_UNSAFE_RE.search(text):
        return text
    return 'x-' + hashlib.sha256(text.encode('utf-8')).hexdigest()[:40]


def user_group_name(user_id: Any) -> str:
    return f"user.{_group_safe(user_id)}"


def challenge_group_name(challenge_id: Any) -> str:
    return f"challenge.{_group_safe(challenge_id)}"


def _user_label(user: dict[str, Any] | None) -> str:
    user = user or {}
    return str(user.get('name') or user.get('email') or user.get('id') or 'Someone')


def _blocking(name: str):
    async_name = f'a{name}'

    def method(self, *args, **kwargs):
        return async_to_sync(getattr(self, async_name))(*args, **kwargs)

    method.__name__ = name
    method.__doc__ = f'Blocking form of ``{async_name}`` for sync callers.'
    return method


class EventBroadcaster:
    """Publishes lifecycle and membership events over the channel layer.

    Delivery is best-effort: only sessions subscribed to a topic at publish
    time receive the event, nothing is queued or replayed. Reconnecting
    clients re-read the challenge and compare its ``version``.

    Every publish returns True when the layer accepted the message and False
    when it failed (the failure is logged, never raised).
    """

    def __init__(self, channel_layer=None):
        self.channel_layer = channel_layer if channel_layer is not None else get_channel_layer()

    async def _send(self, group: str, event_name: str, payload: dict[str, Any]) -> bool:
        if self.channel_layer is None:
            logger.debug('No channel layer configured; dropping %s for %s', event_name, group)
            return False
        try:
            await self.channel_layer.group_send(
                group,
                {
                    'type': CHANNEL_EVENT_TYPE,
                    'event': event_name,
                    'payload': payload,
                },
            )
            return True
        except Exception:
            logger.exception('Failed to publish %s to %s', event_name, group)
            return False

    # Topic-level publishing

    async def apublish_to_challenge(self, challenge_id: str, event_name: str, payload: dict[str, Any]) -> bool:
        return await self._send(challenge_group_name(challenge_id), event_name, payload)

    async def apublish_to_user(self, user_id: str, event_name: str, payload: dict[str, Any]) -> bool:
        return await self._send(user_group_name(user_id), event_name, payload)

    async def apublish_to_users(self, user_ids: Iterable[str], event_name: str, payload: dict[str, Any]) -> bool:
        delivered = True
        seen: set[str] = set()
        for user_id in user_ids or []:
            key = str(user_id)
            if key in seen:
                continue
            seen.add(key)
            delivered = await self.apublish_to_user(key, event_name, payload) and delivered
        return delivered

    async def apublish_to_all(self, event_name: str, payload: dict[str, Any]) -> bool:
        return await self._send(ALL_SESSIONS_GROUP, event_name, payload)

    publish_to_challenge = _blocking('publish_to_challenge')
    publish_to_user = _blocking('publish_to_user')
    publish_to_users = _blocking('publish_to_users')
    publish_to_all = _blocking('publish_to_all')

    # Lifecycle events

    async def achallenge_created(self, challenge) -> bool:
        state = challenge.public_state()
        sent = await self.apublish_to_user(
            challenge.owner_id,
            'challenge_created',
            {
                'type': 'challenge_created',
                'challenge': state,
                'message': 'Your challenge has been created successfully!',
            },
        )
        if challenge.invited_user_ids:
            sent = await self.achallenge_invitation(challenge, challenge.invited_user_ids) and sent
        return sent

    async def achallenge_invitation(self, challenge, user_ids: Iterable[str]) -> bool:
        return await self.apublish_to_users(
            user_ids,
            'challenge_invitation',
            {
                'type': 'challenge_created',
                'challenge': challenge.public_state(),
                'message': f'You\'ve been invited to join "{challenge.title}"',
            },
        )

    async def achallenge_updated(self, challenge) -> bool:
        payload = {
            'type': 'challenge_updated',
            'challenge_id': challenge.id,
            'challenge': challenge.public_state(),
            'message': 'Challenge has been updated',
        }
        sent = await self.apublish_to_challenge(challenge.id, 'challenge_updated', payload)
        # Members and invitees on a list view are not in the challenge topic.
        recipients = list(challenge.member_ids or []) + list(challenge.invited_user_ids or [])
        return await self.apublish_to_users(recipients, 'challenge_updated', payload) and sent

    async def achallenge_deleted(self, challenge) -> bool:
        recipients = list(challenge.member_ids or []) + list(challenge.invited_user_ids or [])
        return await self.apublish_to_users(
            recipients,
            'challenge_deleted',
            {
                'type': 'challenge_deleted',
                'challenge_id': challenge.id,
                'challenge': challenge.public_state(),
                'message': f'The challenge "{challenge.title}" has been deleted.',
            },
        )

    async def auser_joined_challenge(self, challenge, user: dict[str, Any]) -> bool:
        payload = {
            'type': 'user_joined',
            'challenge_id': challenge.id,
            'user': user,
            'challenge': challenge.public_state(),
            'message': f'{_user_label(user)} joined the challenge!',
        }
        sent = await self.apublish_to_challenge(challenge.id, 'user_joined_challenge', payload)
        return await self.apublish_to_users(challenge.member_ids, 'user_joined_challenge', payload) and sent

    async def auser_left_challenge(self, challenge, user: dict[str, Any]) -> bool:
        payload = {
            'type': 'user_left',
            'challenge_id': challenge.id,
            'user': user,
            'challenge': challenge.public_state(),
            'message': f'{_user_label(user)} left the challenge',
        }
        sent = await self.apublish_to_challenge(challenge.id, 'user_left_challenge', payload)
        return await self.apublish_to_users(challenge.member_ids, 'user_left_challenge', payload) and sent

    async def achallenge_status_changed(self, challenge, new_status: str) -> bool:
        return await self.apublish_to_challenge(
            challenge.id,
            'challenge_status_changed',
            {
                'type': 'status_changed',
                'challenge_id': challenge.id,
                'new_status': str(new_status),
                'challenge': challenge.public_state(),
                'message': f'Challenge status changed to {new_status}',
            },
        )

    challenge_created = _blocking('challenge_created')
    challenge_invitation = _blocking('challenge_invitation')
    challenge_updated = _blocking('challenge_updated')
    challenge_deleted = _blocking('challenge_deleted')
    user_joined_challenge = _blocking('user_joined_challenge')
    user_left_challenge = _blocking('user_left_challenge')
    challenge_status_changed = _blocking('challenge_status_changed')
