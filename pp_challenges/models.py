from __future__ import annotations

import uuid

from django.core.exceptions import ValidationError
from django.core.validators import MaxLengthValidator, MaxValueValidator, MinValueValidator
from django.db import models


MIN_MEMBERS_LIMIT = 2
MAX_MEMBERS_LIMIT = 50
TITLE_MAX_LENGTH = 100
DESCRIPTION_MAX_LENGTH = 500


def new_challenge_id() -> str:
    return uuid.uuid4().hex


class ChallengeStatus(models.TextChoices):
    PENDING = 'pending', 'Pending'
    ACTIVE = 'active', 'Active'
    LIVE = 'live', 'Live'
    FINISHED = 'finished', 'Finished'
    CANCELLED = 'cancelled', 'Cancelled'


class Challenge(models.Model):
    """A group prediction challenge tied to one NHL game.

    Membership lives on the row itself (``member_ids``, ``invited_user_ids``,
    ``ticket_ids``) so every join/leave is a write to a single record.
    User ids are opaque strings owned by the identity layer.
    """

    id = models.CharField(primary_key=True, max_length=32, default=new_challenge_id, editable=False)
    title = models.CharField(max_length=TITLE_MAX_LENGTH)
    description = models.TextField(
        max_length=DESCRIPTION_MAX_LENGTH,
        validators=[MaxLengthValidator(DESCRIPTION_MAX_LENGTH)],
    )
    owner_id = models.CharField(max_length=64, db_index=True)
    game_id = models.CharField(max_length=32, db_index=True)
    status = models.CharField(
        max_length=16,
        choices=ChallengeStatus.choices,
        default=ChallengeStatus.PENDING,
        db_index=True,
    )
    member_ids = models.JSONField(default=list, blank=True)
    invited_user_ids = models.JSONField(default=list, blank=True)
    ticket_ids = models.JSONField(default=dict, blank=True)
    max_members = models.PositiveSmallIntegerField(
        null=True,
        blank=True,
        validators=[MinValueValidator(MIN_MEMBERS_LIMIT), MaxValueValidator(MAX_MEMBERS_LIMIT)],
    )
    game_start_time = models.DateTimeField(null=True, blank=True)
    # Bumped on every write; clients compare it to spot missed events.
    version = models.PositiveIntegerField(default=1)
    created = models.DateTimeField(auto_now_add=True, db_index=True)
    updated = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ['-created']
        indexes = [
            models.Index(fields=['status', '-created'], name='ch_status_created_idx'),
            models.Index(fields=['game_id', '-created'], name='ch_game_created_idx'),
        ]

    def __str__(self):
        return f"Challenge({self.id}) {self.title!r} [{self.status}]"

    def clean(self):
        super().clean()
        self.title = (self.title or '').strip()
        if not self.title:
            raise ValidationError({'title': 'Title is required.'})
        if not (self.description or '').strip():
            raise ValidationError({'description': 'Description is required.'})
        if not str(self.game_id or '').strip():
            raise ValidationError({'game_id': 'Game ID is required.'})

        members = list(self.member_ids or [])
        if len(members) != len(set(members)):
            raise ValidationError({'member_ids': 'Members must be unique.'})
        if self.owner_id and self.owner_id not in members:
            raise ValidationError({'member_ids': 'The owner must be a member.'})
        if self.max_members is not None and len(members) > self.max_members:
            raise ValidationError({'max_members': 'Challenge has more members than max_members allows.'})
        stray = set((self.ticket_ids or {}).keys()) - set(members)
        if stray:
            raise ValidationError({'ticket_ids': 'Tickets may only belong to members.'})

    @property
    def member_count(self) -> int:
        return len(self.member_ids or [])

    @property
    def is_full(self) -> bool:
        return self.max_members is not None and self.member_count >= self.max_members

    def is_member(self, user_id: str) -> bool:
        return str(user_id) in (self.member_ids or [])

    def public_state(self) -> dict:
        return {
            'id': self.id,
            'title': self.title,
            'description': self.description,
            'owner_id': self.owner_id,
            'game_id': self.game_id,
            'status': self.status,
            'member_ids': list(self.member_ids or []),
            'invited_user_ids': list(self.invited_user_ids or []),
            'ticket_ids': dict(self.ticket_ids or {}),
            'max_members': self.max_members,
            'game_start_time': self.game_start_time.isoformat() if self.game_start_time else None,
            'version': int(self.version or 0),
            'created': self.created.isoformat() if self.created else None,
            'updated': self.updated.isoformat() if self.updated else None,
        }
