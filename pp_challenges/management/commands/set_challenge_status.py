from __future__ import annotations

from django.core.exceptions import ValidationError
from django.core.management.base import BaseCommand, CommandError

from pp_challenges.exceptions import InvalidTransition
from pp_challenges.models import ChallengeStatus
from pp_challenges.wiring import build_broadcaster, build_store


class Command(BaseCommand):
    help = 'Move a challenge to another status and notify its viewers.'

    def add_arguments(self, parser):
        parser.add_argument('challenge_id')
        parser.add_argument('status', choices=ChallengeStatus.values)
        parser.add_argument('--owner', default=None, help='Only act if the challenge belongs to this user.')
        parser.add_argument(
            '--force',
            action='store_true',
            help='Allow moves the lifecycle does not permit (repair only).',
        )

    def handle(self, *args, **options):
        challenge_id = options['challenge_id']
        new_status = options['status']
        broadcaster = build_broadcaster()
        store = build_store(broadcaster)

        current = store.find_by_id(challenge_id)
        if current is None:
            raise CommandError(f'Challenge {challenge_id} not found')
        if current.status == new_status:
            self.stdout.write(f'Challenge {current.id} is already {new_status}.')
            return

        try:
            challenge = store.update_status(
                challenge_id,
                new_status,
                options.get('owner'),
                expected_status=current.status,
                force=bool(options.get('force')),
            )
        except (InvalidTransition, ValidationError) as exc:
            raise CommandError(str(exc)) from exc

        if challenge is None:
            raise CommandError(f'Challenge {challenge_id} not found, not owned by that user, or changed meanwhile')

        broadcaster.challenge_status_changed(challenge, new_status)
        self.stdout.write(self.style.SUCCESS(f'Challenge {challenge.id} is now {challenge.status}.'))
