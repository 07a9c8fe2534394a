from __future__ import annotations

from asgiref.sync import async_to_sync
from django.core.management.base import BaseCommand, CommandError

from pp_challenges.exceptions import ChallengeNotFound
from pp_challenges.wiring import build_scheduler


class Command(BaseCommand):
    help = 'Reconcile one challenge with its game status right now.'

    def add_arguments(self, parser):
        parser.add_argument('challenge_id')

    def handle(self, *args, **options):
        challenge_id = options['challenge_id']
        try:
            new_status = async_to_sync(build_scheduler().sync_challenge)(challenge_id)
        except ChallengeNotFound as exc:
            raise CommandError(str(exc)) from exc

        if new_status:
            self.stdout.write(self.style.SUCCESS(f'Challenge {challenge_id} moved to {new_status}.'))
        else:
            self.stdout.write('No status change.')
