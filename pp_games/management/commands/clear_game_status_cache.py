from django.core.management.base import BaseCommand

from pp_games.provider import GameStatusProvider


class Command(BaseCommand):
    help = 'Drop cached game status snapshots in this process.'

    def add_arguments(self, parser):
        parser.add_argument('--game', default=None, help='Only clear this game id.')

    def handle(self, *args, **options):
        game_id = options.get('game')
        GameStatusProvider().clear(game_id)
        if game_id:
            self.stdout.write(self.style.SUCCESS(f'Cleared cached status for game {game_id}.'))
        else:
            self.stdout.write(self.style.SUCCESS('Cleared all cached game statuses.'))
