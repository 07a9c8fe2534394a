from __future__ import annotations

import asyncio
import contextlib
import signal

from asgiref.sync import async_to_sync
from django.conf import settings
from django.core.management.base import BaseCommand
from django.db import close_old_connections

from pp_challenges.wiring import build_scheduler


class Command(BaseCommand):
    help = 'Keep challenge statuses in step with live NHL games until stopped.'

    def add_arguments(self, parser):
        parser.add_argument(
            '--interval',
            type=int,
            default=int(getattr(settings, 'CHALLENGE_SYNC_INTERVAL_SECONDS', 60) or 60),
            help='Seconds between sync passes (default from settings).',
        )
        parser.add_argument(
            '--once',
            action='store_true',
            help='Run a single pass and exit.',
        )
        parser.add_argument(
            '--adaptive',
            action='store_true',
            help='Poll each game at a rate that depends on how close it is to, or how far into, play.',
        )

    def handle(self, *args, **options):
        interval = max(5, int(options.get('interval') or 60))
        scheduler = build_scheduler(
            interval_seconds=interval,
            adaptive=True if options.get('adaptive') else None,
            on_pass_start=close_old_connections,
        )

        if options.get('once'):
            result = async_to_sync(scheduler.run_pass)()
            self._report(result)
            return

        self.stdout.write(self.style.NOTICE(f'Challenge status sync started (interval: {interval}s)'))
        try:
            asyncio.run(self._serve(scheduler))
        except KeyboardInterrupt:
            pass
        self.stdout.write(self.style.WARNING('Challenge status sync stopped.'))

    async def _serve(self, scheduler):
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            # Not available on Windows event loops; Ctrl+C still raises KeyboardInterrupt there.
            with contextlib.suppress(NotImplementedError):
                loop.add_signal_handler(sig, scheduler.stop)
        scheduler.start()
        await scheduler.wait_stopped()

    def _report(self, result):
        line = (
            f'checked={result.checked} updated={result.updated} '
            f'skipped={result.skipped} failed={result.failed}'
        )
        if result.failed:
            self.stdout.write(self.style.WARNING(line))
        else:
            self.stdout.write(self.style.SUCCESS(line))
        for challenge_id, old, new in result.transitions:
            self.stdout.write(f'  {challenge_id}: {old} -> {new}')
