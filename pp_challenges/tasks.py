from __future__ import annotations

from asgiref.sync import async_to_sync
from celery import shared_task

from .wiring import build_scheduler


@shared_task(bind=True, ignore_result=True)
def run_status_sync_pass_task(self):
    result = async_to_sync(build_scheduler().run_pass)()
    return {
        'checked': result.checked,
        'updated': result.updated,
        'skipped': result.skipped,
        'failed': result.failed,
    }


@shared_task(bind=True, ignore_result=True)
def sync_challenge_task(self, challenge_id: str):
    new_status = async_to_sync(build_scheduler().sync_challenge)(challenge_id)
    return {'challenge_id': challenge_id, 'new_status': new_status}
