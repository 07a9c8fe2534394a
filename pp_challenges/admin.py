from asgiref.sync import async_to_sync
from django.contrib import admin, messages

from .exceptions import ChallengeError
from .lifecycle import CANCELLED
from .models import Challenge
from .wiring import build_broadcaster, build_scheduler, build_store


@admin.register(Challenge)
class ChallengeAdmin(admin.ModelAdmin):
	list_display = ('id', 'title', 'owner_id', 'game_id', 'status', 'member_count', 'max_members', 'version', 'created')
	list_filter = ('status', 'created')
	search_fields = ('id', 'title', 'owner_id', 'game_id')
	readonly_fields = ('id', 'version', 'created', 'updated')
	actions = ('sync_status_now', 'cancel_challenges')

	@admin.action(description='Sync status with the NHL now')
	def sync_status_now(self, request, queryset):
		scheduler = build_scheduler()
		moved = 0
		for challenge_id in queryset.values_list('id', flat=True):
			try:
				if async_to_sync(scheduler.sync_challenge)(challenge_id):
					moved += 1
			except ChallengeError as exc:
				self.message_user(request, f'{challenge_id}: {exc}', level=messages.WARNING)
		self.message_user(request, f'{moved} challenge(s) changed status.')

	@admin.action(description='Cancel selected challenges')
	def cancel_challenges(self, request, queryset):
		broadcaster = build_broadcaster()
		store = build_store(broadcaster)
		cancelled = 0
		for challenge_id, status in queryset.values_list('id', 'status'):
			if status == CANCELLED:
				continue
			try:
				challenge = store.update_status(challenge_id, CANCELLED, expected_status=status)
			except ChallengeError as exc:
				self.message_user(request, f'{challenge_id}: {exc}', level=messages.WARNING)
				continue
			if challenge is not None:
				broadcaster.challenge_status_changed(challenge, CANCELLED)
				cancelled += 1
		self.message_user(request, f'{cancelled} challenge(s) cancelled.')
