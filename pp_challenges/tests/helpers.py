from datetime import datetime, timezone as dt_timezone

from pp_games.provider import GameStatusSnapshot, classify_state


class RecordingBroadcaster:
	"""Stands in for EventBroadcaster and remembers every call."""

	def __init__(self, fail_on=()):
		self.events = []
		self.fail_on = set(fail_on)

	def __getattr__(self, name):
		if name.startswith('_'):
			raise AttributeError(name)

		if name.startswith('a') and name[1:] in _EVENT_METHODS:
			async def arecord(*args):
				return self._record(name[1:], args)
			return arecord

		def record(*args):
			return self._record(name, args)
		return record

	def _record(self, name, args):
		if name in self.fail_on:
			return False
		self.events.append((name, args))
		return True

	def names(self):
		return [name for name, _args in self.events]


_EVENT_METHODS = {
	'challenge_created',
	'challenge_invitation',
	'challenge_updated',
	'challenge_deleted',
	'user_joined_challenge',
	'user_left_challenge',
	'challenge_status_changed',
}


def snapshot(game_id, raw_state, start_time_utc=None):
	is_live, is_finished, is_scheduled = classify_state(raw_state)
	return GameStatusSnapshot(
		game_id=str(game_id),
		raw_state=raw_state,
		schedule_state='OK',
		is_live=is_live,
		is_finished=is_finished,
		is_scheduled=is_scheduled,
		start_time_utc=start_time_utc,
		observed_at=datetime.now(dt_timezone.utc),
	)


class FakeProvider:
	"""Returns canned snapshots; a game mapped to an exception raises it."""

	def __init__(self, states=None):
		self.states = dict(states or {})
		self.calls = []

	def get_status(self, game_id):
		self.calls.append(str(game_id))
		value = self.states.get(str(game_id))
		if isinstance(value, BaseException):
			raise value
		if value is None:
			return None
		return snapshot(game_id, value)

	async def aget_status(self, game_id):
		return self.get_status(game_id)

	def suggested_poll_interval(self, snap):
		return 30 if snap.is_live else 600
