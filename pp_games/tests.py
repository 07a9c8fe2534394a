from datetime import datetime, timedelta, timezone as dt_timezone
from unittest import mock

import requests
from django.core.cache import caches
from django.test import SimpleTestCase, TestCase

from .client import NhlApiClient, UpstreamUnavailable
from .provider import (
	GAME_STATUS_CACHE_ALIAS,
	POLL_DISTANT_SECONDS,
	POLL_FINISHED_SECONDS,
	POLL_IMMINENT_SECONDS,
	POLL_LIVE_SECONDS,
	POLL_SOON_SECONDS,
	GameStatusProvider,
	classify_state,
)


T0 = datetime(2026, 10, 18, 23, 0, tzinfo=dt_timezone.utc)


class FakeNhlClient:
	def __init__(self, schedule=None, landing=None, error=None):
		self.schedule = schedule or {}
		self.landing = landing or {}
		self.error = error
		self.schedule_calls = 0
		self.landing_calls = []

	def fetch_schedule(self, day=None):
		self.schedule_calls += 1
		if self.error is not None:
			raise self.error
		return self.schedule

	def fetch_game_landing(self, game_id):
		self.landing_calls.append(game_id)
		if self.error is not None:
			raise self.error
		return self.landing.get(str(game_id), {})


def _schedule(*games):
	return {'gameWeek': [{'date': '2026-10-18', 'games': list(games)}]}


class ClassifyStateTests(SimpleTestCase):
	def test_live_codes(self):
		for code in ('LIVE', 'CRIT', 'PRE', 'live'):
			self.assertEqual(classify_state(code), (True, False, False))

	def test_finished_codes(self):
		for code in ('OFF', 'FINAL'):
			self.assertEqual(classify_state(code), (False, True, False))

	def test_scheduled_codes(self):
		for code in ('FUT', 'SCHEDULED'):
			self.assertEqual(classify_state(code), (False, False, True))

	def test_unknown_code_is_none_of_the_three(self):
		self.assertEqual(classify_state('PPD'), (False, False, False))
		self.assertEqual(classify_state(''), (False, False, False))


class GameStatusProviderTests(TestCase):
	def setUp(self):
		caches[GAME_STATUS_CACHE_ALIAS].clear()
		self.now = T0

	def _provider(self, client, ttl_seconds=30):
		return GameStatusProvider(client, ttl_seconds=ttl_seconds, clock=lambda: self.now)

	def test_reads_game_from_schedule(self):
		client = FakeNhlClient(schedule=_schedule(
			{'id': 2025020001, 'gameState': 'LIVE', 'gameScheduleState': 'OK', 'startTimeUTC': '2026-10-18T23:00:00Z'},
		))
		snapshot = self._provider(client).get_status('2025020001')

		self.assertIsNotNone(snapshot)
		self.assertEqual(snapshot.game_id, '2025020001')
		self.assertEqual(snapshot.raw_state, 'LIVE')
		self.assertTrue(snapshot.is_live)
		self.assertFalse(snapshot.is_finished)
		self.assertEqual(snapshot.start_time_utc, T0)
		self.assertEqual(snapshot.observed_at, T0)
		self.assertEqual(client.landing_calls, [])

	def test_cached_snapshot_is_reused_until_ttl(self):
		client = FakeNhlClient(schedule=_schedule({'id': 1, 'gameState': 'FUT'}))
		provider = self._provider(client, ttl_seconds=30)

		first = provider.get_status('1')
		self.now = T0 + timedelta(seconds=29)
		second = provider.get_status('1')
		self.assertEqual(client.schedule_calls, 1)
		self.assertEqual(first, second)

		self.now = T0 + timedelta(seconds=30)
		third = provider.get_status('1')
		self.assertEqual(client.schedule_calls, 2)
		self.assertEqual(third.observed_at, self.now)

	def test_falls_back_to_landing_when_not_in_schedule(self):
		client = FakeNhlClient(
			schedule=_schedule({'id': 99, 'gameState': 'FUT'}),
			landing={'7': {'id': 7, 'gameState': 'OFF'}},
		)
		snapshot = self._provider(client).get_status('7')

		self.assertEqual(client.landing_calls, ['7'])
		self.assertTrue(snapshot.is_finished)
		self.assertEqual(snapshot.schedule_state, 'OK')

	def test_missing_game_state_defaults_to_future(self):
		client = FakeNhlClient(landing={'8': {'id': 8}})
		snapshot = self._provider(client).get_status('8')
		self.assertEqual(snapshot.raw_state, 'FUT')
		self.assertTrue(snapshot.is_scheduled)

	def test_unknown_game_returns_none(self):
		client = FakeNhlClient()
		self.assertIsNone(self._provider(client).get_status('404'))

	def test_upstream_failure_returns_none_and_is_not_cached(self):
		client = FakeNhlClient(error=UpstreamUnavailable('timeout'))
		provider = self._provider(client)

		self.assertIsNone(provider.get_status('1'))

		client.error = None
		client.schedule = _schedule({'id': 1, 'gameState': 'LIVE'})
		self.assertTrue(provider.get_status('1').is_live)

	def test_malformed_schedule_day_falls_back_to_landing(self):
		client = FakeNhlClient(
			schedule={'gameWeek': [{'games': 5}, 'oops']},
			landing={'1': {'id': 1, 'gameState': 'LIVE'}},
		)
		snapshot = self._provider(client).get_status('1')

		self.assertEqual(client.landing_calls, ['1'])
		self.assertTrue(snapshot.is_live)

	def test_unreadable_schedule_returns_none(self):
		client = FakeNhlClient(schedule={'gameWeek': 7})

		with self.assertLogs('pp_games.provider', level='WARNING'):
			self.assertIsNone(self._provider(client).get_status('1'))

	def test_malformed_schedule_without_landing_returns_none(self):
		client = FakeNhlClient(schedule={'gameWeek': [{'games': 5}]})
		self.assertIsNone(self._provider(client).get_status('1'))

	def test_blank_game_id_returns_none_without_fetching(self):
		client = FakeNhlClient()
		self.assertIsNone(self._provider(client).get_status('  '))
		self.assertEqual(client.schedule_calls, 0)

	def test_clear_single_game_forces_refetch(self):
		client = FakeNhlClient(schedule=_schedule({'id': 1, 'gameState': 'FUT'}, {'id': 2, 'gameState': 'FUT'}))
		provider = self._provider(client)
		provider.get_status('1')
		provider.get_status('2')
		self.assertEqual(client.schedule_calls, 2)

		provider.clear('1')
		provider.get_status('1')
		provider.get_status('2')
		self.assertEqual(client.schedule_calls, 3)

		provider.clear()
		provider.get_status('2')
		self.assertEqual(client.schedule_calls, 4)

	def test_suggested_poll_interval(self):
		client = FakeNhlClient(schedule=_schedule(
			{'id': 1, 'gameState': 'LIVE'},
			{'id': 2, 'gameState': 'FINAL'},
			{'id': 3, 'gameState': 'FUT', 'startTimeUTC': '2026-10-18T23:05:00Z'},
			{'id': 4, 'gameState': 'FUT', 'startTimeUTC': '2026-10-18T23:30:00Z'},
			{'id': 5, 'gameState': 'FUT', 'startTimeUTC': '2026-10-19T02:00:00Z'},
			{'id': 6, 'gameState': 'FUT'},
			{'id': 7, 'gameState': 'FUT', 'startTimeUTC': '2026-10-18T22:00:00Z'},
		))
		provider = self._provider(client)
		expected = {
			'1': POLL_LIVE_SECONDS,
			'2': POLL_FINISHED_SECONDS,
			'3': POLL_IMMINENT_SECONDS,
			'4': POLL_SOON_SECONDS,
			'5': POLL_DISTANT_SECONDS,
			'6': POLL_IMMINENT_SECONDS,
			'7': POLL_IMMINENT_SECONDS,
		}
		for game_id, interval in expected.items():
			snapshot = provider.get_status(game_id)
			self.assertEqual(provider.suggested_poll_interval(snapshot), interval, game_id)


class NhlApiClientTests(SimpleTestCase):
	def _client(self, session):
		return NhlApiClient('https://nhl.test/v1/', timeout=3, user_agent='tests', session=session)

	def test_fetch_schedule_uses_now_endpoint(self):
		session = mock.Mock()
		session.get.return_value = mock.Mock(status_code=200, json=mock.Mock(return_value={'gameWeek': []}))

		self.assertEqual(self._client(session).fetch_schedule(), {'gameWeek': []})
		session.get.assert_called_once_with(
			'https://nhl.test/v1/schedule/now',
			headers={'User-Agent': 'tests'},
			timeout=3.0,
		)

	def test_http_error_raises_upstream_unavailable(self):
		session = mock.Mock()
		session.get.return_value = mock.Mock(status_code=503)

		with self.assertRaises(UpstreamUnavailable):
			self._client(session).fetch_game_landing('1')

	def test_network_error_raises_upstream_unavailable(self):
		session = mock.Mock()
		session.get.side_effect = requests.ConnectionError('refused')

		with self.assertRaises(UpstreamUnavailable):
			self._client(session).fetch_schedule()

	def test_non_json_body_raises_upstream_unavailable(self):
		session = mock.Mock()
		session.get.return_value = mock.Mock(status_code=200, json=mock.Mock(side_effect=ValueError('no json')))

		with self.assertRaises(UpstreamUnavailable):
			self._client(session).fetch_schedule()
