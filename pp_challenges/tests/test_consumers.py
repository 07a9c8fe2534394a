from types import SimpleNamespace

from channels.layers import get_channel_layer
from channels.testing import WebsocketCommunicator
from django.test import SimpleTestCase

from pp_challenges.broadcaster import EventBroadcaster
from pp_challenges.consumers import ChallengeConsumer


class ChallengeConsumerTests(SimpleTestCase):
	def _communicator(self, user):
		communicator = WebsocketCommunicator(ChallengeConsumer.as_asgi(), '/ws/challenges/')
		communicator.scope['user'] = user
		return communicator

	async def _connect(self, pk=7):
		communicator = self._communicator(SimpleNamespace(is_authenticated=True, pk=pk))
		connected, _subprotocol = await communicator.connect()
		self.assertTrue(connected)
		hello = await communicator.receive_json_from()
		self.assertEqual(hello, {'event': 'authenticated', 'data': {'user_id': str(pk)}})
		return communicator

	async def test_anonymous_session_is_rejected(self):
		communicator = self._communicator(SimpleNamespace(is_authenticated=False, pk=None))
		connected, _code = await communicator.connect()
		self.assertFalse(connected)

	async def test_user_topic_delivery(self):
		communicator = await self._connect(pk=7)
		broadcaster = EventBroadcaster(get_channel_layer())

		await broadcaster.apublish_to_user('7', 'challenge_invitation', {'type': 'challenge_created'})

		self.assertEqual(
			await communicator.receive_json_from(),
			{'event': 'challenge_invitation', 'data': {'type': 'challenge_created'}},
		)
		await communicator.disconnect()

	async def test_all_sessions_topic_delivery(self):
		communicator = await self._connect(pk=8)

		await EventBroadcaster(get_channel_layer()).apublish_to_all('maintenance', {'message': 'soon'})

		message = await communicator.receive_json_from()
		self.assertEqual(message['event'], 'maintenance')
		await communicator.disconnect()

	async def test_challenge_topic_follows_join_and_leave(self):
		communicator = await self._connect(pk=9)
		broadcaster = EventBroadcaster(get_channel_layer())

		await communicator.send_json_to({'type': 'join_challenge', 'challenge_id': 'c42'})
		self.assertEqual(
			await communicator.receive_json_from(),
			{'event': 'joined_challenge', 'data': {'challenge_id': 'c42'}},
		)

		await broadcaster.apublish_to_challenge('c42', 'challenge_status_changed', {'new_status': 'live'})
		message = await communicator.receive_json_from()
		self.assertEqual(message['data'], {'new_status': 'live'})

		await communicator.send_json_to({'type': 'leave_challenge', 'challenge_id': 'c42'})
		self.assertEqual((await communicator.receive_json_from())['event'], 'left_challenge')

		await broadcaster.apublish_to_challenge('c42', 'challenge_status_changed', {'new_status': 'finished'})
		self.assertTrue(await communicator.receive_nothing())
		await communicator.disconnect()

	async def test_malformed_messages_are_ignored(self):
		communicator = await self._connect(pk=10)

		await communicator.send_to(text_data='not json')
		await communicator.send_json_to({'type': 'join_challenge'})
		await communicator.send_json_to(['join_challenge'])

		self.assertTrue(await communicator.receive_nothing())
		await communicator.disconnect()
