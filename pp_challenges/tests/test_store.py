import threading

from django.core.exceptions import ValidationError
from django.db import connection
from django.test import TestCase, TransactionTestCase

from pp_challenges.exceptions import ChallengeNotFound, InvalidTransition
from pp_challenges.lifecycle import ACTIVE, CANCELLED, FINISHED, LIVE, PENDING
from pp_challenges.models import Challenge
from pp_challenges.store import (
	REASON_ALREADY_MEMBER,
	REASON_CLOSED,
	REASON_FULL,
	REASON_NOT_FOUND,
	REASON_NOT_MEMBER,
	REASON_OWNER,
	ChallengeStore,
)

from .helpers import RecordingBroadcaster


class StoreTestMixin:
	def setUp(self):
		self.broadcaster = RecordingBroadcaster()
		self.store = ChallengeStore(self.broadcaster)

	def _create(self, owner='u1', **fields):
		fields.setdefault('title', 'Leafs vs Habs')
		fields.setdefault('description', 'Who scores first?')
		fields.setdefault('game_id', '2025020001')
		return self.store.create(owner, **fields)


class ChallengeCreateTests(StoreTestMixin, TestCase):
	def test_owner_is_first_member(self):
		with self.captureOnCommitCallbacks(execute=True):
			challenge = self._create('u1', ticket_id='t1', invited_user_ids=['u2', 'u1', 'u2'])

		challenge.refresh_from_db()
		self.assertEqual(challenge.status, PENDING)
		self.assertEqual(challenge.member_ids, ['u1'])
		self.assertEqual(challenge.ticket_ids, {'u1': 't1'})
		self.assertEqual(challenge.invited_user_ids, ['u2'])
		self.assertEqual(challenge.version, 1)
		self.assertEqual(self.broadcaster.names(), ['challenge_created'])

	def test_rejects_missing_title(self):
		with self.assertRaises(ValidationError):
			self._create(title='   ')
		self.assertFalse(Challenge.objects.exists())

	def test_rejects_max_members_out_of_range(self):
		for value in (1, 51):
			with self.assertRaises(ValidationError):
				self._create(max_members=value)

	def test_rejects_unknown_fields(self):
		with self.assertRaises(ValidationError):
			self._create(status=LIVE)

	def test_no_event_without_commit(self):
		with self.captureOnCommitCallbacks(execute=False) as callbacks:
			self._create()
		self.assertEqual(len(callbacks), 1)
		self.assertEqual(self.broadcaster.events, [])


class MembershipTests(StoreTestMixin, TestCase):
	def test_join_and_leave_scenario(self):
		challenge = self._create('U1', max_members=2)

		joined = self.store.join(challenge.id, 'U2', 'ticketA')
		self.assertTrue(joined.ok)
		self.assertEqual(set(joined.challenge.member_ids), {'U1', 'U2'})

		full = self.store.join(challenge.id, 'U3', 'ticketB')
		self.assertTrue(full.conflict)
		self.assertEqual(full.reason, REASON_FULL)

		owner_leave = self.store.leave(challenge.id, 'U1')
		self.assertTrue(owner_leave.conflict)
		self.assertEqual(owner_leave.reason, REASON_OWNER)

		left = self.store.leave(challenge.id, 'U2')
		self.assertTrue(left.ok)
		self.assertEqual(left.challenge.member_ids, ['U1'])
		self.assertNotIn('U2', left.challenge.ticket_ids)

		challenge.refresh_from_db()
		self.assertEqual(challenge.member_ids, ['U1'])
		self.assertNotIn('U2', challenge.ticket_ids)

	def test_join_is_not_repeated(self):
		challenge = self._create('u1')
		self.assertTrue(self.store.join(challenge.id, 'u2', 't2').ok)

		again = self.store.join(challenge.id, 'u2', 't2b')
		self.assertEqual(again.reason, REASON_ALREADY_MEMBER)
		challenge.refresh_from_db()
		self.assertEqual(challenge.member_ids, ['u1', 'u2'])
		self.assertEqual(challenge.ticket_ids, {'u2': 't2'})

	def test_leave_twice(self):
		challenge = self._create('u1')
		self.store.join(challenge.id, 'u2', 't2')
		self.assertTrue(self.store.leave(challenge.id, 'u2').ok)
		self.assertEqual(self.store.leave(challenge.id, 'u2').reason, REASON_NOT_MEMBER)

	def test_join_requires_ticket(self):
		challenge = self._create()
		with self.assertRaises(ValidationError):
			self.store.join(challenge.id, 'u2', '')

	def test_join_unknown_challenge(self):
		result = self.store.join('missing', 'u2', 't2')
		self.assertFalse(result.ok)
		self.assertIsNone(result.challenge)
		self.assertEqual(result.reason, REASON_NOT_FOUND)

	def test_join_closed_once_live(self):
		challenge = self._create()
		self.store.update_status(challenge.id, LIVE)
		self.assertEqual(self.store.join(challenge.id, 'u2', 't2').reason, REASON_CLOSED)
		self.assertEqual(self.store.leave(challenge.id, 'u1').reason, REASON_OWNER)

	def test_join_accepts_invitation(self):
		challenge = self._create('u1', invited_user_ids=['u2', 'u3'])
		result = self.store.join(challenge.id, 'u2', 't2')
		self.assertEqual(result.challenge.invited_user_ids, ['u3'])

	def test_membership_events_after_commit(self):
		challenge = self._create('u1')
		with self.captureOnCommitCallbacks(execute=True):
			self.store.join(challenge.id, 'u2', 't2')
			self.store.leave(challenge.id, 'u2')
			self.store.leave(challenge.id, 'u2')

		self.assertEqual(
			self.broadcaster.names(),
			['challenge_created', 'user_joined_challenge', 'user_left_challenge'],
		)
		_name, (_challenge, user) = self.broadcaster.events[1]
		self.assertEqual(user, {'id': 'u2'})

	def test_every_write_bumps_version(self):
		challenge = self._create('u1')
		self.store.join(challenge.id, 'u2', 't2')
		self.store.leave(challenge.id, 'u2')
		challenge.refresh_from_db()
		self.assertEqual(challenge.version, 3)


class ConcurrentJoinTests(TransactionTestCase):
	def test_simultaneous_joins_never_exceed_capacity(self):
		store = ChallengeStore()
		# The owner holds one of the three seats.
		challenge = store.create('owner', title='Stars @ Wild', description='First goal', game_id='g1', max_members=3)
		joiners = [f'user-{i}' for i in range(8)]
		barrier = threading.Barrier(len(joiners))
		results = []
		errors = []

		def attempt(user_id):
			try:
				barrier.wait()
				results.append(store.join(challenge.id, user_id, f'ticket-{user_id}'))
			except Exception as exc:
				errors.append(exc)
			finally:
				connection.close()

		threads = [threading.Thread(target=attempt, args=(uid,)) for uid in joiners]
		for thread in threads:
			thread.start()
		for thread in threads:
			thread.join(timeout=30)

		self.assertEqual(errors, [])
		successes = [r for r in results if r.ok]
		conflicts = [r for r in results if r.conflict]
		self.assertEqual(len(successes), 2)
		self.assertEqual(len(conflicts), len(joiners) - 2)
		self.assertTrue(all(r.reason == REASON_FULL for r in conflicts))

		stored = store.find_by_id(challenge.id)
		self.assertEqual(stored.member_count, 3)
		self.assertEqual(len(set(stored.member_ids)), 3)
		self.assertEqual(set(stored.ticket_ids), set(stored.member_ids) - {'owner'})


class StatusUpdateTests(StoreTestMixin, TestCase):
	def test_legal_transition(self):
		challenge = self._create()
		updated = self.store.update_status(challenge.id, ACTIVE)
		self.assertEqual(updated.status, ACTIVE)
		self.assertEqual(updated.version, 2)

	def test_illegal_transition_raises(self):
		challenge = self._create()
		self.store.update_status(challenge.id, FINISHED)
		with self.assertRaises(InvalidTransition):
			self.store.update_status(challenge.id, LIVE)
		challenge.refresh_from_db()
		self.assertEqual(challenge.status, FINISHED)

	def test_force_allows_repair(self):
		challenge = self._create()
		self.store.update_status(challenge.id, CANCELLED)
		repaired = self.store.update_status(challenge.id, PENDING, force=True)
		self.assertEqual(repaired.status, PENDING)

	def test_scoped_to_owner(self):
		challenge = self._create('u1')
		self.assertIsNone(self.store.update_status(challenge.id, CANCELLED, 'u2'))
		self.assertEqual(self.store.update_status(challenge.id, CANCELLED, 'u1').status, CANCELLED)

	def test_expected_status_mismatch_matches_nothing(self):
		challenge = self._create()
		self.store.update_status(challenge.id, CANCELLED)
		self.assertIsNone(self.store.update_status(challenge.id, LIVE, expected_status=PENDING))

	def test_same_status_is_a_no_op(self):
		challenge = self._create()
		same = self.store.update_status(challenge.id, PENDING)
		self.assertEqual(same.version, 1)

	def test_unknown_status(self):
		challenge = self._create()
		with self.assertRaises(ValidationError):
			self.store.update_status(challenge.id, 'archived')

	def test_publishes_nothing(self):
		challenge = self._create()
		with self.captureOnCommitCallbacks(execute=True):
			self.store.update_status(challenge.id, LIVE)
		self.assertNotIn('challenge_status_changed', self.broadcaster.names())


class OwnerOperationTests(StoreTestMixin, TestCase):
	def test_update_fields(self):
		challenge = self._create('u1')
		with self.captureOnCommitCallbacks(execute=True):
			updated = self.store.update(challenge.id, 'u1', title=' New title ', max_members=4)
		self.assertEqual(updated.title, 'New title')
		self.assertEqual(updated.max_members, 4)
		self.assertIn('challenge_updated', self.broadcaster.names())

	def test_update_cannot_shrink_below_members(self):
		challenge = self._create('u1', max_members=3)
		self.store.join(challenge.id, 'u2', 't2')
		self.store.join(challenge.id, 'u3', 't3')
		with self.assertRaises(ValidationError):
			self.store.update(challenge.id, 'u1', max_members=2)

	def test_update_requires_owner(self):
		challenge = self._create('u1')
		with self.assertRaises(ChallengeNotFound):
			self.store.update(challenge.id, 'u2', title='Mine now')

	def test_update_rejects_protected_fields(self):
		challenge = self._create('u1')
		with self.assertRaises(ValidationError):
			self.store.update(challenge.id, 'u1', owner_id='u2')

	def test_invite_only_new_users(self):
		challenge = self._create('u1', invited_user_ids=['u2'])
		with self.captureOnCommitCallbacks(execute=True):
			updated = self.store.invite(challenge.id, 'u1', ['u1', 'u2', 'u3', 'u3'])
		self.assertEqual(updated.invited_user_ids, ['u2', 'u3'])
		name, (_challenge, added) = self.broadcaster.events[-1]
		self.assertEqual(name, 'challenge_invitation')
		self.assertEqual(added, ['u3'])

	def test_invite_closed_challenge(self):
		challenge = self._create('u1')
		self.store.update_status(challenge.id, LIVE)
		with self.assertRaises(ValidationError):
			self.store.invite(challenge.id, 'u1', ['u9'])

	def test_delete(self):
		challenge = self._create('u1')
		self.store.join(challenge.id, 'u2', 't2')
		with self.captureOnCommitCallbacks(execute=True):
			self.store.delete(challenge.id, 'u1')
		self.assertIsNone(self.store.find_by_id(challenge.id))
		name, (deleted,) = self.broadcaster.events[-1]
		self.assertEqual(name, 'challenge_deleted')
		self.assertEqual(deleted.id, challenge.id)
		self.assertEqual(deleted.member_ids, ['u1', 'u2'])

	def test_delete_requires_owner(self):
		challenge = self._create('u1')
		with self.assertRaises(ChallengeNotFound):
			self.store.delete(challenge.id, 'u2')
		self.assertIsNotNone(self.store.find_by_id(challenge.id))


class ReadTests(StoreTestMixin, TestCase):
	def test_find_for_user_matches_exact_ids(self):
		mine = self._create('u1')
		joined = self._create('u2')
		self.store.join(joined.id, 'u1', 't1')
		other = self._create('u10')

		found = {c.id for c in self.store.find_for_user('u1')}
		self.assertEqual(found, {mine.id, joined.id})
		self.assertEqual([c.id for c in self.store.find_for_user('u10')], [other.id])

		self.store.update_status(mine.id, CANCELLED)
		self.assertEqual([c.id for c in self.store.find_for_user('u1', status=CANCELLED)], [mine.id])

	def test_find_for_user_with_non_ascii_id(self):
		owned = self._create('jürgen')
		joined = self._create('u1')
		self.store.join(joined.id, 'jürgen', 't1')
		self._create('jurgen')

		found = {c.id for c in self.store.find_for_user('jürgen')}
		self.assertEqual(found, {owned.id, joined.id})

	def test_find_all_paginates(self):
		for i in range(5):
			self._create(title=f'Challenge {i}')
		page, total = self.store.find_all(page=2, limit=2)
		self.assertEqual(total, 5)
		self.assertEqual(len(page), 2)

	def test_find_by_game_id(self):
		a = self._create(game_id='100')
		self._create(game_id='200')
		self.assertEqual([c.id for c in self.store.find_by_game_id('100')], [a.id])

	def test_find_syncable_skips_terminal(self):
		open_one = self._create()
		live = self._create()
		done = self._create()
		self.store.update_status(live.id, LIVE)
		self.store.update_status(done.id, FINISHED)

		self.assertEqual({c.id for c in self.store.find_syncable()}, {open_one.id, live.id})
