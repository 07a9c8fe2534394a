import json

from asgiref.sync import async_to_sync
from channels.generic.websocket import WebsocketConsumer
from django.core.serializers.json import DjangoJSONEncoder

from .broadcaster import ALL_SESSIONS_GROUP, challenge_group_name, user_group_name


class ChallengeConsumer(WebsocketConsumer):
    """One websocket session.

    Every authenticated session is subscribed to its own user topic and to
    the all-sessions topic. Challenge topics are opt-in: the client sends
    ``join_challenge`` while it shows a challenge and ``leave_challenge``
    when it stops.
    """

    def connect(self):
        self.user = self.scope.get('user')
        self.subscriptions = set()

        if not getattr(self.user, 'is_authenticated', False):
            self.close()
            return

        self.user_id = str(self.user.pk)
        self._subscribe(user_group_name(self.user_id))
        self._subscribe(ALL_SESSIONS_GROUP)

        self.accept()
        self._emit('authenticated', {'user_id': self.user_id})

    def disconnect(self, close_code):
        for group in list(getattr(self, 'subscriptions', ())):
            async_to_sync(self.channel_layer.group_discard)(group, self.channel_name)
        self.subscriptions = set()

    def receive(self, text_data=None, bytes_data=None):
        try:
            data = json.loads(text_data or '')
        except ValueError:
            return
        if not isinstance(data, dict):
            return

        event_type = str(data.get('type') or '').strip().lower()
        challenge_id = str(data.get('challenge_id') or '').strip()
        if not challenge_id:
            return

        if event_type == 'join_challenge':
            self._subscribe(challenge_group_name(challenge_id))
            self._emit('joined_challenge', {'challenge_id': challenge_id})
        elif event_type == 'leave_challenge':
            self._unsubscribe(challenge_group_name(challenge_id))
            self._emit('left_challenge', {'challenge_id': challenge_id})

    def challenge_event(self, event):
        self._emit(event.get('event') or 'message', event.get('payload') or {})

    def _subscribe(self, group):
        if group in self.subscriptions:
            return
        async_to_sync(self.channel_layer.group_add)(group, self.channel_name)
        self.subscriptions.add(group)

    def _unsubscribe(self, group):
        if group not in self.subscriptions:
            return
        async_to_sync(self.channel_layer.group_discard)(group, self.channel_name)
        self.subscriptions.discard(group)

    def _emit(self, event_name, data):
        self.send(text_data=json.dumps({'event': event_name, 'data': data}, cls=DjangoJSONEncoder))
