import itertools
import os
import random
import sys
import pytest

# Ensure the backend root (containing the `wagerquiz` package) is on sys.path
CURRENT_DIR = os.path.dirname(__file__)
BACKEND_ROOT = os.path.abspath(os.path.join(CURRENT_DIR, '..'))
if BACKEND_ROOT not in sys.path:
    sys.path.insert(0, BACKEND_ROOT)

from wagerquiz import create_app, socketio
from wagerquiz.config import DEFAULT_QUESTIONS_PATH
from wagerquiz.models import Question
from wagerquiz.services.games.engine import GameEngine
from wagerquiz.services.games.scheduler import ScheduledTask


class TestConfig:
    TESTING = True
    SECRET_KEY = os.environ.get('SECRET_KEY', 'test-secret')
    PORT = 3001
    CORS_ORIGINS = ['*']
    QUESTIONS_PATH = DEFAULT_QUESTIONS_PATH
    QUESTION_LIMIT = 2
    MAX_USERS_PER_ROOM = 4
    MAX_USERNAME_LENGTH = 12
    DEFAULT_TOKENS = 100
    MINIMUM_TOKENS = 10
    INNER_RANKING_TIMEOUT = 5


class ManualScheduler:
    """Deterministic stand-in for the Socket.IO scheduler: time only moves on advance()."""

    def __init__(self):
        self.now = 0.0
        self.pending = []
        self._seq = itertools.count()

    def call_later(self, delay, callback, *args):
        task = ScheduledTask(delay, callback, args)
        self.pending.append((self.now + delay, next(self._seq), task))
        return task

    def advance(self, seconds):
        target = self.now + seconds
        while True:
            due = [entry for entry in self.pending if entry[0] <= target]
            if not due:
                break
            entry = min(due, key=lambda e: (e[0], e[1]))
            self.pending.remove(entry)
            self.now = entry[0]
            entry[2].fire()
        self.now = target

    def live(self):
        return [task for _, _, task in self.pending if not task.cancelled]


class RecordingNotifier:
    def __init__(self):
        self.events = []
        self.joined = []

    def broadcast(self, room_id, event, payload=None):
        self.events.append((room_id, event, payload))

    def join(self, connection_id, room_id):
        self.joined.append((connection_id, room_id))

    def names(self):
        return [event for _, event, _ in self.events]

    def count(self, event):
        return self.names().count(event)

    def last(self, event):
        for _, name, payload in reversed(self.events):
            if name == event:
                return payload
        return None


# Every question answers 100 so shuffled decks still settle predictably
QUESTION_BANK = [
    Question(prompt='How many centimetres in a metre?', correct_answer=100, unit='cm'),
    Question(prompt='Boiling point of water at sea level?', correct_answer=100, unit='°C'),
    Question(prompt='How many years in a century?', correct_answer=100, unit='years'),
]


@pytest.fixture()
def scheduler():
    return ManualScheduler()


@pytest.fixture()
def notifier():
    return RecordingNotifier()


@pytest.fixture()
def engine(notifier, scheduler):
    return GameEngine(
        QUESTION_BANK, notifier, scheduler,
        question_limit=2,
        max_users_per_room=4,
        max_username_length=12,
        default_tokens=100,
        minimum_tokens=10,
        inner_ranking_timeout=5,
        rng=random.Random(7),
    )


@pytest.fixture()
def make_room(engine):
    """Create a room owned by the first name and join the rest; returns (room, sessions)."""
    def _make(*names):
        sessions = [engine.connect(f'sid-{name.lower()}') for name in names]
        room = engine.create_room(sessions[0], names[0])
        for session, name in zip(sessions[1:], names[1:]):
            engine.join_room(session, room.room_id, name)
        return room, sessions
    return _make


@pytest.fixture()
def flask_app():
    application = create_app(TestConfig)
    application.extensions['wagerquiz'].scheduler = ManualScheduler()
    yield application


@pytest.fixture()
def client(flask_app):
    return flask_app.test_client()


@pytest.fixture()
def sio_factory(flask_app):
    clients = []

    def _connect():
        test_client = socketio.test_client(
            flask_app,
            flask_test_client=flask_app.test_client(),
            namespace='/ws'
        )
        clients.append(test_client)
        return test_client

    yield _connect
    for test_client in clients:
        if test_client.is_connected('/ws'):
            test_client.disconnect(namespace='/ws')
