"""Shared fixtures: an isolated in-memory database per test and a recording registry."""

import uuid

import mongomock
import pytest

import users
from matches import commit_match
from notifications import ConnectionRegistry, Notifier


class RecordingConnection:
    """Stands in for a live socket; keeps every frame it is sent."""

    def __init__(self):
        self.frames = []

    def send(self, frame):
        self.frames.append(frame)

    def events(self, name=None):
        return [f for f in self.frames if name is None or f["event"] == name]


@pytest.fixture
def db():
    client = mongomock.MongoClient()
    return client[f"skill_swap_test_{uuid.uuid4().hex}"]


@pytest.fixture
def make_user(db):
    def _make(name, known=(), wanted=()):
        return users.create_user(
            db, name, f"{name.lower()}@example.com", "hashed-password", known, wanted,
        )
    return _make


@pytest.fixture
def connections():
    return ConnectionRegistry()


@pytest.fixture
def notifier(db, connections):
    return Notifier(db, connections)


@pytest.fixture
def listen(connections):
    def _listen(user):
        connection = RecordingConnection()
        connections.subscribe(str(user["_id"]), connection)
        return connection
    return _listen


@pytest.fixture
def matched_pair(db, make_user):
    """Alice and Bob, already matched."""
    alice = make_user("Alice", known=["JavaScript"], wanted=["Python"])
    bob = make_user("Bob", known=["Python"], wanted=["Guitar"])
    commit_match(db, alice["_id"], bob["_id"])
    return alice, bob
