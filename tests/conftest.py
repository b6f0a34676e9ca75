from datetime import datetime, timedelta

import mongomock
import pytest

from application import create_app
from config import TestingConfig
from errors import ProviderError
from identity import hash_password
from models import new_user
from storage import Storage


class FakeProvider:
    """Scripted stand-in for GeminiClient. With nothing queued it fails."""

    def __init__(self):
        self.replies = []
        self.prompts = []

    def queue(self, *replies):
        self.replies.extend(replies)

    def generate(self, prompt, timeout, json_output=False):
        self.prompts.append(prompt)
        if not self.replies:
            raise ProviderError("no scripted reply")
        reply = self.replies.pop(0)
        if isinstance(reply, Exception):
            raise reply
        return reply


class Clock:
    def __init__(self, now):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)


@pytest.fixture
def provider():
    return FakeProvider()


@pytest.fixture
def clock():
    return Clock(datetime(2026, 10, 19, 9, 30))


@pytest.fixture
def mongo():
    return mongomock.MongoClient()


@pytest.fixture
def storage(mongo):
    return Storage(mongo, TestingConfig.MONGO_DB, TestingConfig.MAX_RECORD_BYTES)


@pytest.fixture
def make_user(storage, clock):
    def _make_user(username, password='Secret123', **stats):
        doc = new_user(username, hash_password(password), 'QK12345678', clock().date())
        doc['stats'].update(stats)
        return storage.insert_user(doc)
    return _make_user


@pytest.fixture
def app(mongo, provider, clock):
    return create_app(TestingConfig, mongo_client=mongo, provider=provider, clock=clock)


@pytest.fixture
def client(app):
    return app.test_client()
