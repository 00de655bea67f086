from datetime import datetime, timedelta

import pytest
from fastapi.testclient import TestClient
from mongomock_motor import AsyncMongoMockClient

from medassistant.config import Settings
from medassistant.database import Database
from medassistant.main import create_app
from medassistant.stores import ConversationStore, PatientStore


class StepClock:
    """Deterministic clock: every call is one second after the previous one."""

    def __init__(self, start=datetime(2024, 1, 1, 9, 0, 0)):
        self.current = start

    def __call__(self):
        self.current += timedelta(seconds=1)
        return self.current


class FakeGateway:
    def __init__(self, reply="Bebe agua y descansa 💧", configured=True, error=None):
        self.reply = reply
        self.configured = configured
        self.error = error
        self.calls = []

    async def complete(self, messages):
        self.calls.append(messages)
        if self.error is not None:
            raise self.error
        return self.reply

    async def close(self):
        pass


@pytest.fixture
def clock():
    return StepClock()


@pytest.fixture
def database():
    return Database.from_client(AsyncMongoMockClient(), "medassistant_test")


@pytest.fixture
def patients(database, clock):
    return PatientStore(database, clock=clock)


@pytest.fixture
def conversations(database, clock):
    return ConversationStore(database, clock=clock)


@pytest.fixture
def settings():
    return Settings(openai_api_key="sk-test", environment="test")


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def app(settings, database, gateway, clock):
    app = create_app(settings=settings, database=database, gateway=gateway)
    app.state.patients.clock = clock
    app.state.conversations.clock = clock
    return app


@pytest.fixture
def client(app):
    with TestClient(app) as c:
        yield c


def registration(patient_id="P1", session_id="S1", **overrides):
    body = {
        "patientId": patient_id,
        "name": "Ana",
        "age": 34,
        "gender": "femenino",
        "email": "ana@example.com",
        "phone": "555-0101",
        "sessionId": session_id,
    }
    body.update(overrides)
    return body
