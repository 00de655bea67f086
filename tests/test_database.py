import asyncio

import pytest

from medassistant.database import CONNECTED, CONNECTING, DISCONNECTED, Database
from medassistant.errors import ConfigurationError, UpstreamError


class FakeAdmin:
    def __init__(self, delay, error):
        self.delay = delay
        self.error = error

    async def command(self, name):
        await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return {"ok": 1.0}


class FakeClientFactory:
    def __init__(self, delay=0.0, errors=()):
        self.delay = delay
        self.errors = list(errors)
        self.clients = []

    def __call__(self, uri, **kwargs):
        error = self.errors.pop(0) if self.errors else None
        client = FakeClient(FakeAdmin(self.delay, error))
        self.clients.append(client)
        return client


class FakeClient:
    def __init__(self, admin):
        self.admin = admin
        self.closed = False

    def __getitem__(self, name):
        return {"database": name}

    def close(self):
        self.closed = True


def make_database(factory, timeout=1.0, uri="mongodb://db:27017"):
    return Database(uri, "clinic", connect_timeout=timeout, client_factory=factory)


async def test_missing_uri_is_a_configuration_error():
    database = make_database(FakeClientFactory(), uri="")
    assert not database.configured
    with pytest.raises(ConfigurationError):
        await database.ensure_ready()


async def test_connects_lazily_and_reuses_handle():
    factory = FakeClientFactory()
    database = make_database(factory)
    assert database.state == DISCONNECTED

    first = await database.ensure_ready()
    second = await database.ensure_ready()

    assert first is second
    assert first == {"database": "clinic"}
    assert database.state == CONNECTED
    assert len(factory.clients) == 1


async def test_concurrent_callers_share_one_attempt():
    factory = FakeClientFactory(delay=0.05)
    database = make_database(factory)

    results = await asyncio.gather(*(database.ensure_ready() for _ in range(5)))

    assert len(factory.clients) == 1
    assert all(r is results[0] for r in results)


async def test_wait_is_bounded():
    factory = FakeClientFactory(delay=5)
    database = make_database(factory, timeout=0.05)

    with pytest.raises(UpstreamError):
        await database.ensure_ready()
    assert database.state == CONNECTING

    database.close()
    assert database.state == DISCONNECTED


async def test_failed_attempt_is_retried_on_next_call():
    factory = FakeClientFactory(errors=[RuntimeError("auth failed")])
    database = make_database(factory)

    with pytest.raises(UpstreamError) as exc:
        await database.ensure_ready()
    assert "auth failed" in exc.value.details
    assert factory.clients[0].closed
    assert database.state == DISCONNECTED

    await database.ensure_ready()
    assert len(factory.clients) == 2
    assert database.connected


async def test_close_releases_client():
    factory = FakeClientFactory()
    database = make_database(factory)
    await database.ensure_ready()
    database.close()
    assert factory.clients[0].closed
    assert not database.connected


async def test_late_failure_after_timeout_is_logged(caplog):
    factory = FakeClientFactory(delay=0.05, errors=[RuntimeError("cold start")])
    database = make_database(factory, timeout=0.01)

    with pytest.raises(UpstreamError):
        await database.ensure_ready()
    await asyncio.sleep(0.1)

    assert "cold start" in caplog.text
    assert database.state == DISCONNECTED
    database.connect_timeout = 1.0
    await database.ensure_ready()
    assert database.connected
