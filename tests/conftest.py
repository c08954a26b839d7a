"""Pytest configuration and shared fixtures."""
from __future__ import annotations

import asyncio

import pytest

from redgram.agent import ChatAgent
from redgram.protocol import Profile
from redgram.relay import RelayHub, create_app
from redgram.settings import get_settings


class Recorder:
    """Listener that keeps every event it is given."""

    def __init__(self):
        self.events = []

    def __call__(self, event):
        self.events.append(event)

    def of_type(self, cls):
        return [e for e in self.events if isinstance(e, cls)]


async def _wait_until(predicate, timeout: float = 3.0, interval: float = 0.01):
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met before timeout")
        await asyncio.sleep(interval)


@pytest.fixture
def wait_until():
    return _wait_until


@pytest.fixture
def recorder() -> Recorder:
    return Recorder()


@pytest.fixture
def make_recorder():
    return Recorder


@pytest.fixture
def make_profile():
    def factory(username: str, **fields) -> Profile:
        fields.setdefault("id", f"id-{username}")
        fields.setdefault("name", username.title())
        return Profile(username=username, **fields)
    return factory


@pytest.fixture
def conf(tmp_path, monkeypatch: pytest.MonkeyPatch) -> dict:
    """Default settings, unaffected by the developer's env or settings file."""
    for var in ["PORT", "REDGRAM_SETTINGS", "REDGRAM_RELAY_URL", "REDGRAM_LOG_LEVEL"]:
        monkeypatch.delenv(var, raising=False)
    return get_settings(str(tmp_path / "settings.local.yaml"))


@pytest.fixture
def hub() -> RelayHub:
    return RelayHub(outbox_size=64)


@pytest.fixture
async def relay_client(aiohttp_client, conf, hub):
    """aiohttp test client talking to an in-process relay."""
    return await aiohttp_client(create_app(conf, hub=hub))


@pytest.fixture
async def relay_url(aiohttp_server, conf, hub) -> str:
    server = await aiohttp_server(create_app(conf, hub=hub))
    return str(server.make_url("/")).replace("http://", "ws://", 1)


@pytest.fixture
async def make_agent(relay_url):
    """Build agents pointed at the test relay; all are closed on teardown."""
    agents = []

    def factory(url: str | None = None, reconnect_interval: float = 0.05) -> ChatAgent:
        agent = ChatAgent(url or relay_url, reconnect_interval=reconnect_interval)
        agents.append(agent)
        return agent

    yield factory

    for agent in agents:
        await agent.close()
