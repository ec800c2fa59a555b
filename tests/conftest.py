import asyncio

import pytest
import pytest_asyncio
from websockets.exceptions import ConnectionClosedError

from log_viewer.config import Config
from log_viewer.server import LogServer


class FakeConnection:
    """Stands in for a ``ServerConnection``; pongs never come back."""

    def __init__(self, fail_send_after=None, fail_ping=False, ping_error=None, incoming=()):
        self.sent = []
        self.incoming = list(incoming)
        self.received = 0
        self.pings = []
        self.fail_send_after = fail_send_after
        self.fail_ping = fail_ping
        self.ping_error = ping_error
        self.close_calls = 0
        self._closed = asyncio.Event()

    async def send(self, message):
        if self.fail_send_after is not None and len(self.sent) >= self.fail_send_after:
            raise ConnectionClosedError(None, None)
        self.sent.append(message)

    async def ping(self, data=None):
        if self.fail_ping:
            raise ConnectionClosedError(None, None)
        if self.ping_error is not None:
            raise self.ping_error
        self.pings.append(data)
        return asyncio.get_running_loop().create_future()

    async def __aiter__(self):
        for message in self.incoming:
            self.received += 1
            yield message
        await self._closed.wait()

    async def close(self, code=1000, reason=""):
        self.close_calls += 1
        self._closed.set()

    def disconnect(self):
        self._closed.set()


@pytest.fixture
def make_connection():
    return FakeConnection


@pytest.fixture
def log_file(tmp_path):
    return tmp_path / "uwsgi.log"


@pytest.fixture
def eventually():
    async def wait(predicate, timeout=3.0):
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while not predicate():
            if loop.time() > deadline:
                raise AssertionError("condition not met in time")
            await asyncio.sleep(0.01)
    return wait


@pytest.fixture
def make_config(log_file):
    def build(**sections):
        raw = {
            "server": {"host": "127.0.0.1", "port": 0},
            "stream": {"log_file": str(log_file), "heartbeat_interval": 30},
            "tail": {"poll_interval": 0.02},
        }
        for name, values in sections.items():
            raw.setdefault(name, {}).update(values)
        return Config(raw).validate()
    return build


@pytest_asyncio.fixture
async def server(make_config):
    srv = LogServer(make_config(stream={"heartbeat_interval": 0.05}))
    srv.tailers = []
    make_tailer = srv.make_tailer

    def tracking_tailer():
        tailer = make_tailer()
        srv.tailers.append(tailer)
        return tailer

    srv.make_tailer = tracking_tailer
    await srv.start()
    yield srv
    await srv.close()
