from pathlib import Path

import pytest

from content_search.search.messages import encode_payload
from content_search.search.transport import ChannelRouter


def write_file(root: Path, rel_path: str, content: str | bytes) -> Path:
    path = root / rel_path
    path.parent.mkdir(parents=True, exist_ok=True)
    if isinstance(content, bytes):
        path.write_bytes(content)
    else:
        path.write_bytes(content.encode("utf-8"))
    return path


class RecordingConnection:
    """Host-side connection that keeps every message sent to it."""

    def __init__(self, connection_id: str = "conn-1", before_send=None):
        self.connection_id = connection_id
        self.before_send = before_send
        self.sent = []

    def send(self, channel, payload):
        if self.before_send is not None:
            self.before_send(channel, payload)
        self.sent.append((channel, payload))

    def payloads(self, channel):
        return [p for c, p in self.sent if c == channel]

    @property
    def channels(self):
        return [c for c, _ in self.sent]


class FakeTransport(ChannelRouter):
    """Client transport that records sends and lets tests push host messages."""

    def __init__(self):
        super().__init__()
        self.sent = []
        self.closed = False

    def send(self, channel, payload=None):
        self.sent.append((channel, payload))

    def close(self):
        self.closed = True

    def push(self, channel, message):
        self.deliver(channel, encode_payload(message))

    def sent_on(self, channel):
        return [p for c, p in self.sent if c == channel]


class FakeTimer:
    def __init__(self, interval, function):
        self.interval = interval
        self.function = function
        self.daemon = False
        self.started = False
        self.cancelled = False

    def start(self):
        self.started = True

    def cancel(self):
        self.cancelled = True

    def fire(self):
        if self.started and not self.cancelled:
            self.function()


@pytest.fixture
def timers():
    return []


@pytest.fixture
def timer_factory(timers):
    def factory(interval, function):
        timer = FakeTimer(interval, function)
        timers.append(timer)
        return timer

    return factory


@pytest.fixture
def connection():
    return RecordingConnection()


@pytest.fixture
def fake_transport():
    return FakeTransport()
