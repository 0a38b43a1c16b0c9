"""
Pytest configuration.
Provides simulated time, fake transports and feed configs for deterministic tests.
"""

import json
import os
from typing import Any, List, Optional

import pytest

from livefeed.config import DeliveryMode, FeedConfig
from livefeed.observability.metrics import get_registry
from livefeed.util.scheduler import ManualScheduler


class FakeStreamTransport:
    """In-memory stand-in for a WebSocket connection attempt."""

    def __init__(self, fail_on_open: bool = False):
        self.fail_on_open = fail_on_open
        self.listener = None
        self.connected = False
        self.closed = False
        self.sent: List[str] = []

    def open(self, listener) -> None:
        self.listener = listener
        if self.fail_on_open:
            raise ConnectionRefusedError("connection refused")

    def send(self, message: str) -> bool:
        if self.closed or not self.connected:
            return False
        self.sent.append(message)
        return True

    def close(self) -> None:
        self.closed = True
        self.connected = False

    # Test drivers
    def accept(self) -> None:
        self.connected = True
        self.listener.on_open()

    def push(self, payload: Any) -> None:
        raw = payload if isinstance(payload, str) else json.dumps(payload)
        self.listener.on_message(raw)

    def drop(self, reason: str = "peer closed") -> None:
        self.connected = False
        self.listener.on_close(reason)

    def fail(self, error: Optional[Exception] = None) -> None:
        self.connected = False
        self.listener.on_error(error or OSError("network unreachable"))

    @property
    def pings(self) -> List[str]:
        return [m for m in self.sent if json.loads(m) == {"type": "ping"}]


class FakePollTransport:
    """In-memory stand-in for an HTTP polling transport."""

    def __init__(self, fail_on_open: bool = False):
        self.fail_on_open = fail_on_open
        self.listener = None
        self.opened = False
        self.closed = False
        self.requests = 0

    def open(self, listener) -> None:
        self.listener = listener
        if self.fail_on_open:
            raise ConnectionRefusedError("connection refused")
        self.requests += 1

    def poll(self) -> None:
        self.requests += 1

    def close(self) -> None:
        self.closed = True

    # Test drivers
    def respond(self, payload: Any) -> None:
        raw = payload if isinstance(payload, str) else json.dumps(payload)
        if not self.opened:
            self.opened = True
            self.listener.on_open()
        self.listener.on_message(raw)

    def fail(self, error: Optional[Exception] = None) -> None:
        self.listener.on_error(error or OSError("connection reset"))


class FakeTransportFactory:
    """Transport factory that remembers every transport it built."""

    def __init__(self, transport_cls):
        self.transport_cls = transport_cls
        self.created: List[Any] = []
        self.fail_next_opens = 0

    def __call__(self):
        fail = self.fail_next_opens > 0
        if fail:
            self.fail_next_opens -= 1
        transport = self.transport_cls(fail_on_open=fail)
        self.created.append(transport)
        return transport

    @property
    def latest(self):
        return self.created[-1]


@pytest.fixture
def scheduler() -> ManualScheduler:
    """Simulated clock starting at t=0."""
    return ManualScheduler()


@pytest.fixture
def stream_factory() -> FakeTransportFactory:
    return FakeTransportFactory(FakeStreamTransport)


@pytest.fixture
def poll_factory() -> FakeTransportFactory:
    return FakeTransportFactory(FakePollTransport)


@pytest.fixture
def stream_config() -> FeedConfig:
    return FeedConfig(endpoint="wss://feed.test/smartdisplay/data", mode=DeliveryMode.STREAM)


@pytest.fixture
def poll_config() -> FeedConfig:
    return FeedConfig(endpoint="https://feed.test", mode=DeliveryMode.POLL, poll_path="/api/data")


@pytest.fixture(autouse=True)
def reset_metrics():
    """Start every test with an empty metrics registry."""
    get_registry().reset()
    yield
    get_registry().reset()


@pytest.fixture(autouse=True)
def setup_test_env():
    """Keep developer .env values out of tests."""
    saved = {k: v for k, v in os.environ.items() if k.startswith("LIVEFEED_")}
    for key in saved:
        os.environ.pop(key)

    yield

    for key in [k for k in os.environ if k.startswith("LIVEFEED_")]:
        os.environ.pop(key)
    os.environ.update(saved)


def record(token, price, **extra):
    """Upstream-shaped record dict."""
    item = {"instrument_token": token, "last_price": price}
    item.update(extra)
    return item


# Pytest configuration
def pytest_configure(config):
    """Configure pytest with custom markers."""
    config.addinivalue_line("markers", "slow: marks tests as slow")
    config.addinivalue_line("markers", "integration: marks tests as integration tests")
    config.addinivalue_line("markers", "deterministic: marks tests as deterministic")
