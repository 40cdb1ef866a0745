"""Pytest configuration and shared fixtures."""
import pytest
import structlog
from structlog.testing import capture_logs

from eventbus.config import BusConfig
from eventbus.events import EventBus
from eventbus.events import bus as bus_module


def pytest_configure(config):
    """Configure pytest markers."""
    config.addinivalue_line("markers", "concurrency: mark test as exercising threads")


class RecordingConsumer:
    """Consumer that keeps every event it receives."""

    def __init__(self):
        self.events = []

    def event_received(self, event):
        self.events.append(event)


class NamedPublisher:
    def __init__(self, name):
        self.name = name

    def get_publisher_name(self):
        return self.name


@pytest.fixture
def bus():
    bus = EventBus(BusConfig())
    yield bus
    bus.close()


@pytest.fixture
def make_consumer():
    return RecordingConsumer


@pytest.fixture
def make_publisher():
    return NamedPublisher


@pytest.fixture
def captured_logs(monkeypatch):
    """Structured log entries emitted by the bus during the test."""
    # A fresh proxy, in case the module logger was cached by an earlier configure
    monkeypatch.setattr(bus_module, "logger", structlog.get_logger(bus_module.__name__))
    with capture_logs() as logs:
        yield logs
