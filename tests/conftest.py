"""Shared test fixtures for product-sync."""
import json
import logging
from typing import Any

import httpx
import pytest
import structlog

from config.settings import DeliveryConfig, QueueConfig
from delivery.client import DeliveryClient
from job_queue.retry_policy import RetryPolicy
from job_queue.store_file import FileMessageStore
from job_queue.store_memory import InMemoryMessageStore
from models.schemas import ProductPayload


class FakeClock:
    """Controllable replacement for time.time."""

    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


class RecordingTransport(httpx.AsyncBaseTransport):
    """httpx transport that records requests and replays scripted responses."""

    def __init__(self, responses: list[Any] = None):
        # each entry: int status, httpx.Response, or an Exception to raise
        self.responses = list(responses or [200])
        self.requests: list[httpx.Request] = []

    async def handle_async_request(self, request: httpx.Request) -> httpx.Response:
        await request.aread()
        self.requests.append(request)
        outcome = self.responses.pop(0) if len(self.responses) > 1 else self.responses[0]
        if isinstance(outcome, Exception):
            raise outcome
        if isinstance(outcome, httpx.Response):
            return outcome
        return httpx.Response(outcome, json={"ok": outcome < 400})

    def bodies(self) -> list[dict]:
        return [json.loads(r.content) for r in self.requests]


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def policy() -> RetryPolicy:
    return RetryPolicy(max_retries=3, backoff_seconds=(1, 2, 4))


@pytest.fixture
def queue_config(tmp_path) -> QueueConfig:
    return QueueConfig(
        store_backend="file",
        base_dir=str(tmp_path / "queue"),
        poll_interval=0,
        max_idle_polls=10,
        inflight_timeout_seconds=0,
    )


@pytest.fixture
def delivery_config() -> DeliveryConfig:
    return DeliveryConfig(
        endpoint_url="https://sync.example.test/products",
        api_token="TEST_TOKEN",
        timeout_seconds=10,
    )


@pytest.fixture
def file_store(tmp_path, policy, clock) -> FileMessageStore:
    return FileMessageStore(base_dir=str(tmp_path / "queue"), policy=policy, clock=clock)


@pytest.fixture
def memory_store(policy, clock) -> InMemoryMessageStore:
    return InMemoryMessageStore(policy=policy, clock=clock)


@pytest.fixture(params=["file", "memory"])
def store(request, tmp_path, policy, clock):
    """Every store contract test runs against both backends."""
    if request.param == "file":
        return FileMessageStore(base_dir=str(tmp_path / "queue"), policy=policy, clock=clock)
    return InMemoryMessageStore(policy=policy, clock=clock)


@pytest.fixture
def demo_payload() -> ProductPayload:
    return ProductPayload(id=789, name="Advanced Demo Product", price=99.99, stock=3)


@pytest.fixture
def transport() -> RecordingTransport:
    return RecordingTransport([200])


@pytest.fixture
def make_client(delivery_config):
    def factory(responses) -> tuple[DeliveryClient, RecordingTransport]:
        t = RecordingTransport(responses)
        return DeliveryClient(delivery_config, transport=t), t
    return factory


@pytest.fixture
def restore_logging():
    """Undo configure_logging() so later tests see default logging."""
    yield
    root = logging.getLogger()
    for handler in list(root.handlers):
        root.removeHandler(handler)
        handler.close()
    structlog.reset_defaults()
