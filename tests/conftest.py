"""Pytest configuration, Hypothesis profiles and shared fixtures."""

import json
from collections.abc import Callable
from pathlib import Path

import httpx
import pytest
from hypothesis import settings
from hypothesis import strategies as st

from oaping.backends.inmemory import InMemoryAccessStore, InMemoryJobScheduler, InMemoryStashStore
from oaping.core.access import Access
from oaping.core.audit import InMemoryAuditLog
from oaping.core.config import OAPingConfig
from oaping.core.transmitter import Transmitter

# Register Hypothesis profiles
settings.register_profile("ci", max_examples=100)
settings.register_profile("dev", max_examples=20)

# Load dev profile by default, CI can override via --hypothesis-profile=ci
settings.load_profile("dev")

TRACKER = "https://tracker.example.org/piwik.php"
BASE_URL = "https://repo.example.org"


@pytest.fixture(scope="session")
def anyio_backend() -> str:
    """Use asyncio as the async backend for pytest-asyncio."""
    return "asyncio"


def make_config(variables_path: Path, **overrides) -> OAPingConfig:
    values = {
        "tracker": TRACKER,
        "idsite": "42",
        "token_auth": "secret-token",
        "base_url": BASE_URL,
        "variables_path": variables_path,
    }
    values.update(overrides)
    return OAPingConfig(**values)


def make_access(access_id: int, second: int | None = None, **fields) -> Access:
    """Build a dated access to record 1000 + id, `second` seconds past midnight.

    `second` defaults to the access id, so ids sort chronologically.
    """
    s = access_id if second is None else second
    values = {
        "id": access_id,
        "datestamp": f"2024-03-01 {s // 3600 % 24:02d}:{s // 60 % 60:02d}:{s % 60:02d}",
        "referent_id": 1000 + access_id,
        "requester_id": "192.0.2.1",
        "requester_user_agent": "pytest",
    }
    values.update(fields)
    return Access(**values)


class FakeTracker:
    """Records requests and answers them with `responder`."""

    def __init__(self) -> None:
        self.requests: list[httpx.Request] = []
        self.responder: Callable[[httpx.Request], httpx.Response] = lambda r: httpx.Response(200)

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return self.responder(request)

    def respond(self, status_code: int, body: dict | str | None = None) -> None:
        def responder(request: httpx.Request) -> httpx.Response:
            if isinstance(body, dict):
                return httpx.Response(status_code, json=body)
            return httpx.Response(status_code, text=body or "")

        self.responder = responder

    def fail_transport(self) -> None:
        def responder(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("Connection refused", request=request)

        self.responder = responder

    def fail_timeout(self) -> None:
        def responder(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("Timed out waiting for the tracker", request=request)

        self.responder = responder

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self.handler))

    @property
    def bulk_payloads(self) -> list[dict]:
        return [json.loads(r.content) for r in self.requests if r.method == "POST"]

    @property
    def pings(self) -> list[httpx.Request]:
        return [r for r in self.requests if r.method == "HEAD"]


@pytest.fixture
def tracker() -> FakeTracker:
    return FakeTracker()


@pytest.fixture
def config(tmp_path: Path) -> OAPingConfig:
    return make_config(tmp_path)


@pytest.fixture
def stash() -> InMemoryStashStore:
    return InMemoryStashStore()


@pytest.fixture
def audit() -> InMemoryAuditLog:
    return InMemoryAuditLog()


@pytest.fixture
def accesses() -> InMemoryAccessStore:
    return InMemoryAccessStore()


@pytest.fixture
def scheduler() -> InMemoryJobScheduler:
    return InMemoryJobScheduler()


@pytest.fixture
def transmitter(config, stash, audit, tracker) -> Transmitter:
    return Transmitter(config, stash, audit, client=tracker.client())


# Hypothesis strategies


def access_ids() -> st.SearchStrategy[int]:
    return st.integers(min_value=1, max_value=100_000)


def datestamps() -> st.SearchStrategy[str]:
    return st.builds(
        lambda d, h, m, s: f"2024-01-{d:02d} {h:02d}:{m:02d}:{s:02d}",
        st.integers(1, 28),
        st.integers(0, 23),
        st.integers(0, 59),
        st.integers(0, 59),
    )
