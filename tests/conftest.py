"""Pytest configuration for the driver update server."""
import time

import pytest
from fastapi.testclient import TestClient

from config import SimulationTiming
from main import create_app
from state import TERMINAL_STATUSES, SessionStore

FAST_TIMING = SimulationTiming(tick_min=0.005, tick_max=0.01, start_delay=0.0,
                               session_max_age=1800, reaper_interval=3600)
SLOW_TIMING = SimulationTiming(tick_min=0.5, tick_max=0.5, start_delay=0.0,
                               session_max_age=1800, reaper_interval=3600)


@pytest.fixture
def store():
    return SessionStore()


@pytest.fixture
def client(store):
    with TestClient(create_app(store=store, timing=FAST_TIMING)) as c:
        yield c


@pytest.fixture
def slow_client(store):
    with TestClient(create_app(store=store, timing=SLOW_TIMING)) as c:
        yield c


@pytest.fixture
def poll_until_terminal():
    """Poll /api/status until a terminal status, returning every body seen."""

    def _poll(client, session_id, timeout=5.0):
        seen = []
        deadline = time.monotonic() + timeout
        while time.monotonic() < deadline:
            body = client.get(f"/api/status/{session_id}").json()
            seen.append(body)
            if body["status"] in TERMINAL_STATUSES:
                return seen
            time.sleep(0.01)
        raise AssertionError(f"session {session_id} still {seen[-1]['status']} after {timeout}s")

    return _poll
