#!/usr/bin/env python3
"""
Pytest Configuration and Shared Fixtures

Provides shared fixtures and configuration for all tests.
"""

import pytest
import asyncio
import tempfile
import sys
import os
from datetime import datetime, timedelta, timezone
from pathlib import Path

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from config import Settings
from core.job_store import JobStore
from core.job_tracker import GenerationJobTracker
from core.poll_scheduler import PollTimer
from backend.generation_providers.mock_provider import MockJobProvider
from subscription.usage_ledger import UsageLedger


# ============================================================================
# ASYNCIO CONFIGURATION
# ============================================================================
# Note: pytest-asyncio is configured with asyncio_mode = "auto" in pyproject.toml
# The event loop is automatically managed per-function by default


# ============================================================================
# TIME CONTROL
# ============================================================================

class FakeClock:
    """Manually advanced UTC clock"""

    def __init__(self, start: datetime):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> datetime:
        self.now = self.now + timedelta(seconds=seconds)
        return self.now

    def set(self, moment: datetime) -> datetime:
        self.now = moment
        return self.now


class InstantTimer(PollTimer):
    """Poll timer that advances the fake clock instead of sleeping"""

    def __init__(self, clock: FakeClock):
        self.clock = clock
        self.delays = []

    async def wait(self, delay, token):
        if token.cancelled:
            return True
        self.delays.append(delay)
        self.clock.advance(delay)
        await asyncio.sleep(0)
        return token.cancelled


START_TIME = datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def clock():
    """Fake clock starting at a fixed instant"""
    return FakeClock(START_TIME)


@pytest.fixture
def timer(clock):
    return InstantTimer(clock)


# ============================================================================
# TEMPORARY DIRECTORIES
# ============================================================================

@pytest.fixture
def temp_dir():
    """Create a temporary directory for test files"""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def test_settings(temp_dir):
    """Settings isolated from the environment and the user's storage dir"""
    return Settings(_env_file=None, STORAGE_DIR=str(temp_dir / "storage"))


# ============================================================================
# SERVICE FIXTURES
# ============================================================================

@pytest.fixture
def ledger(test_settings, clock):
    """In-memory usage ledger on the fake clock"""
    return UsageLedger(settings=test_settings, clock=clock)


@pytest.fixture
def store():
    """In-memory job store"""
    return JobStore()


@pytest.fixture
def provider(clock):
    """Mock generation provider on the fake clock"""
    return MockJobProvider(clock=clock)


@pytest.fixture
async def tracker(ledger, provider, store, test_settings, clock, timer):
    """Job tracker wired to fakes; poll loops are stopped after the test"""
    tracker = GenerationJobTracker(
        ledger=ledger,
        provider=provider,
        store=store,
        settings=test_settings,
        clock=clock,
        timer=timer,
    )
    yield tracker
    await tracker.shutdown()

