"""Shared fixtures for the backend tests."""

from datetime import datetime

import pytest
import pytest_asyncio

from services.event_queue import EventQueue
from storage.partition_store import JsonPartitionStore


def local_time(year, month, day, hour=12, minute=0):
    """An aware timestamp in the process-local timezone."""
    return datetime(year, month, day, hour, minute).astimezone()


@pytest.fixture
def store(tmp_path):
    return JsonPartitionStore(str(tmp_path / "logs" / "server"))


@pytest_asyncio.fixture
async def queue(store):
    q = EventQueue(store)
    q.start()
    yield q
    await q.stop(timeout=5)
