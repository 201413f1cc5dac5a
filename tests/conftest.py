"""Pytest configuration and fixtures."""

from contextlib import asynccontextmanager
from datetime import datetime, timezone
from unittest.mock import AsyncMock

import pytest

from reconcilekit.apicall import ApiClient
from reconcilekit.objects import Resource
from reconcilekit.store import MemoryObjectStore


@pytest.fixture
def store():
    """An empty in-memory object store."""
    return MemoryObjectStore()


@pytest.fixture
def client(store):
    """An ApiClient over the in-memory store."""
    return ApiClient(store)


@pytest.fixture
def sample_resource():
    """Sample, not yet stored, resource."""
    return Resource(
        kind="Database",
        namespace="default",
        name="orders",
        labels={"team": "payments"},
        annotations={"example.com/owner": "payments"},
        spec={"engine": "postgres", "size": "small"},
    )


@pytest.fixture
def deleting_resource():
    """A resource marked for deletion that still carries a finalizer."""
    return Resource(
        kind="Database",
        namespace="default",
        name="orders",
        resource_version="7",
        generation=2,
        deletion_timestamp=datetime(2024, 1, 1, tzinfo=timezone.utc),
        finalizers=["example.com/cleanup"],
    )


@pytest.fixture
def mock_pool():
    """An asyncpg pool whose acquire() yields the returned connection mock."""
    pool = AsyncMock()
    conn = AsyncMock()

    @asynccontextmanager
    async def mock_acquire():
        yield conn

    pool.acquire = mock_acquire
    pool.conn = conn
    return pool
