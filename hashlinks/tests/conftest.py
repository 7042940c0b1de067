"""
HashLinks test configuration.

Shared in-memory fakes. Every transport uses a ticking clock, so consensus
timestamps are deterministic and strictly increasing per append.
PostgresTransport tests that need DATABASE_URL are skipped automatically when not set.
"""

import pytest

from hashlinks.content import BlockLoader, MemoryContentStore
from hashlinks.events import ticking_clock
from hashlinks.transport import MemoryTransport


@pytest.fixture
def transport():
    return MemoryTransport(clock=ticking_clock())


@pytest.fixture
def content_store():
    return MemoryContentStore()


@pytest.fixture
def block_loader(content_store):
    return BlockLoader(content_store)
