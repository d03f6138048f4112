"""Shared fixtures: a fixed clock, a seeded store and a fake embedder."""

from datetime import datetime, timedelta, timezone
from typing import List

import pytest

# Wednesday
NOW = datetime(2026, 10, 21, 12, 0, tzinfo=timezone.utc)

E_MEETING = [1.0, 0.0, 0.0]
E_RESCHEDULE = [0.6, 0.8, 0.0]
E_PROFILE = [0.0, 0.6, 0.8]


def fixed_clock():
    return NOW


class FakeEmbeddingService:
    """Returns a fixed vector; counts calls"""

    def __init__(self, vector: List[float] = None, error: Exception = None):
        self.vector = vector if vector is not None else E_MEETING
        self.error = error
        self.calls = 0
        self.is_available = True

    def embed_single(self, text: str) -> List[float]:
        self.calls += 1
        if self.error is not None:
            raise self.error
        return list(self.vector)


@pytest.fixture
def clock():
    return fixed_clock


@pytest.fixture
def store():
    from recall.common.fragment_store import InMemoryFragmentStore
    return InMemoryFragmentStore(clock=fixed_clock)


@pytest.fixture
def sara_store(store):
    """Three fragments about Sara Smith at different ages"""
    store.upsert(
        "u1", "calendar_event", "evt-1",
        "Meeting with Sara Smith on Monday at 2pm",
        person_name="Sara Smith", person_email="sara@acme.com",
        embedding=E_MEETING, created_at=NOW - timedelta(days=2),
    )
    store.upsert(
        "u1", "message", "msg-1",
        "Sara asked to reschedule to Tuesday",
        person_name="Sara Smith", person_email="sara@acme.com",
        embedding=E_RESCHEDULE, created_at=NOW - timedelta(days=40),
    )
    store.upsert(
        "u1", "crm_note", "crm-1",
        "Sara Smith - VP Sales at Acme",
        person_name="Sara Smith", person_email="sara@acme.com",
        embedding=E_PROFILE, created_at=NOW - timedelta(days=200),
    )
    return store
