"""
Pytest configuration and shared fixtures for entitymatch tests.
"""

from datetime import datetime, timezone

import pytest

from entitymatch.confidence import ConfidenceScorer
from entitymatch.lifecycle import MergeEngine
from entitymatch.nicknames import NicknameTable
from entitymatch.resolution import Resolver, SimilarityEngine
from entitymatch.review import ReviewQueue
from entitymatch.schemas import Identity, IdentityKind
from entitymatch.service import EntityMatchService
from entitymatch.store import InMemoryIdentityStore, InMemoryReviewStore

NOW = datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)


class FixedClock:
    """Clock returning a fixed instant that tests can move forward."""

    def __init__(self, now: datetime = NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now


class RecordingSink:
    """Notification sink that keeps every event."""

    def __init__(self):
        self.events = []

    def notify(self, event) -> None:
        self.events.append(event)


@pytest.fixture
def now() -> datetime:
    return NOW


@pytest.fixture
def clock(now) -> FixedClock:
    return FixedClock(now)


@pytest.fixture
def nicknames() -> NicknameTable:
    """The bundled nickname table."""
    return NicknameTable.default()


@pytest.fixture
def similarity(nicknames) -> SimilarityEngine:
    return SimilarityEngine(nicknames=nicknames)


@pytest.fixture
def identity_store() -> InMemoryIdentityStore:
    return InMemoryIdentityStore()


@pytest.fixture
def review_store() -> InMemoryReviewStore:
    return InMemoryReviewStore()


@pytest.fixture
def resolver(identity_store, similarity, clock) -> Resolver:
    return Resolver(identity_store, similarity=similarity, clock=clock)


@pytest.fixture
def scorer(clock) -> ConfidenceScorer:
    return ConfidenceScorer(clock=clock)


@pytest.fixture
def sink() -> RecordingSink:
    return RecordingSink()


@pytest.fixture
def review_queue(review_store, identity_store, sink, clock) -> ReviewQueue:
    return ReviewQueue(review_store, identity_store, notifier=sink, clock=clock)


@pytest.fixture
def merge_engine(identity_store) -> MergeEngine:
    return MergeEngine(identity_store)


@pytest.fixture
def service(identity_store, review_store, nicknames, clock, sink) -> EntityMatchService:
    return EntityMatchService(
        identity_store,
        review_store=review_store,
        nicknames=nicknames,
        clock=clock,
        notifier=sink,
    )


@pytest.fixture
def add_identity(identity_store):
    """Factory storing an identity whose aliases include its canonical name."""

    def _add(name: str, kind: IdentityKind = IdentityKind.PERSON, **fields) -> Identity:
        aliases = fields.pop("aliases", [])
        identity = Identity(kind=kind, canonical_name=name, aliases=[name, *aliases], **fields)
        identity_store.put(identity)
        return identity

    return _add
