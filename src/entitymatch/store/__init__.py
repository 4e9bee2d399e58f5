"""
Identity and review storage.

- base: store interfaces consumed by the engine
- memory: in-memory implementations
- sql: SQLAlchemy-backed identity store
"""

from entitymatch.store.base import IdentityStore, Mutation, ReviewStore
from entitymatch.store.memory import InMemoryIdentityStore, InMemoryReviewStore
from entitymatch.store.sql import SqlIdentityStore

__all__ = [
    "IdentityStore",
    "Mutation",
    "ReviewStore",
    "InMemoryIdentityStore",
    "InMemoryReviewStore",
    "SqlIdentityStore",
]
