"""
In-memory stores.

Used by tests and single-process deployments. Records are copied on the
way in and out so callers never share mutable state with the store.
"""

import logging
import threading
from typing import Optional
from uuid import UUID

from entitymatch.errors import ConcurrentModificationError, NotFoundError
from entitymatch.normalization import alias_keys, comparison_key
from entitymatch.schemas import (
    Identity,
    IdentityKind,
    IdentityStatus,
    Mention,
    ReviewPriority,
    ReviewTask,
    ReviewTaskStatus,
    utc_now,
)
from entitymatch.store.base import IdentityStore, Mutation, ReviewStore

logger = logging.getLogger(__name__)


class InMemoryIdentityStore(IdentityStore):
    """Dict-backed identity store with versioned conditional updates."""

    def __init__(self):
        self._identities: dict[UUID, Identity] = {}
        self._lock = threading.Lock()

    def get(self, identity_id: UUID) -> Identity:
        with self._lock:
            identity = self._identities.get(identity_id)
            if identity is None:
                raise NotFoundError("Identity", identity_id)
            return identity.model_copy(deep=True)

    def find_by_canonical_name(
        self, key: str, kind: Optional[IdentityKind] = None
    ) -> list[Identity]:
        return self._select(
            lambda i: comparison_key(i.canonical_name, i.kind) == key, kind
        )

    def find_by_alias(self, key: str, kind: Optional[IdentityKind] = None) -> list[Identity]:
        return self._select(lambda i: key in alias_keys(i.aliases, i.kind), kind)

    def find_active_candidates(self, kind: Optional[IdentityKind] = None) -> list[Identity]:
        return self._select(lambda i: i.status == IdentityStatus.ACTIVE, kind)

    def list_identities(
        self,
        status: Optional[IdentityStatus] = None,
        kind: Optional[IdentityKind] = None,
        needs_profile_completion: Optional[bool] = None,
        project_id: Optional[str] = None,
    ) -> list[Identity]:
        def matches(identity: Identity) -> bool:
            if status is not None and identity.status != status:
                return False
            if (
                needs_profile_completion is not None
                and identity.needs_profile_completion != needs_profile_completion
            ):
                return False
            if project_id is not None and identity.last_project_id != project_id:
                return False
            return True

        return self._select(matches, kind)

    def put(self, identity: Identity) -> Identity:
        with self._lock:
            self._identities[identity.id] = identity.model_copy(deep=True)
        return identity

    def conditional_update(
        self, identity_id: UUID, expected_version: int, mutation: Mutation
    ) -> Identity:
        with self._lock:
            current = self._identities.get(identity_id)
            if current is None:
                raise NotFoundError("Identity", identity_id)
            if current.version != expected_version:
                raise ConcurrentModificationError(
                    identity_id, expected_version, current.version
                )
            updated = current.model_copy(deep=True)
            mutation(updated)
            updated.version = current.version + 1
            updated.updated_at = utc_now()
            self._identities[identity_id] = updated
            return updated.model_copy(deep=True)

    def _select(self, predicate, kind: Optional[IdentityKind]) -> list[Identity]:
        with self._lock:
            return [
                identity.model_copy(deep=True)
                for identity in self._identities.values()
                if (kind is None or identity.kind == kind) and predicate(identity)
            ]

    def __len__(self) -> int:
        return len(self._identities)


class InMemoryReviewStore(ReviewStore):
    """Dict-backed store of mentions and review tasks."""

    def __init__(self):
        self._mentions: dict[UUID, Mention] = {}
        self._tasks: dict[UUID, ReviewTask] = {}
        self._lock = threading.Lock()

    def put_mention(self, mention: Mention) -> Mention:
        with self._lock:
            self._mentions[mention.id] = mention.model_copy(deep=True)
        return mention

    def get_mention(self, mention_id: UUID) -> Mention:
        with self._lock:
            mention = self._mentions.get(mention_id)
            if mention is None:
                raise NotFoundError("Mention", mention_id)
            return mention.model_copy(deep=True)

    def list_mentions(self, identity_id: Optional[UUID] = None) -> list[Mention]:
        with self._lock:
            return [
                m.model_copy(deep=True)
                for m in self._mentions.values()
                if identity_id is None or m.identity_id == identity_id
            ]

    def put_task(self, task: ReviewTask) -> ReviewTask:
        with self._lock:
            self._tasks[task.id] = task.model_copy(deep=True)
        return task

    def get_task(self, task_id: UUID) -> ReviewTask:
        with self._lock:
            task = self._tasks.get(task_id)
            if task is None:
                raise NotFoundError("ReviewTask", task_id)
            return task.model_copy(deep=True)

    def list_tasks(
        self,
        priority: Optional[ReviewPriority] = None,
        status: Optional[ReviewTaskStatus] = None,
    ) -> list[ReviewTask]:
        with self._lock:
            return [
                t.model_copy(deep=True)
                for t in self._tasks.values()
                if (priority is None or t.priority == priority)
                and (status is None or t.status == status)
            ]
