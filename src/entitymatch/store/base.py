"""
Store interfaces consumed by the engine.

The engine keeps no state of its own: identities, mentions and review
tasks live behind these interfaces. Identity writes that can race use
conditional updates keyed on the record version.
"""

from abc import ABC, abstractmethod
from typing import Callable, Optional
from uuid import UUID

from entitymatch.schemas import (
    Identity,
    IdentityKind,
    IdentityStatus,
    Mention,
    ReviewPriority,
    ReviewTask,
    ReviewTaskStatus,
)

# Mutates the (copied) identity in place
Mutation = Callable[[Identity], None]


class IdentityStore(ABC):
    """Indexed key-value store of identities."""

    @abstractmethod
    def get(self, identity_id: UUID) -> Identity:
        """
        Get an identity by id.

        Raises:
            NotFoundError: if the id is unknown
        """

    @abstractmethod
    def find_by_canonical_name(
        self, key: str, kind: Optional[IdentityKind] = None
    ) -> list[Identity]:
        """Identities whose canonical name has the given comparison key."""

    @abstractmethod
    def find_by_alias(self, key: str, kind: Optional[IdentityKind] = None) -> list[Identity]:
        """Identities with an alias whose comparison key equals the given key."""

    @abstractmethod
    def find_active_candidates(self, kind: Optional[IdentityKind] = None) -> list[Identity]:
        """All identities with status active."""

    @abstractmethod
    def list_identities(
        self,
        status: Optional[IdentityStatus] = None,
        kind: Optional[IdentityKind] = None,
        needs_profile_completion: Optional[bool] = None,
        project_id: Optional[str] = None,
    ) -> list[Identity]:
        """Filtered listing for admin screens."""

    @abstractmethod
    def put(self, identity: Identity) -> Identity:
        """Insert or replace an identity unconditionally."""

    @abstractmethod
    def conditional_update(
        self, identity_id: UUID, expected_version: int, mutation: Mutation
    ) -> Identity:
        """
        Apply a mutation if the stored version still equals expected_version.

        The stored version is incremented on success.

        Raises:
            NotFoundError: if the id is unknown
            ConcurrentModificationError: if the version moved on
        """


class ReviewStore(ABC):
    """Store of mentions and review tasks."""

    @abstractmethod
    def put_mention(self, mention: Mention) -> Mention:
        """Insert or replace a mention."""

    @abstractmethod
    def get_mention(self, mention_id: UUID) -> Mention:
        """
        Raises:
            NotFoundError: if the id is unknown
        """

    @abstractmethod
    def list_mentions(self, identity_id: Optional[UUID] = None) -> list[Mention]:
        """Mentions, optionally only those resolved to one identity."""

    @abstractmethod
    def put_task(self, task: ReviewTask) -> ReviewTask:
        """Insert or replace a review task."""

    @abstractmethod
    def get_task(self, task_id: UUID) -> ReviewTask:
        """
        Raises:
            NotFoundError: if the id is unknown
        """

    @abstractmethod
    def list_tasks(
        self,
        priority: Optional[ReviewPriority] = None,
        status: Optional[ReviewTaskStatus] = None,
    ) -> list[ReviewTask]:
        """Review tasks filtered by priority and status."""
