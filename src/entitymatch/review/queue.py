"""
Review queue for low-confidence and ambiguous resolutions.

Tasks are opened by the service pipeline and closed only by an admin
decision. Critical tasks are announced to a notification sink; the sink is
fire-and-forget and its failures never reach the caller.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Optional, Protocol
from uuid import UUID

from entitymatch.errors import InvalidTransitionError
from entitymatch.normalization import display_name, merge_aliases
from entitymatch.resolution.resolver import update_with_retry
from entitymatch.review.workflow import Trigger, transition
from entitymatch.schemas import (
    Identity,
    IdentityStatus,
    Mention,
    MentionState,
    ReviewPriority,
    ReviewResolution,
    ReviewTask,
    ReviewTaskStatus,
    SuggestedMatch,
    utc_now,
)
from entitymatch.store.base import IdentityStore, ReviewStore

logger = logging.getLogger(__name__)


@dataclass
class ReviewEvent:
    """Notification payload for a review task."""

    event_type: str
    task_id: UUID
    mention_id: UUID
    priority: ReviewPriority
    reason: str
    identity_id: Optional[UUID] = None
    created_at: datetime = field(default_factory=utc_now)

    def to_dict(self) -> dict[str, Any]:
        return {
            "event_type": self.event_type,
            "task_id": str(self.task_id),
            "mention_id": str(self.mention_id),
            "identity_id": str(self.identity_id) if self.identity_id else None,
            "priority": self.priority.value,
            "reason": self.reason,
            "created_at": self.created_at.isoformat(),
        }


class NotificationSink(Protocol):
    """Receiver of review events (email, chat, pager...)."""

    def notify(self, event: ReviewEvent) -> None: ...


class LoggingNotificationSink:
    """Default sink: writes events to the log."""

    def notify(self, event: ReviewEvent) -> None:
        logger.warning(
            f"Review event {event.event_type}: task {event.task_id} "
            f"({event.priority.value}) {event.reason}"
        )


# Admin decision -> workflow trigger
_DECISION_TRIGGERS = {
    ReviewResolution.APPROVE: Trigger.ADMIN_APPROVE,
    ReviewResolution.CORRECT: Trigger.ADMIN_REQUEST_CORRECTION,
    ReviewResolution.REJECT: Trigger.ADMIN_REJECT,
}


class ReviewQueue:
    """
    Priority-ordered queue of review tasks.

    Approving a task confirms the mention's identity and records the mention
    text as an alias. Correcting with a replacement identity reassigns the
    mention; correcting without one sends it back for resubmission.
    """

    def __init__(
        self,
        review_store: ReviewStore,
        identity_store: IdentityStore,
        notifier: Optional[NotificationSink] = None,
        clock: Callable[[], datetime] = utc_now,
        max_write_retries: int = 3,
    ):
        self.review_store = review_store
        self.identity_store = identity_store
        self.notifier = notifier or LoggingNotificationSink()
        self.clock = clock
        self.max_write_retries = max_write_retries

    def open_task(
        self,
        mention: Mention,
        priority: ReviewPriority,
        reason: str,
        confidence: Optional[float] = None,
        suggested_matches: Optional[list[SuggestedMatch]] = None,
    ) -> ReviewTask:
        """Open a review task for a mention and announce it when critical."""
        task = ReviewTask(
            mention_id=mention.id,
            identity_id=mention.identity_id,
            reason=reason,
            priority=priority,
            confidence=confidence,
            suggested_matches=(
                suggested_matches
                if suggested_matches is not None
                else list(mention.suggested_matches)
            ),
            created_at=self.clock(),
        )
        self.review_store.put_task(task)
        logger.info(f"Opened {priority.value} review task {task.id} for mention {mention.id}: {reason}")

        if priority == ReviewPriority.CRITICAL:
            self._emit(
                ReviewEvent(
                    event_type="critical_review_task",
                    task_id=task.id,
                    mention_id=mention.id,
                    identity_id=mention.identity_id,
                    priority=priority,
                    reason=reason,
                    created_at=task.created_at,
                )
            )
        return task

    def list_tasks(
        self,
        priority: Optional[ReviewPriority] = None,
        status: Optional[ReviewTaskStatus] = None,
        limit: Optional[int] = None,
    ) -> list[ReviewTask]:
        """Tasks ordered by priority (most urgent first), then age (oldest first)."""
        tasks = self.review_store.list_tasks(priority=priority, status=status)
        tasks.sort(key=lambda t: (-t.priority.rank, t.created_at, str(t.id)))
        if limit is not None:
            tasks = tasks[:limit]
        return tasks

    def get_task(self, task_id: UUID) -> ReviewTask:
        return self.review_store.get_task(task_id)

    def start_review(self, task_id: UUID, actor_id: str) -> ReviewTask:
        """
        Record that a reviewer opened a task.

        Review time is measured from here rather than from task creation,
        so time spent waiting in the queue does not count. Reopening by the
        same reviewer keeps the first opening.

        Raises:
            NotFoundError: if the task is unknown
            InvalidTransitionError: if the task is already resolved
        """
        task = self.review_store.get_task(task_id)
        if not task.is_open:
            raise InvalidTransitionError(task.status.value, "open", "review task is already resolved")
        if task.opened_by != actor_id or task.opened_at is None:
            task.opened_at = self.clock()
            task.opened_by = actor_id
            self.review_store.put_task(task)
            logger.info(f"Review task {task.id} opened by {actor_id}")
        return task

    def resolve_task(
        self,
        task_id: UUID,
        decision: ReviewResolution,
        actor_id: str,
        corrected_identity_id: Optional[UUID] = None,
        notes: Optional[str] = None,
    ) -> ReviewTask:
        """
        Close a review task with an admin decision.

        Decisions move the mention as follows:
        - approve: approved, and the mention text becomes an alias
        - correct with corrected_identity_id: the mention is reassigned to
          that identity and approved (the task still records correct), and
          the text becomes an alias of the corrected identity
        - correct without an identity: needs_correction, to be resubmitted
        - reject: rejected

        Args:
            task_id: Task to close
            decision: approve, correct or reject
            actor_id: Admin making the decision
            corrected_identity_id: Replacement identity for a correction
            notes: Free-text reviewer notes

        Raises:
            NotFoundError: if the task, mention or corrected identity is unknown
            InvalidTransitionError: if the task is already resolved
        """
        decision = ReviewResolution(decision)
        task = self.review_store.get_task(task_id)
        if not task.is_open:
            raise InvalidTransitionError(
                task.status.value, decision.value, "review task is already resolved"
            )

        mention = self.review_store.get_mention(task.mention_id)
        now = self.clock()

        if decision == ReviewResolution.CORRECT and corrected_identity_id is not None:
            target = self.identity_store.get(corrected_identity_id)
            if target.status == IdentityStatus.TERMINATED:
                raise InvalidTransitionError(
                    mention.state.value,
                    decision.value,
                    f"identity {corrected_identity_id} is terminated",
                )
            # A correction naming the right identity confirms the mention
            next_state, _ = transition(mention.state, Trigger.ADMIN_APPROVE)
            previous = mention.identity_id
            mention.identity_id = target.id
            self._confirm_alias(target, mention)
            logger.info(
                f"Mention {mention.id} reassigned from {previous} to {target.id} by {actor_id}"
            )
        else:
            next_state, _ = transition(mention.state, _DECISION_TRIGGERS[decision])
            if decision == ReviewResolution.APPROVE and mention.identity_id is not None:
                self._confirm_alias(self.identity_store.get(mention.identity_id), mention)

        mention.state = next_state
        mention.needs_review = False
        mention.resolved_at = now
        if next_state == MentionState.NEEDS_CORRECTION:
            mention.flagged_for_correction = True
        self.review_store.put_mention(mention)

        task.status = ReviewTaskStatus.RESOLVED
        task.resolution = decision
        task.resolved_by = actor_id
        task.resolved_at = now
        task.identity_id = mention.identity_id
        task.notes = notes
        self.review_store.put_task(task)

        logger.info(f"Review task {task.id} resolved as {decision.value} by {actor_id}")
        return task

    def resubmit(self, mention_id: UUID, raw_text: Optional[str] = None) -> Mention:
        """
        Create a new mention replacing one sent back for correction.

        The new mention references the same identity and starts the workflow
        from the beginning.

        Raises:
            InvalidTransitionError: if the mention is not in needs_correction
        """
        original = self.review_store.get_mention(mention_id)
        if original.state != MentionState.NEEDS_CORRECTION:
            raise InvalidTransitionError(
                original.state.value, "resubmit", "only mentions needing correction can be resubmitted"
            )
        mention = Mention(
            raw_text=raw_text or original.raw_text,
            kind=original.kind,
            context=original.context,
            identity_id=original.identity_id,
            previous_mention_id=original.id,
            created_at=self.clock(),
        )
        self.review_store.put_mention(mention)
        logger.info(f"Mention {original.id} resubmitted as {mention.id}")
        return mention

    def _confirm_alias(self, identity: Identity, mention: Mention) -> None:
        if identity.status == IdentityStatus.TERMINATED and identity.merged_into:
            identity = self.identity_store.get(identity.merged_into)

        def add_alias(record: Identity) -> None:
            alias = display_name(mention.raw_text, record.kind)
            record.aliases = merge_aliases(record.aliases, [alias], record.kind)

        update_with_retry(self.identity_store, identity, add_alias, self.max_write_retries)

    def _emit(self, event: ReviewEvent) -> None:
        try:
            self.notifier.notify(event)
        except Exception as e:
            logger.error(f"Notification sink failed for task {event.task_id}: {e}")
