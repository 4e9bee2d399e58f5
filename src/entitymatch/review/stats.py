"""
Review statistics and rubber-stamp detection.

Summarizes the review queue and monitors reviewer patterns: decisions
taken faster than a minimum review time are counted as rubber stamps.
"""

from dataclasses import dataclass, field
from typing import Any, Iterable, Optional

from entitymatch.config import settings
from entitymatch.schemas import ReviewPriority, ReviewResolution, ReviewTask


def _queue_seconds(task: ReviewTask) -> Optional[float]:
    if task.resolved_at is None:
        return None
    return max(0.0, (task.resolved_at - task.created_at).total_seconds())


def _review_seconds(task: ReviewTask) -> Optional[float]:
    # Tasks the resolver never opened fall back to their queue time
    if task.resolved_at is None:
        return None
    started = task.created_at
    if task.opened_at is not None and task.opened_by == task.resolved_by:
        started = task.opened_at
    return max(0.0, (task.resolved_at - started).total_seconds())


@dataclass
class QueueStats:
    """Snapshot of the review queue."""

    open_by_priority: dict[str, int] = field(default_factory=dict)
    resolutions: dict[str, int] = field(default_factory=dict)
    total_open: int = 0
    total_resolved: int = 0
    avg_resolution_seconds: float = 0.0

    @property
    def approval_rate(self) -> float:
        """Share of resolved tasks that were approved."""
        if self.total_resolved == 0:
            return 0.0
        return self.resolutions.get(ReviewResolution.APPROVE.value, 0) / self.total_resolved

    def to_dict(self) -> dict[str, Any]:
        return {
            "open_by_priority": self.open_by_priority,
            "resolutions": self.resolutions,
            "total_open": self.total_open,
            "total_resolved": self.total_resolved,
            "approval_rate": round(self.approval_rate, 4),
            "avg_resolution_seconds": round(self.avg_resolution_seconds, 2),
        }


def compute_queue_stats(tasks: Iterable[ReviewTask]) -> QueueStats:
    """Count open tasks per priority and resolved tasks per decision."""
    stats = QueueStats(
        open_by_priority={p.value: 0 for p in ReviewPriority},
        resolutions={r.value: 0 for r in ReviewResolution},
    )
    durations = []
    for task in tasks:
        if task.is_open:
            stats.open_by_priority[task.priority.value] += 1
            stats.total_open += 1
            continue
        stats.total_resolved += 1
        if task.resolution is not None:
            stats.resolutions[task.resolution.value] += 1
        seconds = _queue_seconds(task)
        if seconds is not None:
            durations.append(seconds)

    if durations:
        stats.avg_resolution_seconds = sum(durations) / len(durations)
    return stats


@dataclass
class ReviewerStats:
    """Statistics for one reviewer's decisions."""

    actor_id: str
    total_reviews: int
    approvals: int
    corrections: int
    rejections: int
    avg_review_seconds: float
    min_review_seconds: float
    max_review_seconds: float
    rubber_stamp_count: int

    @property
    def approval_rate(self) -> float:
        if self.total_reviews == 0:
            return 0.0
        return self.approvals / self.total_reviews

    @property
    def rubber_stamp_rate(self) -> float:
        if self.total_reviews == 0:
            return 0.0
        return self.rubber_stamp_count / self.total_reviews

    @property
    def is_suspicious(self) -> bool:
        """
        Check if review patterns are suspicious.

        Suspicious indicators:
        - Approval rate > 98% (almost never rejects)
        - Rubber-stamp rate > 10%
        """
        if self.total_reviews < 10:
            # Not enough data to judge
            return False

        if self.approval_rate > 0.98:
            return True

        if self.rubber_stamp_rate > 0.10:
            return True

        return False

    def to_dict(self) -> dict[str, Any]:
        return {
            "actor_id": self.actor_id,
            "total_reviews": self.total_reviews,
            "approvals": self.approvals,
            "corrections": self.corrections,
            "rejections": self.rejections,
            "approval_rate": round(self.approval_rate, 4),
            "avg_review_seconds": round(self.avg_review_seconds, 2),
            "min_review_seconds": round(self.min_review_seconds, 2),
            "max_review_seconds": round(self.max_review_seconds, 2),
            "rubber_stamp_count": self.rubber_stamp_count,
            "is_suspicious": self.is_suspicious,
        }


def check_rubber_stamping(
    actor_id: str,
    tasks: Iterable[ReviewTask],
    min_review_seconds: Optional[float] = None,
) -> ReviewerStats:
    """
    Analyze a reviewer's resolved tasks for rubber-stamping.

    Review time runs from when the reviewer opened the task (start_review)
    to its resolution, or from task creation when it was never opened.

    Args:
        actor_id: Reviewer to analyze
        tasks: Review tasks (tasks resolved by others are ignored)
        min_review_seconds: Faster decisions count as rubber stamps

    Returns:
        ReviewerStats with analysis results
    """
    threshold = settings.min_review_seconds if min_review_seconds is None else min_review_seconds
    reviewed = [t for t in tasks if t.resolved_by == actor_id and not t.is_open]

    approvals = sum(1 for t in reviewed if t.resolution == ReviewResolution.APPROVE)
    corrections = sum(1 for t in reviewed if t.resolution == ReviewResolution.CORRECT)
    rejections = sum(1 for t in reviewed if t.resolution == ReviewResolution.REJECT)

    durations = [s for s in (_review_seconds(t) for t in reviewed) if s is not None]
    rubber_stamps = sum(1 for s in durations if s < threshold)

    return ReviewerStats(
        actor_id=actor_id,
        total_reviews=len(reviewed),
        approvals=approvals,
        corrections=corrections,
        rejections=rejections,
        avg_review_seconds=sum(durations) / len(durations) if durations else 0.0,
        min_review_seconds=min(durations) if durations else 0.0,
        max_review_seconds=max(durations) if durations else 0.0,
        rubber_stamp_count=rubber_stamps,
    )
