"""
Human review of low-confidence and ambiguous resolutions.

- workflow: Pure mention state machine
- queue: Review tasks, admin decisions and notifications
- stats: Queue statistics and rubber-stamp detection
"""

from entitymatch.review.workflow import (
    SideEffect,
    Transition,
    Trigger,
    is_terminal,
    transition,
    trigger_for_confidence,
)
from entitymatch.review.queue import (
    LoggingNotificationSink,
    NotificationSink,
    ReviewEvent,
    ReviewQueue,
)
from entitymatch.review.stats import (
    QueueStats,
    ReviewerStats,
    check_rubber_stamping,
    compute_queue_stats,
)

__all__ = [
    "SideEffect",
    "Transition",
    "Trigger",
    "is_terminal",
    "transition",
    "trigger_for_confidence",
    "LoggingNotificationSink",
    "NotificationSink",
    "ReviewEvent",
    "ReviewQueue",
    "QueueStats",
    "ReviewerStats",
    "check_rubber_stamping",
    "compute_queue_stats",
]
