"""
Review queue API routes.

Provides endpoints for:
- Listing review tasks by priority and age
- Opening tasks for review
- Resolving tasks (approve, correct, reject)
- Queue and reviewer statistics
"""

from typing import Any, Optional
from uuid import UUID

from fastapi import APIRouter, Query
from pydantic import BaseModel

from entitymatch.api.deps import ActorId, Service
from entitymatch.schemas import ReviewPriority, ReviewResolution, ReviewTask, ReviewTaskStatus

router = APIRouter(prefix="/review", tags=["review"])


# ========== Request/Response Models ==========


class ResolveTaskRequest(BaseModel):
    """Admin decision on a review task."""

    decision: ReviewResolution
    corrected_identity_id: Optional[UUID] = None
    notes: Optional[str] = None


# ========== Endpoints ==========


@router.get("/tasks", response_model=list[ReviewTask])
def list_tasks(
    service: Service,
    priority: Optional[ReviewPriority] = Query(None, description="Filter by priority"),
    task_status: Optional[ReviewTaskStatus] = Query(None, alias="status", description="Filter by status"),
    limit: Optional[int] = Query(None, ge=1, le=500),
):
    """Get review tasks, most urgent and oldest first."""
    return service.list_tasks(priority=priority, status=task_status, limit=limit)


@router.get("/tasks/{task_id}", response_model=ReviewTask)
def get_task(task_id: UUID, service: Service):
    return service.get_task(task_id)


@router.post("/tasks/{task_id}/open", response_model=ReviewTask)
def start_review(task_id: UUID, service: Service, actor_id: ActorId):
    """Mark the task as opened by the calling reviewer; review time counts from here."""
    return service.start_review(task_id, actor_id)


@router.post("/tasks/{task_id}/resolve", response_model=ReviewTask)
def resolve_task(task_id: UUID, request: ResolveTaskRequest, service: Service, actor_id: ActorId):
    """
    Close a review task.

    Approving records the mention text as an alias of the identity; a
    correction with corrected_identity_id reassigns the mention.
    """
    return service.resolve_task(
        task_id,
        request.decision,
        actor_id,
        corrected_identity_id=request.corrected_identity_id,
        notes=request.notes,
    )


@router.get("/stats")
def queue_stats(service: Service) -> dict[str, Any]:
    """Open tasks per priority, resolutions and approval rate."""
    return service.review_stats().to_dict()


@router.get("/stats/reviewers/{actor_id}")
def reviewer_stats(actor_id: str, service: Service) -> dict[str, Any]:
    """Review pattern of one reviewer, with rubber-stamp detection."""
    return service.reviewer_stats(actor_id).to_dict()
