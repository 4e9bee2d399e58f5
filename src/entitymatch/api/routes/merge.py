"""
Merge API routes.

Provides endpoints for:
- Previewing a merge (conflicts, aliases, collisions)
- Merging a duplicate identity into a primary one
- Listing interrupted merges
"""

from typing import Any
from uuid import UUID

from fastapi import APIRouter, Query
from pydantic import BaseModel

from entitymatch.api.deps import Service
from entitymatch.schemas import Identity

router = APIRouter(prefix="/merge", tags=["merge"])


# ========== Request/Response Models ==========


class MergeRequest(BaseModel):
    """Request to merge two identities."""

    primary_id: UUID  # Identity to keep
    duplicate_id: UUID  # Identity to terminate
    allow_collisions: bool = False


class IncompleteMerge(BaseModel):
    primary_id: UUID
    duplicate_id: UUID


# ========== Endpoints ==========


@router.get("/preview")
def preview_merge(
    service: Service,
    primary_id: UUID = Query(...),
    duplicate_id: UUID = Query(...),
) -> dict[str, Any]:
    """Show field conflicts, aliases to move and alias collisions. Writes nothing."""
    return service.suggest_merge(primary_id, duplicate_id).to_dict()


@router.post("", response_model=Identity)
def merge(request: MergeRequest, service: Service):
    """
    Merge duplicate into primary.

    Idempotent: merging an already-terminated duplicate returns the
    primary unchanged.
    """
    return service.merge(
        request.primary_id,
        request.duplicate_id,
        allow_collisions=request.allow_collisions,
    )


@router.get("/incomplete", response_model=list[IncompleteMerge])
def incomplete_merges(service: Service):
    """Merges interrupted before the duplicate was terminated."""
    return [
        IncompleteMerge(primary_id=primary_id, duplicate_id=duplicate_id)
        for primary_id, duplicate_id in service.find_incomplete_merges()
    ]
