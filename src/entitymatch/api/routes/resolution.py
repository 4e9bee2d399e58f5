"""
Resolution API routes.

Provides endpoints for:
- Resolving a raw name to an identity
- Running extraction payloads through the full pipeline
- Resubmitting mentions sent back for correction
"""

from typing import Any, Optional
from uuid import UUID

from fastapi import APIRouter, Body, status
from pydantic import BaseModel, Field

from entitymatch.api.deps import Service
from entitymatch.schemas import IdentityKind, Mention, MentionContext, SuggestedMatch

router = APIRouter(prefix="/resolution", tags=["resolution"])


# ========== Request/Response Models ==========


class MatchRequest(BaseModel):
    """Request to resolve a raw name."""

    raw_text: str = Field(min_length=1)
    kind: IdentityKind = IdentityKind.PERSON
    context: Optional[MentionContext] = None


class MatchResponse(BaseModel):
    """Resolver decision for one mention."""

    identity_id: UUID
    confidence_tier: str
    match_method: str
    needs_review: bool
    matched_name: str
    match_score: Optional[float] = None
    created: bool
    suggested_matches: list[SuggestedMatch]
    reason: str


# ========== Endpoints ==========


@router.post("/match", response_model=MatchResponse)
def match_or_create(request: MatchRequest, service: Service):
    """
    Resolve a raw name to an existing identity or create a new one.

    No confidence scoring or review task is involved.
    """
    result = service.match_or_create(request.raw_text, context=request.context, kind=request.kind)
    return MatchResponse(**result.to_dict())


@router.post("/mentions", status_code=status.HTTP_201_CREATED)
def process_mention(service: Service, payload: dict[str, Any] = Body(...)) -> dict[str, Any]:
    """
    Process an extraction payload end to end.

    The payload is validated against the extraction schema; invalid
    payloads are rejected with 422.
    """
    return service.process_mention(payload).to_dict()


@router.get("/mentions/{mention_id}", response_model=Mention)
def get_mention(mention_id: UUID, service: Service):
    """Get a processed mention."""
    return service.get_mention(mention_id)


@router.post("/mentions/{mention_id}/resubmit", status_code=status.HTTP_201_CREATED)
def resubmit_mention(
    mention_id: UUID,
    service: Service,
    payload: dict[str, Any] = Body(...),
) -> dict[str, Any]:
    """Reprocess a mention that a reviewer sent back for correction."""
    return service.resubmit(mention_id, payload).to_dict()
