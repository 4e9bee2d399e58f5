"""
Identity administration API routes.

Provides endpoints for:
- Listing and viewing identities
- Explicit identity creation
- Profile updates
- Adding aliases
- Deactivating or terminating identities
"""

from datetime import date
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Query, status
from pydantic import BaseModel, ConfigDict, Field

from entitymatch.api.deps import Service
from entitymatch.schemas import Identity, IdentityKind, IdentityStatus

router = APIRouter(prefix="/identities", tags=["identities"])


# ========== Request/Response Models ==========


class CreateIdentityRequest(BaseModel):
    """Request to create an identity."""

    name: str = Field(min_length=1)
    kind: IdentityKind = IdentityKind.PERSON
    role: Optional[str] = None
    hourly_rate: Optional[float] = Field(None, ge=0.0)
    overtime_rate: Optional[float] = Field(None, ge=0.0)
    email: Optional[str] = None
    phone: Optional[str] = None
    hire_date: Optional[date] = None
    contact_name: Optional[str] = None
    vendor_type: Optional[str] = None


class UpdateIdentityRequest(BaseModel):
    """Profile fields to change. Fields left out are not touched."""

    model_config = ConfigDict(extra="forbid")

    role: Optional[str] = None
    hourly_rate: Optional[float] = Field(None, ge=0.0)
    overtime_rate: Optional[float] = Field(None, ge=0.0)
    email: Optional[str] = None
    phone: Optional[str] = None
    hire_date: Optional[date] = None
    contact_name: Optional[str] = None
    vendor_type: Optional[str] = None
    first_name: Optional[str] = None
    middle_name: Optional[str] = None
    last_name: Optional[str] = None
    needs_profile_completion: Optional[bool] = None


class AliasRequest(BaseModel):
    """Request to add an alias."""

    alias: str = Field(min_length=1)


class DeactivateRequest(BaseModel):
    """Request to deactivate an identity."""

    status: IdentityStatus = IdentityStatus.INACTIVE


# ========== Endpoints ==========


@router.get("", response_model=list[Identity])
def list_identities(
    service: Service,
    identity_status: Optional[IdentityStatus] = Query(None, alias="status"),
    kind: Optional[IdentityKind] = Query(None),
    needs_profile_completion: Optional[bool] = Query(None),
    project_id: Optional[str] = Query(None, description="Scope of most recent activity"),
):
    """List identities, e.g. auto-created ones still needing a profile."""
    return service.list_identities(
        status=identity_status,
        kind=kind,
        needs_profile_completion=needs_profile_completion,
        project_id=project_id,
    )


@router.post("", response_model=Identity, status_code=status.HTTP_201_CREATED)
def create_identity(request: CreateIdentityRequest, service: Service):
    fields = request.model_dump(exclude={"name", "kind"}, exclude_none=True)
    return service.create_identity(request.name, kind=request.kind, **fields)


@router.get("/{identity_id}", response_model=Identity)
def get_identity(identity_id: UUID, service: Service):
    return service.get_identity(identity_id)


@router.patch("/{identity_id}", response_model=Identity)
def update_identity(identity_id: UUID, request: UpdateIdentityRequest, service: Service):
    """Fill in or change profile fields. Aliases and status have their own endpoints."""
    return service.update_identity(identity_id, **request.model_dump(exclude_unset=True))


@router.post("/{identity_id}/aliases", response_model=Identity)
def add_alias(identity_id: UUID, request: AliasRequest, service: Service):
    """Append an alias. Aliases are never removed."""
    return service.add_alias(identity_id, request.alias)


@router.post("/{identity_id}/deactivate", response_model=Identity)
def deactivate_identity(identity_id: UUID, request: DeactivateRequest, service: Service):
    """Mark an identity inactive or terminated. Nothing is deleted."""
    return service.deactivate_identity(identity_id, status=request.status)
