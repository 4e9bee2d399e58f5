"""
Pydantic models for identities, mentions and review tasks.

These are the records kept in the identity and review stores. Matching
results and merge previews live next to the code that produces them.
"""

from datetime import date, datetime, timezone
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field


def utc_now() -> datetime:
    """Default clock: timezone-aware UTC now."""
    return datetime.now(timezone.utc)


class IdentityKind(str, Enum):
    """What kind of real-world entity an identity represents."""

    PERSON = "person"
    VENDOR = "vendor"


class IdentityStatus(str, Enum):
    """Lifecycle status of an identity. Nothing is ever deleted."""

    ACTIVE = "active"
    INACTIVE = "inactive"
    TERMINATED = "terminated"


class ConfidenceTier(str, Enum):
    """Categorical summary of match certainty."""

    EXACT = "exact"
    HIGH = "high"
    MEDIUM = "medium"
    NEW = "new"


class MatchMethod(str, Enum):
    """Which resolver layer produced a match."""

    EXACT_NAME = "exact_name"
    ALIAS_MATCH = "alias_match"
    FUZZY_MATCH = "fuzzy_match"
    CONTEXT_MATCH = "context_match"
    MULTIPLE_MATCHES = "multiple_matches"
    AUTO_CREATED = "auto_created"


class MentionState(str, Enum):
    """Review workflow states of a mention."""

    PENDING_EXTRACTION = "pending_extraction"
    EXTRACTED = "extracted"
    PENDING_REVIEW = "pending_review"
    APPROVED = "approved"
    NEEDS_CORRECTION = "needs_correction"
    REJECTED = "rejected"


class ReviewPriority(str, Enum):
    """Priority of a review task."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        """Numeric rank, higher is more urgent."""
        return _PRIORITY_RANK[self]


_PRIORITY_RANK = {
    ReviewPriority.LOW: 0,
    ReviewPriority.MEDIUM: 1,
    ReviewPriority.HIGH: 2,
    ReviewPriority.CRITICAL: 3,
}


class ReviewTaskStatus(str, Enum):
    """Status of a review task."""

    OPEN = "open"
    RESOLVED = "resolved"


class ReviewResolution(str, Enum):
    """Admin decision closing a review task."""

    APPROVE = "approve"
    CORRECT = "correct"
    REJECT = "reject"


# Optional structured fields: conflict-checked and blank-filled by merges.
OPTIONAL_FIELDS = (
    "email",
    "phone",
    "hire_date",
    "hourly_rate",
    "overtime_rate",
    "role",
    "contact_name",
    "vendor_type",
)

# Fields an auto-created identity needs before its profile is complete
PROFILE_FIELDS = {
    IdentityKind.PERSON: ("role", "hourly_rate"),
    IdentityKind.VENDOR: ("vendor_type",),
}


class SuggestedMatch(BaseModel):
    """An alternate candidate identity attached to an ambiguous resolution."""

    identity_id: UUID
    name: str
    score: float = Field(ge=0.0, le=100.0)
    edit_distance: int = Field(ge=0)
    reason: str = ""


class MentionContext(BaseModel):
    """Optional context accompanying a mention."""

    project_id: Optional[str] = None  # entity scope for Layer 4
    report_id: Optional[str] = None
    timestamp: Optional[datetime] = None  # time hint


class Identity(BaseModel):
    """A canonical person or vendor record."""

    id: UUID = Field(default_factory=uuid4)
    kind: IdentityKind = IdentityKind.PERSON
    canonical_name: str
    aliases: list[str] = Field(default_factory=list)
    status: IdentityStatus = IdentityStatus.ACTIVE

    # Activity
    first_seen: Optional[datetime] = None
    last_seen: Optional[datetime] = None
    mention_count: int = 0
    last_project_id: Optional[str] = None
    first_report_id: Optional[str] = None

    # Parsed name parts (persons)
    first_name: Optional[str] = None
    middle_name: Optional[str] = None
    last_name: Optional[str] = None

    # Optional structured fields, often partially populated
    role: Optional[str] = None
    hourly_rate: Optional[float] = None
    overtime_rate: Optional[float] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    hire_date: Optional[date] = None
    contact_name: Optional[str] = None
    vendor_type: Optional[str] = None

    needs_profile_completion: bool = False

    # Optimistic concurrency and merge bookkeeping
    version: int = 0
    merged_into: Optional[UUID] = None
    merging_into: Optional[UUID] = None  # claim held by an unfinished merge
    merged_from: list[UUID] = Field(default_factory=list)

    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    @property
    def is_active(self) -> bool:
        return self.status == IdentityStatus.ACTIVE

    @property
    def is_terminated(self) -> bool:
        return self.status == IdentityStatus.TERMINATED

    @property
    def has_complete_profile(self) -> bool:
        return all(self.field_value(name) is not None for name in PROFILE_FIELDS[self.kind])

    def field_value(self, name: str) -> Any:
        """Value of an optional field, with empty strings treated as blank."""
        value = getattr(self, name)
        if isinstance(value, str) and not value.strip():
            return None
        return value


class Mention(BaseModel):
    """A single input event naming a person or vendor."""

    id: UUID = Field(default_factory=uuid4)
    raw_text: str
    kind: IdentityKind = IdentityKind.PERSON
    context: MentionContext = Field(default_factory=MentionContext)

    # Resolution
    identity_id: Optional[UUID] = None
    confidence: Optional[float] = Field(None, ge=0.0, le=100.0)
    confidence_tier: Optional[ConfidenceTier] = None
    match_method: Optional[MatchMethod] = None
    needs_review: bool = False
    suggested_matches: list[SuggestedMatch] = Field(default_factory=list)

    # Workflow
    state: MentionState = MentionState.PENDING_EXTRACTION
    flagged_for_correction: bool = False
    previous_mention_id: Optional[UUID] = None

    created_at: datetime = Field(default_factory=utc_now)
    resolved_at: Optional[datetime] = None


class ReviewTask(BaseModel):
    """A human review item for a low-confidence or ambiguous resolution."""

    id: UUID = Field(default_factory=uuid4)
    mention_id: UUID
    identity_id: Optional[UUID] = None
    reason: str
    priority: ReviewPriority = ReviewPriority.MEDIUM
    status: ReviewTaskStatus = ReviewTaskStatus.OPEN
    resolution: Optional[ReviewResolution] = None
    confidence: Optional[float] = Field(None, ge=0.0, le=100.0)
    suggested_matches: list[SuggestedMatch] = Field(default_factory=list)

    created_at: datetime = Field(default_factory=utc_now)
    opened_at: Optional[datetime] = None  # when the current reviewer started
    opened_by: Optional[str] = None
    resolved_at: Optional[datetime] = None
    resolved_by: Optional[str] = None
    notes: Optional[str] = None

    @property
    def is_open(self) -> bool:
        return self.status == ReviewTaskStatus.OPEN
