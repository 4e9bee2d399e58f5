"""
Schema of the payloads produced by the upstream AI extraction step.

Extraction output is untrusted: it is validated here before anything
reaches the resolver, and validation failures surface as
ExtractionSchemaError rather than as matching errors.
"""

import json
from typing import Any, Mapping, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from entitymatch.errors import ExtractionSchemaError
from entitymatch.schemas import IdentityKind, MentionContext

# Categories whose review tasks are escalated because they move money
PAY_IMPACTING_CATEGORIES = frozenset({"hours", "rate"})

SAFETY_CATEGORY = "safety"
CRITICAL_SEVERITY = "critical"


class ExtractedFields(BaseModel):
    """Structured fields the extractor pulled out of the source text."""

    model_config = ConfigDict(extra="allow")

    # Personnel
    full_name: Optional[str] = None
    go_by_name: Optional[str] = None
    role: Optional[str] = None  # position as spoken
    hours_worked: Optional[float] = None
    overtime_hours: Optional[float] = None
    hourly_rate: Optional[float] = Field(None, ge=0.0)
    email: Optional[str] = None
    phone: Optional[str] = None

    # Vendor
    company_name: Optional[str] = None
    contact_name: Optional[str] = None
    vendor_type: Optional[str] = None
    materials_delivered: Optional[str] = None
    delivery_time: Optional[str] = None
    received_by: Optional[str] = None

    # Constraint / issue attached to the mention
    description: Optional[str] = None


class ExtractedMention(BaseModel):
    """One mention as delivered by the extraction step."""

    raw_text: str = Field(min_length=1)
    kind: IdentityKind = IdentityKind.PERSON
    extracted_fields: ExtractedFields = Field(default_factory=ExtractedFields)

    # Per-field model confidence, 0-100
    field_confidence: dict[str, float] = Field(default_factory=dict)
    anomaly_score: Optional[float] = Field(None, ge=0.0, le=100.0)

    category: Optional[str] = None  # e.g. hours, rate, safety, delay
    severity: Optional[str] = None  # low, medium, high, critical
    source_text: str = ""  # transcript excerpt the mention came from

    context: MentionContext = Field(default_factory=MentionContext)

    @field_validator("field_confidence")
    @classmethod
    def validate_field_confidence(cls, v: dict[str, float]) -> dict[str, float]:
        for name, value in v.items():
            if not 0.0 <= value <= 100.0:
                raise ValueError(f"Confidence for '{name}' must be within 0-100, got {value}")
        return v

    @field_validator("category", "severity")
    @classmethod
    def lowercase_label(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return None
        v = v.strip().lower()
        return v or None

    @property
    def is_safety(self) -> bool:
        """Safety issues and critical severities are always escalated."""
        return self.category == SAFETY_CATEGORY or self.severity == CRITICAL_SEVERITY

    @property
    def is_pay_impacting(self) -> bool:
        return self.category in PAY_IMPACTING_CATEGORIES


def parse_extraction(
    payload: Union[ExtractedMention, Mapping[str, Any], str, bytes],
) -> ExtractedMention:
    """
    Validate an extraction payload.

    Accepts an already-built model, a mapping, or a JSON document.

    Raises:
        ExtractionSchemaError: if the payload does not match the schema
    """
    if isinstance(payload, ExtractedMention):
        return payload
    try:
        if isinstance(payload, (str, bytes)):
            return ExtractedMention.model_validate_json(payload)
        return ExtractedMention.model_validate(payload)
    except ValidationError as e:
        # ctx may carry exception objects; keep the error list JSON-safe
        errors = json.loads(e.json(include_url=False))
        raise ExtractionSchemaError(errors) from e
