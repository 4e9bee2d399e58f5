"""
Heuristic per-field extraction confidence.

Used when the extraction payload carries no per-field confidences of its
own. Every scorer returns 0-100.
"""

import re
from typing import Optional

from entitymatch.extraction.models import ExtractedMention
from entitymatch.normalization import COMPANY_SUFFIXES
from entitymatch.resolution.comparison import edit_similarity
from entitymatch.schemas import IdentityKind

KNOWN_POSITIONS = (
    "Project Manager",
    "Foreman",
    "Journeyman",
    "Apprentice",
    "Superintendent",
    "Laborer",
)

VALID_CATEGORIES = frozenset(
    {"delay", "safety", "material", "weather", "labor", "coordination", "hours", "rate", "other"}
)
VALID_SEVERITIES = frozenset({"low", "medium", "high", "critical"})

SAFETY_KEYWORDS = ("injury", "accident", "unsafe", "hazard", "danger")
ACTIONABLE_KEYWORDS = ("need", "require", "must", "waiting", "blocked", "issue")
GENERIC_COMPANY_TERMS = ("vendor", "supplier", "company", "delivery")

_UNUSUAL_NAME_CHARS = re.compile(r"[0-9!@#$%^&*()]")
_HOURS_MENTION = re.compile(r"\d+\s*(hours?|hrs?)\b", re.IGNORECASE)


def _clamp(score: float) -> float:
    return max(0.0, min(100.0, score))


def name_confidence(full_name: str, go_by_name: Optional[str] = None, source_text: str = "") -> float:
    """Penalize single, very short or symbol-laden names; reward repeated mentions."""
    full_name = full_name.strip()
    score = 100.0

    if " " not in full_name:
        score -= 20
    if len(full_name) < 3:
        score -= 30

    spoken = (go_by_name or full_name).strip().lower()
    if spoken and source_text.lower().count(spoken) > 1:
        score += 10

    if _UNUSUAL_NAME_CHARS.search(full_name):
        score -= 40

    return _clamp(score)


def position_confidence(
    position: str,
    source_text: str = "",
    known_positions: tuple[str, ...] = KNOWN_POSITIONS,
) -> float:
    """Known positions score high, near-misses lower, unknown ones low."""
    position = position.strip()
    if position in known_positions:
        return 95.0
    for known in known_positions:
        if edit_similarity(position.lower(), known.lower()) > 80:
            return 75.0
    if position and position.lower() in source_text.lower():
        return 60.0
    return 40.0


def hours_confidence(
    hours_worked: Optional[float],
    overtime_hours: Optional[float] = None,
    source_text: str = "",
) -> float:
    """Plausibility of reported hours, with a bonus for explicitly spoken hours."""
    hours = hours_worked or 0.0
    overtime = overtime_hours or 0.0
    score = 100.0

    if hours > 16 or hours < 0:
        score -= 50
    if overtime > 8 or overtime < 0:
        score -= 30

    total = hours + overtime
    if 12 < total <= 16:
        score -= 10

    if _HOURS_MENTION.search(source_text):
        score += 10

    return _clamp(score)


def company_name_confidence(company_name: str) -> float:
    """Legal suffixes raise confidence, generic placeholder names lower it."""
    company_name = company_name.strip()
    score = 100.0

    if len(company_name) < 3:
        score -= 40

    tokens = {t.strip(".,").lower() for t in company_name.split()}
    if tokens & COMPANY_SUFFIXES:
        score += 15

    lowered = company_name.lower()
    if any(term in lowered for term in GENERIC_COMPANY_TERMS):
        score -= 30

    return _clamp(score)


def delivery_detail_confidence(
    materials_delivered: Optional[str],
    delivery_time: Optional[str] = None,
    received_by: Optional[str] = None,
) -> float:
    score = 60.0
    if materials_delivered and len(materials_delivered.strip()) > 5:
        score += 20
    if delivery_time:
        score += 10
    if received_by:
        score += 10
    return _clamp(score)


def category_severity_confidence(
    category: Optional[str],
    severity: Optional[str],
    description: str = "",
) -> float:
    """Valid labels, and a category that agrees with safety wording in the description."""
    score = 100.0

    if category not in VALID_CATEGORIES:
        score -= 30
    if severity not in VALID_SEVERITIES:
        score -= 30

    lowered = description.lower()
    if any(keyword in lowered for keyword in SAFETY_KEYWORDS):
        score += 10 if category == "safety" else -20

    return _clamp(score)


def description_quality(description: str) -> float:
    score = 100.0
    length = len(description.strip())

    if length < 10:
        score -= 40
    if 30 < length < 500:
        score += 10

    lowered = description.lower()
    if any(keyword in lowered for keyword in ACTIONABLE_KEYWORDS):
        score += 10

    return _clamp(score)


def heuristic_field_confidence(extraction: ExtractedMention) -> dict[str, float]:
    """
    Score every field the extraction actually populated.

    Args:
        extraction: Validated extraction payload

    Returns:
        Mapping of field group name to 0-100 confidence
    """
    fields = extraction.extracted_fields
    source = extraction.source_text
    scores: dict[str, float] = {}

    if extraction.kind == IdentityKind.PERSON:
        scores["name"] = name_confidence(
            fields.full_name or extraction.raw_text, fields.go_by_name, source
        )
        if fields.role:
            scores["position"] = position_confidence(fields.role, source)
        if fields.hours_worked is not None or fields.overtime_hours is not None:
            scores["hours"] = hours_confidence(fields.hours_worked, fields.overtime_hours, source)
    else:
        scores["company_name"] = company_name_confidence(
            fields.company_name or extraction.raw_text
        )
        if fields.materials_delivered or fields.delivery_time or fields.received_by:
            scores["delivery_detail"] = delivery_detail_confidence(
                fields.materials_delivered, fields.delivery_time, fields.received_by
            )

    if extraction.category or extraction.severity:
        scores["category_severity"] = category_severity_confidence(
            extraction.category, extraction.severity, fields.description or ""
        )
    if fields.description:
        scores["description"] = description_quality(fields.description)

    return scores
