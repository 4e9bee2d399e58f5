"""
Boundary with the upstream AI extraction step.

Main components:
- ExtractedMention: Validated extraction payload
- parse_extraction: Schema validation raising ExtractionSchemaError
"""

from .models import (
    CRITICAL_SEVERITY,
    PAY_IMPACTING_CATEGORIES,
    SAFETY_CATEGORY,
    ExtractedFields,
    ExtractedMention,
    parse_extraction,
)

__all__ = [
    "CRITICAL_SEVERITY",
    "PAY_IMPACTING_CATEGORIES",
    "SAFETY_CATEGORY",
    "ExtractedFields",
    "ExtractedMention",
    "parse_extraction",
]
