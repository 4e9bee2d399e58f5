"""
Confidence scoring for resolved mentions.

- fields: Heuristic per-field extraction confidence
- anomaly: Rule-based anomaly score
- scorer: Overall confidence and review decision
"""

from entitymatch.confidence.anomaly import AnomalyDetector, AnomalyResult
from entitymatch.confidence.fields import heuristic_field_confidence
from entitymatch.confidence.scorer import (
    ConfidenceConfig,
    ConfidenceScore,
    ConfidenceScorer,
    ReviewDecision,
)

__all__ = [
    "AnomalyDetector",
    "AnomalyResult",
    "heuristic_field_confidence",
    "ConfidenceConfig",
    "ConfidenceScore",
    "ConfidenceScorer",
    "ReviewDecision",
]
