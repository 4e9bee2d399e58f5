"""
Anomaly scoring for extracted mentions.

Flags implausible hours and pay-rate jumps relative to the stored
identity. The score is 0-100 and feeds the overall confidence as a
penalty.
"""

import logging
from dataclasses import dataclass, field
from typing import Optional

from entitymatch.extraction.models import ExtractedMention
from entitymatch.schemas import Identity

logger = logging.getLogger(__name__)


@dataclass
class AnomalyResult:
    """Anomaly score with the reasons that contributed to it."""

    score: float  # 0 to 100
    factors: list[str] = field(default_factory=list)
    overridden: bool = False  # upstream supplied the score


class AnomalyDetector:
    """
    Rule-based anomaly detection.

    Rule weights add up and are clamped to 100.
    """

    MAX_DAILY_HOURS = 16.0
    MAX_OVERTIME_HOURS = 8.0
    MAX_RATE_DEVIATION = 0.5  # fraction of the stored rate

    RULE_WEIGHTS = {
        "implausible_hours": 50.0,
        "implausible_overtime": 30.0,
        "rate_deviation": 40.0,
    }

    def score(self, extraction: ExtractedMention, identity: Optional[Identity] = None) -> AnomalyResult:
        if extraction.anomaly_score is not None:
            return AnomalyResult(score=extraction.anomaly_score, overridden=True)

        fields = extraction.extracted_fields
        factors = []

        hours = fields.hours_worked
        if hours is not None and (hours > self.MAX_DAILY_HOURS or hours < 0):
            factors.append("implausible_hours")

        overtime = fields.overtime_hours
        if overtime is not None and (overtime > self.MAX_OVERTIME_HOURS or overtime < 0):
            factors.append("implausible_overtime")

        stored_rate = identity.hourly_rate if identity is not None else None
        if fields.hourly_rate is not None and stored_rate:
            deviation = abs(fields.hourly_rate - stored_rate) / stored_rate
            if deviation > self.MAX_RATE_DEVIATION:
                factors.append("rate_deviation")

        score = min(100.0, sum(self.RULE_WEIGHTS[f] for f in factors))
        if factors:
            logger.debug(f"Anomalies in '{extraction.raw_text}': {factors} (score={score})")
        return AnomalyResult(score=score, factors=factors)
