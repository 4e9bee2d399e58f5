"""
Multi-signal confidence scoring.

overall = 0.40 * extraction + 0.35 * match + 0.25 * historical
          - anomaly / 100 * max_penalty

clamped to [0, 100]. The review decision maps the overall score, the
category and severity of the mention, and whether the resolver forced
review, onto a review priority.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Optional

from entitymatch.config import Settings, settings as default_settings
from entitymatch.confidence.anomaly import AnomalyDetector
from entitymatch.confidence.fields import heuristic_field_confidence
from entitymatch.extraction.models import ExtractedMention
from entitymatch.resolution.resolver import MatchResult
from entitymatch.schemas import Identity, MatchMethod, ReviewPriority, utc_now

logger = logging.getLogger(__name__)


@dataclass
class ConfidenceConfig:
    """Weights and thresholds of the confidence model."""

    extraction_weight: float = 0.40
    match_weight: float = 0.35
    historical_weight: float = 0.25
    anomaly_max_penalty: float = 15.0
    auto_approve_threshold: float = 85.0
    needs_correction_threshold: float = 60.0
    new_identity_match_confidence: float = 50.0
    historical_neutral: float = 50.0

    @classmethod
    def from_settings(cls, settings: Settings) -> "ConfidenceConfig":
        return cls(
            anomaly_max_penalty=settings.anomaly_max_penalty,
            auto_approve_threshold=settings.auto_approve_threshold,
            needs_correction_threshold=settings.needs_correction_threshold,
            new_identity_match_confidence=settings.new_identity_match_confidence,
            historical_neutral=settings.historical_neutral,
        )


@dataclass
class ConfidenceScore:
    """Overall confidence with its component signals."""

    overall: float
    extraction: float
    match: float
    historical: float
    anomaly: float
    field_scores: dict[str, float] = field(default_factory=dict)
    anomaly_factors: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "overall": round(self.overall, 2),
            "extraction": round(self.extraction, 2),
            "match": round(self.match, 2),
            "historical": round(self.historical, 2),
            "anomaly": round(self.anomaly, 2),
            "field_scores": self.field_scores,
            "anomaly_factors": self.anomaly_factors,
        }


@dataclass
class ReviewDecision:
    """Whether a mention needs human review, and at what priority."""

    requires_review: bool
    priority: Optional[ReviewPriority] = None
    flag_for_correction: bool = False
    reason: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "requires_review": self.requires_review,
            "priority": self.priority.value if self.priority else None,
            "flag_for_correction": self.flag_for_correction,
            "reason": self.reason,
        }


def _clamp(value: float) -> float:
    return max(0.0, min(100.0, value))


def _days_between(earlier: datetime, later: datetime) -> float:
    if earlier.tzinfo is None:
        earlier = earlier.replace(tzinfo=timezone.utc)
    if later.tzinfo is None:
        later = later.replace(tzinfo=timezone.utc)
    return abs((later - earlier).total_seconds()) / 86400.0


class ConfidenceScorer:
    """
    Combines extraction, match, historical and anomaly signals.

    Missing inputs never fail scoring: they fall back to neutral values.
    """

    # (max age in days, recency score); older than the last bucket scores 40
    RECENCY_DECAY = ((30, 100.0), (90, 80.0), (180, 60.0))
    STALE_RECENCY = 40.0

    def __init__(
        self,
        config: Optional[ConfidenceConfig] = None,
        anomaly_detector: Optional[AnomalyDetector] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.config = config or ConfidenceConfig.from_settings(default_settings)
        self.anomaly_detector = anomaly_detector or AnomalyDetector()
        self.clock = clock

    def combine(
        self,
        extraction: float,
        match: float,
        historical: float,
        anomaly: float,
    ) -> float:
        """Weighted blend minus the anomaly penalty, clamped to [0, 100]."""
        base = (
            extraction * self.config.extraction_weight
            + match * self.config.match_weight
            + historical * self.config.historical_weight
        )
        penalty = anomaly / 100.0 * self.config.anomaly_max_penalty
        return _clamp(base - penalty)

    def extraction_confidence(self, extraction: ExtractedMention) -> tuple[float, dict[str, float]]:
        """
        Mean of the per-field confidences.

        Upstream confidences win; heuristic scorers fill in when none were sent.
        """
        field_scores = dict(extraction.field_confidence) or heuristic_field_confidence(extraction)
        if not field_scores:
            return self.config.historical_neutral, {}
        return sum(field_scores.values()) / len(field_scores), field_scores

    def match_confidence(self, result: MatchResult) -> float:
        if result.created:
            return self.config.new_identity_match_confidence
        if result.match_method in (MatchMethod.EXACT_NAME, MatchMethod.ALIAS_MATCH):
            return 100.0
        if result.match_score is None:
            return self.config.new_identity_match_confidence
        return _clamp(result.match_score)

    def historical_confidence(
        self,
        identity: Optional[Identity],
        extraction: Optional[ExtractedMention] = None,
        at: Optional[datetime] = None,
    ) -> float:
        """
        Blend of mention frequency, role stability and recency.

        Args:
            identity: Identity as it was before this mention, None if new
            extraction: Payload whose role is compared with the stored role
            at: Time of the mention (defaults to now)
        """
        if identity is None:
            return self.config.historical_neutral

        frequency = min(100.0, 50.0 + 10.0 * identity.mention_count)

        stored_role = identity.field_value("role")
        extracted_role = extraction.extracted_fields.role if extraction else None
        if stored_role and extracted_role:
            same = stored_role.strip().casefold() == extracted_role.strip().casefold()
            stability = 100.0 if same else 40.0
        else:
            stability = 70.0

        if identity.last_seen is None:
            recency = self.config.historical_neutral
        else:
            age = _days_between(identity.last_seen, at or self.clock())
            recency = self.STALE_RECENCY
            for max_days, score in self.RECENCY_DECAY:
                if age <= max_days:
                    recency = score
                    break

        return _clamp(0.4 * frequency + 0.3 * stability + 0.3 * recency)

    def score(
        self,
        extraction: ExtractedMention,
        result: MatchResult,
        identity: Optional[Identity] = None,
    ) -> ConfidenceScore:
        """
        Score a resolved mention.

        Args:
            extraction: Validated extraction payload
            result: Resolver output for the mention
            identity: Identity snapshot before this mention; defaults to
                the snapshot carried by the match result
        """
        if identity is None and not result.created:
            identity = result.matched_identity

        extraction_score, field_scores = self.extraction_confidence(extraction)
        match_score = self.match_confidence(result)
        historical = self.historical_confidence(
            None if result.created else identity,
            extraction,
            at=extraction.context.timestamp,
        )
        anomaly = self.anomaly_detector.score(extraction, identity)

        overall = self.combine(extraction_score, match_score, historical, anomaly.score)
        logger.debug(
            f"Confidence for '{extraction.raw_text}': overall={overall:.1f} "
            f"(extraction={extraction_score:.1f}, match={match_score:.1f}, "
            f"historical={historical:.1f}, anomaly={anomaly.score:.1f})"
        )
        return ConfidenceScore(
            overall=overall,
            extraction=extraction_score,
            match=match_score,
            historical=historical,
            anomaly=anomaly.score,
            field_scores=field_scores,
            anomaly_factors=anomaly.factors,
        )

    def decide(
        self,
        overall: float,
        extraction: Optional[ExtractedMention] = None,
        forced_review: bool = False,
    ) -> ReviewDecision:
        """
        Map a confidence score onto a review decision.

        Safety issues are always reviewed at critical priority. Otherwise
        scores at or above the auto-approve threshold pass unless the
        resolver forced review (then low priority); lower scores are
        reviewed at high priority for pay-impacting categories and medium
        otherwise, and flagged for correction below the correction threshold.
        """
        flag = overall < self.config.needs_correction_threshold

        if extraction is not None and extraction.is_safety:
            return ReviewDecision(
                requires_review=True,
                priority=ReviewPriority.CRITICAL,
                flag_for_correction=flag,
                reason="Safety issue or critical severity",
            )

        if overall >= self.config.auto_approve_threshold:
            if forced_review:
                return ReviewDecision(
                    requires_review=True,
                    priority=ReviewPriority.LOW,
                    reason="Ambiguous identity match",
                )
            return ReviewDecision(requires_review=False)

        pay_impacting = extraction is not None and extraction.is_pay_impacting
        priority = ReviewPriority.HIGH if pay_impacting else ReviewPriority.MEDIUM
        if flag:
            reason = f"Low confidence score: {overall:.1f}%"
        else:
            reason = f"Moderate confidence score: {overall:.1f}%"
        if forced_review:
            reason = f"{reason}; ambiguous identity match"
        return ReviewDecision(
            requires_review=True,
            priority=priority,
            flag_for_correction=flag,
            reason=reason,
        )
