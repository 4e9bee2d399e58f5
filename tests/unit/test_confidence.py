"""
Unit tests for field heuristics, anomaly detection and the confidence model.
"""

from datetime import timedelta

import pytest

from entitymatch.confidence import (
    AnomalyDetector,
    ConfidenceConfig,
    ConfidenceScorer,
)
from entitymatch.confidence.fields import (
    category_severity_confidence,
    company_name_confidence,
    delivery_detail_confidence,
    description_quality,
    heuristic_field_confidence,
    hours_confidence,
    name_confidence,
    position_confidence,
)
from entitymatch.extraction import ExtractedMention
from entitymatch.resolution import MatchResult
from entitymatch.schemas import (
    ConfidenceTier,
    Identity,
    IdentityKind,
    MatchMethod,
    ReviewPriority,
)


def mention(raw_text: str = "Robert Smith", **kwargs) -> ExtractedMention:
    fields = kwargs.pop("fields", {})
    return ExtractedMention(raw_text=raw_text, extracted_fields=fields, **kwargs)


def fuzzy_result(score: float) -> MatchResult:
    return MatchResult(
        identity_id=Identity(canonical_name="x").id,
        confidence_tier=ConfidenceTier.MEDIUM,
        match_method=MatchMethod.FUZZY_MATCH,
        needs_review=True,
        matched_name="x",
        match_score=score,
    )


class TestFieldHeuristics:
    """Tests for the per-field scorers."""

    def test_name(self):
        assert name_confidence("Robert Smith") == 100.0
        assert name_confidence("Bob") == 80.0
        assert name_confidence("Al") == 50.0
        assert name_confidence("R0bert Smith") == 60.0

    def test_repeated_name_bonus(self):
        assert name_confidence("Mike", source_text="Mike was late. Mike left early.") == 90.0

    def test_position(self):
        assert position_confidence("Foreman") == 95.0
        assert position_confidence("Forman") == 75.0
        assert position_confidence("Welder", "the welder came in") == 60.0
        assert position_confidence("Astronaut") == 40.0

    def test_hours(self):
        assert hours_confidence(8) == 100.0
        assert hours_confidence(18) == 50.0
        assert hours_confidence(8, 10) == 70.0
        assert hours_confidence(10, 4) == 90.0
        assert hours_confidence(10, 4, "he put in 14 hours") == 100.0

    def test_company_name(self):
        assert company_name_confidence("ABC Supply Co.") == 100.0
        assert company_name_confidence("Acme Supplier") == 70.0
        assert company_name_confidence("AB") == 60.0

    def test_delivery_detail(self):
        assert delivery_detail_confidence("lumber and nails", "9am", "Mike") == 100.0
        assert delivery_detail_confidence(None) == 60.0
        assert delivery_detail_confidence("rebar") == 60.0

    def test_category_severity(self):
        assert category_severity_confidence("hours", "low") == 100.0
        assert category_severity_confidence("bogus", "low") == 70.0
        assert category_severity_confidence("safety", "high", "worker injury") == 100.0
        assert category_severity_confidence("delay", "high", "hazard on site") == 80.0
        assert category_severity_confidence(None, None) == 40.0

    def test_description(self):
        assert description_quality("short") == 60.0
        assert description_quality("Waiting on the concrete delivery since morning") == 100.0

    def test_person_fields_scored(self):
        extraction = mention(fields={"role": "Foreman", "hours_worked": 8}, category="hours")

        scores = heuristic_field_confidence(extraction)

        assert set(scores) == {"name", "position", "hours", "category_severity"}

    def test_vendor_fields_scored(self):
        extraction = mention(
            "ABC Supply",
            kind=IdentityKind.VENDOR,
            fields={"materials_delivered": "lumber and nails", "description": "Delivered late"},
        )

        scores = heuristic_field_confidence(extraction)

        assert set(scores) == {"company_name", "delivery_detail", "description"}


class TestAnomalyDetector:
    """Tests for rule-based anomaly detection."""

    def test_plausible_mention(self):
        result = AnomalyDetector().score(mention(fields={"hours_worked": 8}))
        assert result.score == 0.0
        assert result.factors == []

    def test_rules_add_up(self):
        result = AnomalyDetector().score(mention(fields={"hours_worked": 18, "overtime_hours": 10}))
        assert result.score == 80.0
        assert result.factors == ["implausible_hours", "implausible_overtime"]

    def test_score_is_clamped(self):
        identity = Identity(canonical_name="Robert Smith", hourly_rate=40.0)
        extraction = mention(fields={"hours_worked": 18, "overtime_hours": 10, "hourly_rate": 70.0})

        result = AnomalyDetector().score(extraction, identity)

        assert result.score == 100.0
        assert "rate_deviation" in result.factors

    def test_small_rate_change_is_fine(self):
        identity = Identity(canonical_name="Robert Smith", hourly_rate=40.0)
        result = AnomalyDetector().score(mention(fields={"hourly_rate": 50.0}), identity)
        assert result.score == 0.0

    def test_upstream_score_overrides(self):
        result = AnomalyDetector().score(mention(anomaly_score=25, fields={"hours_worked": 18}))
        assert result.score == 25.0
        assert result.overridden


class TestConfidenceScorer:
    """Tests for the weighted confidence model."""

    def test_combine(self, scorer):
        assert scorer.combine(100, 100, 100, 0) == pytest.approx(100.0)
        assert scorer.combine(100, 50, 50, 0) == pytest.approx(70.0)
        assert scorer.combine(100, 100, 100, 100) == pytest.approx(85.0)

    def test_combine_is_clamped(self, scorer):
        assert scorer.combine(0, 0, 0, 100) == 0.0

    def test_upstream_field_confidence_is_averaged(self, scorer):
        value, fields = scorer.extraction_confidence(mention(field_confidence={"name": 80, "hours": 60}))
        assert value == pytest.approx(70.0)
        assert fields == {"name": 80, "hours": 60}

    def test_match_confidence(self, scorer):
        assert scorer.match_confidence(fuzzy_result(71.5)) == pytest.approx(71.5)

    def test_historical_neutral_for_new_identity(self, scorer):
        assert scorer.historical_confidence(None) == 50.0

    def test_historical_blend(self, scorer, now):
        identity = Identity(
            canonical_name="Robert Smith",
            mention_count=3,
            role="Foreman",
            last_seen=now - timedelta(days=10),
        )

        same = scorer.historical_confidence(identity, mention(fields={"role": "foreman"}))
        changed = scorer.historical_confidence(identity, mention(fields={"role": "Laborer"}))
        unknown = scorer.historical_confidence(identity, mention())

        assert same == pytest.approx(92.0)
        assert changed == pytest.approx(74.0)
        assert unknown == pytest.approx(83.0)

    @pytest.mark.parametrize(
        "days,expected",
        [(10, 71.0), (60, 65.0), (100, 59.0), (365, 53.0)],
    )
    def test_recency_decay(self, scorer, now, days, expected):
        identity = Identity(canonical_name="Robert Smith", last_seen=now - timedelta(days=days))
        assert scorer.historical_confidence(identity) == pytest.approx(expected)

    def test_frequency_caps_at_100(self, scorer):
        identity = Identity(canonical_name="Robert Smith", mention_count=50)
        # 0.4 * 100 + 0.3 * 70 + 0.3 * 50
        assert scorer.historical_confidence(identity) == pytest.approx(76.0)

    def test_new_identity_scores_70(self, scorer, resolver):
        result = resolver.match_or_create("Robert Smith")

        score = scorer.score(mention(), result)

        assert score.extraction == 100.0
        assert score.match == 50.0
        assert score.historical == 50.0
        assert score.overall == pytest.approx(70.0)

    def test_exact_match_on_known_identity(self, scorer, resolver, add_identity):
        add_identity("Robert Smith")
        result = resolver.match_or_create("Robert Smith")

        score = scorer.score(mention(), result)

        assert score.match == 100.0
        assert score.historical == pytest.approx(56.0)
        assert score.overall == pytest.approx(89.0)

    def test_anomaly_penalty(self, scorer, resolver):
        result = resolver.match_or_create("Robert Smith")

        score = scorer.score(mention(fields={"hours_worked": 18}), result)

        assert score.extraction == pytest.approx(75.0)
        assert score.anomaly == 50.0
        assert score.anomaly_factors == ["implausible_hours"]
        assert score.overall == pytest.approx(52.5)

    def test_overall_always_in_range(self, scorer, resolver):
        result = resolver.match_or_create("Robert Smith")
        extraction = mention(field_confidence={"name": 0}, anomaly_score=100)

        score = scorer.score(extraction, result)

        assert 0.0 <= score.overall <= 100.0

    def test_custom_weights(self, clock):
        scorer = ConfidenceScorer(
            ConfidenceConfig(extraction_weight=1.0, match_weight=0.0, historical_weight=0.0),
            clock=clock,
        )
        assert scorer.combine(40, 100, 100, 0) == pytest.approx(40.0)


class TestReviewDecision:
    """Tests for mapping scores onto review priorities."""

    def test_high_confidence_is_approved(self, scorer):
        decision = scorer.decide(90)
        assert not decision.requires_review
        assert decision.priority is None

    def test_threshold_is_inclusive(self, scorer):
        assert not scorer.decide(85).requires_review

    def test_forced_review_of_confident_match(self, scorer):
        decision = scorer.decide(90, forced_review=True)
        assert decision.requires_review
        assert decision.priority == ReviewPriority.LOW
        assert not decision.flag_for_correction

    def test_moderate_confidence(self, scorer):
        decision = scorer.decide(70)
        assert decision.requires_review
        assert decision.priority == ReviewPriority.MEDIUM
        assert not decision.flag_for_correction

    def test_pay_impacting_category_is_high(self, scorer):
        assert scorer.decide(70, mention(category="Hours")).priority == ReviewPriority.HIGH
        assert scorer.decide(70, mention(category="rate")).priority == ReviewPriority.HIGH

    def test_low_confidence_is_flagged(self, scorer):
        decision = scorer.decide(50)
        assert decision.priority == ReviewPriority.MEDIUM
        assert decision.flag_for_correction
        assert not scorer.decide(60).flag_for_correction

    def test_safety_is_always_critical(self, scorer):
        decision = scorer.decide(95, mention(category="safety"))
        assert decision.requires_review
        assert decision.priority == ReviewPriority.CRITICAL
        assert not decision.flag_for_correction

    def test_critical_severity_is_critical(self, scorer):
        decision = scorer.decide(40, mention(category="delay", severity="CRITICAL"))
        assert decision.priority == ReviewPriority.CRITICAL
        assert decision.flag_for_correction
