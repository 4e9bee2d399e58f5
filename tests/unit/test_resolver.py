"""
Unit tests for the six-layer resolver.
"""

from datetime import timedelta

import pytest

from entitymatch.errors import ConcurrentModificationError, EmptyNameError
from entitymatch.resolution import Resolver, ResolverConfig, update_with_retry
from entitymatch.schemas import (
    ConfidenceTier,
    Identity,
    IdentityKind,
    IdentityStatus,
    MatchMethod,
    MentionContext,
)
from entitymatch.store import InMemoryIdentityStore


class RacingStore(InMemoryIdentityStore):
    """Store where another writer sneaks in before the next few updates."""

    def __init__(self, races: int):
        super().__init__()
        self.races = races

    def conditional_update(self, identity_id, expected_version, mutation):
        if self.races > 0:
            self.races -= 1
            super().conditional_update(identity_id, expected_version, lambda record: None)
        return super().conditional_update(identity_id, expected_version, mutation)


class TestExactAndAlias:
    """Layers 1 and 2."""

    def test_exact_match(self, resolver, add_identity):
        robert = add_identity("Robert Smith")

        result = resolver.match_or_create("  robert   SMITH ")

        assert result.identity_id == robert.id
        assert result.match_method == MatchMethod.EXACT_NAME
        assert result.confidence_tier == ConfidenceTier.EXACT
        assert result.match_score == 100.0
        assert not result.needs_review
        assert not result.created

    def test_alias_match(self, resolver, add_identity):
        robert = add_identity("Robert Smith", aliases=["Bob Smith"])

        result = resolver.match_or_create("bob smith")

        assert result.identity_id == robert.id
        assert result.match_method == MatchMethod.ALIAS_MATCH
        assert result.confidence_tier == ConfidenceTier.HIGH
        assert not result.needs_review

    def test_exact_beats_alias(self, resolver, add_identity):
        add_identity("Robert Smith", aliases=["Bob Smith"])
        bob = add_identity("Bob Smith")

        result = resolver.match_or_create("Bob Smith")

        assert result.identity_id == bob.id
        assert result.match_method == MatchMethod.EXACT_NAME

    def test_sighting_is_recorded(self, resolver, add_identity, identity_store, now):
        robert = add_identity("Robert Smith")
        seen = now - timedelta(days=3)

        resolver.match_or_create(
            "Robert Smith", MentionContext(project_id="p9", timestamp=seen)
        )

        stored = identity_store.get(robert.id)
        assert stored.mention_count == 1
        assert stored.first_seen == seen
        assert stored.last_seen == seen
        assert stored.last_project_id == "p9"
        assert stored.version == robert.version + 1

    def test_older_sighting_keeps_latest_last_seen(self, resolver, add_identity, identity_store, now):
        robert = add_identity("Robert Smith", last_seen=now, last_project_id="p1")

        resolver.match_or_create(
            "Robert Smith", MentionContext(project_id="p0", timestamp=now - timedelta(days=10))
        )

        stored = identity_store.get(robert.id)
        assert stored.last_seen == now
        assert stored.last_project_id == "p1"

    def test_result_snapshot_is_pre_sighting(self, resolver, add_identity):
        add_identity("Robert Smith", mention_count=4)

        result = resolver.match_or_create("Robert Smith")

        assert result.matched_identity.mention_count == 4
        assert "matched_identity" not in result.to_dict()

    def test_vendor_suffixes_are_ignored(self, resolver, add_identity):
        abc = add_identity("ABC Supply Co.", kind=IdentityKind.VENDOR)

        result = resolver.match_or_create("abc supply inc", kind=IdentityKind.VENDOR)

        assert result.identity_id == abc.id
        assert result.match_method == MatchMethod.EXACT_NAME

    def test_kinds_do_not_cross(self, resolver, add_identity):
        abc = add_identity("ABC Supply", kind=IdentityKind.VENDOR)

        result = resolver.match_or_create("ABC Supply", kind=IdentityKind.PERSON)

        assert result.identity_id != abc.id
        assert result.created


class TestFuzzy:
    """Layer 3."""

    def test_typo_matches_but_needs_review(self, resolver, add_identity, identity_store):
        robert = add_identity("Robert Smith")

        result = resolver.match_or_create("Robrt Smith")

        assert result.identity_id == robert.id
        assert result.match_method == MatchMethod.FUZZY_MATCH
        assert result.confidence_tier == ConfidenceTier.MEDIUM
        assert result.needs_review
        assert result.match_score == pytest.approx(71.667, abs=0.01)
        # unconfirmed spellings are not remembered
        assert identity_store.get(robert.id).aliases == ["Robert Smith"]

    def test_high_score_adds_alias(self, resolver, add_identity, identity_store):
        brian = add_identity("Brian Lee Smith")

        result = resolver.match_or_create("Bryan Lee Smith")

        assert result.identity_id == brian.id
        assert result.match_method == MatchMethod.FUZZY_MATCH
        assert result.confidence_tier == ConfidenceTier.MEDIUM
        assert result.match_score == pytest.approx(88.0, abs=0.01)
        assert not result.needs_review
        assert identity_store.get(brian.id).aliases == ["Brian Lee Smith", "Bryan Lee Smith"]

    def test_learned_alias_is_then_an_alias_match(self, resolver, add_identity):
        brian = add_identity("Brian Lee Smith")
        resolver.match_or_create("Bryan Lee Smith")

        result = resolver.match_or_create("bryan lee smith")

        assert result.identity_id == brian.id
        assert result.match_method == MatchMethod.ALIAS_MATCH

    def test_high_tier_above_configured_score(self, identity_store, similarity, clock, add_identity):
        resolver = Resolver(
            identity_store,
            similarity=similarity,
            config=ResolverConfig(fuzzy_high_tier_score=80.0),
            clock=clock,
        )
        add_identity("Brian Lee Smith")

        result = resolver.match_or_create("Bryan Lee Smith")

        assert result.confidence_tier == ConfidenceTier.HIGH

    def test_distant_names_are_not_matched(self, resolver, add_identity):
        robert = add_identity("Robert Smith")

        # nickname alone is not enough: distance 4, score below threshold
        result = resolver.match_or_create("Bob Smith")

        assert result.identity_id != robert.id
        assert result.match_method == MatchMethod.AUTO_CREATED

    def test_inactive_identities_are_not_fuzzy_candidates(self, resolver, add_identity):
        robert = add_identity("Robert Smith", status=IdentityStatus.INACTIVE)

        result = resolver.match_or_create("Robrt Smith")

        assert result.identity_id != robert.id
        assert result.created


class TestAmbiguity:
    """Layers 4 and 5."""

    @pytest.fixture
    def lookalikes(self, add_identity, now):
        """An existing "Chris Anderson" would resolve at layer 1, so both lookalikes only fuzzy-match."""
        andersen = add_identity(
            "Chris Andersen", last_project_id="p1", last_seen=now - timedelta(days=5)
        )
        kris = add_identity(
            "Kris Anderson", last_project_id="p2", last_seen=now - timedelta(days=60)
        )
        return andersen, kris

    def test_multiple_matches_create_new_identity(self, resolver, lookalikes, identity_store):
        andersen, kris = lookalikes

        result = resolver.match_or_create("Chris Anderson")

        assert result.created
        assert result.match_method == MatchMethod.MULTIPLE_MATCHES
        assert result.confidence_tier == ConfidenceTier.NEW
        assert result.needs_review
        assert {s.identity_id for s in result.suggested_matches} == {andersen.id, kris.id}
        assert result.identity_id not in (andersen.id, kris.id)
        assert identity_store.get(result.identity_id).canonical_name == "Chris Anderson"

    def test_suggestions_are_best_first(self, resolver, lookalikes):
        result = resolver.match_or_create("Chris Anderson")

        scores = [s.score for s in result.suggested_matches]
        assert scores == sorted(scores, reverse=True)

    def test_project_context_narrows_to_one(self, resolver, lookalikes, identity_store):
        andersen, kris = lookalikes

        result = resolver.match_or_create("Chris Anderson", MentionContext(project_id="p2"))

        assert result.identity_id == kris.id
        assert result.match_method == MatchMethod.CONTEXT_MATCH
        assert result.confidence_tier == ConfidenceTier.MEDIUM
        assert result.needs_review
        assert len(result.suggested_matches) == 2
        assert identity_store.get(kris.id).aliases == ["Kris Anderson"]

    def test_time_window_narrows_to_one(self, resolver, lookalikes, now):
        andersen, _ = lookalikes

        result = resolver.match_or_create("Chris Anderson", MentionContext(timestamp=now))

        assert result.identity_id == andersen.id
        assert result.match_method == MatchMethod.CONTEXT_MATCH

    def test_context_matching_nobody_falls_through(self, resolver, lookalikes):
        result = resolver.match_or_create("Chris Anderson", MentionContext(project_id="p3"))

        assert result.match_method == MatchMethod.MULTIPLE_MATCHES
        assert result.created

    def test_suggestion_order_is_deterministic(self, similarity, clock):
        identities = [
            Identity(canonical_name="Chris Andersen", aliases=["Chris Andersen"]),
            Identity(canonical_name="Kris Anderson", aliases=["Kris Anderson"]),
        ]
        results = []
        for ordering in (identities, list(reversed(identities))):
            store = InMemoryIdentityStore()
            for identity in ordering:
                store.put(identity)
            resolver = Resolver(store, similarity=similarity, clock=clock)
            result = resolver.match_or_create("Chris Anderson")
            results.append([s.identity_id for s in result.suggested_matches])

        assert results[0] == results[1]


class TestCreateAndLifecycle:
    """Layer 6 and the handling of inactive and merged identities."""

    def test_auto_create(self, resolver, identity_store, now):
        result = resolver.match_or_create(
            "robert james smith", MentionContext(project_id="p1", report_id="r1")
        )

        created = identity_store.get(result.identity_id)
        assert result.created
        assert result.match_method == MatchMethod.AUTO_CREATED
        assert result.match_score is None
        assert not result.needs_review
        assert created.canonical_name == "Robert James Smith"
        assert created.aliases == ["Robert James Smith"]
        assert created.first_name == "Robert"
        assert created.middle_name == "James"
        assert created.last_name == "Smith"
        assert created.mention_count == 1
        assert created.first_seen == now
        assert created.last_project_id == "p1"
        assert created.first_report_id == "r1"
        assert created.needs_profile_completion

    def test_second_mention_matches_created_identity(self, resolver):
        first = resolver.match_or_create("Jane Doe")
        second = resolver.match_or_create("JANE DOE")

        assert second.identity_id == first.identity_id
        assert second.match_method == MatchMethod.EXACT_NAME

    @pytest.mark.parametrize("raw", ["", "   ", "..."])
    def test_empty_name_raises(self, resolver, raw):
        with pytest.raises(EmptyNameError):
            resolver.match_or_create(raw)

    def test_inactive_identity_still_matches_exactly(self, resolver, add_identity):
        jane = add_identity("Jane Doe", status=IdentityStatus.INACTIVE)

        result = resolver.match_or_create("Jane Doe")

        assert result.identity_id == jane.id

    def test_active_preferred_over_inactive(self, resolver, add_identity):
        add_identity("Jane Doe", status=IdentityStatus.INACTIVE)
        active = add_identity("Jane Doe")

        result = resolver.match_or_create("Jane Doe")

        assert result.identity_id == active.id

    def test_terminated_identity_redirects_to_survivor(self, resolver, add_identity):
        survivor = add_identity("Robert Smith")
        duplicate = add_identity(
            "Rob Smith", status=IdentityStatus.TERMINATED, merged_into=survivor.id
        )

        result = resolver.match_or_create("Rob Smith")

        assert result.identity_id == survivor.id
        assert result.identity_id != duplicate.id

    def test_terminated_identity_without_survivor_is_skipped(self, resolver, add_identity):
        gone = add_identity("Jane Doe", status=IdentityStatus.TERMINATED)

        result = resolver.match_or_create("Jane Doe")

        assert result.identity_id != gone.id
        assert result.created

    def test_aliases_only_grow(self, resolver, add_identity, identity_store):
        brian = add_identity("Brian Lee Smith", aliases=["B Smith"])

        for raw in ("Bryan Lee Smith", "Brian Lee Smith", "Brian Lee Smyth", "Robrt Smith"):
            before = identity_store.get(brian.id).aliases
            resolver.match_or_create(raw)
            after = identity_store.get(brian.id).aliases
            assert after[: len(before)] == before


class TestUpdateWithRetry:
    """Conditional writes under contention."""

    def test_retries_after_lost_race(self, add_identity):
        store = RacingStore(races=1)
        identity = store.put(add_identity("Robert Smith"))

        updated = update_with_retry(store, identity, lambda r: setattr(r, "role", "Foreman"))

        assert updated.role == "Foreman"
        assert updated.version == 2
        assert store.get(identity.id).role == "Foreman"

    def test_gives_up_after_max_attempts(self, add_identity):
        store = RacingStore(races=5)
        identity = store.put(add_identity("Robert Smith"))

        with pytest.raises(ConcurrentModificationError):
            update_with_retry(store, identity, lambda r: None, max_attempts=3)

    def test_stale_copy_is_refreshed(self, identity_store, add_identity):
        identity = add_identity("Robert Smith")
        identity_store.conditional_update(identity.id, 0, lambda r: setattr(r, "role", "Foreman"))

        updated = update_with_retry(identity_store, identity, lambda r: setattr(r, "phone", "555"))

        assert updated.role == "Foreman"
        assert updated.phone == "555"
