"""
Unit tests for identity merges.
"""

from datetime import timedelta
from uuid import uuid4

import pytest

from entitymatch.errors import (
    AliasCollisionError,
    ConcurrentModificationError,
    InvalidMergeError,
    NotFoundError,
)
from entitymatch.lifecycle import MergeEngine
from entitymatch.schemas import Identity, IdentityKind, IdentityStatus
from entitymatch.store import InMemoryIdentityStore


class RacingStore(InMemoryIdentityStore):
    """Store where another writer commits first on the next few updates."""

    def __init__(self, races: int):
        super().__init__()
        self.races = races

    def conditional_update(self, identity_id, expected_version, mutation):
        if self.races > 0:
            self.races -= 1
            super().conditional_update(identity_id, expected_version, lambda record: None)
        return super().conditional_update(identity_id, expected_version, mutation)


class InterleavingStore(InMemoryIdentityStore):
    """Store that runs another writer just before the Nth conditional update."""

    def __init__(self, before_write: int):
        super().__init__()
        self.before_write = before_write
        self.writes = 0
        self.interleaved = None

    def conditional_update(self, identity_id, expected_version, mutation):
        self.writes += 1
        if self.writes == self.before_write and self.interleaved is not None:
            interleaved, self.interleaved = self.interleaved, None
            interleaved()
        return super().conditional_update(identity_id, expected_version, mutation)


@pytest.fixture
def pair(add_identity, now):
    primary = add_identity(
        "Robert Smith",
        email="rob@example.com",
        mention_count=5,
        first_seen=now - timedelta(days=20),
        last_seen=now - timedelta(days=2),
    )
    duplicate = add_identity(
        "Bob Smith",
        aliases=["Bobby Smith"],
        email="bob@example.com",
        phone="555-0100",
        mention_count=2,
        first_seen=now - timedelta(days=40),
        last_seen=now - timedelta(days=10),
    )
    return primary, duplicate


class TestSuggestMerge:
    """Tests for merge previews."""

    def test_preview(self, merge_engine, pair):
        primary, duplicate = pair

        preview = merge_engine.suggest_merge(primary.id, duplicate.id)

        assert preview.has_conflicts
        assert [c.field for c in preview.conflicts] == ["email"]
        assert preview.conflicts[0].primary_value == "rob@example.com"
        assert preview.fields_to_fill == {"phone": "555-0100"}
        assert preview.aliases_to_merge == ["Bob Smith", "Bobby Smith"]
        assert preview.alias_collisions == {}
        assert not preview.already_merged

    def test_preview_writes_nothing(self, merge_engine, identity_store, pair):
        primary, duplicate = pair

        merge_engine.suggest_merge(primary.id, duplicate.id)

        assert identity_store.get(primary.id).version == primary.version
        assert identity_store.get(duplicate.id).version == duplicate.version

    def test_case_only_differences_are_not_conflicts(self, merge_engine, add_identity):
        a = add_identity("Robert Smith", email="Rob@Example.com")
        b = add_identity("Rob Smith", email="rob@example.com ")

        assert not merge_engine.suggest_merge(a.id, b.id).has_conflicts

    def test_preview_to_dict(self, merge_engine, pair):
        primary, duplicate = pair

        data = merge_engine.suggest_merge(primary.id, duplicate.id).to_dict()

        assert data["primary"]["id"] == str(primary.id)
        assert data["conflicts"][0]["duplicate_value"] == "bob@example.com"

    def test_self_merge(self, merge_engine, pair):
        primary, _ = pair
        with pytest.raises(InvalidMergeError):
            merge_engine.suggest_merge(primary.id, primary.id)

    def test_unknown_identity(self, merge_engine, pair):
        primary, _ = pair
        with pytest.raises(NotFoundError):
            merge_engine.suggest_merge(primary.id, uuid4())


class TestMerge:
    """Tests for executing merges."""

    def test_merge(self, merge_engine, identity_store, pair, now):
        primary, duplicate = pair

        merged = merge_engine.merge(primary.id, duplicate.id)

        assert merged.aliases == ["Robert Smith", "Bob Smith", "Bobby Smith"]
        assert merged.email == "rob@example.com"
        assert merged.phone == "555-0100"
        assert merged.merged_from == [duplicate.id]
        assert merged.mention_count == 7
        assert merged.first_seen == now - timedelta(days=40)
        assert merged.last_seen == now - timedelta(days=2)

        terminated = identity_store.get(duplicate.id)
        assert terminated.status == IdentityStatus.TERMINATED
        assert terminated.merged_into == primary.id
        # nothing is removed from the duplicate
        assert terminated.aliases == ["Bob Smith", "Bobby Smith"]

    def test_merge_is_idempotent(self, merge_engine, identity_store, pair):
        primary, duplicate = pair
        first = merge_engine.merge(primary.id, duplicate.id)

        second = merge_engine.merge(primary.id, duplicate.id)

        assert second.version == first.version
        assert identity_store.get(primary.id).mention_count == 7

    def test_merged_aliases_resolve_to_primary(self, merge_engine, resolver, pair):
        primary, duplicate = pair
        merge_engine.merge(primary.id, duplicate.id)

        assert resolver.match_or_create("Bobby Smith").identity_id == primary.id
        assert resolver.match_or_create("Bob Smith").identity_id == primary.id

    def test_alias_collision(self, merge_engine, identity_store, pair, add_identity):
        primary, duplicate = pair
        other = add_identity("Bobby Smith")

        with pytest.raises(AliasCollisionError) as exc_info:
            merge_engine.merge(primary.id, duplicate.id)

        assert exc_info.value.collisions == {"Bobby Smith": [other.id]}
        assert identity_store.get(duplicate.id).status == IdentityStatus.ACTIVE
        assert identity_store.get(primary.id).merged_from == []

    def test_alias_collision_allowed(self, merge_engine, identity_store, pair, add_identity):
        primary, duplicate = pair
        add_identity("Bobby Smith")

        merge_engine.merge(primary.id, duplicate.id, allow_collisions=True)

        assert identity_store.get(duplicate.id).status == IdentityStatus.TERMINATED

    def test_terminated_primary(self, merge_engine, pair, add_identity):
        _, duplicate = pair
        gone = add_identity("Robert Smyth", status=IdentityStatus.TERMINATED)

        with pytest.raises(InvalidMergeError):
            merge_engine.merge(gone.id, duplicate.id)

    def test_kind_mismatch(self, merge_engine, pair, add_identity):
        primary, _ = pair
        vendor = add_identity("Smith Supply", kind=IdentityKind.VENDOR)

        with pytest.raises(InvalidMergeError):
            merge_engine.merge(primary.id, vendor.id)

    def test_opposite_merge_is_refused(self, merge_engine, identity_store, pair):
        primary, duplicate = pair
        merge_engine.merge(primary.id, duplicate.id)

        with pytest.raises(InvalidMergeError):
            merge_engine.merge(duplicate.id, primary.id)
        assert identity_store.get(primary.id).is_active


class TestIncompleteMerges:
    """Tests for detecting and finishing interrupted merges."""

    @pytest.fixture
    def interrupted(self, identity_store, pair):
        primary, duplicate = pair
        # Step 1 happened, step 2 did not
        identity_store.conditional_update(
            primary.id, primary.version, lambda r: r.merged_from.append(duplicate.id)
        )
        return primary, duplicate

    def test_detected(self, merge_engine, interrupted):
        primary, duplicate = interrupted
        assert merge_engine.find_incomplete_merges() == [(primary.id, duplicate.id)]

    def test_rerun_completes(self, merge_engine, identity_store, interrupted):
        primary, duplicate = interrupted

        merged = merge_engine.merge(primary.id, duplicate.id)

        assert identity_store.get(duplicate.id).status == IdentityStatus.TERMINATED
        assert merged.merged_from == [duplicate.id]
        assert merge_engine.find_incomplete_merges() == []

    def test_opposite_merge_refused_while_incomplete(self, merge_engine, interrupted):
        primary, duplicate = interrupted

        with pytest.raises(InvalidMergeError):
            merge_engine.merge(duplicate.id, primary.id)

    def test_completed_merges_are_not_reported(self, merge_engine, pair):
        primary, duplicate = pair
        merge_engine.merge(primary.id, duplicate.id)
        assert merge_engine.find_incomplete_merges() == []


class TestConcurrentMerges:
    """Tests for merges racing other writers."""

    def _store_with_pair(self, races):
        store = RacingStore(races)
        primary = store.put(Identity(canonical_name="Robert Smith", aliases=["Robert Smith"]))
        duplicate = store.put(Identity(canonical_name="Bob Smith", aliases=["Bob Smith"]))
        return store, primary, duplicate

    def test_lost_race_is_retried(self):
        store, primary, duplicate = self._store_with_pair(races=2)

        merged = MergeEngine(store, max_retries=3).merge(primary.id, duplicate.id)

        assert merged.merged_from == [duplicate.id]
        assert store.get(duplicate.id).merged_into == primary.id

    def test_gives_up_when_always_losing(self):
        store, primary, duplicate = self._store_with_pair(races=100)

        with pytest.raises(ConcurrentModificationError):
            MergeEngine(store, max_retries=3).merge(primary.id, duplicate.id)


class TestOppositeMerges:
    """Tests for merges of the same pair running in opposite directions."""

    def _setup(self, before_write):
        store = InterleavingStore(before_write)
        a = store.put(Identity(canonical_name="Robert Smith", aliases=["Robert Smith"], mention_count=5))
        b = store.put(Identity(canonical_name="Bob Smith", aliases=["Bob Smith"], mention_count=2))
        engine = MergeEngine(store, max_retries=3)
        outcomes = []

        def opposite():
            try:
                outcomes.append(engine.merge(b.id, a.id))
            except InvalidMergeError as e:
                outcomes.append(e)

        store.interleaved = opposite
        return store, engine, a, b, outcomes

    def test_opposite_merge_finishing_first_wins(self):
        """The opposite merge completes before this merge claims its duplicate."""
        store, engine, a, b, outcomes = self._setup(before_write=1)

        with pytest.raises(InvalidMergeError):
            engine.merge(a.id, b.id)

        assert outcomes[0].id == b.id
        assert store.get(a.id).merged_into == b.id
        survivor = store.get(b.id)
        assert survivor.is_active
        assert survivor.merged_from == [a.id]
        assert survivor.mention_count == 7
        assert engine.find_incomplete_merges() == []

    def test_claimed_duplicate_blocks_opposite_absorb(self):
        """Both claims land before either absorb; only one direction absorbs."""
        store, engine, a, b, outcomes = self._setup(before_write=2)

        merged = engine.merge(a.id, b.id)

        assert isinstance(outcomes[0], InvalidMergeError)
        assert merged.id == a.id
        assert merged.merged_from == [b.id]
        assert merged.mention_count == 7

        loser = store.get(b.id)
        assert loser.is_terminated
        assert loser.merged_into == a.id
        assert loser.merged_from == []
        assert loser.mention_count == 2
        assert store.get(a.id).merging_into is None
        assert engine.find_incomplete_merges() == []


class TestMergeClaims:
    """Tests for claims left behind by interrupted merges."""

    @pytest.fixture
    def claimed(self, identity_store, pair):
        primary, duplicate = pair
        # Claimed, then interrupted before the absorb
        identity_store.conditional_update(
            duplicate.id, duplicate.version, lambda r: setattr(r, "merging_into", primary.id)
        )
        return primary, duplicate

    def test_stale_claim_is_reported(self, merge_engine, claimed):
        primary, duplicate = claimed
        assert merge_engine.find_incomplete_merges() == [(primary.id, duplicate.id)]

    def test_rerun_completes_claimed_merge(self, merge_engine, identity_store, claimed):
        primary, duplicate = claimed

        merged = merge_engine.merge(primary.id, duplicate.id)

        terminated = identity_store.get(duplicate.id)
        assert terminated.merged_into == primary.id
        assert terminated.merging_into is None
        assert merged.mention_count == 7
        assert merge_engine.find_incomplete_merges() == []

    def test_opposite_merge_is_refused_and_released(self, merge_engine, identity_store, claimed):
        primary, duplicate = claimed

        with pytest.raises(InvalidMergeError):
            merge_engine.merge(duplicate.id, primary.id)

        assert identity_store.get(primary.id).merging_into is None
        assert identity_store.get(primary.id).is_active
        assert identity_store.get(duplicate.id).merged_from == []

    def test_claim_by_third_identity(self, merge_engine, identity_store, claimed, add_identity):
        _, duplicate = claimed
        other = add_identity("Roberto Smith")

        with pytest.raises(InvalidMergeError):
            merge_engine.merge(other.id, duplicate.id)

        assert identity_store.get(other.id).merged_from == []
