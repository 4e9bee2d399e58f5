"""
Main entity resolution pipeline.

Resolves a raw mention to an identity through six short-circuiting layers:
1. Exact: normalized name equals a canonical name
2. Alias: normalized name equals a known alias
3. Fuzzy: exactly one active candidate qualifies on score OR edit distance
4. Context: several qualify, the mention's scope narrows them to one
5. Multiple: several qualify and stay ambiguous, create new and flag review
6. Auto-create: nothing qualifies, create a new identity
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Optional
from uuid import UUID

from entitymatch.config import Settings, settings as default_settings
from entitymatch.errors import ConcurrentModificationError
from entitymatch.normalization import NormalizedName, merge_aliases, normalize, parse_person_name
from entitymatch.resolution.comparison import CandidateScore, ScoreWeights, SimilarityEngine
from entitymatch.nicknames import NicknameTable
from entitymatch.schemas import (
    ConfidenceTier,
    Identity,
    IdentityKind,
    IdentityStatus,
    MatchMethod,
    MentionContext,
    SuggestedMatch,
    utc_now,
)
from entitymatch.store.base import IdentityStore, Mutation

logger = logging.getLogger(__name__)

# Bounded redirect chain when following merged identities
MAX_MERGE_HOPS = 10


@dataclass
class ResolverConfig:
    """Tunable constants of the fuzzy and context layers."""

    fuzzy_score_threshold: float = 85.0
    fuzzy_max_edit_distance: int = 2
    fuzzy_high_tier_score: float = 90.0
    fuzzy_review_below: float = 85.0
    context_window_days: int = 30
    max_write_retries: int = 3

    @classmethod
    def from_settings(cls, settings: Settings) -> "ResolverConfig":
        return cls(
            fuzzy_score_threshold=settings.fuzzy_score_threshold,
            fuzzy_max_edit_distance=settings.fuzzy_max_edit_distance,
            fuzzy_high_tier_score=settings.fuzzy_high_tier_score,
            fuzzy_review_below=settings.fuzzy_review_below,
            context_window_days=settings.context_window_days,
            max_write_retries=settings.merge_max_retries,
        )


@dataclass
class MatchResult:
    """Result of resolving a single mention."""

    identity_id: UUID
    confidence_tier: ConfidenceTier
    match_method: MatchMethod
    needs_review: bool
    matched_name: str
    match_score: Optional[float] = None  # None for newly created identities
    created: bool = False
    suggested_matches: list[SuggestedMatch] = field(default_factory=list)
    reason: str = ""
    # Snapshot of the matched identity before this sighting was recorded
    matched_identity: Optional[Identity] = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "identity_id": str(self.identity_id),
            "confidence_tier": self.confidence_tier.value,
            "match_method": self.match_method.value,
            "needs_review": self.needs_review,
            "matched_name": self.matched_name,
            "match_score": self.match_score,
            "created": self.created,
            "suggested_matches": [s.model_dump(mode="json") for s in self.suggested_matches],
            "reason": self.reason,
        }


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _suggestion(candidate: CandidateScore) -> SuggestedMatch:
    return SuggestedMatch(
        identity_id=candidate.identity.id,
        name=candidate.identity.canonical_name,
        score=round(min(max(candidate.score, 0.0), 100.0), 2),
        edit_distance=candidate.distance,
        reason=f"{candidate.score:.1f}% name similarity, edit distance {candidate.distance}",
    )


class Resolver:
    """
    Six-layer mention resolver.

    Stateless: every read and write goes through the injected identity
    store, so independent mentions can be resolved in parallel.
    """

    def __init__(
        self,
        store: IdentityStore,
        similarity: Optional[SimilarityEngine] = None,
        config: Optional[ResolverConfig] = None,
        clock: Callable[[], datetime] = utc_now,
        nicknames: Optional[NicknameTable] = None,
    ):
        self.store = store
        self.config = config or ResolverConfig.from_settings(default_settings)
        self.similarity = similarity or SimilarityEngine(
            nicknames=nicknames or NicknameTable.default(),
            weights=ScoreWeights.from_settings(default_settings),
        )
        self.clock = clock

    def match_or_create(
        self,
        raw_text: str,
        context: Optional[MentionContext] = None,
        kind: IdentityKind = IdentityKind.PERSON,
    ) -> MatchResult:
        """
        Resolve a raw mention to an identity, creating one if needed.

        Raises:
            EmptyNameError: if the mention has no usable name
        """
        name = normalize(raw_text, kind)
        context = context or MentionContext()
        logger.debug(f"Resolving {kind.value} mention '{raw_text}' (key='{name.key}')")

        # Layer 1: exact canonical name
        identity = self._pick(self.store.find_by_canonical_name(name.key, kind))
        if identity is not None:
            self._record_sighting(identity, name, context, add_alias=True)
            logger.info(f"Layer 1 exact match: '{raw_text}' -> {identity.canonical_name}")
            return MatchResult(
                identity_id=identity.id,
                confidence_tier=ConfidenceTier.EXACT,
                match_method=MatchMethod.EXACT_NAME,
                needs_review=False,
                matched_name=identity.canonical_name,
                match_score=100.0,
                reason="Normalized name equals canonical name",
                matched_identity=identity,
            )

        # Layer 2: known alias
        identity = self._pick(self.store.find_by_alias(name.key, kind))
        if identity is not None:
            self._record_sighting(identity, name, context, add_alias=True)
            logger.info(f"Layer 2 alias match: '{raw_text}' -> {identity.canonical_name}")
            return MatchResult(
                identity_id=identity.id,
                confidence_tier=ConfidenceTier.HIGH,
                match_method=MatchMethod.ALIAS_MATCH,
                needs_review=False,
                matched_name=identity.canonical_name,
                match_score=100.0,
                reason="Normalized name equals a known alias",
                matched_identity=identity,
            )

        # Layer 3: fuzzy over active identities
        ranked = self.similarity.rank(name.key, self.store.find_active_candidates(kind))
        qualifying = [c for c in ranked if self._qualifies(c)]

        if len(qualifying) == 1:
            best = qualifying[0]
            needs_review = best.score < self.config.fuzzy_review_below
            tier = (
                ConfidenceTier.HIGH
                if best.score > self.config.fuzzy_high_tier_score
                else ConfidenceTier.MEDIUM
            )
            self._record_sighting(best.identity, name, context, add_alias=not needs_review)
            logger.info(
                f"Layer 3 fuzzy match: '{raw_text}' -> {best.identity.canonical_name} "
                f"(score={best.score:.1f}, distance={best.distance})"
            )
            return MatchResult(
                identity_id=best.identity.id,
                confidence_tier=tier,
                match_method=MatchMethod.FUZZY_MATCH,
                needs_review=needs_review,
                matched_name=best.identity.canonical_name,
                match_score=best.score,
                reason=f"Score {best.score:.1f}, edit distance {best.distance}",
                matched_identity=best.identity,
            )

        suggestions = [_suggestion(c) for c in qualifying]

        # Layer 4: context disambiguation
        if len(qualifying) > 1 and self._has_context(context):
            narrowed = [c for c in qualifying if self._in_context(c.identity, context)]
            if len(narrowed) == 1:
                best = narrowed[0]
                self._record_sighting(best.identity, name, context, add_alias=False)
                logger.info(
                    f"Layer 4 context match: '{raw_text}' -> {best.identity.canonical_name} "
                    f"({len(qualifying)} candidates, project={context.project_id})"
                )
                return MatchResult(
                    identity_id=best.identity.id,
                    confidence_tier=ConfidenceTier.MEDIUM,
                    match_method=MatchMethod.CONTEXT_MATCH,
                    needs_review=True,
                    matched_name=best.identity.canonical_name,
                    match_score=best.score,
                    suggested_matches=suggestions,
                    reason=f"{len(qualifying)} fuzzy candidates, one active in context",
                    matched_identity=best.identity,
                )

        # Layers 5 and 6: create a new identity
        created = self._create_identity(name, context, kind)
        if qualifying:
            logger.warning(
                f"Layer 5 multiple matches for '{raw_text}': "
                f"{[c.identity.canonical_name for c in qualifying]}, created {created.id}"
            )
            return MatchResult(
                identity_id=created.id,
                confidence_tier=ConfidenceTier.NEW,
                match_method=MatchMethod.MULTIPLE_MATCHES,
                needs_review=True,
                matched_name=created.canonical_name,
                created=True,
                suggested_matches=suggestions,
                reason=f"{len(qualifying)} candidates qualify, none could be chosen",
            )

        logger.info(f"Layer 6 auto-created '{created.canonical_name}' ({created.id})")
        return MatchResult(
            identity_id=created.id,
            confidence_tier=ConfidenceTier.NEW,
            match_method=MatchMethod.AUTO_CREATED,
            needs_review=False,
            matched_name=created.canonical_name,
            created=True,
            reason="No matching candidates found",
        )

    def _qualifies(self, candidate: CandidateScore) -> bool:
        # Either signal qualifies: the score catches phonetic and structural
        # variants, the distance catches near-identical short strings.
        return (
            candidate.score >= self.config.fuzzy_score_threshold
            or candidate.distance <= self.config.fuzzy_max_edit_distance
        )

    def _pick(self, identities: list[Identity]) -> Optional[Identity]:
        """
        Choose the identity an exact or alias hit refers to.

        Active beats inactive; terminated identities only count through the
        survivor they were merged into.
        """
        live = [i for i in identities if i.status != IdentityStatus.TERMINATED]
        if not live:
            for identity in identities:
                survivor = self._follow_merge(identity)
                if survivor is not None:
                    live.append(survivor)
        if not live:
            return None
        live.sort(
            key=lambda i: (i.status != IdentityStatus.ACTIVE, _as_utc(i.created_at), str(i.id))
        )
        return live[0]

    def _follow_merge(self, identity: Identity) -> Optional[Identity]:
        seen = {identity.id}
        current = identity
        for _ in range(MAX_MERGE_HOPS):
            if current.merged_into is None or current.merged_into in seen:
                return None
            current = self.store.get(current.merged_into)
            if current.status != IdentityStatus.TERMINATED:
                return current
            seen.add(current.id)
        return None

    def _has_context(self, context: MentionContext) -> bool:
        return context.project_id is not None or context.timestamp is not None

    def _in_context(self, identity: Identity, context: MentionContext) -> bool:
        if context.project_id is not None and identity.last_project_id != context.project_id:
            return False
        if context.timestamp is not None:
            if identity.last_seen is None:
                return False
            gap = abs(_as_utc(context.timestamp) - _as_utc(identity.last_seen))
            if gap.days > self.config.context_window_days:
                return False
        return True

    def _seen_at(self, context: MentionContext) -> datetime:
        return _as_utc(context.timestamp) if context.timestamp else self.clock()

    def _record_sighting(
        self,
        identity: Identity,
        name: NormalizedName,
        context: MentionContext,
        add_alias: bool,
    ) -> Identity:
        """Bump activity counters and, for confirmed matches, remember the alias."""
        seen_at = self._seen_at(context)

        def mutate(record: Identity) -> None:
            if add_alias:
                record.aliases = merge_aliases(record.aliases, [name.display], record.kind)
            record.mention_count += 1
            if record.first_seen is None:
                record.first_seen = seen_at
            if record.last_seen is None or _as_utc(record.last_seen) <= seen_at:
                record.last_seen = seen_at
                if context.project_id is not None:
                    record.last_project_id = context.project_id

        return update_with_retry(self.store, identity, mutate, self.config.max_write_retries)

    def _create_identity(
        self,
        name: NormalizedName,
        context: MentionContext,
        kind: IdentityKind,
    ) -> Identity:
        seen_at = self._seen_at(context)
        identity = Identity(
            kind=kind,
            canonical_name=name.display,
            aliases=[name.display],
            first_seen=seen_at,
            last_seen=seen_at,
            mention_count=1,
            last_project_id=context.project_id,
            first_report_id=context.report_id,
            needs_profile_completion=True,
        )
        if kind == IdentityKind.PERSON:
            parts = parse_person_name(name.display)
            identity.first_name = parts.first_name
            identity.middle_name = parts.middle_name
            identity.last_name = parts.last_name
        return self.store.put(identity)


def update_with_retry(
    store: IdentityStore,
    identity: Identity,
    mutation: Mutation,
    max_attempts: int = 3,
) -> Identity:
    """
    Conditionally update an identity, re-reading it after each lost race.

    Only for idempotent or commutative mutations (alias union, counters).

    Raises:
        ConcurrentModificationError: if every attempt lost a race
    """
    current = identity
    for attempt in range(1, max_attempts + 1):
        try:
            return store.conditional_update(current.id, current.version, mutation)
        except ConcurrentModificationError as e:
            if attempt == max_attempts:
                raise
            logger.debug(f"Retrying update of {current.id} after conflict: {e}")
            current = store.get(current.id)
    raise AssertionError("unreachable")
