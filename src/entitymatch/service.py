"""
Entity matching service.

Single entry point wiring the normalizer, resolver, confidence scorer,
review workflow and merge engine around injected stores. Every
collaborator (stores, nickname table, clock, notification sink,
settings) is passed in explicitly; nothing is read from module state.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Mapping, Optional, Union
from uuid import UUID

from entitymatch.config import Settings, settings as default_settings
from entitymatch.confidence import ConfidenceConfig, ConfidenceScore, ConfidenceScorer, ReviewDecision
from entitymatch.errors import InvalidTransitionError, InvalidUpdateError
from entitymatch.extraction import ExtractedMention, parse_extraction
from entitymatch.lifecycle import MergeEngine, MergePreview
from entitymatch.nicknames import NicknameTable
from entitymatch.normalization import merge_aliases, normalize, parse_person_name
from entitymatch.resolution import (
    MatchResult,
    Resolver,
    ResolverConfig,
    ScoreWeights,
    SimilarityEngine,
    update_with_retry,
)
from entitymatch.review import (
    NotificationSink,
    QueueStats,
    ReviewerStats,
    ReviewQueue,
    SideEffect,
    Trigger,
    check_rubber_stamping,
    compute_queue_stats,
    transition,
)
from entitymatch.schemas import (
    OPTIONAL_FIELDS,
    Identity,
    IdentityKind,
    IdentityStatus,
    Mention,
    MentionContext,
    MentionState,
    ReviewPriority,
    ReviewResolution,
    ReviewTask,
    ReviewTaskStatus,
    utc_now,
)
from entitymatch.store import (
    IdentityStore,
    InMemoryIdentityStore,
    InMemoryReviewStore,
    ReviewStore,
    SqlIdentityStore,
)

logger = logging.getLogger(__name__)

ExtractionPayload = Union[ExtractedMention, Mapping[str, Any], str, bytes]

# Profile fields an admin may change; aliases, status and merge state have
# their own operations
UPDATABLE_FIELDS = (*OPTIONAL_FIELDS, "first_name", "middle_name", "last_name")


@dataclass
class ProcessResult:
    """Outcome of running one mention through the full pipeline."""

    mention: Mention
    match: MatchResult
    confidence: ConfidenceScore
    decision: ReviewDecision
    review_task: Optional[ReviewTask] = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "mention": self.mention.model_dump(mode="json"),
            "match": self.match.to_dict(),
            "confidence": self.confidence.to_dict(),
            "decision": self.decision.to_dict(),
            "review_task": (
                self.review_task.model_dump(mode="json") if self.review_task else None
            ),
        }


class EntityMatchService:
    """
    Public API of the entity matching engine.

    Usage:
        service = EntityMatchService(InMemoryIdentityStore())
        result = service.match_or_create("Bob Smith")
    """

    def __init__(
        self,
        identity_store: IdentityStore,
        review_store: Optional[ReviewStore] = None,
        nicknames: Optional[NicknameTable] = None,
        clock: Callable[[], datetime] = utc_now,
        notifier: Optional[NotificationSink] = None,
        settings: Optional[Settings] = None,
    ):
        self.settings = settings or default_settings
        self.identity_store = identity_store
        self.review_store = review_store or InMemoryReviewStore()
        self.nicknames = nicknames or NicknameTable.load(self.settings.nickname_table_path)
        self.clock = clock

        self.similarity = SimilarityEngine(
            nicknames=self.nicknames,
            weights=ScoreWeights.from_settings(self.settings),
        )
        self.resolver = Resolver(
            identity_store,
            similarity=self.similarity,
            config=ResolverConfig.from_settings(self.settings),
            clock=clock,
        )
        self.scorer = ConfidenceScorer(
            config=ConfidenceConfig.from_settings(self.settings),
            clock=clock,
        )
        self.review_queue = ReviewQueue(
            self.review_store,
            identity_store,
            notifier=notifier,
            clock=clock,
            max_write_retries=self.settings.merge_max_retries,
        )
        self.merge_engine = MergeEngine(identity_store, max_retries=self.settings.merge_max_retries)

    @classmethod
    def from_settings(
        cls,
        settings: Optional[Settings] = None,
        notifier: Optional[NotificationSink] = None,
    ) -> "EntityMatchService":
        """Build a service with stores chosen by configuration."""
        settings = settings or default_settings
        if settings.database_url:
            identity_store: IdentityStore = SqlIdentityStore.from_url(settings.database_url)
            logger.info("Using SQL identity store")
        else:
            identity_store = InMemoryIdentityStore()
            logger.info("Using in-memory identity store")
        return cls(identity_store, notifier=notifier, settings=settings)

    # Resolution

    def match_or_create(
        self,
        raw_text: str,
        context: Optional[MentionContext] = None,
        kind: IdentityKind = IdentityKind.PERSON,
    ) -> MatchResult:
        """Resolve a raw mention without scoring or review."""
        return self.resolver.match_or_create(raw_text, context=context, kind=kind)

    def process_mention(self, payload: ExtractionPayload) -> ProcessResult:
        """
        Run an extraction payload through the full pipeline.

        validate -> resolve -> score -> workflow -> review task

        Raises:
            ExtractionSchemaError: if the payload is invalid
            EmptyNameError: if the mention has no usable name
        """
        extraction = parse_extraction(payload)
        mention = Mention(
            raw_text=extraction.raw_text,
            kind=extraction.kind,
            context=extraction.context,
            created_at=self.clock(),
        )
        return self._run_pipeline(mention, extraction)

    def resubmit(self, mention_id: UUID, payload: ExtractionPayload) -> ProcessResult:
        """
        Reprocess a mention that was sent back for correction.

        Raises:
            InvalidTransitionError: if the mention does not need correction
        """
        extraction = parse_extraction(payload)
        mention = self.review_queue.resubmit(mention_id, raw_text=extraction.raw_text)
        return self._run_pipeline(mention, extraction)

    def _run_pipeline(self, mention: Mention, extraction: ExtractedMention) -> ProcessResult:
        mention.state, _ = transition(mention.state, Trigger.EXTRACTION_COMPLETE)

        match = self.resolver.match_or_create(
            extraction.raw_text, context=extraction.context, kind=extraction.kind
        )
        mention.identity_id = match.identity_id
        mention.confidence_tier = match.confidence_tier
        mention.match_method = match.match_method
        mention.suggested_matches = list(match.suggested_matches)

        score = self.scorer.score(extraction, match)
        decision = self.scorer.decide(score.overall, extraction, forced_review=match.needs_review)

        trigger = Trigger.LOW_CONFIDENCE if decision.requires_review else Trigger.HIGH_CONFIDENCE
        next_state, effects = transition(
            mention.state,
            trigger,
            confidence=score.overall,
            auto_approve_threshold=self.settings.auto_approve_threshold,
            needs_correction_threshold=self.settings.needs_correction_threshold,
        )
        mention.state = next_state
        mention.confidence = round(score.overall, 2)
        mention.needs_review = decision.requires_review
        mention.flagged_for_correction = (
            SideEffect.FLAG_FOR_CORRECTION in effects or decision.flag_for_correction
        )
        if mention.state == MentionState.APPROVED:
            mention.resolved_at = self.clock()
        self.review_store.put_mention(mention)

        task = None
        if SideEffect.CREATE_REVIEW_TASK in effects:
            task = self.review_queue.open_task(
                mention,
                priority=decision.priority or ReviewPriority.MEDIUM,
                reason=decision.reason or match.reason,
                confidence=mention.confidence,
            )

        logger.info(
            f"Processed mention {mention.id} '{mention.raw_text}': "
            f"{match.match_method.value} -> {match.identity_id}, "
            f"confidence {score.overall:.1f}, state {mention.state.value}"
        )
        return ProcessResult(
            mention=mention,
            match=match,
            confidence=score,
            decision=decision,
            review_task=task,
        )

    def get_mention(self, mention_id: UUID) -> Mention:
        return self.review_store.get_mention(mention_id)

    # Review

    def list_tasks(
        self,
        priority: Optional[ReviewPriority] = None,
        status: Optional[ReviewTaskStatus] = None,
        limit: Optional[int] = None,
    ) -> list[ReviewTask]:
        return self.review_queue.list_tasks(priority=priority, status=status, limit=limit)

    def get_task(self, task_id: UUID) -> ReviewTask:
        return self.review_queue.get_task(task_id)

    def start_review(self, task_id: UUID, actor_id: str) -> ReviewTask:
        return self.review_queue.start_review(task_id, actor_id)

    def resolve_task(
        self,
        task_id: UUID,
        decision: ReviewResolution,
        actor_id: str,
        corrected_identity_id: Optional[UUID] = None,
        notes: Optional[str] = None,
    ) -> ReviewTask:
        return self.review_queue.resolve_task(
            task_id,
            decision,
            actor_id,
            corrected_identity_id=corrected_identity_id,
            notes=notes,
        )

    def review_stats(self) -> QueueStats:
        return compute_queue_stats(self.review_store.list_tasks())

    def reviewer_stats(self, actor_id: str) -> ReviewerStats:
        return check_rubber_stamping(
            actor_id,
            self.review_store.list_tasks(status=ReviewTaskStatus.RESOLVED),
            min_review_seconds=self.settings.min_review_seconds,
        )

    # Merge

    def suggest_merge(self, primary_id: UUID, duplicate_id: UUID) -> MergePreview:
        return self.merge_engine.suggest_merge(primary_id, duplicate_id)

    def merge(
        self,
        primary_id: UUID,
        duplicate_id: UUID,
        allow_collisions: bool = False,
    ) -> Identity:
        return self.merge_engine.merge(primary_id, duplicate_id, allow_collisions=allow_collisions)

    def find_incomplete_merges(self) -> list[tuple[UUID, UUID]]:
        return self.merge_engine.find_incomplete_merges()

    # Identity administration

    def get_identity(self, identity_id: UUID) -> Identity:
        return self.identity_store.get(identity_id)

    def list_identities(
        self,
        status: Optional[IdentityStatus] = None,
        kind: Optional[IdentityKind] = None,
        needs_profile_completion: Optional[bool] = None,
        project_id: Optional[str] = None,
    ) -> list[Identity]:
        identities = self.identity_store.list_identities(
            status=status,
            kind=kind,
            needs_profile_completion=needs_profile_completion,
            project_id=project_id,
        )
        return sorted(identities, key=lambda i: (i.canonical_name, str(i.id)))

    def create_identity(
        self,
        name: str,
        kind: IdentityKind = IdentityKind.PERSON,
        **fields: Any,
    ) -> Identity:
        """
        Create an identity explicitly (admin onboarding).

        Args:
            name: Canonical name
            kind: person or vendor
            **fields: Optional structured fields (role, email, hourly_rate...)
        """
        normalized = normalize(name, kind)
        existing = [
            i
            for i in self.identity_store.find_by_canonical_name(normalized.key, kind)
            if not i.is_terminated
        ]
        if existing:
            logger.warning(
                f"Creating '{normalized.display}' although {len(existing)} identities "
                f"already share its name"
            )

        now = self.clock()
        identity = Identity(
            kind=kind,
            canonical_name=normalized.display,
            aliases=[normalized.display],
            first_seen=now,
            last_seen=now,
            **fields,
        )
        if kind == IdentityKind.PERSON:
            parts = parse_person_name(normalized.display)
            identity.first_name = identity.first_name or parts.first_name
            identity.middle_name = identity.middle_name or parts.middle_name
            identity.last_name = identity.last_name or parts.last_name
        self.identity_store.put(identity)
        logger.info(f"Created {kind.value} identity '{identity.canonical_name}' ({identity.id})")
        return identity

    def add_alias(self, identity_id: UUID, alias: str) -> Identity:
        """
        Append an alias to an identity. Aliases are never removed.

        Raises:
            NotFoundError: if the identity is unknown
            EmptyNameError: if the alias has no usable name
        """
        identity = self.identity_store.get(identity_id)
        display = normalize(alias, identity.kind).display

        def add(record: Identity) -> None:
            record.aliases = merge_aliases(record.aliases, [display], record.kind)

        return update_with_retry(
            self.identity_store, identity, add, self.settings.merge_max_retries
        )

    def update_identity(self, identity_id: UUID, **fields: Any) -> Identity:
        """
        Fill in or change profile fields of an identity.

        Auto-created identities stop needing profile completion once their
        profile fields are set, unless needs_profile_completion is passed
        explicitly.

        Args:
            identity_id: Identity to update
            **fields: Profile fields (role, hourly_rate, email, name parts...)
                and optionally needs_profile_completion

        Raises:
            NotFoundError: if the identity is unknown
            InvalidUpdateError: if a field is not a profile field
            InvalidTransitionError: if the identity is terminated
        """
        rejected = sorted(set(fields) - {*UPDATABLE_FIELDS, "needs_profile_completion"})
        if rejected:
            raise InvalidUpdateError(rejected)

        identity = self.identity_store.get(identity_id)
        if identity.is_terminated:
            raise InvalidTransitionError(identity.status.value, "update", "identity is terminated")

        needs_completion = fields.pop("needs_profile_completion", None)

        def apply(record: Identity) -> None:
            for name, value in fields.items():
                setattr(record, name, value)
            if needs_completion is not None:
                record.needs_profile_completion = needs_completion
            elif record.needs_profile_completion and record.has_complete_profile:
                record.needs_profile_completion = False

        updated = update_with_retry(
            self.identity_store, identity, apply, self.settings.merge_max_retries
        )
        logger.info(f"Updated identity {identity_id}: {', '.join(sorted(fields)) or 'no fields'}")
        return updated

    def deactivate_identity(
        self,
        identity_id: UUID,
        status: IdentityStatus = IdentityStatus.INACTIVE,
    ) -> Identity:
        """
        Move an identity to inactive or terminated. Identities are never deleted.

        Raises:
            NotFoundError: if the identity is unknown
            InvalidTransitionError: if the status is active or the identity
                is already terminated
        """
        status = IdentityStatus(status)
        identity = self.identity_store.get(identity_id)
        if status == IdentityStatus.ACTIVE:
            raise InvalidTransitionError(identity.status.value, status.value, "use an inactive or terminated status")
        if identity.is_terminated:
            raise InvalidTransitionError(identity.status.value, status.value, "identity is terminated")

        def set_status(record: Identity) -> None:
            record.status = status

        updated = update_with_retry(
            self.identity_store, identity, set_status, self.settings.merge_max_retries
        )
        logger.info(f"Identity {identity_id} is now {status.value}")
        return updated
