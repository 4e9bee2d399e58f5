"""
Identity merge operations.

Merging folds a duplicate identity into a primary one:
1. The duplicate is claimed for the merge (merging_into)
2. Aliases are unioned, blank fields on the primary are filled and the
   primary records the duplicate in merged_from
3. The duplicate is terminated with merged_into pointing at the primary

Nothing is deleted. Each step is a conditional update, so a merge
interrupted between steps is detectable and re-running it completes the
work.

Opposite-direction merges of a pair write the same two records in
crossed roles: the claim of one lands on the record the other absorbs
into. Claims refuse a duplicate that already absorbed the primary and
absorbs refuse a primary claimed by the duplicate, so at most one
direction ever absorbs.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Optional
from uuid import UUID

from entitymatch.config import settings
from entitymatch.errors import AliasCollisionError, InvalidMergeError, NotFoundError
from entitymatch.normalization import alias_keys, comparison_key, merge_aliases
from entitymatch.resolution.resolver import update_with_retry
from entitymatch.schemas import OPTIONAL_FIELDS, Identity, IdentityStatus
from entitymatch.store.base import IdentityStore

logger = logging.getLogger(__name__)


@dataclass
class FieldConflict:
    """A field populated with different values on both identities."""

    field: str
    primary_value: Any
    duplicate_value: Any

    def to_dict(self) -> dict[str, Any]:
        return {
            "field": self.field,
            "primary_value": _jsonable(self.primary_value),
            "duplicate_value": _jsonable(self.duplicate_value),
        }


@dataclass
class MergePreview:
    """What merging duplicate into primary would change. Purely advisory."""

    primary: Identity
    duplicate: Identity
    conflicts: list[FieldConflict] = field(default_factory=list)
    aliases_to_merge: list[str] = field(default_factory=list)
    fields_to_fill: dict[str, Any] = field(default_factory=dict)
    alias_collisions: dict[str, list[UUID]] = field(default_factory=dict)
    already_merged: bool = False

    @property
    def has_conflicts(self) -> bool:
        return bool(self.conflicts)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "primary": self.primary.model_dump(mode="json"),
            "duplicate": self.duplicate.model_dump(mode="json"),
            "conflicts": [c.to_dict() for c in self.conflicts],
            "aliases_to_merge": self.aliases_to_merge,
            "fields_to_fill": {k: _jsonable(v) for k, v in self.fields_to_fill.items()},
            "alias_collisions": {
                alias: [str(i) for i in owners]
                for alias, owners in self.alias_collisions.items()
            },
            "already_merged": self.already_merged,
        }


def _jsonable(value: Any) -> Any:
    if hasattr(value, "isoformat"):
        return value.isoformat()
    return value


def _same_value(a: Any, b: Any) -> bool:
    if isinstance(a, str) and isinstance(b, str):
        return a.strip().casefold() == b.strip().casefold()
    return a == b


def _duplicate_names(duplicate: Identity) -> list[str]:
    return [duplicate.canonical_name, *duplicate.aliases]


class MergeEngine:
    """
    Merges duplicate identities.

    Merge strategy:
    - Primary stays as it is, gaining aliases and blank-filled fields
    - Conflicting fields keep the primary's value
    - Duplicate becomes TERMINATED with merged_into set
    - Merging an already-terminated duplicate is a no-op
    """

    def __init__(self, store: IdentityStore, max_retries: Optional[int] = None):
        self.store = store
        self.max_retries = max_retries or settings.merge_max_retries

    def suggest_merge(self, primary_id: UUID, duplicate_id: UUID) -> MergePreview:
        """
        Preview a merge without writing anything.

        Raises:
            NotFoundError: if either identity is unknown
            InvalidMergeError: if both ids are the same
        """
        if primary_id == duplicate_id:
            raise InvalidMergeError("Cannot merge an identity with itself")
        primary = self.store.get(primary_id)
        duplicate = self.store.get(duplicate_id)
        return self._preview(primary, duplicate)

    def merge(
        self,
        primary_id: UUID,
        duplicate_id: UUID,
        allow_collisions: bool = False,
    ) -> Identity:
        """
        Merge duplicate into primary.

        Args:
            primary_id: Identity to keep
            duplicate_id: Identity to terminate
            allow_collisions: Proceed even if moved aliases already belong
                to a third identity

        Returns:
            The primary identity after the merge

        Raises:
            NotFoundError: if either identity is unknown
            InvalidMergeError: on self-merge, kind mismatch, a terminated
                primary, or a merge opposite to an earlier one
            AliasCollisionError: if moved aliases collide and collisions
                are not allowed
            ConcurrentModificationError: if a write keeps losing races
        """
        if primary_id == duplicate_id:
            raise InvalidMergeError("Cannot merge an identity with itself")

        primary = self.store.get(primary_id)
        duplicate = self.store.get(duplicate_id)

        if duplicate.is_terminated:
            logger.info(
                f"Merge {duplicate_id} -> {primary_id} skipped: duplicate already terminated "
                f"(merged_into={duplicate.merged_into})"
            )
            return primary
        if primary.is_terminated:
            raise InvalidMergeError(f"Cannot merge into terminated identity {primary_id}")
        if primary.kind != duplicate.kind:
            raise InvalidMergeError(
                f"Cannot merge {duplicate.kind.value} {duplicate_id} into "
                f"{primary.kind.value} {primary_id}"
            )
        if primary_id in duplicate.merged_from:
            raise InvalidMergeError(
                f"{primary_id} was already merged into {duplicate_id}; refusing opposite merge"
            )

        preview = self._preview(primary, duplicate)
        if preview.alias_collisions:
            if not allow_collisions:
                raise AliasCollisionError(preview.alias_collisions)
            logger.warning(
                f"Merging {duplicate_id} into {primary_id} despite alias collisions: "
                f"{sorted(preview.alias_collisions)}"
            )
        for conflict in preview.conflicts:
            logger.info(
                f"Merge conflict on {conflict.field}: keeping '{conflict.primary_value}' "
                f"over '{conflict.duplicate_value}'"
            )

        # Step 1: claim the duplicate
        duplicate = update_with_retry(
            self.store,
            duplicate,
            lambda record: self._claim(record, primary_id),
            self.max_retries,
        )

        # Step 2: absorb the duplicate into the primary
        try:
            primary = update_with_retry(
                self.store,
                primary,
                lambda record: self._absorb(record, duplicate),
                self.max_retries,
            )
        except InvalidMergeError:
            self._release(duplicate_id, primary_id)
            raise

        # Step 3: terminate the duplicate
        terminated = update_with_retry(
            self.store,
            duplicate,
            lambda record: self._terminate(record, primary_id),
            self.max_retries,
        )

        # Aliases the duplicate gained while the merge was running
        if alias_keys(_duplicate_names(terminated), terminated.kind) - alias_keys(
            primary.aliases, primary.kind
        ):
            primary = update_with_retry(
                self.store,
                primary,
                lambda record: self._absorb(record, terminated),
                self.max_retries,
            )

        logger.info(
            f"Merged {duplicate_id} ({duplicate.canonical_name}) into "
            f"{primary_id} ({primary.canonical_name})"
        )
        return primary

    def find_incomplete_merges(self) -> list[tuple[UUID, UUID]]:
        """
        Find merges interrupted before the duplicate was terminated.

        Covers duplicates still holding a merge claim and primaries that
        absorbed a duplicate which is still live. Re-running merge on a
        reported pair completes it.

        Returns:
            (primary_id, duplicate_id) pairs whose duplicate is still live
        """
        incomplete = []
        for identity in self.store.list_identities():
            if identity.is_terminated:
                continue
            if identity.merging_into is not None:
                incomplete.append((identity.merging_into, identity.id))
            for duplicate_id in identity.merged_from:
                try:
                    duplicate = self.store.get(duplicate_id)
                except NotFoundError:
                    logger.warning(f"{identity.id} lists unknown merged identity {duplicate_id}")
                    continue
                if not duplicate.is_terminated:
                    incomplete.append((identity.id, duplicate_id))
        return sorted(set(incomplete), key=lambda pair: (str(pair[0]), str(pair[1])))

    def _preview(self, primary: Identity, duplicate: Identity) -> MergePreview:
        preview = MergePreview(
            primary=primary,
            duplicate=duplicate,
            already_merged=(
                duplicate.is_terminated and duplicate.merged_into == primary.id
            ),
        )

        for name in OPTIONAL_FIELDS:
            primary_value = primary.field_value(name)
            duplicate_value = duplicate.field_value(name)
            if duplicate_value is None:
                continue
            if primary_value is None:
                preview.fields_to_fill[name] = duplicate_value
            elif not _same_value(primary_value, duplicate_value):
                preview.conflicts.append(FieldConflict(name, primary_value, duplicate_value))

        merged = merge_aliases(primary.aliases, _duplicate_names(duplicate), primary.kind)
        preview.aliases_to_merge = merged[len(primary.aliases):]

        for alias in preview.aliases_to_merge:
            key = comparison_key(alias, primary.kind)
            owners = {
                i.id: i
                for i in self.store.find_by_alias(key, primary.kind)
                + self.store.find_by_canonical_name(key, primary.kind)
            }
            others = sorted(
                (
                    i.id
                    for i in owners.values()
                    if i.id not in (primary.id, duplicate.id)
                    and i.status != IdentityStatus.TERMINATED
                ),
                key=str,
            )
            if others:
                preview.alias_collisions[alias] = others

        return preview

    def _claim(self, record: Identity, primary_id: UUID) -> None:
        if record.is_terminated:
            raise InvalidMergeError(f"Duplicate {record.id} was terminated during the merge")
        if primary_id in record.merged_from:
            raise InvalidMergeError(
                f"{primary_id} was merged into {record.id} concurrently; refusing opposite merge"
            )
        if record.merging_into not in (None, primary_id):
            raise InvalidMergeError(
                f"{record.id} is already being merged into {record.merging_into}"
            )
        record.merging_into = primary_id

    def _release(self, duplicate_id: UUID, primary_id: UUID) -> None:
        """Drop this merge's claim on the duplicate after a refused absorb."""

        def release(record: Identity) -> None:
            if record.merging_into == primary_id and not record.is_terminated:
                record.merging_into = None

        duplicate = self.store.get(duplicate_id)
        if duplicate.merging_into == primary_id:
            update_with_retry(self.store, duplicate, release, self.max_retries)
            logger.info(f"Released merge claim of {primary_id} on {duplicate_id}")

    def _absorb(self, record: Identity, duplicate: Identity) -> None:
        if record.is_terminated:
            raise InvalidMergeError(f"Primary {record.id} was terminated during the merge")
        if record.merging_into == duplicate.id:
            raise InvalidMergeError(
                f"{record.id} is being merged into {duplicate.id} concurrently; "
                f"refusing opposite merge"
            )

        record.aliases = merge_aliases(record.aliases, _duplicate_names(duplicate), record.kind)
        for name in OPTIONAL_FIELDS:
            if record.field_value(name) is None and duplicate.field_value(name) is not None:
                setattr(record, name, getattr(duplicate, name))

        if duplicate.id not in record.merged_from:
            record.merged_from.append(duplicate.id)
            record.mention_count += duplicate.mention_count
            if duplicate.first_seen and (
                record.first_seen is None or duplicate.first_seen < record.first_seen
            ):
                record.first_seen = duplicate.first_seen
            if duplicate.last_seen and (
                record.last_seen is None or duplicate.last_seen > record.last_seen
            ):
                record.last_seen = duplicate.last_seen
                record.last_project_id = duplicate.last_project_id or record.last_project_id

    def _terminate(self, record: Identity, primary_id: UUID) -> None:
        if primary_id in record.merged_from:
            raise InvalidMergeError(
                f"{primary_id} was merged into {record.id} concurrently; refusing opposite merge"
            )
        record.status = IdentityStatus.TERMINATED
        record.merged_into = primary_id
        record.merging_into = None
