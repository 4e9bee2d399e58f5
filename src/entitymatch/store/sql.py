"""
SQLAlchemy identity store.

Each identity is one row holding the full record as JSON plus the indexed
columns the resolver queries on (canonical key, status, kind). Aliases get
their own table keyed by comparison key. The version column implements the
conditional update: UPDATE ... WHERE id = :id AND version = :expected.
"""

import logging
from typing import Any, Optional
from uuid import UUID

from sqlalchemy import (
    JSON,
    Engine,
    ForeignKey,
    Integer,
    String,
    UniqueConstraint,
    create_engine,
    select,
    update,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, Session, mapped_column, sessionmaker
from sqlalchemy.pool import StaticPool

from entitymatch.errors import ConcurrentModificationError, NotFoundError
from entitymatch.normalization import alias_keys, comparison_key
from entitymatch.schemas import Identity, IdentityKind, IdentityStatus, utc_now
from entitymatch.store.base import IdentityStore, Mutation

logger = logging.getLogger(__name__)


class Base(DeclarativeBase):
    """Base class for all models."""

    pass


class IdentityRow(Base):
    """Identity record with indexed lookup columns."""

    __tablename__ = "identities"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    kind: Mapped[str] = mapped_column(String(16), index=True)
    canonical_key: Mapped[str] = mapped_column(String(255), index=True)
    status: Mapped[str] = mapped_column(String(16), index=True)
    last_project_id: Mapped[Optional[str]] = mapped_column(String(100), index=True)
    needs_profile_completion: Mapped[bool] = mapped_column(default=False)
    version: Mapped[int] = mapped_column(Integer, default=0)
    payload: Mapped[dict[str, Any]] = mapped_column(JSON)


class AliasRow(Base):
    """One alias of an identity. Rows are only ever added."""

    __tablename__ = "identity_aliases"
    __table_args__ = (UniqueConstraint("identity_id", "alias_key"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    identity_id: Mapped[str] = mapped_column(ForeignKey("identities.id"), index=True)
    alias: Mapped[str] = mapped_column(String(255))
    alias_key: Mapped[str] = mapped_column(String(255), index=True)


def _to_identity(row: IdentityRow) -> Identity:
    identity = Identity.model_validate(row.payload)
    identity.version = row.version
    return identity


def _row_values(identity: Identity) -> dict[str, Any]:
    return {
        "kind": identity.kind.value,
        "canonical_key": comparison_key(identity.canonical_name, identity.kind),
        "status": identity.status.value,
        "last_project_id": identity.last_project_id,
        "needs_profile_completion": identity.needs_profile_completion,
        "payload": identity.model_dump(mode="json"),
    }


class SqlIdentityStore(IdentityStore):
    """Identity store backed by any SQLAlchemy-supported database."""

    def __init__(self, engine: Engine, create_schema: bool = True):
        self.engine = engine
        self._session_factory = sessionmaker(bind=engine, expire_on_commit=False)
        if create_schema:
            Base.metadata.create_all(engine)

    @classmethod
    def from_url(cls, url: str, create_schema: bool = True) -> "SqlIdentityStore":
        """Build a store from a database URL (in-memory SQLite shares one connection)."""
        if url in ("sqlite://", "sqlite:///:memory:", "sqlite+pysqlite:///:memory:"):
            engine = create_engine(
                url,
                poolclass=StaticPool,
                connect_args={"check_same_thread": False},
            )
        else:
            engine = create_engine(url)
        return cls(engine, create_schema=create_schema)

    def get(self, identity_id: UUID) -> Identity:
        with self._session_factory() as session:
            row = session.get(IdentityRow, str(identity_id))
            if row is None:
                raise NotFoundError("Identity", identity_id)
            return _to_identity(row)

    def find_by_canonical_name(
        self, key: str, kind: Optional[IdentityKind] = None
    ) -> list[Identity]:
        stmt = select(IdentityRow).where(IdentityRow.canonical_key == key)
        return self._query(stmt, kind)

    def find_by_alias(self, key: str, kind: Optional[IdentityKind] = None) -> list[Identity]:
        owners = select(AliasRow.identity_id).where(AliasRow.alias_key == key)
        stmt = select(IdentityRow).where(IdentityRow.id.in_(owners))
        return self._query(stmt, kind)

    def find_active_candidates(self, kind: Optional[IdentityKind] = None) -> list[Identity]:
        stmt = select(IdentityRow).where(IdentityRow.status == IdentityStatus.ACTIVE.value)
        return self._query(stmt, kind)

    def list_identities(
        self,
        status: Optional[IdentityStatus] = None,
        kind: Optional[IdentityKind] = None,
        needs_profile_completion: Optional[bool] = None,
        project_id: Optional[str] = None,
    ) -> list[Identity]:
        stmt = select(IdentityRow)
        if status is not None:
            stmt = stmt.where(IdentityRow.status == status.value)
        if needs_profile_completion is not None:
            stmt = stmt.where(
                IdentityRow.needs_profile_completion == needs_profile_completion
            )
        if project_id is not None:
            stmt = stmt.where(IdentityRow.last_project_id == project_id)
        return self._query(stmt, kind)

    def put(self, identity: Identity) -> Identity:
        with self._session_factory.begin() as session:
            row = session.get(IdentityRow, str(identity.id))
            values = _row_values(identity)
            if row is None:
                row = IdentityRow(id=str(identity.id), version=identity.version, **values)
                session.add(row)
            else:
                for name, value in values.items():
                    setattr(row, name, value)
                row.version = identity.version
            self._add_alias_rows(session, identity)
        return identity

    def conditional_update(
        self, identity_id: UUID, expected_version: int, mutation: Mutation
    ) -> Identity:
        with self._session_factory.begin() as session:
            row = session.get(IdentityRow, str(identity_id))
            if row is None:
                raise NotFoundError("Identity", identity_id)
            if row.version != expected_version:
                raise ConcurrentModificationError(identity_id, expected_version, row.version)

            updated = _to_identity(row)
            mutation(updated)
            updated.version = expected_version + 1
            updated.updated_at = utc_now()

            result = session.execute(
                update(IdentityRow)
                .where(
                    IdentityRow.id == str(identity_id),
                    IdentityRow.version == expected_version,
                )
                .values(version=updated.version, **_row_values(updated))
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                # Another writer committed between our read and write
                current = session.scalar(
                    select(IdentityRow.version).where(IdentityRow.id == str(identity_id))
                )
                raise ConcurrentModificationError(identity_id, expected_version, current)
            self._add_alias_rows(session, updated)
        return updated

    def _add_alias_rows(self, session: Session, identity: Identity) -> None:
        existing = set(
            session.scalars(
                select(AliasRow.alias_key).where(AliasRow.identity_id == str(identity.id))
            )
        )
        wanted = {}
        for alias in identity.aliases:
            for key in alias_keys([alias], identity.kind):
                wanted.setdefault(key, alias)
        for key, alias in wanted.items():
            if key not in existing:
                session.add(AliasRow(identity_id=str(identity.id), alias=alias, alias_key=key))

    def _query(self, stmt, kind: Optional[IdentityKind]) -> list[Identity]:
        if kind is not None:
            stmt = stmt.where(IdentityRow.kind == kind.value)
        with self._session_factory() as session:
            return [_to_identity(row) for row in session.scalars(stmt)]
