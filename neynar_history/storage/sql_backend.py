"""
SQLAlchemy-backed snapshot history and tracked set.

Works against any SQLAlchemy URL: PostgreSQL in production (DATABASE_URL /
POSTGRES_URL), SQLite locally and in tests. Each write runs in one transaction;
it first upserts and locks (SELECT ... FOR UPDATE) a row in write_locks,
one per fid plus one for the tracked set, and only then reads the data it
rewrites. The lock row exists even before the first snapshot, so concurrent
writers for one fid serialize on PostgreSQL. SQLite serializes writers on
its own and ignores the lock clause.
"""

from __future__ import annotations

from contextlib import contextmanager
from datetime import datetime
from typing import Any, Iterator

from sqlalchemy import (
    BigInteger,
    Boolean,
    Column,
    DateTime,
    Float,
    Index,
    Integer,
    String,
    UniqueConstraint,
    create_engine,
)
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from neynar_history.core.exceptions import PersistenceFailure
from neynar_history.history_logging import get_logger
from neynar_history.storage.backend import HistoryMutation, StorageBackend, TrackedMutation
from neynar_history.storage.models import Snapshot, TrackedEntry, ensure_utc

logger = get_logger(__name__)

Base = declarative_base()

# SQLite only auto-increments INTEGER PRIMARY KEY
_Id = BigInteger().with_variant(Integer(), "sqlite")


# -----------------------------------------------------------------------------
# SQLAlchemy models
# -----------------------------------------------------------------------------


class SnapshotRow(Base):
    """
    One score snapshot per row. (fid, captured_at) is unique; the composite
    index serves both "latest N for fid" and time-range scans.
    """

    __tablename__ = "snapshots"
    __table_args__ = (
        UniqueConstraint("fid", "captured_at", name="uq_snapshots_fid_captured_at"),
        Index("ix_snapshots_fid_captured_at", "fid", "captured_at"),
    )

    id = Column(_Id, primary_key=True, autoincrement=True)
    fid = Column(BigInteger, nullable=False)
    score = Column(Float, nullable=False)
    captured_at = Column(DateTime(timezone=True), nullable=False)
    source = Column(String(16), nullable=False, default="api")

    def to_snapshot(self) -> Snapshot:
        return Snapshot(
            fid=int(self.fid),
            score=float(self.score),
            captured_at=ensure_utc(self.captured_at),
            source=self.source or "api",
        )


class TrackedRow(Base):
    """Tracked fid: one row per member of the tracked set."""

    __tablename__ = "tracked"

    fid = Column(BigInteger, primary_key=True, autoincrement=False)
    tracked_at = Column(DateTime(timezone=True), nullable=False)
    referenced_at = Column(DateTime(timezone=True), nullable=False, index=True)
    pinned = Column(Boolean, nullable=False, default=False)

    def to_entry(self) -> TrackedEntry:
        return TrackedEntry(
            fid=int(self.fid),
            tracked_at=ensure_utc(self.tracked_at),
            referenced_at=ensure_utc(self.referenced_at),
            pinned=bool(self.pinned),
        )


class WriteLockRow(Base):
    """Row locked FOR UPDATE to serialize read-modify-write of one history or the tracked set."""

    __tablename__ = "write_locks"

    name = Column(String(64), primary_key=True)
    version = Column(BigInteger, nullable=False, default=0)


TRACKED_LOCK = "tracked"


def history_lock_name(fid: int) -> str:
    return f"history:{fid}"


def _snapshot_key(s: Snapshot) -> tuple[Any, ...]:
    return (s.captured_at, s.score, s.source)


class SqlBackend(StorageBackend):
    """SQL implementation; one session (transaction) per operation."""

    name = "sql"

    def __init__(self, url: str, *, echo: bool = False) -> None:
        self._url = url
        connect_args: dict[str, Any] = {}
        if url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
        self._engine = create_engine(url, connect_args=connect_args, pool_pre_ping=True, echo=echo)
        self._session_factory = sessionmaker(autocommit=False, autoflush=False, bind=self._engine)
        logger.info("sql_backend_engine", url=url.split("?")[0].split("//")[-1].split("@")[-1])

    @property
    def engine(self) -> Any:
        return self._engine

    @contextmanager
    def _session_scope(self) -> Iterator[Session]:
        """Context manager for a single session. Commits on success, rolls back on error."""
        session = self._session_factory()
        try:
            yield session
            session.commit()
        except SQLAlchemyError as e:
            session.rollback()
            raise PersistenceFailure(f"SQL error: {e}") from e
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def _lock(self, session: Session, name: str) -> None:
        """Create the lock row if missing, then hold it FOR UPDATE until commit."""
        dialect = self._engine.dialect.name
        if dialect in ("postgresql", "sqlite"):
            insert = postgresql.insert if dialect == "postgresql" else sqlite.insert
            session.execute(
                insert(WriteLockRow).values(name=name, version=0).on_conflict_do_nothing(index_elements=["name"])
            )
        elif session.get(WriteLockRow, name) is None:
            try:
                with session.begin_nested():
                    session.add(WriteLockRow(name=name, version=0))
            except IntegrityError:
                pass  # created by a concurrent writer
        row = session.query(WriteLockRow).filter(WriteLockRow.name == name).with_for_update().one()
        row.version = (row.version or 0) + 1
        session.flush()

    def ensure_schema(self) -> None:
        try:
            Base.metadata.create_all(bind=self._engine)
        except SQLAlchemyError as e:
            logger.exception("sql_backend_init_failed", error=str(e))
            raise PersistenceFailure(f"Failed to create schema: {e}") from e

    # --- Snapshot history ---

    def load_history(self, fid: int, *, since: datetime | None = None) -> list[Snapshot]:
        with self._session_scope() as session:
            q = session.query(SnapshotRow).filter(SnapshotRow.fid == fid)
            if since is not None:
                q = q.filter(SnapshotRow.captured_at >= ensure_utc(since))
            rows = q.order_by(SnapshotRow.captured_at.asc()).all()
            return [r.to_snapshot() for r in rows]

    def update_history(self, fid: int, mutate: HistoryMutation) -> list[Snapshot]:
        with self._session_scope() as session:
            self._lock(session, history_lock_name(fid))
            rows = (
                session.query(SnapshotRow)
                .filter(SnapshotRow.fid == fid)
                .order_by(SnapshotRow.captured_at.asc())
                .all()
            )
            current = [r.to_snapshot() for r in rows]
            updated = mutate(list(current))

            keep = {_snapshot_key(s) for s in updated}
            existing = set()
            for row, snap in zip(rows, current):
                key = _snapshot_key(snap)
                if key in keep:
                    existing.add(key)
                else:
                    session.delete(row)
            # Deletes must hit the table before inserts that reuse a captured_at.
            session.flush()
            for snap in updated:
                if _snapshot_key(snap) not in existing:
                    session.add(
                        SnapshotRow(
                            fid=fid,
                            score=snap.score,
                            captured_at=snap.captured_at,
                            source=snap.source,
                        )
                    )
            session.flush()
        return updated

    # --- Tracked set ---

    def load_tracked(self) -> list[TrackedEntry]:
        with self._session_scope() as session:
            return [r.to_entry() for r in session.query(TrackedRow).all()]

    def update_tracked(self, mutate: TrackedMutation) -> list[TrackedEntry]:
        with self._session_scope() as session:
            self._lock(session, TRACKED_LOCK)
            rows = session.query(TrackedRow).all()
            by_fid = {int(r.fid): r for r in rows}
            updated = mutate([r.to_entry() for r in rows])
            wanted = {e.fid: e for e in updated}
            for fid, row in by_fid.items():
                if fid not in wanted:
                    session.delete(row)
            for fid, entry in wanted.items():
                row = by_fid.get(fid)
                if row is None:
                    session.add(
                        TrackedRow(
                            fid=fid,
                            tracked_at=entry.tracked_at,
                            referenced_at=entry.referenced_at,
                            pinned=entry.pinned,
                        )
                    )
                else:
                    row.tracked_at = entry.tracked_at
                    row.referenced_at = entry.referenced_at
                    row.pinned = entry.pinned
            session.flush()
        return updated

    def close(self) -> None:
        self._engine.dispose()
