# history.py
from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional

import sqlalchemy as sa
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, sessionmaker
from sqlalchemy.pool import StaticPool

from .model import Outcome

DEFAULT_HISTORY_URL = "sqlite:///.ciflow/history.db"


def now_utc() -> datetime:
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    pass


class RunRecord(Base):
    """One finished run. Rows are only ever appended."""
    __tablename__ = "run_history"
    id: Mapped[int] = mapped_column(sa.Integer, primary_key=True, autoincrement=True)
    fingerprint: Mapped[str] = mapped_column(sa.Text, nullable=False, index=True)
    outcome: Mapped[str] = mapped_column(sa.Text, nullable=False)
    event: Mapped[str] = mapped_column(sa.Text, nullable=False)
    branch: Mapped[Optional[str]] = mapped_column(sa.Text, nullable=True)
    workflow: Mapped[Optional[str]] = mapped_column(sa.Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(sa.TIMESTAMP(timezone=True), default=now_utc, nullable=False)


def _create_engine(url: str) -> sa.Engine:
    parsed = sa.engine.make_url(url)
    if parsed.get_backend_name() != "sqlite":
        return sa.create_engine(url, pool_pre_ping=True)

    database = parsed.database
    if not database or database == ":memory:":
        # one shared connection, or every checkout would see an empty database
        return sa.create_engine(url, poolclass=StaticPool, connect_args={"check_same_thread": False})

    Path(database).expanduser().parent.mkdir(parents=True, exist_ok=True)
    return sa.create_engine(url, connect_args={"check_same_thread": False})


class HistoryStore:
    """
    Fingerprint history used for duplicate-run detection:
    fingerprint -> outcomes of earlier runs with that content.
    """

    def __init__(self, url: str = DEFAULT_HISTORY_URL):
        self.url = url
        self.engine = _create_engine(url)
        Base.metadata.create_all(self.engine)
        self.Session = sessionmaker(self.engine, expire_on_commit=False)

    def record(
        self,
        fingerprint: str,
        outcome: Outcome | str,
        *,
        event: str,
        branch: Optional[str] = None,
        workflow: Optional[str] = None,
    ) -> RunRecord:
        rec = RunRecord(
            fingerprint=fingerprint,
            outcome=Outcome(outcome).value,
            event=event,
            branch=branch,
            workflow=workflow,
        )
        with self.Session() as s:
            with s.begin():
                s.add(rec)
        return rec

    def has_success(self, fingerprint: str) -> bool:
        q = sa.select(sa.func.count()).select_from(RunRecord).where(
            RunRecord.fingerprint == fingerprint,
            RunRecord.outcome == Outcome.SUCCEEDED.value,
        )
        with self.Session() as s:
            return s.execute(q).scalar_one() > 0

    def records(self, fingerprint: Optional[str] = None, limit: int = 20) -> List[RunRecord]:
        """Newest first."""
        q = sa.select(RunRecord).order_by(RunRecord.id.desc()).limit(limit)
        if fingerprint is not None:
            q = q.where(RunRecord.fingerprint == fingerprint)
        with self.Session() as s:
            return list(s.scalars(q))

    def close(self) -> None:
        self.engine.dispose()
