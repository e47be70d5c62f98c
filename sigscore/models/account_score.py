"""AccountScore model: append-only score snapshot per account."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import (
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from sigscore.db.session import Base, JSONType
from sigscore.timeutil import utcnow


class AccountScore(Base):
    """One computed score. The latest version per account is current.

    (account_id, version) is unique: two writers computing from the same
    prior version cannot both append, which is the compare-and-swap guard.
    """

    __tablename__ = "account_scores"
    __table_args__ = (
        UniqueConstraint("account_id", "version", name="uq_account_scores_account_version"),
        CheckConstraint("score >= 0 AND score <= 100", name="ck_account_scores_score_range"),
        Index("ix_account_scores_account_computed", "account_id", "computed_at"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    organization_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    account_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False
    )
    version: Mapped[int] = mapped_column(Integer, nullable=False)
    score: Mapped[int] = mapped_column(Integer, nullable=False)
    tier: Mapped[str] = mapped_column(String(16), nullable=False)
    trend: Mapped[str] = mapped_column(String(16), nullable=False)
    factors: Mapped[list] = mapped_column(JSONType, default=list, nullable=False)
    signal_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    user_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    last_signal_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    computed_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)

    def to_snapshot(self) -> dict:
        """Compact dict stored on alert events."""
        return {
            "id": self.id,
            "version": self.version,
            "score": self.score,
            "tier": self.tier,
            "trend": self.trend,
            "computed_at": self.computed_at.isoformat() if self.computed_at else None,
        }
