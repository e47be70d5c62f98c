"""Signal model: one ingested developer-activity event."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, Index, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from sigscore.db.session import Base, JSONType
from sigscore.timeutil import utcnow


class Signal(Base):
    """Immutable once stored. Deduplicated by (organization_id, dedup_key) within a window."""

    __tablename__ = "signals"
    __table_args__ = (
        Index("ix_signals_org_dedup_ts", "organization_id", "dedup_key", "timestamp"),
        Index("ix_signals_account_ts", "account_id", "timestamp"),
        UniqueConstraint(
            "organization_id", "idempotency_key", name="uq_signals_org_idempotency_key"
        ),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    organization_id: Mapped[str] = mapped_column(String(64), nullable=False)
    source_type: Mapped[str] = mapped_column(String(32), nullable=False)
    type: Mapped[str] = mapped_column(String(100), nullable=False)
    # Raw actor identifier as sent by the connector (fingerprint input)
    actor_key: Mapped[str | None] = mapped_column(String(512), nullable=True)
    actor_id: Mapped[int | None] = mapped_column(
        Integer, ForeignKey("contacts.id", ondelete="SET NULL"), nullable=True, index=True
    )
    anonymous_id: Mapped[str | None] = mapped_column(String(512), nullable=True)
    account_id: Mapped[int | None] = mapped_column(
        Integer, ForeignKey("accounts.id", ondelete="SET NULL"), nullable=True
    )
    # "metadata" is reserved on declarative classes
    signal_metadata: Mapped[dict] = mapped_column("metadata", JSONType, default=dict, nullable=False)
    timestamp: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    dedup_key: Mapped[str] = mapped_column(String(768), nullable=False)
    idempotency_key: Mapped[str | None] = mapped_column(String(255), nullable=True)
    ingested_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)

    @property
    def actor_identifier(self) -> str | None:
        """Identifier used for breadth counting: resolved contact, else raw actor."""
        if self.actor_id is not None:
            return f"contact:{self.actor_id}"
        return self.actor_key or self.anonymous_id
