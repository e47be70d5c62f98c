"""AlertEvent model: append-only record of a fired alert."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import Boolean, DateTime, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from sigscore.db.session import Base, JSONType
from sigscore.timeutil import utcnow


class AlertEvent(Base):
    __tablename__ = "alert_events"
    __table_args__ = (Index("ix_alert_events_rule_account", "rule_id", "account_id"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    organization_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    rule_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("alert_rules.id", ondelete="CASCADE"), nullable=False
    )
    account_id: Mapped[int | None] = mapped_column(
        Integer, ForeignKey("accounts.id", ondelete="SET NULL"), nullable=True
    )
    signal_id: Mapped[int | None] = mapped_column(
        Integer, ForeignKey("signals.id", ondelete="SET NULL"), nullable=True
    )
    fired_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)
    reason: Mapped[str] = mapped_column(Text, nullable=False)
    snapshot_before: Mapped[dict | None] = mapped_column(JSONType, nullable=True)
    snapshot_after: Mapped[dict | None] = mapped_column(JSONType, nullable=True)
    channels: Mapped[list] = mapped_column(JSONType, default=list, nullable=False)
    is_test: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
