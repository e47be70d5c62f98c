"""ContactMergeLog model: audit row per contact folded into a primary."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import DateTime, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from sigscore.db.session import Base
from sigscore.timeutil import utcnow


class ContactMergeLog(Base):
    __tablename__ = "contact_merge_logs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    organization_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    # No FKs: the merged contact row is deleted, the log must outlive it
    primary_contact_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    merged_contact_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    identities_moved: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    signals_moved: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    activities_moved: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    deals_moved: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    merged_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)
