"""Account model."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import DateTime, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from sigscore.db.session import Base
from sigscore.timeutil import utcnow


class Account(Base):
    """Company-level entity that contacts and signals roll up to."""

    __tablename__ = "accounts"
    __table_args__ = (
        UniqueConstraint("organization_id", "domain", name="uq_accounts_org_domain"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    organization_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    domain: Mapped[str | None] = mapped_column(String(255), nullable=True)
    employee_count: Mapped[int | None] = mapped_column(Integer, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)

    contacts: Mapped[list["Contact"]] = relationship("Contact", back_populates="account")
