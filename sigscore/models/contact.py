"""Contact model."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, Integer, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from sigscore.db.session import Base
from sigscore.timeutil import utcnow

# Profile fields merge fills on the primary when empty, and completeness counts.
PROFILE_FIELDS = (
    "first_name",
    "last_name",
    "email",
    "phone",
    "title",
    "github",
    "twitter",
    "linkedin",
    "avatar_url",
)


class Contact(Base):
    """Canonical person record."""

    __tablename__ = "contacts"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    organization_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    account_id: Mapped[int | None] = mapped_column(
        Integer, ForeignKey("accounts.id", ondelete="SET NULL"), nullable=True, index=True
    )
    first_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    last_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    email: Mapped[str | None] = mapped_column(String(320), nullable=True)
    phone: Mapped[str | None] = mapped_column(String(64), nullable=True)
    title: Mapped[str | None] = mapped_column(String(255), nullable=True)
    github: Mapped[str | None] = mapped_column(String(255), nullable=True)
    twitter: Mapped[str | None] = mapped_column(String(255), nullable=True)
    linkedin: Mapped[str | None] = mapped_column(String(2048), nullable=True)
    avatar_url: Mapped[str | None] = mapped_column(String(2048), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=utcnow, onupdate=utcnow, nullable=False
    )

    account: Mapped["Account"] = relationship("Account", back_populates="contacts")
    identities: Mapped[list["ContactIdentity"]] = relationship(
        "ContactIdentity",
        back_populates="contact",
        cascade="all, delete-orphan",
        order_by="ContactIdentity.id",
    )

    def completeness(self) -> int:
        """Number of populated profile fields."""
        return sum(1 for field in PROFILE_FIELDS if getattr(self, field))
