"""ContactIdentity model: one identifier attached to a contact."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from sigscore.db.session import Base
from sigscore.timeutil import utcnow


class ContactIdentity(Base):
    """Normalized (type, value) identifier with match confidence.

    The same (type, value) may sit on more than one contact while a
    duplicate awaits merge review, so the lookup index is not unique.
    """

    __tablename__ = "contact_identities"
    __table_args__ = (
        CheckConstraint(
            "confidence >= 0 AND confidence <= 1", name="ck_contact_identities_confidence"
        ),
        UniqueConstraint("contact_id", "type", "value", name="uq_contact_identities_contact"),
        Index("ix_contact_identities_type_value", "type", "value"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    contact_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("contacts.id", ondelete="CASCADE"), nullable=False, index=True
    )
    type: Mapped[str] = mapped_column(String(32), nullable=False)
    value: Mapped[str] = mapped_column(String(512), nullable=False)
    verified: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    confidence: Mapped[float] = mapped_column(Float, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)

    contact: Mapped["Contact"] = relationship("Contact", back_populates="identities")
