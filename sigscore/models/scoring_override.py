"""ScoringOverride model."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import DateTime, Float, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from sigscore.db.session import Base, JSONType
from sigscore.timeutil import utcnow


class ScoringOverride(Base):
    """Per-organization factor weights and tier thresholds.

    Null columns fall back to the operator defaults in scoring.yaml.
    """

    __tablename__ = "scoring_overrides"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    organization_id: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    weights: Mapped[dict | None] = mapped_column(JSONType, nullable=True)  # factor -> weight
    tiers: Mapped[dict | None] = mapped_column(JSONType, nullable=True)  # HOT/WARM/COLD
    trend_threshold_pct: Mapped[float | None] = mapped_column(Float, nullable=True)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=utcnow, onupdate=utcnow, nullable=False
    )
