"""Per-organization scoring overrides on top of scoring.yaml.

An organization may override factor weights, tier thresholds and the trend
threshold. Everything else (velocity, breadth bands, recency decay) stays
operator configuration. Overrides are merged over the defaults and the
result must pass the same validation as scoring.yaml.
"""

from __future__ import annotations

import copy
import logging
from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session

from sigscore.errors import ValidationError
from sigscore.models.scoring_override import ScoringOverride
from sigscore.schemas.score import ScoringConfigResponse, ScoringConfigUpdate
from sigscore.taxonomy.loader import get_scoring_section, load_scoring_config
from sigscore.taxonomy.validator import (
    FACTOR_KEYS,
    TIER_KEYS,
    ScoringConfigValidationError,
    validate_scoring_config,
)

logger = logging.getLogger(__name__)


def _override(db: Session, organization_id: str) -> ScoringOverride | None:
    return db.scalar(
        select(ScoringOverride).where(ScoringOverride.organization_id == organization_id)
    )


def _merge(
    base: dict[str, Any],
    weights: dict[str, float] | None,
    tiers: dict[str, float] | None,
    trend_threshold_pct: float | None,
) -> dict[str, Any]:
    section = copy.deepcopy(base)
    for name, weight in (weights or {}).items():
        section["factors"][name] = {**section["factors"].get(name, {}), "weight": weight}
    for name, bound in (tiers or {}).items():
        section["tiers"][name] = bound
    if trend_threshold_pct is not None:
        section["trend_threshold_pct"] = trend_threshold_pct
    return section


def _check(section: dict[str, Any]) -> dict[str, Any]:
    """Validate a merged scoring section as a whole scoring.yaml would be.

    Raises:
        ValidationError: unknown keys, weights not summing to 1.0, tiers out of order.
    """
    unknown = set(section["factors"]) - set(FACTOR_KEYS)
    if unknown:
        raise ValidationError(f"Unknown scoring factors: {', '.join(sorted(unknown))}")
    unknown = set(section["tiers"]) - set(TIER_KEYS)
    if unknown:
        raise ValidationError(f"Unknown tiers: {', '.join(sorted(unknown))}")
    try:
        validate_scoring_config({**load_scoring_config(), "scoring": section})
    except ScoringConfigValidationError as exc:
        raise ValidationError(str(exc)) from exc
    return section


def _response(section: dict[str, Any], customized: bool) -> ScoringConfigResponse:
    return ScoringConfigResponse(
        weights={name: float(section["factors"][name]["weight"]) for name in FACTOR_KEYS},
        tiers={name: float(section["tiers"][name]) for name in TIER_KEYS},
        trend_threshold_pct=float(section["trend_threshold_pct"]),
        customized=customized,
    )


def effective_scoring_config(db: Session, organization_id: str) -> dict[str, Any]:
    """Scoring section for the organization: defaults with its overrides applied.

    A stored override that no longer validates against the current defaults
    is ignored with a warning and the defaults are used.
    """
    defaults = get_scoring_section()
    override = _override(db, organization_id)
    if override is None:
        return defaults
    section = _merge(defaults, override.weights, override.tiers, override.trend_threshold_pct)
    try:
        return _check(section)
    except ValidationError as exc:
        logger.warning(
            "Ignoring invalid scoring override: org=%s: %s", organization_id, exc.message
        )
        return defaults


def proposed_scoring_section(
    db: Session, organization_id: str, update: ScoringConfigUpdate
) -> dict[str, Any]:
    """Scoring section the organization would have after ``update``; not saved.

    Raises:
        ValidationError: the merged configuration is invalid.
    """
    override = _override(db, organization_id)
    section = get_scoring_section()
    if override is not None:
        section = _merge(section, override.weights, override.tiers, override.trend_threshold_pct)
    return _check(_merge(section, update.weights, update.tiers, update.trend_threshold_pct))


def get_scoring_config(db: Session, organization_id: str) -> ScoringConfigResponse:
    customized = _override(db, organization_id) is not None
    return _response(effective_scoring_config(db, organization_id), customized)


def update_scoring_config(
    db: Session, organization_id: str, update: ScoringConfigUpdate
) -> ScoringConfigResponse:
    """Validate and save the organization's overrides. Commits.

    Existing scores are not recomputed; see ``apply_scoring_config``.
    """
    section = proposed_scoring_section(db, organization_id, update)
    override = _override(db, organization_id)
    if override is None:
        override = ScoringOverride(organization_id=organization_id)
        db.add(override)
    if update.weights is not None:
        override.weights = {**(override.weights or {}), **update.weights}
    if update.tiers is not None:
        override.tiers = {**(override.tiers or {}), **update.tiers}
    if update.trend_threshold_pct is not None:
        override.trend_threshold_pct = update.trend_threshold_pct
    db.commit()
    logger.info(
        "Updated scoring config: org=%s weights=%s tiers=%s trend=%s",
        organization_id,
        override.weights,
        override.tiers,
        override.trend_threshold_pct,
    )
    return _response(section, True)


def reset_scoring_config(db: Session, organization_id: str) -> ScoringConfigResponse:
    """Drop the organization's overrides. Commits."""
    override = _override(db, organization_id)
    if override is not None:
        db.delete(override)
        db.commit()
        logger.info("Reset scoring config to defaults: org=%s", organization_id)
    return _response(get_scoring_section(), False)
