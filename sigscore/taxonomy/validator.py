"""Scoring configuration schema validation.

Checks the structure of scoring.yaml:
- scoring.factors: the four factor keys with weights summing to 1.0
- scoring.tiers: HOT > WARM > COLD, all within 0..100
- scoring.recency_decay: ascending max_days, values within 0..1
- identity.confidence: ladder values within 0..1
- metadata_families: known family names only
"""

from __future__ import annotations

from typing import Any

FACTOR_KEYS = ("signal_velocity", "user_breadth", "recency", "diversity")
TIER_KEYS = ("HOT", "WARM", "COLD")
CONFIDENCE_KEYS = ("verified_email", "verified_handle", "unverified_exact", "domain", "ip")
METADATA_FAMILIES = frozenset({"repository", "package", "web", "product", "community", "generic"})


class ScoringConfigValidationError(ValueError):
    """Raised when scoring configuration validation fails.

    Subclasses ValueError so callers can catch it via ``except ValueError``
    alongside ``FileNotFoundError`` without needing to import this class.
    """


def _require_dict(value: Any, path: str) -> dict[str, Any]:
    if not isinstance(value, dict):
        raise ScoringConfigValidationError(f"{path} must be a dict")
    return value


def _require_number(value: Any, path: str, low: float, high: float | None = None) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ScoringConfigValidationError(f"{path} must be a number, got {value!r}")
    if value < low or (high is not None and value > high):
        bound = f"[{low}, {high}]" if high is not None else f">= {low}"
        raise ScoringConfigValidationError(f"{path} must be {bound}, got {value}")
    return float(value)


def validate_scoring_config(config: dict[str, Any]) -> None:
    """Validate scoring configuration structure.

    Args:
        config: Loaded scoring.yaml content.

    Raises:
        ScoringConfigValidationError: When structure or value ranges are invalid.
    """
    _require_dict(config, "scoring config")
    scoring = _require_dict(config.get("scoring"), "scoring")

    factors = _require_dict(scoring.get("factors"), "scoring.factors")
    if set(factors) != set(FACTOR_KEYS):
        raise ScoringConfigValidationError(
            f"scoring.factors must define exactly {', '.join(FACTOR_KEYS)}"
        )
    total = 0.0
    for key in FACTOR_KEYS:
        entry = _require_dict(factors[key], f"scoring.factors.{key}")
        total += _require_number(entry.get("weight"), f"scoring.factors.{key}.weight", 0.0, 1.0)
    if abs(total - 1.0) > 1e-6:
        raise ScoringConfigValidationError(f"scoring factor weights must sum to 1.0, got {total}")

    velocity = _require_dict(scoring.get("velocity"), "scoring.velocity")
    _require_number(velocity.get("recent_days"), "scoring.velocity.recent_days", 1)
    _require_number(velocity.get("saturation"), "scoring.velocity.saturation", 0.01)
    diversity = _require_dict(scoring.get("diversity"), "scoring.diversity")
    _require_number(diversity.get("saturation"), "scoring.diversity.saturation", 1)

    breadth = _require_dict(scoring.get("user_breadth"), "scoring.user_breadth")
    _require_number(
        breadth.get("default_expected_users"), "scoring.user_breadth.default_expected_users", 1
    )
    bands = breadth.get("size_bands") or []
    if not isinstance(bands, list):
        raise ScoringConfigValidationError("scoring.user_breadth.size_bands must be a list")
    for i, band in enumerate(bands):
        band = _require_dict(band, f"scoring.user_breadth.size_bands[{i}]")
        _require_number(
            band.get("expected_users"), f"scoring.user_breadth.size_bands[{i}].expected_users", 1
        )

    decay = scoring.get("recency_decay")
    if not isinstance(decay, list) or not decay:
        raise ScoringConfigValidationError("scoring.recency_decay must be a non-empty list")
    previous = -1.0
    for i, step in enumerate(decay):
        step = _require_dict(step, f"scoring.recency_decay[{i}]")
        max_days = _require_number(step.get("max_days"), f"scoring.recency_decay[{i}].max_days", 0)
        if max_days <= previous:
            raise ScoringConfigValidationError("scoring.recency_decay max_days must ascend")
        previous = max_days
        _require_number(step.get("value"), f"scoring.recency_decay[{i}].value", 0.0, 1.0)

    tiers = _require_dict(scoring.get("tiers"), "scoring.tiers")
    bounds = [
        _require_number(tiers.get(key), f"scoring.tiers.{key}", 0, 100) for key in TIER_KEYS
    ]
    if not bounds[0] > bounds[1] > bounds[2]:
        raise ScoringConfigValidationError("scoring.tiers must satisfy HOT > WARM > COLD")

    _require_number(scoring.get("trend_threshold_pct"), "scoring.trend_threshold_pct", 0)

    identity = _require_dict(config.get("identity"), "identity")
    confidence = _require_dict(identity.get("confidence"), "identity.confidence")
    for key in CONFIDENCE_KEYS:
        _require_number(confidence.get(key), f"identity.confidence.{key}", 0.0, 1.0)
    providers = identity.get("free_email_providers") or []
    if not isinstance(providers, list):
        raise ScoringConfigValidationError("identity.free_email_providers must be a list")

    families = config.get("metadata_families") or {}
    _require_dict(families, "metadata_families")
    for section in ("by_type", "by_source"):
        mapping = _require_dict(families.get(section) or {}, f"metadata_families.{section}")
        for key, family in mapping.items():
            if family not in METADATA_FAMILIES:
                raise ScoringConfigValidationError(
                    f"metadata_families.{section}.{key}: unknown family '{family}'"
                )
