"""Scoring configuration loader.

Factor weights, tier thresholds, trend threshold, identity confidence ladder
and metadata families are operator configuration, not code constants.
"""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Any

import yaml

from sigscore.config import get_settings

_DEFAULT_PATH = Path(__file__).parent / "scoring.yaml"


def _config_path() -> Path:
    override = get_settings().scoring_config_path
    return Path(override) if override else _DEFAULT_PATH


@lru_cache(maxsize=1)
def load_scoring_config() -> dict[str, Any]:
    """Load, validate and return the scoring configuration.

    Raises:
        FileNotFoundError: If the configured file is missing.
        ScoringConfigValidationError: If the content is structurally invalid.
    """
    from sigscore.taxonomy.validator import validate_scoring_config

    try:
        with _config_path().open() as f:
            data: dict[str, Any] = yaml.safe_load(f) or {}
    except yaml.YAMLError as exc:
        raise ValueError(f"Scoring config YAML is malformed: {exc}") from exc
    validate_scoring_config(data)
    return data


def get_scoring_section() -> dict[str, Any]:
    return load_scoring_config()["scoring"]


def get_identity_section() -> dict[str, Any]:
    return load_scoring_config()["identity"]


@lru_cache(maxsize=1)
def get_free_email_providers() -> frozenset[str]:
    """Return the set of free-mail domains that never resolve a company (cached)."""
    providers = get_identity_section().get("free_email_providers") or []
    return frozenset(p.strip().lower() for p in providers if p)


def metadata_family_for(signal_type: str, source_type: str) -> str:
    """Return the metadata family for a signal: by type, then by source, else generic."""
    families = load_scoring_config().get("metadata_families") or {}
    by_type = families.get("by_type") or {}
    if signal_type in by_type:
        return by_type[signal_type]
    by_source = families.get("by_source") or {}
    return by_source.get(source_type, "generic")


def clear_caches() -> None:
    load_scoring_config.cache_clear()
    get_free_email_providers.cache_clear()
