"""Tests for scoring.yaml validation and loading."""

from __future__ import annotations

import copy
from pathlib import Path
from unittest.mock import patch

import pytest
import yaml

from sigscore.config import get_settings
from sigscore.taxonomy.loader import (
    get_free_email_providers,
    get_scoring_section,
    load_scoring_config,
    metadata_family_for,
)
from sigscore.taxonomy.validator import ScoringConfigValidationError, validate_scoring_config

DEFAULT_PATH = Path(__file__).resolve().parent.parent / "sigscore" / "taxonomy" / "scoring.yaml"


@pytest.fixture
def shipped() -> dict:
    with DEFAULT_PATH.open() as f:
        return yaml.safe_load(f)


class TestValidator:
    def test_shipped_config_is_valid(self, shipped):
        validate_scoring_config(shipped)

    def test_weights_must_sum_to_one(self, shipped):
        config = copy.deepcopy(shipped)
        config["scoring"]["factors"]["recency"]["weight"] = 0.5
        with pytest.raises(ScoringConfigValidationError, match="sum to 1.0"):
            validate_scoring_config(config)

    def test_unknown_factor_rejected(self, shipped):
        config = copy.deepcopy(shipped)
        config["scoring"]["factors"]["popularity"] = {"weight": 0.0}
        with pytest.raises(ScoringConfigValidationError, match="exactly"):
            validate_scoring_config(config)

    def test_tiers_must_descend(self, shipped):
        config = copy.deepcopy(shipped)
        config["scoring"]["tiers"]["WARM"] = 85
        with pytest.raises(ScoringConfigValidationError, match="HOT > WARM > COLD"):
            validate_scoring_config(config)

    def test_recency_steps_must_ascend(self, shipped):
        config = copy.deepcopy(shipped)
        config["scoring"]["recency_decay"][1]["max_days"] = 1
        with pytest.raises(ScoringConfigValidationError, match="ascend"):
            validate_scoring_config(config)

    def test_confidence_out_of_range(self, shipped):
        config = copy.deepcopy(shipped)
        config["identity"]["confidence"]["ip"] = 1.5
        with pytest.raises(ScoringConfigValidationError, match="identity.confidence.ip"):
            validate_scoring_config(config)

    def test_unknown_metadata_family(self, shipped):
        config = copy.deepcopy(shipped)
        config.setdefault("metadata_families", {}).setdefault("by_type", {})["x"] = "telepathy"
        with pytest.raises(ScoringConfigValidationError, match="unknown family"):
            validate_scoring_config(config)


class TestLoader:
    def test_default_config(self):
        assert get_scoring_section()["tiers"] == {"HOT": 80, "WARM": 50, "COLD": 20}
        assert "gmail.com" in get_free_email_providers()
        assert metadata_family_for("no_such_type", "NO_SUCH_SOURCE") == "generic"

    def test_override_path(self, shipped, tmp_path):
        """SCORING_CONFIG_PATH points the loader at an operator file."""
        config = copy.deepcopy(shipped)
        config["scoring"]["tiers"] = {"HOT": 90, "WARM": 60, "COLD": 30}
        path = tmp_path / "scoring.yaml"
        path.write_text(yaml.safe_dump(config))

        with patch.object(get_settings(), "scoring_config_path", str(path)):
            load_scoring_config.cache_clear()
            assert get_scoring_section()["tiers"]["HOT"] == 90

    def test_invalid_override_fails_loudly(self, shipped, tmp_path):
        config = copy.deepcopy(shipped)
        del config["scoring"]["tiers"]
        path = tmp_path / "scoring.yaml"
        path.write_text(yaml.safe_dump(config))

        with patch.object(get_settings(), "scoring_config_path", str(path)):
            load_scoring_config.cache_clear()
            with pytest.raises(ScoringConfigValidationError):
                load_scoring_config()

    def test_missing_file(self, tmp_path):
        with patch.object(get_settings(), "scoring_config_path", str(tmp_path / "absent.yaml")):
            load_scoring_config.cache_clear()
            with pytest.raises(FileNotFoundError):
                load_scoring_config()
