"""
Tests for financing_config: schema validation, YAML loading and
get_active_config() source precedence.
"""

from dataclasses import FrozenInstanceError
from decimal import Decimal

import pytest
import yaml

from financing_config import CONFIG_PATH_ENV, get_active_config
from financing_config.loader import compute_checksum, load_config, parse_config
from financing_config.schema import FinancingConfig
from financing_kernel.exceptions import ValidationError


class TestDefaults:
    def test_standard_terms(self):
        config = FinancingConfig.with_defaults()
        assert config.offer_expiry_hours == 48
        assert config.max_discount_percent == Decimal("50")
        assert config.min_rejection_reason_length == 10
        assert config.expired_offer_policy == "expire"
        assert config.max_bidding_window_hours == 168
        assert config.allow_cancel_during_bidding is True
        assert config.concurrency_retries == 1

    def test_frozen(self):
        config = FinancingConfig.with_defaults()
        with pytest.raises(FrozenInstanceError):
            config.offer_expiry_hours = 1

    def test_packaged_yaml_matches_defaults(self, monkeypatch):
        monkeypatch.delenv(CONFIG_PATH_ENV, raising=False)
        assert get_active_config() == FinancingConfig.with_defaults()


class TestValidation:
    @pytest.mark.parametrize(
        "overrides",
        [
            {"offer_expiry_hours": 0},
            {"max_discount_percent": Decimal("0")},
            {"max_discount_percent": Decimal("101")},
            {"expired_offer_policy": "delete"},
            {"max_bidding_window_hours": -1},
            {"concurrency_retries": -1},
            {"min_rejection_reason_length": -1},
        ],
    )
    def test_out_of_range_values_rejected(self, overrides):
        with pytest.raises(ValueError):
            FinancingConfig(**overrides)

    def test_unknown_currency_rejected(self):
        with pytest.raises(ValidationError):
            FinancingConfig(default_currency="XYZ")

    def test_currency_normalized(self):
        assert FinancingConfig(default_currency="usd").default_currency == "USD"


class TestLoader:
    def test_from_dict_coerces_decimals(self):
        config = FinancingConfig.from_dict({"max_discount_percent": 30, "offer_expiry_hours": 24})
        assert config.max_discount_percent == Decimal("30")
        assert config.offer_expiry_hours == 24

    def test_unknown_keys_rejected(self):
        with pytest.raises(ValueError, match="Unknown"):
            FinancingConfig.from_dict({"offer_expiry_days": 2})

    def test_parse_accepts_top_level_or_section(self):
        flat = parse_config({"expired_offer_policy": "revert_to_draft"})
        nested = parse_config({"financing": {"expired_offer_policy": "revert_to_draft"}})
        assert flat == nested
        assert flat.expired_offer_policy == "revert_to_draft"

    def test_load_yaml_file(self, tmp_path):
        path = tmp_path / "financing.yaml"
        path.write_text(yaml.safe_dump({"financing": {"allow_cancel_during_bidding": False}}))
        assert load_config(path).allow_cancel_during_bidding is False

    def test_missing_file_propagates(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_config(tmp_path / "absent.yaml")

    def test_checksum_is_stable(self):
        data = FinancingConfig.with_defaults().to_dict()
        assert compute_checksum(data) == compute_checksum(dict(reversed(list(data.items()))))


class TestActiveConfig:
    def test_env_var_selects_file(self, tmp_path, monkeypatch):
        path = tmp_path / "custom.yaml"
        path.write_text("financing:\n  offer_expiry_hours: 12\n")
        monkeypatch.setenv(CONFIG_PATH_ENV, str(path))
        assert get_active_config().offer_expiry_hours == 12

    def test_explicit_path_wins(self, tmp_path, monkeypatch):
        env_path = tmp_path / "env.yaml"
        env_path.write_text("offer_expiry_hours: 12\n")
        arg_path = tmp_path / "arg.yaml"
        arg_path.write_text("offer_expiry_hours: 6\n")
        monkeypatch.setenv(CONFIG_PATH_ENV, str(env_path))
        assert get_active_config(arg_path).offer_expiry_hours == 6

    def test_emits_config_trace(self, captured_logs, monkeypatch):
        monkeypatch.delenv(CONFIG_PATH_ENV, raising=False)
        get_active_config()
        traces = [r for r in captured_logs() if r["message"] == "FINANCING_CONFIG_TRACE"]
        assert len(traces) == 1
        assert traces[0]["source"].endswith("defaults.yaml")
        assert len(traces[0]["checksum"]) == 64
