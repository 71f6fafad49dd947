"""
Tests for mes_config loading.

Covers:
- Packaged defaults
- Parsing and validation errors
- Checksum determinism
- MES_CONFIG_PATH override and caching
"""

from __future__ import annotations

import pytest
import yaml

from mes_config import (
    CONFIG_PATH_ENV,
    get_active_config,
    load_config,
    parse_config,
    reset_active_config,
)
from mes_config.loader import compute_checksum
from mes_kernel.domain.lot import AllocationStrategy, EligibilityPolicy, QualityStatus

MINIMAL = {"config_id": "site-a", "version": 3}


class TestPackagedDefaults:

    def test_defaults_load(self, mes_config):
        assert mes_config.config_id == "mes-default"
        assert mes_config.allocation.default_strategy is AllocationStrategy.FIFO
        assert mes_config.allocation.admitted_quality_statuses == (QualityStatus.PASS,)
        assert mes_config.allocation.expiry_warning_days == 30
        assert mes_config.database.url == "sqlite://"

    def test_default_eligibility_admits_pass_only(self, mes_config):
        policy = mes_config.allocation.eligibility_policy()

        assert policy == EligibilityPolicy()

    def test_grants_for_unknown_workflow_is_empty(self, mes_config):
        assert mes_config.workflows.grants_for("nonexistent") == {}

    def test_grants_are_frozensets(self, mes_config):
        grants = mes_config.workflows.grants_for("disposal")

        assert grants["approve"] == frozenset({"QUALITY_MANAGER", "ADMIN"})


class TestParseConfig:

    def test_minimal_config_gets_section_defaults(self):
        config = parse_config(dict(MINIMAL))

        assert config.version == 3
        assert config.allocation.default_strategy is AllocationStrategy.FIFO
        assert config.workflows.role_grants == {}

    @pytest.mark.parametrize("missing", ["config_id", "version"])
    def test_required_keys(self, missing):
        data = dict(MINIMAL)
        del data[missing]

        with pytest.raises(KeyError):
            parse_config(data)

    def test_specific_default_strategy_rejected(self):
        with pytest.raises(ValueError):
            parse_config({**MINIMAL, "allocation": {"default_strategy": "specific"}})

    def test_unknown_quality_status_rejected(self):
        with pytest.raises(ValueError):
            parse_config({**MINIMAL, "allocation": {"admitted_quality_statuses": ["GOOD"]}})

    def test_empty_admitted_statuses_rejected(self):
        with pytest.raises(ValueError):
            parse_config({**MINIMAL, "allocation": {"admitted_quality_statuses": []}})

    def test_negative_warning_days_rejected(self):
        with pytest.raises(ValueError):
            parse_config({**MINIMAL, "allocation": {"expiry_warning_days": -1}})

    def test_workflow_section_must_be_mapping(self):
        with pytest.raises(ValueError):
            parse_config({**MINIMAL, "workflows": {"disposal": ["approve"]}})

    def test_hold_admitted_by_configuration(self):
        config = parse_config({
            **MINIMAL,
            "allocation": {"admitted_quality_statuses": ["PASS", "HOLD"]},
        })

        policy = config.allocation.eligibility_policy()
        assert policy.admitted_statuses == frozenset({QualityStatus.PASS, QualityStatus.HOLD})


class TestChecksum:

    def test_independent_of_key_order(self):
        a = {"config_id": "x", "version": 1, "allocation": {"default_strategy": "fefo"}}
        b = {"allocation": {"default_strategy": "fefo"}, "version": 1, "config_id": "x"}

        assert compute_checksum(a) == compute_checksum(b)

    def test_changes_with_content(self):
        assert compute_checksum(MINIMAL) != compute_checksum({**MINIMAL, "version": 4})


class TestActiveConfig:

    def test_env_override(self, tmp_path, monkeypatch):
        path = tmp_path / "site.yaml"
        path.write_text(yaml.safe_dump({
            **MINIMAL,
            "allocation": {"default_strategy": "fefo", "expiry_warning_days": 7},
        }))
        monkeypatch.setenv(CONFIG_PATH_ENV, str(path))
        reset_active_config()

        config = get_active_config()

        assert config.config_id == "site-a"
        assert config.allocation.default_strategy is AllocationStrategy.FEFO
        assert config.allocation.expiry_warning_days == 7

    def test_cached_until_reset(self, tmp_path, monkeypatch):
        first = get_active_config()
        path = tmp_path / "site.yaml"
        path.write_text(yaml.safe_dump(MINIMAL))
        monkeypatch.setenv(CONFIG_PATH_ENV, str(path))

        assert get_active_config() is first

        reset_active_config()
        assert get_active_config().config_id == "site-a"

    def test_missing_file(self, tmp_path, monkeypatch):
        monkeypatch.setenv(CONFIG_PATH_ENV, str(tmp_path / "absent.yaml"))
        reset_active_config()

        with pytest.raises(FileNotFoundError):
            get_active_config()

    def test_malformed_yaml(self, tmp_path):
        path = tmp_path / "broken.yaml"
        path.write_text("config_id: [unclosed\n")

        with pytest.raises(yaml.YAMLError):
            load_config(path)

    def test_load_emits_trace(self, captured_logs):
        reset_active_config()

        config = get_active_config()

        [record] = [r for r in captured_logs() if r["message"] == "MES_CONFIG_TRACE"]
        assert record["config_id"] == config.config_id
        assert record["checksum"] == config.checksum
