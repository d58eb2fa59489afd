"""
Tests for configuration loading and validation.
"""

from decimal import Decimal
from pathlib import Path

import pytest
import yaml

from receivables_config import ReceivablesConfig, clear_config_cache, compute_checksum, get_active_config
from receivables_config.loader import load_config, load_yaml_file
from receivables_kernel.domain.types import AllocationPriority, PeriodType


@pytest.fixture(autouse=True)
def _fresh_cache():
    clear_config_cache()
    yield
    clear_config_cache()


def write_yaml(tmp_path: Path, data) -> Path:
    path = tmp_path / "receivables.yaml"
    path.write_text(yaml.safe_dump(data))
    return path


class TestDefaults:
    def test_packaged_defaults_match_dataclass_defaults(self):
        config = get_active_config()
        defaults = ReceivablesConfig.with_defaults()

        assert config.default_allocation_priority == defaults.default_allocation_priority
        assert config.override_roles == defaults.override_roles
        assert config.lock_period_types == defaults.lock_period_types
        assert config.reconcile_tolerance == Decimal("0.01")
        assert [s.task_type for s in config.schedules] == [
            "receivables.suggest_allocations",
            "receivables.apply_open_credits",
        ]
        assert config.schedules[1].is_active is False

    def test_active_config_is_cached(self, captured_logs):
        first = get_active_config()
        second = get_active_config()

        assert first is second
        loads = [r for r in captured_logs() if r["message"] == "receivables_config_loaded"]
        assert len(loads) == 1
        assert len(loads[0]["checksum"]) == 64


class TestFromDict:
    def test_overrides(self, tmp_path):
        path = write_yaml(
            tmp_path,
            {
                "config_id": "tenant-a",
                "allocation": {"default_priority": "due_date", "default_payment_terms_days": 45},
                "period_locks": {"period_types": ["MONTH"]},
                "reconcile": {"tolerance": 0.5, "max_items": 5},
            },
        )

        config = get_active_config(path)

        assert config.config_id == "tenant-a"
        assert config.default_allocation_priority == AllocationPriority.DUE_DATE
        assert config.default_payment_terms_days == 45
        assert config.lock_period_types == (PeriodType.MONTH,)
        assert config.reconcile_tolerance == Decimal("0.5")
        assert config.reconcile_max_items == 5

    def test_unknown_section(self):
        with pytest.raises(ValueError, match="Unknown configuration sections"):
            ReceivablesConfig.from_dict({"allocations": {}})

    def test_bad_enum_value(self):
        with pytest.raises(ValueError):
            ReceivablesConfig.from_dict({"allocation": {"default_priority": "NEWEST"}})

    def test_bad_tolerance(self):
        with pytest.raises(ValueError):
            ReceivablesConfig.from_dict({"reconcile": {"tolerance": "lots"}})

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"scanner_batch_size": 0},
            {"admin_roles": ()},
            {"reconcile_tolerance": Decimal("-1")},
            {"reconcile_max_items": 300},
        ],
    )
    def test_post_init_validation(self, kwargs):
        with pytest.raises(ValueError):
            ReceivablesConfig(**kwargs)


class TestLoader:
    def test_checksum_is_stable(self, tmp_path):
        data = {"config_id": "x", "scanner": {"batch_size": 10}}
        path = write_yaml(tmp_path, data)

        _, checksum = load_config(path)

        assert checksum == compute_checksum(data)
        assert compute_checksum({"b": 1, "a": 2}) == compute_checksum({"a": 2, "b": 1})

    def test_top_level_must_be_mapping(self, tmp_path):
        path = write_yaml(tmp_path, ["not", "a", "mapping"])

        with pytest.raises(ValueError):
            load_yaml_file(path)

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            get_active_config(tmp_path / "missing.yaml")
