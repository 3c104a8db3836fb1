from __future__ import annotations

import json
from fractions import Fraction
from pathlib import Path

import pytest

from lft.ledger.memory import InMemoryLedger
from lft.runtime.errors import ConfigError
from lft.runtime.genesis_config import (
    AllocationCategory,
    GenesisConfig,
    TokenInfo,
    default_genesis_config,
    genesis_config_from_dict,
    load_genesis_config,
    parse_percentage,
)


def _raw(percentages, **over):
    raw = {
        "token": {"name": "Test Token", "symbol": "TST"},
        "decimals": 6,
        "total_supply": 1_000_000,
        "categories": [{"name": f"cat{i}", "percentage": p} for i, p in enumerate(percentages)],
    }
    raw.update(over)
    return raw


def test_default_config_is_the_lft_distribution() -> None:
    cfg = default_genesis_config()
    assert cfg.token.symbol == "LFT"
    assert cfg.decimals == 9
    assert cfg.total_supply == 1_000_000_000
    assert cfg.category_names == [
        "communityTreasury",
        "contributorRewards",
        "developmentFund",
        "foundingTeam",
        "liquidityProvision",
    ]
    assert sum(c.percentage for c in cfg.categories) == 100
    assert cfg.category("foundingTeam").lock_duration_seconds == 31_536_000
    assert cfg.category("developmentFund").release_schedule == "linear"


@pytest.mark.parametrize("percentages", [[40, 25, 20, 10, 4], [40, 25, 20, 10, 6]])
def test_percentages_not_summing_to_100_are_rejected_before_any_ledger_call(percentages) -> None:
    ledger = InMemoryLedger()
    with pytest.raises(ConfigError) as ei:
        genesis_config_from_dict(_raw(percentages))
    assert ei.value.code == "invalid_config"
    assert ei.value.step == "config"
    assert sum(ledger.calls.values()) == 0


def test_exact_fractions_that_sum_to_100_are_accepted() -> None:
    cfg = genesis_config_from_dict(_raw(["100/3", "100/3", "100/3"]))
    assert sum(c.percentage for c in cfg.categories) == Fraction(100)

    cfg2 = genesis_config_from_dict(_raw(["33.33", "33.33", "33.34"]))
    assert cfg2.categories[2].percentage == Fraction("33.34")


def test_float_percentages_are_read_by_their_decimal_repr() -> None:
    assert parse_percentage(12.5) == Fraction(25, 2)
    assert parse_percentage(0.1) == Fraction(1, 10)
    with pytest.raises(ValueError):
        parse_percentage(True)
    with pytest.raises(ValueError):
        parse_percentage("1/0")


def test_supply_beyond_u64_is_rejected_at_construction() -> None:
    with pytest.raises(ConfigError) as ei:
        genesis_config_from_dict(_raw([100], decimals=18, total_supply=19))
    assert "u64" in ei.value.reason


def test_duplicate_category_names_are_rejected() -> None:
    raw = _raw([50, 50])
    raw["categories"][1]["name"] = "cat0"
    with pytest.raises(ConfigError, match="duplicate"):
        genesis_config_from_dict(raw)


def test_time_restricted_category_requires_positive_lock() -> None:
    raw = _raw([60, 40])
    raw["categories"][0]["time_restricted"] = True
    with pytest.raises(ConfigError) as ei:
        genesis_config_from_dict(raw)
    assert ei.value.category == "cat0"

    raw["categories"][0]["lock_duration_seconds"] = 3600
    cfg = genesis_config_from_dict(raw)
    assert cfg.category("cat0").is_time_restricted


def test_unknown_fields_fail_schema_validation_with_locations() -> None:
    raw = _raw([100], surprise=True)
    with pytest.raises(ConfigError) as ei:
        genesis_config_from_dict(raw)
    assert isinstance(ei.value.details, list)
    assert ["surprise"] in [d["loc"] for d in ei.value.details]
    # details must stay JSON-safe for the CLI and logs
    json.dumps(ei.value.to_json())


def test_direct_construction_validates_too() -> None:
    with pytest.raises(ConfigError):
        GenesisConfig(
            token=TokenInfo(name="x", symbol="X"),
            decimals=2,
            total_supply=100,
            categories=(AllocationCategory("a", Fraction(99)),),
        )


def test_fingerprint_is_stable_and_sensitive_to_allocation() -> None:
    a = genesis_config_from_dict(_raw([60, 40]))
    b = genesis_config_from_dict(_raw([60, 40]))
    c = genesis_config_from_dict(_raw([40, 60]))
    assert a.fingerprint() == b.fingerprint()
    assert a.fingerprint() != c.fingerprint()


def test_load_yaml_and_json_files(tmp_path: Path) -> None:
    y = tmp_path / "genesis.yaml"
    y.write_text(
        "\n".join(
            [
                "token: {name: Test Token, symbol: TST}",
                "decimals: 2",
                "total_supply: 1000",
                "remainder_policy: largest",
                "categories:",
                "  - {name: a, percentage: 12.5}",
                "  - {name: b, percentage: '87.5', time_restricted: true, lock_duration_seconds: 60}",
            ]
        ),
        encoding="utf-8",
    )
    cfg = load_genesis_config(y)
    assert cfg.remainder_policy == "largest"
    assert cfg.category("a").percentage == Fraction(25, 2)

    j = tmp_path / "genesis.json"
    j.write_text(json.dumps(_raw([100])), encoding="utf-8")
    assert load_genesis_config(j).category_names == ["cat0"]

    with pytest.raises(ConfigError):
        load_genesis_config(tmp_path / "missing.yaml")
