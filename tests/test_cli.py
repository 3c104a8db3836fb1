from __future__ import annotations

import json
import os
from pathlib import Path

import pytest

from lft import cli
from lft.runtime.errors import (
    AlreadyFinalized,
    ConfigError,
    ConfirmationTimeout,
    InsufficientFunding,
    NeedsFunding,
    ReportWriteError,
)
from lft.runtime.manifest import manifest_digest


@pytest.fixture(autouse=True)
def _isolated_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for k in list(os.environ):
        if k.startswith("LFT_"):
            monkeypatch.delenv(k, raising=False)
    monkeypatch.setattr("lft.env._LOADED", True)
    monkeypatch.setattr(cli, "configure_structured_logging", lambda level_name=None: None)


def _out(capsys: pytest.CaptureFixture[str]) -> dict:
    return json.loads(capsys.readouterr().out)


def test_exit_codes() -> None:
    assert cli.exit_code_for(ConfigError("x")) == 2
    assert cli.exit_code_for(NeedsFunding("x")) == 3
    assert cli.exit_code_for(InsufficientFunding("x")) == 3
    assert cli.exit_code_for(ConfirmationTimeout("x")) == 4
    assert cli.exit_code_for(ReportWriteError("x")) == 4
    assert cli.exit_code_for(AlreadyFinalized("x")) == 1


def test_error_line_names_code_step_category_and_details() -> None:
    assert str(ConfigError("bad genesis")) == "invalid_config:bad genesis"
    err = ConfirmationTimeout("not observed", step="issue:team", category="team", details={"signature": "s1"})
    assert str(err) == "confirmation_timeout:not observed step=issue:team category=team details={'signature': 's1'}"


def test_dry_run_on_the_memory_network(capsys, tmp_path: Path) -> None:
    rc = cli.main(["--mode", "dev", "--network", "memory", "--checkpoint", str(tmp_path / "real.db"), "run"])
    assert rc == 0
    out = _out(capsys)
    assert out["finalization"] == "finalized"
    assert len(out["issuances"]) == 5
    doc = out["manifest_document"]
    assert manifest_digest(doc["body"]) == doc["sha256"]
    assert doc["body"]["total_units"] == str(10**18)
    # the dry run never touches the configured checkpoint
    assert not (tmp_path / "real.db").exists()


def test_memory_network_is_refused_in_prod(capsys) -> None:
    assert cli.main(["--mode", "prod", "--network", "memory", "run"]) == 2
    assert "invalid_config" in capsys.readouterr().err


def test_real_network_requires_a_ledger_factory(capsys, tmp_path: Path) -> None:
    rc = cli.main(
        ["--mode", "testnet", "--network", "devnet", "--checkpoint", str(tmp_path / "g.db"), "run", "--ledger", ""]
    )
    assert rc == 2
    assert "--ledger" in capsys.readouterr().err


def test_bad_ledger_factory_is_a_config_error(tmp_path: Path) -> None:
    rc = cli.main(
        [
            "--mode",
            "testnet",
            "--network",
            "devnet",
            "--checkpoint",
            str(tmp_path / "g.db"),
            "run",
            "--ledger",
            "lft_no_such_module:make",
        ]
    )
    assert rc == 2


def test_validate_prints_the_allocation_table(capsys, tmp_path: Path) -> None:
    assert cli.main(["validate"]) == 0
    out = _out(capsys)
    assert out["valid"] is True
    assert [a["quantity"] for a in out["allocations"]] == [
        str(400_000_000 * 10**9),
        str(250_000_000 * 10**9),
        str(200_000_000 * 10**9),
        str(100_000_000 * 10**9),
        str(50_000_000 * 10**9),
    ]


def test_invalid_genesis_file_exits_with_config_code(capsys, tmp_path: Path) -> None:
    assert cli.main(["--genesis", str(tmp_path / "missing.yaml"), "validate"]) == 2

    bad = tmp_path / "genesis.yaml"
    bad.write_text(
        "token: {name: T, symbol: T}\n"
        "decimals: 0\n"
        "total_supply: 100\n"
        "categories:\n"
        "  - {name: a, percentage: 60}\n"
        "  - {name: b, percentage: 39}\n",
        encoding="utf-8",
    )
    assert cli.main(["--genesis", str(bad), "validate"]) == 2


def test_plan_and_status(capsys, tmp_path: Path) -> None:
    db = str(tmp_path / "genesis.db")
    assert cli.main(["--checkpoint", db, "status"]) == 1
    assert _out(capsys)["exists"] is False

    assert cli.main(["--checkpoint", db, "plan"]) == 0
    plan = _out(capsys)
    assert plan["pending"][0] == "asset_init"
    assert plan["checkpoint_matches_config"] is True

    assert cli.main(["--checkpoint", db, "status"]) == 0
    snap = _out(capsys)
    assert snap["exists"] is True
    assert snap["finalization"]["state"] == "open"


def test_keygen_is_stable(capsys, tmp_path: Path) -> None:
    args = ["--credential-backend", "file", "--keys-dir", str(tmp_path / "keys"), "--checkpoint", str(tmp_path / "g.db")]
    assert cli.main(args + ["keygen"]) == 0
    first = _out(capsys)
    assert first["created"] is True and first["name"] == "deployer"

    assert cli.main(args + ["keygen"]) == 0
    second = _out(capsys)
    assert second["created"] is False
    assert second["address"] == first["address"]
