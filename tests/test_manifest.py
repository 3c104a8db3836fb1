from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Dict, List

import pytest

from lft.runtime.errors import ReportWriteError
from lft.runtime.integrations import GovernanceRealm, ManifestSink, RealmParams, StakingProgram
from lft.runtime.manifest import MANIFEST_FORMAT, canonical_json, manifest_digest, read_manifest, verify_manifest, write_manifest


def _body(**extra: Any) -> Dict[str, Any]:
    body = {"format": MANIFEST_FORMAT, "asset_id": "A", "total_units": str(2**64 - 1)}
    body.update(extra)
    return body


def test_canonical_json_is_order_independent() -> None:
    assert canonical_json({"b": 1, "a": [2, 3]}) == '{"a":[2,3],"b":1}'
    assert manifest_digest({"b": 1, "a": 2}) == manifest_digest({"a": 2, "b": 1})


def test_write_then_rewrite_same_body_is_a_noop(tmp_path: Path) -> None:
    path = str(tmp_path / "out" / "manifest.json")
    first = write_manifest(path, _body())
    assert first.written is True
    assert verify_manifest(path)
    mtime = Path(path).stat().st_mtime_ns

    second = write_manifest(path, _body())
    assert second.written is False
    assert second.sha256 == first.sha256
    assert Path(path).stat().st_mtime_ns == mtime
    assert not [p for p in Path(path).parent.iterdir() if p.name.startswith(".manifest-")]


def test_different_body_is_never_overwritten(tmp_path: Path) -> None:
    path = str(tmp_path / "manifest.json")
    write_manifest(path, _body())
    with pytest.raises(ReportWriteError) as ei:
        write_manifest(path, _body(asset_id="B"))
    assert ei.value.retryable is True
    assert read_manifest(path)["body"]["asset_id"] == "A"


def test_tampered_manifest_fails_verification(tmp_path: Path) -> None:
    path = tmp_path / "manifest.json"
    write_manifest(str(path), _body())
    doc = json.loads(path.read_text(encoding="utf-8"))
    doc["body"]["total_units"] = "1"
    path.write_text(json.dumps(doc), encoding="utf-8")
    assert verify_manifest(str(path)) is False


def test_unreadable_manifest_is_a_report_error(tmp_path: Path) -> None:
    path = tmp_path / "manifest.json"
    path.write_text("{not json", encoding="utf-8")
    with pytest.raises(ReportWriteError):
        read_manifest(str(path))
    path.write_text("[]", encoding="utf-8")
    with pytest.raises(ReportWriteError):
        verify_manifest(str(path))


def test_manifest_lists_categories_in_config_order(orchestrator) -> None:
    result = orchestrator.run()
    body = read_manifest(result.manifest.path)["body"]
    assert [c["name"] for c in body["categories"]] == [r.category for r in result.issuances]
    assert [c["percentage"] for c in body["categories"]] == ["40", "25", "20", "10", "5"]
    assert body["creation_date"].endswith("Z")
    assert body["release_schedules"][0]["category"] == "developmentFund"
    for cat in body["categories"]:
        assert cat["public_identity"] == result.recipients[cat["name"]].public_identity
        assert cat["issuance_receipt"]["signature"]


class _Realm:
    name = "realm"

    def __init__(self) -> None:
        self.published: List[Dict[str, Any]] = []

    def publish(self, manifest: Dict[str, Any]) -> None:
        self.published.append(manifest)

    def initialize_realm(self, params: RealmParams) -> str:
        return f"realm:{params.community_asset}"


class _Staking:
    name = "staking"

    def publish(self, manifest: Dict[str, Any]) -> None:
        raise RuntimeError("pool offline")

    def register_asset(self, asset_id: str, *, decimals: int) -> str:
        return f"pool:{asset_id}"


def test_sinks_receive_the_written_manifest(make_orchestrator, funded) -> None:
    realm = _Realm()
    assert isinstance(realm, GovernanceRealm) and isinstance(realm, ManifestSink)
    result = make_orchestrator(sinks=[realm]).run()
    assert len(realm.published) == 1
    assert realm.published[0]["sha256"] == result.manifest.sha256
    assert realm.published[0]["body"]["asset_id"] == result.asset.asset_id


def test_failing_sink_surfaces_as_retryable_report_error(make_orchestrator, funded, checkpoint) -> None:
    assert isinstance(_Staking(), StakingProgram)
    with pytest.raises(ReportWriteError) as ei:
        make_orchestrator(sinks=[_Staking()]).run()
    assert ei.value.details == {"sink": "staking"}
    assert ei.value.retryable is True
    # the manifest itself was written and recorded before the sink ran
    assert checkpoint.load_manifest_info() is not None


class _FlakyStaking:
    name = "staking"

    def __init__(self, failures: int = 1) -> None:
        self.failures = failures
        self.published: List[Dict[str, Any]] = []

    def publish(self, manifest: Dict[str, Any]) -> None:
        if self.failures > 0:
            self.failures -= 1
            raise RuntimeError("pool offline")
        self.published.append(manifest)

    def register_asset(self, asset_id: str, *, decimals: int) -> str:
        return f"pool:{asset_id}"


def test_sink_retry_only_reaches_sinks_that_missed_the_manifest(make_orchestrator, funded, checkpoint) -> None:
    realm, staking = _Realm(), _FlakyStaking(failures=1)
    orch = make_orchestrator(sinks=[realm, staking])
    with pytest.raises(ReportWriteError):
        orch.run()
    sha = checkpoint.load_manifest_info()["sha256"]
    assert len(realm.published) == 1
    assert checkpoint.sink_published("realm", sha) is True
    assert checkpoint.sink_published("staking", sha) is False

    result = orch.run()
    assert result.manifest.sha256 == sha
    assert len(realm.published) == 1
    assert len(staking.published) == 1
    assert checkpoint.sink_published("staking", sha) is True

    # nothing left to publish on a completed run
    orch.run()
    assert len(realm.published) == 1
    assert len(staking.published) == 1
