from __future__ import annotations

import json
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

from lft.api.app import create_app


def _client(tmp_path: Path, **paths: str) -> TestClient:
    paths.setdefault("checkpoint_path", str(tmp_path / "absent.db"))
    paths.setdefault("manifest_path", str(tmp_path / "absent.json"))
    return TestClient(create_app(**paths))


def test_healthz(tmp_path: Path) -> None:
    r = _client(tmp_path).get("/healthz")
    assert r.status_code == 200
    body = r.json()
    assert body["ok"] is True
    assert body["checkpoint_present"] is False
    assert r.headers["x-request-id"]


def test_missing_checkpoint_and_manifest_are_404(tmp_path: Path) -> None:
    client = _client(tmp_path)
    r = client.get("/v1/run/status")
    assert r.status_code == 404
    assert r.json()["error"]["code"] == "no_checkpoint"
    # a read never creates the checkpoint
    assert not (tmp_path / "absent.db").exists()

    r = client.get("/v1/run/manifest")
    assert r.status_code == 404
    assert r.json() == {
        "ok": False,
        "error": {"code": "no_manifest", "message": "the run manifest has not been written", "details": {"path": str(tmp_path / "absent.json")}},
    }


def test_status_and_manifest_after_a_run(orchestrator, checkpoint, credentials, tmp_path: Path) -> None:
    result = orchestrator.run()
    client = _client(tmp_path, checkpoint_path=checkpoint.path, manifest_path=result.manifest.path)

    status = client.get("/v1/run/status").json()
    assert status["ok"] is True
    assert status["run"]["run_id"] == result.run_id
    assert status["run"]["finalization"]["state"] == "finalized"
    assert credentials.load("deployer").seed_hex() not in json.dumps(status)

    r = client.get("/v1/run/manifest")
    assert r.status_code == 200
    assert r.json()["verified"] is True
    assert r.json()["manifest"]["sha256"] == result.manifest.sha256


def test_tampered_manifest_is_a_conflict(orchestrator, checkpoint, tmp_path: Path) -> None:
    result = orchestrator.run()
    path = Path(result.manifest.path)
    doc = json.loads(path.read_text(encoding="utf-8"))
    doc["body"]["asset_id"] = "someone-else"
    path.write_text(json.dumps(doc), encoding="utf-8")

    r = _client(tmp_path, manifest_path=str(path)).get("/v1/run/manifest")
    assert r.status_code == 409
    assert r.json()["error"]["code"] == "manifest_digest_mismatch"


def test_metrics_are_disabled_by_default(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("LFT_METRICS_ENABLED", raising=False)
    assert _client(tmp_path).get("/metrics").status_code == 404


def test_metrics_report_checkpoint_progress(orchestrator, checkpoint, tmp_path: Path, monkeypatch) -> None:
    orchestrator.run()
    monkeypatch.setenv("LFT_METRICS_ENABLED", "1")
    r = _client(tmp_path, checkpoint_path=checkpoint.path).get("/metrics")
    assert r.status_code == 200
    lines = set(r.text.splitlines())
    assert "lft_recipients_provisioned 5" in lines
    assert "lft_issuances_confirmed 5" in lines
    assert "lft_finalized 1" in lines
