from __future__ import annotations

import time
from pathlib import Path
from typing import Any, Dict

from fastapi import APIRouter, Request, Response

from lft import __version__
from lft.api.errors import ApiError
from lft.ledger.types import FinalizationState
from lft.runtime.checkpoint import STATUS_CONFIRMED, CheckpointStore, open_checkpoint
from lft.runtime.errors import ReportWriteError
from lft.runtime.manifest import manifest_digest, read_manifest
from lft.runtime.metrics import format_prometheus, metrics_enabled, set_gauge

router = APIRouter()


def _now_ms() -> int:
    return int(time.time() * 1000)


def _checkpoint(request: Request) -> CheckpointStore:
    """The checkpoint named in app.state; never created by a read."""
    store = getattr(request.app.state, "checkpoint", None)
    if store is not None:
        return store
    path = str(request.app.state.checkpoint_path)
    if not Path(path).is_file():
        raise ApiError.not_found("no_checkpoint", "no genesis run has been started", {"path": path})
    store = open_checkpoint(path)
    request.app.state.checkpoint = store
    return store


@router.get("/healthz")
def healthz(request: Request) -> Dict[str, Any]:
    return {
        "ok": True,
        "service": "lft-genesis-audit",
        "version": __version__,
        "ts_ms": _now_ms(),
        "checkpoint_present": Path(str(request.app.state.checkpoint_path)).is_file(),
    }


@router.get("/v1/run/status")
def run_status(request: Request) -> Dict[str, Any]:
    snap = _checkpoint(request).snapshot()
    return {"ok": True, "run": snap}


@router.get("/v1/run/manifest")
def run_manifest(request: Request) -> Dict[str, Any]:
    path = str(request.app.state.manifest_path)
    if not Path(path).is_file():
        raise ApiError.not_found("no_manifest", "the run manifest has not been written", {"path": path})
    try:
        doc = read_manifest(path)
    except ReportWriteError as e:
        raise ApiError.internal("manifest_unreadable", e.reason, {"path": path}) from e

    verified = manifest_digest(doc["body"]) == doc.get("sha256")
    if not verified:
        raise ApiError.conflict(
            "manifest_digest_mismatch", "manifest body does not match its digest", {"sha256": doc.get("sha256")}
        )
    return {"ok": True, "verified": verified, "manifest": doc}


@router.get("/metrics")
def metrics(request: Request) -> Response:
    """Prometheus-style metrics.

    Disabled by default. Enable with:
      LFT_METRICS_ENABLED=1
    """
    if not metrics_enabled():
        return Response(status_code=404, content="not_found\n", media_type="text/plain")

    path = Path(str(request.app.state.checkpoint_path))
    if path.is_file():
        store = _checkpoint(request)
        issuances = store.load_issuances()
        set_gauge("recipients_provisioned", len(store.load_recipients()))
        set_gauge("issuances_confirmed", sum(1 for r in issuances.values() if r.status == STATUS_CONFIRMED))
        set_gauge("finalized", 1 if store.finalization_state() == FinalizationState.FINALIZED else 0)
    return Response(content=format_prometheus(), media_type="text/plain")
