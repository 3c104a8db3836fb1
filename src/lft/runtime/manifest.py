from __future__ import annotations

"""Run manifest: the audit artifact of a completed genesis run.

The manifest body is canonical JSON (sorted keys, no whitespace) and its
sha256 is embedded next to it. Every field is derived from confirmed ledger
state, so rebuilding the manifest for the same run yields the same digest;
that is what makes re-running the report step safe.
"""

import hashlib
import json
import os
import tempfile
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterable, Optional

from lft.ledger.types import AssetDefinition, FinalizationState, IssuanceRecord, RecipientAccount, TxReceipt
from lft.runtime.errors import ReportWriteError
from lft.runtime.genesis_config import GenesisConfig, format_percentage
from lft.runtime.release_schedule import ReleaseSchedule

Json = Dict[str, Any]

MANIFEST_FORMAT = "lft-genesis-manifest/1"
STEP = "report"


@dataclass(frozen=True, slots=True)
class ManifestInfo:
    path: str
    sha256: str
    written: bool

    def to_json(self) -> Json:
        return {"path": self.path, "sha256": self.sha256, "written": self.written}


def canonical_json(obj: Any) -> str:
    return json.dumps(obj, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def manifest_digest(body: Json) -> str:
    return hashlib.sha256(canonical_json(body).encode("utf-8")).hexdigest()


def _iso8601(ts_ms: int) -> str:
    return datetime.fromtimestamp(int(ts_ms) / 1000, tz=timezone.utc).isoformat().replace("+00:00", "Z")


def build_manifest(
    *,
    config: GenesisConfig,
    run_id: str,
    asset: AssetDefinition,
    recipients: Dict[str, RecipientAccount],
    issuances: Iterable[IssuanceRecord],
    finalization_state: FinalizationState,
    finalization_receipt: Optional[TxReceipt],
    schedules: Dict[str, ReleaseSchedule],
) -> Json:
    by_category = {r.category: r for r in issuances}
    categories = []
    for cat in config.categories:
        acct = recipients[cat.name]
        rec = by_category.get(cat.name)
        categories.append(
            {
                "name": cat.name,
                "percentage": format_percentage(cat.percentage),
                "description": cat.description,
                "time_restricted": cat.is_time_restricted,
                "public_identity": acct.public_identity,
                "holding_account": acct.holding_account,
                "quantity": str(rec.quantity) if rec is not None else None,
                "issuance_receipt": rec.receipt.to_json() if rec is not None else None,
            }
        )

    return {
        "format": MANIFEST_FORMAT,
        "run_id": run_id,
        "config_fingerprint": config.fingerprint(),
        "token": {"name": config.token.name, "symbol": config.token.symbol, "description": config.token.description},
        "decimals": int(asset.decimals),
        "total_supply": str(int(asset.total_supply)),
        "total_units": str(asset.total_units),
        "remainder_policy": config.remainder_policy,
        "asset_id": asset.asset_id,
        "controlling_key": asset.controlling_key,
        "creation_date": _iso8601(asset.created_ts_ms),
        "asset_receipt": asset.receipt.to_json(),
        "categories": categories,
        "finalization": {
            "state": finalization_state.value,
            "receipt": finalization_receipt.to_json() if finalization_receipt is not None else None,
        },
        "release_schedules": [schedules[k].to_json() for k in config.category_names if k in schedules],
    }


def read_manifest(path: str) -> Json:
    p = Path(path)
    try:
        doc = json.loads(p.read_text(encoding="utf-8"))
    except (OSError, ValueError) as e:
        raise ReportWriteError(f"cannot read manifest {p}: {e}", step=STEP) from e
    if not isinstance(doc, dict) or not isinstance(doc.get("body"), dict):
        raise ReportWriteError(f"manifest {p} is malformed", step=STEP)
    return doc


def write_manifest(path: str, body: Json) -> ManifestInfo:
    """Atomically write `{"body": ..., "sha256": ...}` to `path`.

    An existing manifest with the same digest is left untouched; one with a
    different digest is never overwritten.
    """
    digest = manifest_digest(body)
    dest = Path(path)

    if dest.exists():
        existing = read_manifest(str(dest))
        if existing.get("sha256") != digest:
            raise ReportWriteError(
                "refusing to overwrite a manifest with a different digest",
                step=STEP,
                details={"path": str(dest), "existing": existing.get("sha256"), "new": digest},
            )
        return ManifestInfo(path=str(dest), sha256=digest, written=False)

    doc = {"body": body, "sha256": digest}
    try:
        dest.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp = tempfile.mkstemp(prefix=".manifest-", dir=str(dest.parent))
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(json.dumps(doc, sort_keys=True, indent=2, ensure_ascii=False))
                f.write("\n")
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp, dest)
        finally:
            if os.path.exists(tmp):
                os.unlink(tmp)
    except OSError as e:
        raise ReportWriteError(f"cannot write manifest {dest}: {e}", step=STEP, details={"path": str(dest)}) from e

    return ManifestInfo(path=str(dest), sha256=digest, written=True)


def verify_manifest(path: str) -> bool:
    doc = read_manifest(path)
    return manifest_digest(doc["body"]) == doc.get("sha256")
