from __future__ import annotations

"""Durable run checkpoint.

The checkpoint is the sole idempotency mechanism of a genesis run: ledger
issuance is not naturally idempotent, so every step writes its outcome here
before the next step starts.

Rows move through two states:
  - "submitted": a signature exists but confirmation was not observed yet
  - "confirmed": the ledger confirmed it; the receipt is stored

A run resumes by reading these rows: confirmed steps are skipped, submitted
ones are reconciled against the ledger before anything is resubmitted.
"""

import json
import sqlite3
from dataclasses import dataclass
from typing import Any, Dict, Optional

from lft.ledger.types import AssetDefinition, FinalizationState, IssuanceRecord, RecipientAccount, TxReceipt
from lft.runtime.errors import AlreadyFinalized, CheckpointError
from lft.runtime.sqlite_db import SqliteDB, _canon_json, _now_ms

Json = Dict[str, Any]

STATUS_SUBMITTED = "submitted"
STATUS_CONFIRMED = "confirmed"


@dataclass(frozen=True, slots=True)
class AssetRow:
    asset_id: str
    decimals: int
    total_supply: int
    controlling_key: str
    status: str
    signature: Optional[str]
    receipt: Optional[TxReceipt]

    def to_definition(self) -> AssetDefinition:
        if self.receipt is None:
            raise CheckpointError("asset is not confirmed", step="asset_init")
        return AssetDefinition(
            asset_id=self.asset_id,
            decimals=self.decimals,
            total_supply=self.total_supply,
            controlling_key=self.controlling_key,
            receipt=self.receipt,
        )


@dataclass(frozen=True, slots=True)
class IssuanceRow:
    category: str
    quantity: int
    destination: str
    status: str
    signature: Optional[str]
    receipt: Optional[TxReceipt]

    def to_record(self) -> IssuanceRecord:
        if self.receipt is None:
            raise CheckpointError("issuance is not confirmed", step=f"issue:{self.category}", category=self.category)
        return IssuanceRecord(
            category=self.category, quantity=self.quantity, destination=self.destination, receipt=self.receipt
        )


@dataclass(frozen=True, slots=True)
class FinalizationRow:
    state: FinalizationState
    signature: Optional[str]
    receipt: Optional[TxReceipt]


def _receipt(row: Any) -> Optional[TxReceipt]:
    if row["confirmed_ts_ms"] is None or not row["signature"]:
        return None
    return TxReceipt(signature=str(row["signature"]), slot=int(row["slot"] or 0), confirmed_ts_ms=int(row["confirmed_ts_ms"]))


class CheckpointStore:
    """Run checkpoint persisted in SQLite.

    Single writer: the orchestrator holds a RunLock while it writes. Readers
    (status CLI, audit API) only call the load_* methods and snapshot().
    """

    def __init__(self, *, db: SqliteDB) -> None:
        self._db = db
        self._db.init_schema()

    @property
    def path(self) -> str:
        return self._db.path

    @property
    def db(self) -> SqliteDB:
        return self._db

    # ---- meta ----

    def get_meta(self, key: str) -> Optional[str]:
        with self._db.connection() as con:
            row = con.execute("SELECT value FROM meta WHERE key=?;", (str(key),)).fetchone()
            return str(row["value"]) if row is not None else None

    def set_meta(self, key: str, value: str) -> None:
        with self._db.write_tx() as con:
            con.execute(
                "INSERT INTO meta(key, value) VALUES(?, ?) ON CONFLICT(key) DO UPDATE SET value=excluded.value;",
                (str(key), str(value)),
            )

    def bind_config(self, fingerprint: str, *, run_id: str) -> str:
        """Bind this checkpoint to one genesis config; return the run id.

        Resuming with a different config would change the allocation under
        already-issued categories, so a mismatch is fatal.
        """
        with self._db.write_tx() as con:
            row = con.execute("SELECT value FROM meta WHERE key='config_fingerprint';").fetchone()
            if row is None:
                con.execute("INSERT INTO meta(key, value) VALUES('config_fingerprint', ?);", (fingerprint,))
                con.execute("INSERT INTO meta(key, value) VALUES('run_id', ?);", (run_id,))
                con.execute("INSERT INTO meta(key, value) VALUES('started_ts_ms', ?);", (str(_now_ms()),))
                return run_id
            if str(row["value"]) != fingerprint:
                raise CheckpointError(
                    "checkpoint belongs to a different genesis config",
                    step="config",
                    details={"checkpoint": str(row["value"]), "config": fingerprint},
                )
            rid = con.execute("SELECT value FROM meta WHERE key='run_id';").fetchone()
            return str(rid["value"]) if rid is not None else run_id

    # ---- asset ----

    def load_asset(self) -> Optional[AssetRow]:
        with self._db.connection() as con:
            row = con.execute("SELECT * FROM asset WHERE id=1;").fetchone()
            if row is None:
                return None
            return AssetRow(
                asset_id=str(row["asset_id"]),
                decimals=int(row["decimals"]),
                total_supply=int(str(row["total_supply"])),
                controlling_key=str(row["controlling_key"]),
                status=str(row["status"]),
                signature=row["signature"],
                receipt=_receipt(row),
            )

    def record_asset_submitted(
        self, *, asset_id: str, decimals: int, total_supply: int, controlling_key: str, signature: Optional[str]
    ) -> None:
        with self._db.write_tx() as con:
            row = con.execute("SELECT asset_id, status FROM asset WHERE id=1;").fetchone()
            if row is not None and (str(row["asset_id"]) != asset_id or str(row["status"]) == STATUS_CONFIRMED):
                raise CheckpointError("asset already recorded", step="asset_init", details={"asset_id": str(row["asset_id"])})
            con.execute(
                """
                INSERT INTO asset(id, asset_id, decimals, total_supply, controlling_key, status, signature, updated_ts_ms)
                VALUES(1, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                  signature=excluded.signature,
                  updated_ts_ms=excluded.updated_ts_ms;
                """,
                (asset_id, int(decimals), str(int(total_supply)), controlling_key, STATUS_SUBMITTED, signature, _now_ms()),
            )

    def record_asset_confirmed(self, receipt: TxReceipt) -> None:
        with self._db.write_tx() as con:
            cur = con.execute(
                """
                UPDATE asset SET status=?, signature=?, slot=?, confirmed_ts_ms=?, updated_ts_ms=?
                WHERE id=1 AND status=?;
                """,
                (STATUS_CONFIRMED, receipt.signature, int(receipt.slot), int(receipt.confirmed_ts_ms), _now_ms(), STATUS_SUBMITTED),
            )
            if cur.rowcount != 1:
                raise CheckpointError("no submitted asset to confirm", step="asset_init")

    # ---- recipients ----

    def load_recipients(self) -> Dict[str, RecipientAccount]:
        with self._db.connection() as con:
            rows = con.execute("SELECT * FROM recipients ORDER BY ordinal ASC;").fetchall()
        out: Dict[str, RecipientAccount] = {}
        for row in rows:
            out[str(row["category"])] = RecipientAccount(
                category=str(row["category"]),
                public_identity=str(row["pubkey"]),
                holding_account=str(row["holding_account"]),
                receipt=_receipt_from_parts(row["signature"], row["slot"], row["created_ts_ms"]),
            )
        return out

    def record_recipient(self, acct: RecipientAccount, *, ordinal: int) -> None:
        """Insert the category -> recipient binding. Bindings are never replaced."""
        receipt = acct.receipt
        with self._db.write_tx() as con:
            row = con.execute("SELECT pubkey FROM recipients WHERE category=?;", (acct.category,)).fetchone()
            if row is not None:
                raise CheckpointError(
                    "recipient already provisioned",
                    step=f"provision:{acct.category}",
                    category=acct.category,
                )
            try:
                con.execute(
                    """
                    INSERT INTO recipients(category, ordinal, pubkey, holding_account, signature, slot, created_ts_ms)
                    VALUES(?, ?, ?, ?, ?, ?, ?);
                    """,
                    (
                        acct.category,
                        int(ordinal),
                        acct.public_identity,
                        acct.holding_account,
                        receipt.signature if receipt else None,
                        int(receipt.slot) if receipt else None,
                        int(receipt.confirmed_ts_ms) if receipt else _now_ms(),
                    ),
                )
            except sqlite3.IntegrityError as e:
                raise CheckpointError(
                    "recipient identity or holding account already bound to another category",
                    step=f"provision:{acct.category}",
                    category=acct.category,
                ) from e

    # ---- issuances ----

    def load_issuances(self) -> Dict[str, IssuanceRow]:
        with self._db.connection() as con:
            rows = con.execute(
                """
                SELECT i.* FROM issuances i JOIN recipients r ON r.category = i.category
                ORDER BY r.ordinal ASC;
                """
            ).fetchall()
        return {
            str(row["category"]): IssuanceRow(
                category=str(row["category"]),
                quantity=int(str(row["quantity"])),
                destination=str(row["destination"]),
                status=str(row["status"]),
                signature=row["signature"],
                receipt=_receipt(row),
            )
            for row in rows
        }

    def record_issuance_submitted(
        self, *, category: str, quantity: int, destination: str, signature: Optional[str]
    ) -> None:
        with self._db.write_tx() as con:
            row = con.execute("SELECT status FROM issuances WHERE category=?;", (category,)).fetchone()
            if row is not None and str(row["status"]) == STATUS_CONFIRMED:
                raise CheckpointError("issuance already confirmed", step=f"issue:{category}", category=category)
            con.execute(
                """
                INSERT INTO issuances(category, quantity, destination, status, signature, updated_ts_ms)
                VALUES(?, ?, ?, ?, ?, ?)
                ON CONFLICT(category) DO UPDATE SET
                  quantity=excluded.quantity,
                  destination=excluded.destination,
                  signature=excluded.signature,
                  updated_ts_ms=excluded.updated_ts_ms;
                """,
                (category, str(int(quantity)), destination, STATUS_SUBMITTED, signature, _now_ms()),
            )

    def record_issuance_confirmed(self, *, category: str, receipt: TxReceipt) -> None:
        with self._db.write_tx() as con:
            cur = con.execute(
                """
                UPDATE issuances SET status=?, signature=?, slot=?, confirmed_ts_ms=?, updated_ts_ms=?
                WHERE category=? AND status=?;
                """,
                (
                    STATUS_CONFIRMED,
                    receipt.signature,
                    int(receipt.slot),
                    int(receipt.confirmed_ts_ms),
                    _now_ms(),
                    category,
                    STATUS_SUBMITTED,
                ),
            )
            if cur.rowcount != 1:
                raise CheckpointError("no submitted issuance to confirm", step=f"issue:{category}", category=category)

    # ---- finalization ----

    def load_finalization(self) -> FinalizationRow:
        with self._db.connection() as con:
            row = con.execute("SELECT * FROM finalization WHERE id=1;").fetchone()
        if row is None:
            raise CheckpointError("finalization row missing", step="finalize")
        return FinalizationRow(state=FinalizationState(str(row["state"])), signature=row["signature"], receipt=_receipt(row))

    def finalization_state(self) -> FinalizationState:
        return self.load_finalization().state

    def record_finalization_submitted(self, signature: str) -> None:
        with self._db.write_tx() as con:
            cur = con.execute(
                "UPDATE finalization SET signature=?, updated_ts_ms=? WHERE id=1 AND state=?;",
                (signature, _now_ms(), FinalizationState.OPEN.value),
            )
            if cur.rowcount != 1:
                raise AlreadyFinalized("issuance authority already revoked", step="finalize")

    def record_finalized(self, receipt: TxReceipt) -> FinalizationState:
        """OPEN -> FINALIZED. The conditional update makes this a single edge."""
        with self._db.write_tx() as con:
            cur = con.execute(
                """
                UPDATE finalization SET state=?, signature=?, slot=?, confirmed_ts_ms=?, updated_ts_ms=?
                WHERE id=1 AND state=?;
                """,
                (
                    FinalizationState.FINALIZED.value,
                    receipt.signature,
                    int(receipt.slot),
                    int(receipt.confirmed_ts_ms),
                    _now_ms(),
                    FinalizationState.OPEN.value,
                ),
            )
            if cur.rowcount != 1:
                raise AlreadyFinalized("issuance authority already revoked", step="finalize")
        return FinalizationState.FINALIZED

    # ---- release schedules ----

    def load_schedules(self) -> Dict[str, Json]:
        with self._db.connection() as con:
            rows = con.execute(
                """
                SELECT s.category, s.schedule_json FROM release_schedules s
                JOIN recipients r ON r.category = s.category
                ORDER BY r.ordinal ASC;
                """
            ).fetchall()
        return {str(row["category"]): json.loads(str(row["schedule_json"])) for row in rows}

    def record_schedule(self, category: str, schedule: Json) -> None:
        with self._db.write_tx() as con:
            con.execute(
                """
                INSERT INTO release_schedules(category, schedule_json, updated_ts_ms) VALUES(?, ?, ?)
                ON CONFLICT(category) DO UPDATE SET
                  schedule_json=excluded.schedule_json,
                  updated_ts_ms=excluded.updated_ts_ms;
                """,
                (category, _canon_json(schedule), _now_ms()),
            )

    def mark_schedule_step_done(self) -> None:
        self.set_meta("schedule_recorded", "1")

    def schedule_step_done(self) -> bool:
        return self.get_meta("schedule_recorded") == "1"

    # ---- manifest ----

    def load_manifest_info(self) -> Optional[Json]:
        with self._db.connection() as con:
            row = con.execute("SELECT path, sha256, written_ts_ms FROM manifest WHERE id=1;").fetchone()
        if row is None:
            return None
        return {"path": str(row["path"]), "sha256": str(row["sha256"]), "written_ts_ms": int(row["written_ts_ms"])}

    def record_manifest(self, *, path: str, sha256: str) -> None:
        with self._db.write_tx() as con:
            con.execute(
                """
                INSERT INTO manifest(id, path, sha256, written_ts_ms) VALUES(1, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                  path=excluded.path, sha256=excluded.sha256, written_ts_ms=excluded.written_ts_ms;
                """,
                (str(path), str(sha256), _now_ms()),
            )

    def sink_published(self, sink: str, sha256: str) -> bool:
        with self._db.connection() as con:
            row = con.execute(
                "SELECT 1 FROM sink_publications WHERE sink=? AND sha256=?;", (str(sink), str(sha256))
            ).fetchone()
        return row is not None

    def record_sink_published(self, sink: str, sha256: str) -> None:
        with self._db.write_tx() as con:
            con.execute(
                "INSERT OR IGNORE INTO sink_publications(sink, sha256, published_ts_ms) VALUES(?, ?, ?);",
                (str(sink), str(sha256), _now_ms()),
            )

    # ---- provisioning signatures ----

    def record_provision_signature(self, category: str, signature: str) -> None:
        """Holding-account creation signature, read back when a resumed run finds the account already created."""
        self.set_meta(f"provision_signature:{category}", signature)

    def provision_signature(self, category: str) -> Optional[str]:
        return self.get_meta(f"provision_signature:{category}")

    # ---- views ----

    def snapshot(self) -> Json:
        """Public view of run progress. Contains no secret material."""
        asset = self.load_asset()
        fin = self.load_finalization()
        with self._db.connection() as con:
            names = [str(r["name"]) for r in con.execute("SELECT name FROM credentials ORDER BY name;").fetchall()]
        return {
            "run_id": self.get_meta("run_id"),
            "config_fingerprint": self.get_meta("config_fingerprint"),
            "started_ts_ms": int(self.get_meta("started_ts_ms") or 0) or None,
            "credentials": names,
            "asset": None
            if asset is None
            else {
                "asset_id": asset.asset_id,
                "decimals": asset.decimals,
                "total_supply": str(asset.total_supply),
                "controlling_key": asset.controlling_key,
                "status": asset.status,
                "receipt": asset.receipt.to_json() if asset.receipt else None,
            },
            "recipients": {k: v.to_json() for k, v in self.load_recipients().items()},
            "issuances": {
                k: {
                    "quantity": str(v.quantity),
                    "destination": v.destination,
                    "status": v.status,
                    "signature": v.signature,
                    "receipt": v.receipt.to_json() if v.receipt else None,
                }
                for k, v in self.load_issuances().items()
            },
            "finalization": {
                "state": fin.state.value,
                "signature": fin.signature,
                "receipt": fin.receipt.to_json() if fin.receipt else None,
            },
            "release_schedules": self.load_schedules(),
            "manifest": self.load_manifest_info(),
        }


def _receipt_from_parts(signature: Any, slot: Any, ts: Any) -> Optional[TxReceipt]:
    if not signature:
        return None
    return TxReceipt(signature=str(signature), slot=int(slot or 0), confirmed_ts_ms=int(ts or 0))


def open_checkpoint(path: str) -> CheckpointStore:
    return CheckpointStore(db=SqliteDB(path=path))
