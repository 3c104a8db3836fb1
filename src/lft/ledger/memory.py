from __future__ import annotations

import hashlib
import time
from collections import Counter
from typing import Any, Callable, Dict, List, Optional, Tuple

from lft.crypto.keys import Identity, canonical_op_message, verify_signature
from lft.ledger.client import (
    STATUS_CONFIRMED,
    STATUS_EXPIRED,
    STATUS_FAILED,
    STATUS_UNKNOWN,
    LedgerRejected,
    LedgerTimeout,
)
from lft.ledger.types import U64_MAX, TxReceipt

Json = Dict[str, Any]

FEE_PER_SIGNATURE = 5_000
ASSET_ACCOUNT_RENT = 1_461_600
HOLDING_ACCOUNT_RENT = 2_039_280


class InMemoryLedger:
    """
    In-process ledger used for unit tests and `--network memory` dry runs.

    - Executes every accepted operation immediately and marks it confirmed
    - Verifies that each operation is signed by the identity it claims
    - Charges fees and account rent against the payer's native balance
    - Rejects (LedgerRejected) instead of partially applying

    It implements the LedgerClient protocol; nothing is persisted.
    """

    def __init__(self, *, clock: Callable[[], float] = time.time) -> None:
        self._clock = clock
        self._slot = 0
        self.balances: Dict[str, int] = {}
        self.assets: Dict[str, Json] = {}
        self.holdings: Dict[str, Json] = {}
        self.txs: Dict[str, Json] = {}
        self.calls: Counter[str] = Counter()
        self.issued: List[Tuple[str, int]] = []

    # ---- helpers for tests / harness ----

    def airdrop(self, pubkey: str, amount: int) -> None:
        self.balances[pubkey] = int(self.balances.get(pubkey, 0)) + int(amount)

    def expire(self, signature: str) -> None:
        """Mark a signature that never landed as past its validity window."""
        self.txs[signature] = {"status": STATUS_EXPIRED, "slot": 0, "confirmed_ts_ms": 0}

    def _now_ms(self) -> int:
        return int(self._clock() * 1000)

    def _signed(self, op: str, signer: Identity, payload: Json) -> str:
        """Sign like a wallet would and check it like the network would."""
        body = dict(payload)
        body["slot"] = self._slot + 1
        msg = canonical_op_message(op=op, signer=signer.pubkey, payload=body)
        sig = signer.sign(msg)
        if not verify_signature(message=msg, sig=sig, pubkey=signer.pubkey):
            raise LedgerRejected(f"{op}: invalid signature for {signer.pubkey}")
        return sig

    def _charge(self, payer: str, amount: int) -> None:
        have = int(self.balances.get(payer, 0))
        if have < amount:
            raise LedgerRejected(f"insufficient funds for fee: have={have} need={amount}")
        self.balances[payer] = have - amount

    def _commit(self, sig: str) -> str:
        self._slot += 1
        self.txs[sig] = {"status": STATUS_CONFIRMED, "slot": self._slot, "confirmed_ts_ms": self._now_ms()}
        return sig

    # ---- LedgerClient ----

    def get_balance(self, pubkey: str) -> int:
        self.calls["get_balance"] += 1
        return int(self.balances.get(pubkey, 0))

    def account_creation_cost(self, kind: str) -> int:
        if kind == "asset":
            return ASSET_ACCOUNT_RENT + 2 * FEE_PER_SIGNATURE
        if kind == "holding":
            return HOLDING_ACCOUNT_RENT + FEE_PER_SIGNATURE
        raise ValueError(f"unknown account kind: {kind!r}")

    def define_asset(
        self,
        *,
        payer: Identity,
        asset: Identity,
        decimals: int,
        mint_authority: str,
        freeze_authority: Optional[str],
    ) -> str:
        self.calls["define_asset"] += 1
        if asset.pubkey in self.assets or asset.pubkey in self.balances:
            raise LedgerRejected(f"account {asset.pubkey} already in use")
        if not 0 <= int(decimals) <= 255:
            raise LedgerRejected("decimals must fit in u8")

        payload = {
            "asset": asset.pubkey,
            "decimals": int(decimals),
            "mint_authority": mint_authority,
            "freeze_authority": freeze_authority,
        }
        sig = self._signed("define_asset", payer, payload)
        self._signed("define_asset", asset, payload)
        self._charge(payer.pubkey, self.account_creation_cost("asset"))

        self.assets[asset.pubkey] = {
            "decimals": int(decimals),
            "supply": 0,
            "mint_authority": mint_authority,
            "freeze_authority": freeze_authority,
        }
        return self._commit(sig)

    def asset_info(self, asset_id: str) -> Optional[Json]:
        rec = self.assets.get(asset_id)
        return dict(rec) if rec is not None else None

    def holding_address(self, *, owner: str, asset_id: str) -> str:
        return hashlib.sha256(f"holding:{owner}:{asset_id}".encode("utf-8")).hexdigest()

    def create_or_get_holding_account(self, *, payer: Identity, owner: str, asset_id: str) -> Tuple[str, Optional[str]]:
        self.calls["create_or_get_holding_account"] += 1
        if asset_id not in self.assets:
            raise LedgerRejected(f"unknown asset {asset_id}")

        addr = self.holding_address(owner=owner, asset_id=asset_id)
        if addr in self.holdings:
            return addr, None

        sig = self._signed("create_holding", payer, {"owner": owner, "asset": asset_id})
        self._charge(payer.pubkey, self.account_creation_cost("holding"))
        self.holdings[addr] = {"owner": owner, "asset": asset_id, "amount": 0}
        return addr, self._commit(sig)

    def holding_balance(self, holding_account: str) -> int:
        rec = self.holdings.get(holding_account)
        return int(rec["amount"]) if rec is not None else 0

    def issue(self, *, authority: Identity, asset_id: str, destination: str, quantity: int) -> str:
        self.calls["issue"] += 1
        asset = self.assets.get(asset_id)
        if asset is None:
            raise LedgerRejected(f"unknown asset {asset_id}")
        if asset["mint_authority"] != authority.pubkey:
            raise LedgerRejected("signer is not the mint authority")
        hold = self.holdings.get(destination)
        if hold is None or hold["asset"] != asset_id:
            raise LedgerRejected(f"destination {destination} is not a holding account for {asset_id}")
        q = int(quantity)
        if q <= 0 or q > U64_MAX or int(asset["supply"]) + q > U64_MAX:
            raise LedgerRejected(f"quantity out of range: {q}")

        sig = self._signed("issue", authority, {"asset": asset_id, "destination": destination, "quantity": str(q)})
        self._charge(authority.pubkey, FEE_PER_SIGNATURE)

        asset["supply"] = int(asset["supply"]) + q
        hold["amount"] = int(hold["amount"]) + q
        self.issued.append((destination, q))
        return self._commit(sig)

    def revoke_issuance_authority(self, *, authority: Identity, asset_id: str) -> str:
        self.calls["revoke_issuance_authority"] += 1
        asset = self.assets.get(asset_id)
        if asset is None:
            raise LedgerRejected(f"unknown asset {asset_id}")
        if asset["mint_authority"] is None:
            raise LedgerRejected("mint authority already revoked")
        if asset["mint_authority"] != authority.pubkey:
            raise LedgerRejected("signer is not the mint authority")

        sig = self._signed("revoke_mint_authority", authority, {"asset": asset_id})
        self._charge(authority.pubkey, FEE_PER_SIGNATURE)
        asset["mint_authority"] = None
        return self._commit(sig)

    def confirm_transaction(self, signature: str, *, timeout_s: float) -> TxReceipt:
        self.calls["confirm_transaction"] += 1
        rec = self.txs.get(signature)
        if rec is None:
            raise LedgerTimeout(f"signature {signature[:16]} not observed within {timeout_s}s")
        if rec["status"] in (STATUS_FAILED, STATUS_EXPIRED):
            raise LedgerRejected(f"transaction {signature[:16]} {rec['status']}")
        return TxReceipt(signature=signature, slot=int(rec["slot"]), confirmed_ts_ms=int(rec["confirmed_ts_ms"]))

    def signature_status(self, signature: str) -> str:
        rec = self.txs.get(signature)
        return str(rec["status"]) if rec is not None else STATUS_UNKNOWN

    def transaction_receipt(self, signature: str) -> Optional[TxReceipt]:
        rec = self.txs.get(signature)
        if rec is None or rec["status"] != STATUS_CONFIRMED:
            return None
        return TxReceipt(signature=signature, slot=int(rec["slot"]), confirmed_ts_ms=int(rec["confirmed_ts_ms"]))
