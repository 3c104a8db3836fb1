from __future__ import annotations

"""Ledger client boundary.

The ledger network is an external collaborator. The orchestrator only talks to
it through the `LedgerClient` protocol below, which keeps submission and
confirmation separate so the caller can persist a signature *before* waiting
on it.

Every method may fail. Submissions are billed against the payer's native
balance (fees plus account rent).

Implementations raise:
  - LedgerRejected  when the network declines an operation
  - LedgerTimeout   when confirmation is not observed within the timeout
"""

from typing import Any, Dict, Optional, Protocol, Tuple, runtime_checkable

from lft.crypto.keys import Identity
from lft.ledger.types import TxReceipt

Json = Dict[str, Any]

# Signature statuses reported by signature_status().
STATUS_CONFIRMED = "confirmed"
STATUS_PENDING = "pending"
STATUS_FAILED = "failed"
STATUS_UNKNOWN = "unknown"
# The signature can no longer land (its validity window has passed).
STATUS_EXPIRED = "expired"


class LedgerError(Exception):
    pass


class LedgerRejected(LedgerError):
    pass


class LedgerTimeout(LedgerError):
    pass


@runtime_checkable
class LedgerClient(Protocol):
    def get_balance(self, pubkey: str) -> int:
        """Spendable native balance of an account."""
        ...

    def account_creation_cost(self, kind: str) -> int:
        """Native cost (rent + fee) of creating an account of `kind` ("asset" or "holding")."""
        ...

    def define_asset(
        self,
        *,
        payer: Identity,
        asset: Identity,
        decimals: int,
        mint_authority: str,
        freeze_authority: Optional[str],
    ) -> str:
        """Create the asset account and initialize it. Returns the tx signature."""
        ...

    def asset_info(self, asset_id: str) -> Optional[Json]:
        """{"decimals", "supply", "mint_authority", "freeze_authority"} or None if absent."""
        ...

    def holding_address(self, *, owner: str, asset_id: str) -> str:
        """Deterministic holding account address for (owner, asset)."""
        ...

    def create_or_get_holding_account(self, *, payer: Identity, owner: str, asset_id: str) -> Tuple[str, Optional[str]]:
        """Return (address, signature). signature is None when the account already existed."""
        ...

    def holding_balance(self, holding_account: str) -> int:
        ...

    def issue(self, *, authority: Identity, asset_id: str, destination: str, quantity: int) -> str:
        """Mint `quantity` smallest units to `destination`. Returns the tx signature."""
        ...

    def revoke_issuance_authority(self, *, authority: Identity, asset_id: str) -> str:
        """Set the asset's mint authority to none. Returns the tx signature."""
        ...

    def confirm_transaction(self, signature: str, *, timeout_s: float) -> TxReceipt:
        """Block until the signature is confirmed; LedgerRejected if it failed, LedgerTimeout on expiry."""
        ...

    def signature_status(self, signature: str) -> str:
        """One of STATUS_CONFIRMED, STATUS_PENDING, STATUS_FAILED, STATUS_EXPIRED, STATUS_UNKNOWN.

        STATUS_UNKNOWN means not observed yet; only FAILED and EXPIRED say the
        transaction will never land.
        """
        ...

    def transaction_receipt(self, signature: str) -> Optional[TxReceipt]:
        """Receipt for a confirmed signature, else None."""
        ...
