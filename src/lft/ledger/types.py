"""lft.ledger.types

Value types shared by the orchestrator steps, the checkpoint and the manifest.

All quantities are Python ints in the asset's smallest unit. Nothing here does
arithmetic on floats.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional

Json = Dict[str, Any]

# Ledger amounts are unsigned 64-bit integers.
U64_MAX = 2**64 - 1


class FinalizationState(str, Enum):
    OPEN = "open"
    FINALIZED = "finalized"


@dataclass(frozen=True, slots=True)
class TxReceipt:
    """Confirmation receipt for one ledger operation."""

    signature: str
    slot: int
    confirmed_ts_ms: int

    def to_json(self) -> Json:
        return {"signature": self.signature, "slot": int(self.slot), "confirmed_ts_ms": int(self.confirmed_ts_ms)}

    @classmethod
    def from_json(cls, obj: Json) -> "TxReceipt":
        return cls(
            signature=str(obj.get("signature") or ""),
            slot=int(obj.get("slot") or 0),
            confirmed_ts_ms=int(obj.get("confirmed_ts_ms") or 0),
        )


@dataclass(frozen=True, slots=True)
class AssetDefinition:
    asset_id: str
    decimals: int
    total_supply: int
    controlling_key: str
    receipt: TxReceipt

    @property
    def total_units(self) -> int:
        """Total supply in smallest units."""
        return int(self.total_supply) * 10 ** int(self.decimals)

    @property
    def created_ts_ms(self) -> int:
        return int(self.receipt.confirmed_ts_ms)


@dataclass(frozen=True, slots=True)
class RecipientAccount:
    category: str
    public_identity: str
    holding_account: str
    receipt: Optional[TxReceipt] = None

    def to_json(self) -> Json:
        return {
            "category": self.category,
            "public_identity": self.public_identity,
            "holding_account": self.holding_account,
            "receipt": self.receipt.to_json() if self.receipt is not None else None,
        }


@dataclass(frozen=True, slots=True)
class IssuanceRecord:
    category: str
    quantity: int
    destination: str
    receipt: TxReceipt

    def to_json(self) -> Json:
        # quantity as a string: JSON consumers commonly parse numbers as doubles
        return {
            "category": self.category,
            "quantity": str(int(self.quantity)),
            "destination": self.destination,
            "receipt": self.receipt.to_json(),
        }
