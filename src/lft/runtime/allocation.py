from __future__ import annotations

"""Exact proportional allocation of a fixed supply.

    quantity(category) = floor(total_supply * percentage / 100) * 10**decimals

computed with integers and Fractions only. The whole units lost to flooring
(at most one per category) are assigned by the config's remainder policy:

  - "first":   to the first category in declaration order
  - "largest": to the category with the largest percentage (first one on ties)

so the quantities always sum to total_supply * 10**decimals.
"""

from dataclasses import dataclass
from fractions import Fraction
from typing import Dict, Iterable, List

from lft.ledger.types import IssuanceRecord
from lft.runtime.errors import AccountingInvariantViolation
from lft.runtime.genesis_config import REMAINDER_LARGEST, GenesisConfig


@dataclass(frozen=True, slots=True)
class Allocation:
    category: str
    percentage: Fraction
    whole_units: int
    quantity: int
    remainder_units: int = 0


def floor_share(total_supply: int, percentage: Fraction) -> int:
    """floor(total_supply * percentage / 100) without leaving integer math."""
    if not isinstance(percentage, Fraction):
        raise TypeError("percentage must be a Fraction")
    return (int(total_supply) * percentage.numerator) // (100 * percentage.denominator)


def _remainder_index(cfg: GenesisConfig) -> int:
    if cfg.remainder_policy == REMAINDER_LARGEST:
        best = 0
        for i, c in enumerate(cfg.categories):
            if c.percentage > cfg.categories[best].percentage:
                best = i
        return best
    return 0


def compute_allocations(cfg: GenesisConfig) -> List[Allocation]:
    """Allocations in declaration order; sums exactly to cfg.total_units."""
    bases = [floor_share(cfg.total_supply, c.percentage) for c in cfg.categories]
    remainder = int(cfg.total_supply) - sum(bases)
    if remainder < 0 or remainder >= len(bases):
        # flooring n shares of a 100% table loses fewer than n whole units
        raise AccountingInvariantViolation(
            "unexpected flooring remainder",
            step="allocation",
            details={"remainder": remainder, "categories": len(bases)},
        )

    target = _remainder_index(cfg)
    scale = 10 ** int(cfg.decimals)

    out: List[Allocation] = []
    for i, (c, base) in enumerate(zip(cfg.categories, bases)):
        extra = remainder if i == target else 0
        whole = base + extra
        out.append(
            Allocation(
                category=c.name,
                percentage=c.percentage,
                whole_units=whole,
                quantity=whole * scale,
                remainder_units=extra,
            )
        )

    total = sum(a.quantity for a in out)
    if total != cfg.total_units:
        raise AccountingInvariantViolation(
            "allocation does not sum to total supply",
            step="allocation",
            details={"sum": str(total), "expected": str(cfg.total_units)},
        )
    return out


def allocation_table(cfg: GenesisConfig) -> Dict[str, int]:
    return {a.category: a.quantity for a in compute_allocations(cfg)}


def verify_issuance_totals(cfg: GenesisConfig, records: Iterable[IssuanceRecord]) -> None:
    """Post-issuance check: one record per category, exact quantities, exact sum."""
    expected = allocation_table(cfg)
    seen: Dict[str, int] = {}
    for r in records:
        if r.category in seen:
            raise AccountingInvariantViolation(
                "duplicate issuance record", step="issue", category=r.category
            )
        seen[r.category] = int(r.quantity)

    missing = [name for name in expected if name not in seen]
    unknown = [name for name in seen if name not in expected]
    if missing or unknown:
        raise AccountingInvariantViolation(
            "issuance records do not cover the configured categories",
            step="issue",
            details={"missing": missing, "unknown": unknown},
        )

    for name, q in expected.items():
        if seen[name] != q:
            raise AccountingInvariantViolation(
                "issued quantity differs from allocation",
                step="issue",
                category=name,
                details={"issued": str(seen[name]), "expected": str(q)},
            )

    total = sum(seen.values())
    if total != cfg.total_units:
        raise AccountingInvariantViolation(
            "issued total differs from total supply",
            step="issue",
            details={"sum": str(total), "expected": str(cfg.total_units)},
        )
