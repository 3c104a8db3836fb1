# src/lft/runtime/genesis_config.py
from __future__ import annotations

"""Genesis distribution configuration.

Input files (YAML or JSON) are shape-checked with pydantic, then converted into
frozen dataclasses whose constructors enforce the distribution invariants:

  - category names are unique
  - every percentage is a rational in (0, 100]
  - percentages sum to exactly 100 (Fraction arithmetic, no floats)
  - total_supply * 10**decimals fits a u64 ledger amount
  - time-restricted categories carry a positive lock duration; others carry none

A config that fails any of these is rejected before any ledger call.
"""

import hashlib
import json
from dataclasses import dataclass, field
from decimal import Decimal
from fractions import Fraction
from pathlib import Path
from typing import Any, Dict, List, Literal, Optional, Tuple, Union

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from lft.ledger.types import U64_MAX
from lft.runtime.errors import ConfigError

Json = Dict[str, Any]

REMAINDER_FIRST = "first"
REMAINDER_LARGEST = "largest"

RELEASE_CLIFF = "cliff"
RELEASE_LINEAR = "linear"

MAX_DECIMALS = 18

_HUNDRED = Fraction(100)


def parse_percentage(v: Any) -> Fraction:
    """Parse a percentage literal into an exact Fraction.

    Accepts ints, decimal strings ("12.5"), ratio strings ("100/3"), Decimal,
    and floats via their shortest decimal repr (12.5 -> "12.5").
    """
    if isinstance(v, bool):
        raise ValueError("percentage must be a number, not a bool")
    if isinstance(v, Fraction):
        return v
    if isinstance(v, int):
        return Fraction(v)
    if isinstance(v, float):
        return Fraction(repr(v))
    if isinstance(v, (str, Decimal)):
        s = str(v).strip()
        if not s:
            raise ValueError("empty percentage")
        try:
            return Fraction(s)
        except ZeroDivisionError as e:
            raise ValueError(f"invalid percentage: {s!r}") from e
    raise ValueError(f"unsupported percentage type: {type(v).__name__}")


def format_percentage(p: Fraction) -> str:
    return str(p.numerator) if p.denominator == 1 else f"{p.numerator}/{p.denominator}"


# ---------------------------------------------------------------------------
# Input schemas
# ---------------------------------------------------------------------------


class _StrictModel(BaseModel):
    model_config = ConfigDict(extra="forbid")


class TokenModel(_StrictModel):
    name: str = Field(..., min_length=1)
    symbol: str = Field(..., min_length=1, max_length=10)
    description: str = ""


class CategoryModel(_StrictModel):
    name: str = Field(..., pattern=r"^[A-Za-z0-9_-]+$")
    percentage: str
    time_restricted: bool = False
    lock_duration_seconds: Optional[int] = Field(default=None, ge=0)
    release_schedule: Literal["cliff", "linear"] = RELEASE_CLIFF
    description: str = ""

    @field_validator("percentage", mode="before")
    @classmethod
    def _exact_percentage(cls, v: Any) -> str:
        return format_percentage(parse_percentage(v))


class GenesisModel(_StrictModel):
    token: TokenModel
    decimals: int = Field(..., ge=0, le=MAX_DECIMALS)
    total_supply: int = Field(..., gt=0)
    remainder_policy: Literal["first", "largest"] = REMAINDER_FIRST
    categories: List[CategoryModel] = Field(..., min_length=1)


# ---------------------------------------------------------------------------
# Validated config objects
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class TokenInfo:
    name: str
    symbol: str
    description: str = ""


@dataclass(frozen=True, slots=True)
class AllocationCategory:
    name: str
    percentage: Fraction
    is_time_restricted: bool = False
    lock_duration_seconds: Optional[int] = None
    release_schedule: str = RELEASE_CLIFF
    description: str = ""

    def to_json(self) -> Json:
        return {
            "name": self.name,
            "percentage": format_percentage(self.percentage),
            "time_restricted": self.is_time_restricted,
            "lock_duration_seconds": self.lock_duration_seconds,
            "release_schedule": self.release_schedule,
            "description": self.description,
        }


@dataclass(frozen=True)
class GenesisConfig:
    token: TokenInfo
    decimals: int
    total_supply: int
    categories: Tuple[AllocationCategory, ...]
    remainder_policy: str = REMAINDER_FIRST
    _by_name: Dict[str, AllocationCategory] = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "categories", tuple(self.categories))
        validate_genesis_config(self)
        object.__setattr__(self, "_by_name", {c.name: c for c in self.categories})

    @property
    def total_units(self) -> int:
        return int(self.total_supply) * 10 ** int(self.decimals)

    @property
    def category_names(self) -> List[str]:
        return [c.name for c in self.categories]

    def category(self, name: str) -> AllocationCategory:
        return self._by_name[name]

    def to_json(self) -> Json:
        return {
            "token": {"name": self.token.name, "symbol": self.token.symbol, "description": self.token.description},
            "decimals": int(self.decimals),
            "total_supply": int(self.total_supply),
            "remainder_policy": self.remainder_policy,
            "categories": [c.to_json() for c in self.categories],
        }

    def fingerprint(self) -> str:
        """sha256 over the canonical config; a checkpoint is bound to one fingerprint."""
        body = json.dumps(self.to_json(), sort_keys=True, separators=(",", ":"), ensure_ascii=False)
        return hashlib.sha256(body.encode("utf-8")).hexdigest()


def validate_genesis_config(cfg: GenesisConfig) -> None:
    """Fail-fast validation. Raises ConfigError; never touches the network."""

    if isinstance(cfg.decimals, bool) or not isinstance(cfg.decimals, int):
        raise ConfigError("decimals must be an int", step="config")
    if not 0 <= cfg.decimals <= MAX_DECIMALS:
        raise ConfigError(f"decimals must be 0..{MAX_DECIMALS}; got: {cfg.decimals}", step="config")

    if isinstance(cfg.total_supply, bool) or not isinstance(cfg.total_supply, int) or cfg.total_supply <= 0:
        raise ConfigError(f"total_supply must be a positive int; got: {cfg.total_supply!r}", step="config")

    units = cfg.total_supply * 10**cfg.decimals
    if units > U64_MAX:
        raise ConfigError(
            "total_supply * 10**decimals exceeds the u64 ledger amount range",
            step="config",
            details={"total_units": str(units), "max": str(U64_MAX)},
        )

    if cfg.remainder_policy not in {REMAINDER_FIRST, REMAINDER_LARGEST}:
        raise ConfigError(f"unknown remainder_policy: {cfg.remainder_policy!r}", step="config")

    if not cfg.categories:
        raise ConfigError("at least one allocation category is required", step="config")

    seen: set[str] = set()
    total = Fraction(0)
    for c in cfg.categories:
        if not isinstance(c.percentage, Fraction):
            raise ConfigError("percentage must be a Fraction", step="config", category=c.name)
        if c.name in seen:
            raise ConfigError(f"duplicate category name: {c.name!r}", step="config", category=c.name)
        seen.add(c.name)

        if not (0 < c.percentage <= _HUNDRED):
            raise ConfigError(
                f"percentage must be in (0, 100]; got: {format_percentage(c.percentage)}",
                step="config",
                category=c.name,
            )
        total += c.percentage

        if c.release_schedule not in {RELEASE_CLIFF, RELEASE_LINEAR}:
            raise ConfigError(f"unknown release_schedule: {c.release_schedule!r}", step="config", category=c.name)
        if c.is_time_restricted:
            if c.lock_duration_seconds is None or int(c.lock_duration_seconds) <= 0:
                raise ConfigError(
                    "time-restricted category needs lock_duration_seconds > 0",
                    step="config",
                    category=c.name,
                )
        elif c.lock_duration_seconds is not None:
            raise ConfigError(
                "lock_duration_seconds is only valid on time-restricted categories",
                step="config",
                category=c.name,
            )

    if total != _HUNDRED:
        raise ConfigError(
            f"category percentages must sum to exactly 100; got: {format_percentage(total)}",
            step="config",
            details={"sum": format_percentage(total)},
        )


# ---------------------------------------------------------------------------
# Loading
# ---------------------------------------------------------------------------


def genesis_config_from_dict(raw: Any) -> GenesisConfig:
    if not isinstance(raw, dict):
        raise ConfigError("genesis config must be a mapping", step="config")
    try:
        m = GenesisModel.model_validate(raw)
    except ValidationError as e:
        problems = [{"loc": [str(x) for x in err["loc"]], "msg": str(err["msg"])} for err in e.errors()]
        raise ConfigError("genesis config failed schema validation", step="config", details=problems) from e

    categories = tuple(
        AllocationCategory(
            name=c.name,
            percentage=Fraction(c.percentage),
            is_time_restricted=bool(c.time_restricted),
            lock_duration_seconds=c.lock_duration_seconds,
            release_schedule=c.release_schedule,
            description=c.description,
        )
        for c in m.categories
    )
    return GenesisConfig(
        token=TokenInfo(name=m.token.name, symbol=m.token.symbol, description=m.token.description),
        decimals=int(m.decimals),
        total_supply=int(m.total_supply),
        categories=categories,
        remainder_policy=m.remainder_policy,
    )


def load_genesis_config(path: Union[str, Path]) -> GenesisConfig:
    """Load a genesis config from .yaml/.yml or .json."""
    p = Path(path)
    if not p.is_file():
        raise ConfigError(f"genesis config not found: {p}", step="config")

    text = p.read_text(encoding="utf-8")
    try:
        if p.suffix.lower() in {".yaml", ".yml"}:
            raw = yaml.safe_load(text)
        else:
            raw = json.loads(text)
    except (yaml.YAMLError, json.JSONDecodeError) as e:
        raise ConfigError(f"cannot parse genesis config {p}: {e}", step="config") from e

    return genesis_config_from_dict(raw)


_YEAR_S = 31_536_000
_HALF_YEAR_S = 15_768_000


def default_genesis_config() -> GenesisConfig:
    """The LeapfrogDAO Token (LFT) distribution."""
    return GenesisConfig(
        token=TokenInfo(
            name="LeapfrogDAO Token",
            symbol="LFT",
            description=(
                "Governance token for LeapfrogDAO - building a decentralized world "
                "of freedom, justice, and empowerment"
            ),
        ),
        decimals=9,
        total_supply=1_000_000_000,
        categories=(
            AllocationCategory("communityTreasury", Fraction(40), description="Community-driven initiatives"),
            AllocationCategory("contributorRewards", Fraction(25), description="Contributors to the ecosystem"),
            AllocationCategory(
                "developmentFund",
                Fraction(20),
                is_time_restricted=True,
                lock_duration_seconds=_HALF_YEAR_S,
                release_schedule=RELEASE_LINEAR,
                description="Development and operations; staged release over 6 months",
            ),
            AllocationCategory(
                "foundingTeam",
                Fraction(10),
                is_time_restricted=True,
                lock_duration_seconds=_YEAR_S,
                release_schedule=RELEASE_CLIFF,
                description="Founding team; locked for 1 year",
            ),
            AllocationCategory("liquidityProvision", Fraction(5), description="Initial liquidity provision"),
        ),
    )
