from __future__ import annotations

"""Deferred-release schedules for time-restricted categories.

Only the contract lives here. A schedule is computed from the asset creation
time and the category's lock duration and recorded with status "intended".
It becomes "active" only when an injected LockEnforcer confirms that a real
lock mechanism holds the tokens; no enforcer ships with this package.
"""

from dataclasses import dataclass, replace
from typing import Any, Dict, Iterable, Optional, Protocol, runtime_checkable

from lft.ledger.types import AssetDefinition, IssuanceRecord, RecipientAccount, TxReceipt
from lft.logging_utils import log_event
from lft.runtime.context import StepContext
from lft.runtime.errors import AccountingInvariantViolation, CheckpointError
from lft.runtime.genesis_config import RELEASE_CLIFF, RELEASE_LINEAR, AllocationCategory

Json = Dict[str, Any]

STEP = "schedule"

STATUS_INTENDED = "intended"
STATUS_ACTIVE = "active"


@dataclass(frozen=True, slots=True)
class ReleaseSchedule:
    category: str
    quantity: int
    lock_duration_seconds: int
    release_schedule: str
    starts_ts: int
    status: str = STATUS_INTENDED
    receipt: Optional[TxReceipt] = None

    @property
    def unlocks_ts(self) -> int:
        return int(self.starts_ts) + int(self.lock_duration_seconds)

    def releasable_at(self, ts: int) -> int:
        """Quantity releasable at unix time `ts` (seconds). Integer math only."""
        q = int(self.quantity)
        duration = int(self.lock_duration_seconds)
        if duration <= 0 or ts >= self.unlocks_ts:
            return q
        if self.release_schedule == RELEASE_LINEAR:
            elapsed = max(0, int(ts) - int(self.starts_ts))
            return (q * elapsed) // duration
        return 0

    def to_json(self) -> Json:
        return {
            "category": self.category,
            "quantity": str(int(self.quantity)),
            "lock_duration_seconds": int(self.lock_duration_seconds),
            "release_schedule": self.release_schedule,
            "starts_ts": int(self.starts_ts),
            "unlocks_ts": self.unlocks_ts,
            "status": self.status,
            "receipt": self.receipt.to_json() if self.receipt is not None else None,
        }

    @classmethod
    def from_json(cls, obj: Json) -> "ReleaseSchedule":
        rec = obj.get("receipt")
        return cls(
            category=str(obj["category"]),
            quantity=int(str(obj["quantity"])),
            lock_duration_seconds=int(obj["lock_duration_seconds"]),
            release_schedule=str(obj.get("release_schedule") or RELEASE_CLIFF),
            starts_ts=int(obj["starts_ts"]),
            status=str(obj.get("status") or STATUS_INTENDED),
            receipt=TxReceipt.from_json(rec) if isinstance(rec, dict) else None,
        )


@runtime_checkable
class LockEnforcer(Protocol):
    def activate(self, schedule: ReleaseSchedule, recipient: RecipientAccount) -> Optional[TxReceipt]:
        """Put the recipient's tokens under the schedule; a receipt means the lock holds."""
        ...


def build_schedule(category: AllocationCategory, quantity: int, *, starts_ts: int) -> ReleaseSchedule:
    if not category.is_time_restricted or not category.lock_duration_seconds:
        raise ValueError(f"category {category.name!r} is not time-restricted")
    return ReleaseSchedule(
        category=category.name,
        quantity=int(quantity),
        lock_duration_seconds=int(category.lock_duration_seconds),
        release_schedule=category.release_schedule,
        starts_ts=int(starts_ts),
    )


def schedule_releases(
    ctx: StepContext,
    asset: AssetDefinition,
    recipients: Dict[str, RecipientAccount],
    issuances: Iterable[IssuanceRecord],
    *,
    enforcer: Optional[LockEnforcer] = None,
) -> Dict[str, ReleaseSchedule]:
    """Record a schedule for every time-restricted category.

    Schedules already active in the checkpoint are kept as they are; intended
    ones are offered to `enforcer` whenever one is given. The orchestrator
    stops passing one once the manifest is recorded.
    """
    by_category = {r.category: r for r in issuances}
    recorded = {k: ReleaseSchedule.from_json(v) for k, v in ctx.checkpoint.load_schedules().items()}
    starts_ts = asset.created_ts_ms // 1000

    out: Dict[str, ReleaseSchedule] = {}
    for cat in ctx.config.categories:
        if not cat.is_time_restricted:
            continue
        rec = by_category.get(cat.name)
        if rec is None:
            raise AccountingInvariantViolation("time-restricted category was not issued", step=STEP, category=cat.name)
        recipient = recipients.get(cat.name)
        if recipient is None:
            raise CheckpointError("category has no provisioned recipient", step=STEP, category=cat.name)

        sched = recorded.get(cat.name) or build_schedule(cat, rec.quantity, starts_ts=starts_ts)
        if sched.status != STATUS_ACTIVE and enforcer is not None:
            receipt = enforcer.activate(sched, recipient)
            if receipt is not None:
                sched = replace(sched, status=STATUS_ACTIVE, receipt=receipt)

        ctx.checkpoint.record_schedule(cat.name, sched.to_json())
        log_event(
            ctx.logger,
            "release_scheduled",
            step=STEP,
            category=cat.name,
            status=sched.status,
            unlocks_ts=sched.unlocks_ts,
            release_schedule=sched.release_schedule,
        )
        out[cat.name] = sched

    ctx.checkpoint.mark_schedule_step_done()
    return out
