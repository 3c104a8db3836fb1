from __future__ import annotations

"""Shared state and ledger-call helpers for the orchestration steps.

Each step module receives a StepContext. The helpers here translate ledger
boundary failures into the run's error taxonomy, tagged with the step (and
category) so a failed run says exactly where to resume.
"""

import logging
import time
from dataclasses import dataclass
from typing import Callable, Optional, TypeVar

from lft.crypto.keys import Identity
from lft.crypto.keystore import CredentialProvider
from lft.ledger.client import (
    STATUS_CONFIRMED,
    STATUS_EXPIRED,
    STATUS_FAILED,
    STATUS_PENDING,
    LedgerClient,
    LedgerRejected,
    LedgerTimeout,
)
from lft.ledger.types import TxReceipt
from lft.logging_utils import log_event
from lft.runtime.checkpoint import CheckpointStore
from lft.runtime.errors import ConfirmationTimeout, InsufficientFunding, NetworkRejected
from lft.runtime.genesis_config import GenesisConfig

T = TypeVar("T")

CONTROLLER_IDENTITY = "deployer"
ASSET_IDENTITY = "asset"


def recipient_identity_name(category: str) -> str:
    return f"recipient:{category}"


@dataclass
class StepContext:
    config: GenesisConfig
    ledger: LedgerClient
    checkpoint: CheckpointStore
    credentials: CredentialProvider
    controller: Identity
    confirm_timeout_s: float = 60.0
    logger: logging.Logger = logging.getLogger("lft.genesis")


def ledger_call(step: str, fn: Callable[[], T], *, category: Optional[str] = None) -> T:
    """Run one ledger submission; rejections surface as NetworkRejected for `step`."""
    try:
        return fn()
    except LedgerRejected as e:
        raise NetworkRejected(str(e) or "ledger rejected the operation", step=step, category=category) from e
    except LedgerTimeout as e:
        raise ConfirmationTimeout(str(e) or "ledger call timed out", step=step, category=category) from e


def await_confirmation(ctx: StepContext, signature: str, *, step: str, category: Optional[str] = None) -> TxReceipt:
    """Block until `signature` is confirmed, bounded by ctx.confirm_timeout_s."""
    log_event(ctx.logger, "tx_submitted", step=step, category=category, signature=signature)
    receipt = ledger_call(
        step,
        lambda: ctx.ledger.confirm_transaction(signature, timeout_s=float(ctx.confirm_timeout_s)),
        category=category,
    )
    log_event(ctx.logger, "tx_confirmed", step=step, category=category, signature=signature, slot=receipt.slot)
    return receipt


def require_funds(ctx: StepContext, *, cost: int, step: str, category: Optional[str] = None) -> int:
    """Fail with InsufficientFunding if the controller cannot pay `cost`."""
    balance = int(ctx.ledger.get_balance(ctx.controller.pubkey))
    if balance < int(cost):
        raise InsufficientFunding(
            "controlling identity balance is below the cost of the next operation",
            step=step,
            category=category,
            details={"address": ctx.controller.pubkey, "balance": balance, "required": int(cost)},
        )
    return balance


def reconcile_submission(
    ctx: StepContext, signature: Optional[str], *, step: str, category: Optional[str] = None
) -> Optional[TxReceipt]:
    """Receipt for a signature recorded by an earlier run, or None if it never landed.

    Pending signatures are awaited. Failed or expired ones return None so the
    caller can check ledger state before resubmitting. An unknown signature
    may still be in flight, so it raises a retryable ConfirmationTimeout
    instead of opening the way to a second submission.
    """
    if not signature:
        return None
    status = ctx.ledger.signature_status(signature)
    log_event(ctx.logger, "tx_reconcile", step=step, category=category, signature=signature, status=status)
    if status == STATUS_CONFIRMED:
        return ctx.ledger.transaction_receipt(signature)
    if status == STATUS_PENDING:
        return await_confirmation(ctx, signature, step=step, category=category)
    if status in (STATUS_FAILED, STATUS_EXPIRED):
        return None
    raise ConfirmationTimeout(
        "recorded signature is not yet known to the ledger; re-run once it confirms or expires",
        step=step,
        category=category,
        details={"signature": signature, "status": status},
    )


def reconciled_receipt(signature: Optional[str], *, ref: str) -> TxReceipt:
    """Receipt for an effect observed on the ledger whose confirmation was never seen."""
    return TxReceipt(signature=signature or f"reconciled:{ref}", slot=0, confirmed_ts_ms=int(time.time() * 1000))
