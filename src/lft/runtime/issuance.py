from __future__ import annotations

"""Proportional issuance.

One issuance per category, in declaration order. The checkpoint row for a
category is written as "submitted" (with its signature) before confirmation
is awaited, and as "confirmed" before the next category starts, so a resumed
run never issues to the same category twice.
"""

from typing import Dict, Iterable, List

from lft.ledger.types import AssetDefinition, IssuanceRecord, RecipientAccount
from lft.logging_utils import log_event
from lft.runtime import metrics
from lft.runtime.allocation import allocation_table, verify_issuance_totals
from lft.runtime.checkpoint import STATUS_CONFIRMED, IssuanceRow
from lft.runtime.context import (
    StepContext,
    await_confirmation,
    ledger_call,
    reconcile_submission,
    reconciled_receipt,
)
from lft.runtime.errors import AccountingInvariantViolation, CheckpointError, ConfirmationTimeout
from lft.runtime.genesis_config import AllocationCategory


def issue_step(category: str) -> str:
    return f"issue:{category}"


def _reconcile(ctx: StepContext, row: IssuanceRow, quantity: int) -> bool:
    """Settle a submitted-but-unconfirmed issuance. True if it landed."""
    step = issue_step(row.category)
    try:
        receipt = reconcile_submission(ctx, row.signature, step=step, category=row.category)
    except ConfirmationTimeout:
        # signature still unknown: only the full allocation on the destination settles it
        if int(ctx.ledger.holding_balance(row.destination)) != quantity:
            raise
        receipt = None
    if receipt is None:
        balance = int(ctx.ledger.holding_balance(row.destination))
        if balance == 0:
            log_event(ctx.logger, "issuance_not_landed", step=step, category=row.category, signature=row.signature)
            return False
        if balance != quantity:
            raise AccountingInvariantViolation(
                "destination balance matches neither zero nor the allocation",
                step=step,
                category=row.category,
                details={"balance": str(balance), "expected": str(quantity), "destination": row.destination},
            )
        receipt = reconciled_receipt(row.signature, ref=row.destination)

    ctx.checkpoint.record_issuance_confirmed(category=row.category, receipt=receipt)
    log_event(ctx.logger, "issuance_reconciled", step=step, category=row.category, signature=receipt.signature)
    return True


def issue_category(
    ctx: StepContext, asset: AssetDefinition, recipient: RecipientAccount, quantity: int
) -> IssuanceRecord:
    category = recipient.category
    step = issue_step(category)

    rows = ctx.checkpoint.load_issuances()
    row = rows.get(category)
    if row is not None:
        if row.quantity != quantity or row.destination != recipient.holding_account:
            raise CheckpointError(
                "checkpointed issuance differs from the current allocation",
                step=step,
                category=category,
                details={"checkpoint": str(row.quantity), "allocation": str(quantity)},
            )
        if row.status == STATUS_CONFIRMED:
            log_event(ctx.logger, "step_skipped", step=step, category=category)
            return row.to_record()
        if _reconcile(ctx, row, quantity):
            return ctx.checkpoint.load_issuances()[category].to_record()

    # Intent first: a crash inside issue() leaves a row that resume reconciles by balance.
    ctx.checkpoint.record_issuance_submitted(
        category=category, quantity=quantity, destination=recipient.holding_account, signature=None
    )
    sig = ledger_call(
        step,
        lambda: ctx.ledger.issue(
            authority=ctx.controller,
            asset_id=asset.asset_id,
            destination=recipient.holding_account,
            quantity=quantity,
        ),
        category=category,
    )
    ctx.checkpoint.record_issuance_submitted(
        category=category, quantity=quantity, destination=recipient.holding_account, signature=sig
    )
    receipt = await_confirmation(ctx, sig, step=step, category=category)
    ctx.checkpoint.record_issuance_confirmed(category=category, receipt=receipt)

    metrics.inc_counter("issuances_confirmed_total")
    log_event(ctx.logger, "issuance_confirmed", step=step, category=category, quantity=str(quantity), signature=sig)
    return IssuanceRecord(category=category, quantity=quantity, destination=recipient.holding_account, receipt=receipt)


def issue_all(
    ctx: StepContext,
    asset: AssetDefinition,
    recipients: Dict[str, RecipientAccount],
    categories: Iterable[AllocationCategory],
) -> List[IssuanceRecord]:
    """Issue every category's allocation; verify the exact total afterwards."""
    table = allocation_table(ctx.config)
    records: List[IssuanceRecord] = []
    for cat in categories:
        recipient = recipients.get(cat.name)
        if recipient is None:
            raise CheckpointError("category has no provisioned recipient", step=issue_step(cat.name), category=cat.name)
        records.append(issue_category(ctx, asset, recipient, table[cat.name]))

    verify_issuance_totals(ctx.config, records)
    return records
