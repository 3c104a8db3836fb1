from __future__ import annotations

from lft.ledger.types import AssetDefinition, FinalizationState
from lft.logging_utils import log_event
from lft.runtime import metrics
from lft.runtime.allocation import verify_issuance_totals
from lft.runtime.checkpoint import STATUS_CONFIRMED
from lft.runtime.context import (
    StepContext,
    await_confirmation,
    ledger_call,
    reconcile_submission,
    reconciled_receipt,
)
from lft.runtime.errors import AlreadyFinalized, CheckpointError, ConfirmationTimeout, PrematureFinalization

STEP = "finalize"


def check_finalization_ready(ctx: StepContext) -> None:
    """Raise PrematureFinalization unless every category has a confirmed issuance."""
    rows = ctx.checkpoint.load_issuances()
    pending = [name for name in ctx.config.category_names if name not in rows or rows[name].status != STATUS_CONFIRMED]
    if pending:
        raise PrematureFinalization(
            "categories without a confirmed issuance",
            step=STEP,
            details={"pending": pending},
        )
    verify_issuance_totals(ctx.config, [rows[name].to_record() for name in ctx.config.category_names])


def finalize(ctx: StepContext, asset: AssetDefinition) -> FinalizationState:
    """Revoke issuance authority. OPEN -> FINALIZED exactly once."""
    fin = ctx.checkpoint.load_finalization()
    if fin.state == FinalizationState.FINALIZED:
        raise AlreadyFinalized("issuance authority already revoked", step=STEP)

    check_finalization_ready(ctx)

    info = ctx.ledger.asset_info(asset.asset_id)
    if info is None:
        raise CheckpointError("asset is not present on the ledger", step=STEP, details={"asset_id": asset.asset_id})

    try:
        receipt = reconcile_submission(ctx, fin.signature, step=STEP)
    except ConfirmationTimeout:
        # signature still unknown: only a revoked mint authority settles it
        if info.get("mint_authority") is not None:
            raise
        receipt = None
    if receipt is None and info.get("mint_authority") is None:
        # revoked on the ledger, confirmation never recorded
        receipt = reconciled_receipt(fin.signature, ref=asset.asset_id)

    if receipt is None:
        sig = ledger_call(
            STEP,
            lambda: ctx.ledger.revoke_issuance_authority(authority=ctx.controller, asset_id=asset.asset_id),
        )
        ctx.checkpoint.record_finalization_submitted(sig)
        receipt = await_confirmation(ctx, sig, step=STEP)

    state = ctx.checkpoint.record_finalized(receipt)
    metrics.set_gauge("finalized", 1)
    log_event(ctx.logger, "asset_finalized", step=STEP, asset_id=asset.asset_id, signature=receipt.signature)
    return state
