from __future__ import annotations

from typing import Any, Dict

from lft.crypto.keys import Identity
from lft.ledger.types import AssetDefinition, TxReceipt
from lft.logging_utils import log_event
from lft.runtime.checkpoint import STATUS_CONFIRMED
from lft.runtime.context import (
    ASSET_IDENTITY,
    StepContext,
    await_confirmation,
    ledger_call,
    reconcile_submission,
    reconciled_receipt,
    require_funds,
)
from lft.runtime.errors import CheckpointError, ConfirmationTimeout, NetworkRejected

STEP = "asset_init"


def _check_existing_asset(info: Dict[str, Any], *, decimals: int, controlling_key: Identity) -> None:
    if int(info.get("decimals", -1)) != int(decimals):
        raise NetworkRejected(
            "asset on ledger has different decimals than configured",
            step=STEP,
            details={"ledger": info.get("decimals"), "config": int(decimals)},
        )
    if info.get("mint_authority") not in (controlling_key.pubkey, None):
        raise NetworkRejected("asset on ledger is controlled by another identity", step=STEP)


def initialize_asset(ctx: StepContext, *, decimals: int, controlling_key: Identity) -> AssetDefinition:
    """Create the asset once; reuse the checkpointed asset on every later run.

    Mint and freeze authority both start as the controlling key. The asset
    keypair is persisted before submission so an interrupted run can find the
    asset on the ledger by address instead of creating a second one.
    """
    row = ctx.checkpoint.load_asset()
    if row is not None and row.status == STATUS_CONFIRMED:
        if ctx.ledger.asset_info(row.asset_id) is None:
            raise CheckpointError(
                "checkpointed asset is not present on the ledger", step=STEP, details={"asset_id": row.asset_id}
            )
        log_event(ctx.logger, "step_skipped", step=STEP, asset_id=row.asset_id)
        return row.to_definition()

    asset = ctx.credentials.load_or_create(ASSET_IDENTITY).identity
    if row is not None and row.asset_id != asset.pubkey:
        raise CheckpointError(
            "checkpointed asset id does not match the persisted asset identity",
            step=STEP,
            details={"checkpoint": row.asset_id, "identity": asset.pubkey},
        )

    def _confirmed(receipt: TxReceipt) -> AssetDefinition:
        ctx.checkpoint.record_asset_confirmed(receipt)
        confirmed = ctx.checkpoint.load_asset()
        if confirmed is None:
            raise CheckpointError("confirmed asset row is missing from the checkpoint", step=STEP)
        log_event(ctx.logger, "asset_created", step=STEP, asset_id=asset.pubkey, signature=receipt.signature)
        return confirmed.to_definition()

    if row is not None:
        try:
            receipt = reconcile_submission(ctx, row.signature, step=STEP)
        except ConfirmationTimeout:
            # signature still unknown: only the asset existing on the ledger settles it
            if ctx.ledger.asset_info(asset.pubkey) is None:
                raise
            receipt = None
        if receipt is not None:
            return _confirmed(receipt)
        info = ctx.ledger.asset_info(asset.pubkey)
        if info is not None:
            _check_existing_asset(info, decimals=decimals, controlling_key=controlling_key)
            return _confirmed(reconciled_receipt(row.signature, ref=asset.pubkey))

    require_funds(ctx, cost=ctx.ledger.account_creation_cost("asset"), step=STEP)

    ctx.checkpoint.record_asset_submitted(
        asset_id=asset.pubkey,
        decimals=decimals,
        total_supply=ctx.config.total_supply,
        controlling_key=controlling_key.pubkey,
        signature=None,
    )
    sig = ledger_call(
        STEP,
        lambda: ctx.ledger.define_asset(
            payer=ctx.controller,
            asset=asset,
            decimals=int(decimals),
            mint_authority=controlling_key.pubkey,
            freeze_authority=controlling_key.pubkey,
        ),
    )
    ctx.checkpoint.record_asset_submitted(
        asset_id=asset.pubkey,
        decimals=decimals,
        total_supply=ctx.config.total_supply,
        controlling_key=controlling_key.pubkey,
        signature=sig,
    )
    return _confirmed(await_confirmation(ctx, sig, step=STEP))
