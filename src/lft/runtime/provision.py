from __future__ import annotations

from typing import Dict, Iterable

from lft.ledger.types import AssetDefinition, RecipientAccount
from lft.logging_utils import log_event
from lft.runtime.context import (
    StepContext,
    await_confirmation,
    ledger_call,
    recipient_identity_name,
    require_funds,
)
from lft.runtime.genesis_config import AllocationCategory


def provision_step(category: str) -> str:
    return f"provision:{category}"


def provision_category(
    ctx: StepContext, asset: AssetDefinition, category: AllocationCategory, *, ordinal: int
) -> RecipientAccount:
    """Bind `category` to a fresh recipient identity and its holding account.

    The identity is persisted before any ledger call. The holding account is
    derived from (owner, asset), so a retry after a crash finds the same
    account instead of creating another one.
    """
    step = provision_step(category.name)
    owner = ctx.credentials.load_or_create(recipient_identity_name(category.name)).identity

    require_funds(ctx, cost=ctx.ledger.account_creation_cost("holding"), step=step, category=category.name)

    addr, sig = ledger_call(
        step,
        lambda: ctx.ledger.create_or_get_holding_account(
            payer=ctx.controller, owner=owner.pubkey, asset_id=asset.asset_id
        ),
        category=category.name,
    )
    if sig:
        ctx.checkpoint.record_provision_signature(category.name, sig)
        receipt = await_confirmation(ctx, sig, step=step, category=category.name)
    else:
        # account created by an interrupted run; keep that run's creation receipt
        prior = ctx.checkpoint.provision_signature(category.name)
        receipt = ctx.ledger.transaction_receipt(prior) if prior else None

    acct = RecipientAccount(
        category=category.name, public_identity=owner.pubkey, holding_account=addr, receipt=receipt
    )
    ctx.checkpoint.record_recipient(acct, ordinal=ordinal)
    log_event(
        ctx.logger,
        "recipient_provisioned",
        step=step,
        category=category.name,
        public_identity=owner.pubkey,
        holding_account=addr,
        created=bool(sig),
    )
    return acct


def provision(
    ctx: StepContext, asset: AssetDefinition, categories: Iterable[AllocationCategory]
) -> Dict[str, RecipientAccount]:
    """Provision every category missing from the checkpoint, in declaration order."""
    existing = ctx.checkpoint.load_recipients()
    out: Dict[str, RecipientAccount] = {}
    for ordinal, cat in enumerate(categories):
        if cat.name in existing:
            log_event(ctx.logger, "step_skipped", step=provision_step(cat.name), category=cat.name)
            out[cat.name] = existing[cat.name]
            continue
        out[cat.name] = provision_category(ctx, asset, cat, ordinal=ordinal)
    return out
