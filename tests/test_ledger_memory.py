from __future__ import annotations

import pytest

from lft.crypto.keys import Identity
from lft.ledger.client import (
    STATUS_CONFIRMED,
    STATUS_EXPIRED,
    STATUS_UNKNOWN,
    LedgerClient,
    LedgerRejected,
    LedgerTimeout,
)
from lft.ledger.memory import InMemoryLedger


def _asset(ledger: InMemoryLedger):
    payer = Identity.generate("deployer")
    asset = Identity.generate("asset")
    ledger.airdrop(payer.pubkey, 10**10)
    sig = ledger.define_asset(
        payer=payer, asset=asset, decimals=9, mint_authority=payer.pubkey, freeze_authority=payer.pubkey
    )
    return payer, asset, sig


def test_memory_ledger_implements_the_client_protocol() -> None:
    assert isinstance(InMemoryLedger(), LedgerClient)


def test_define_asset_charges_rent_and_fees() -> None:
    ledger = InMemoryLedger()
    payer, asset, sig = _asset(ledger)
    assert ledger.get_balance(payer.pubkey) == 10**10 - ledger.account_creation_cost("asset")
    assert ledger.signature_status(sig) == STATUS_CONFIRMED
    assert ledger.asset_info(asset.pubkey)["mint_authority"] == payer.pubkey

    with pytest.raises(LedgerRejected):
        ledger.define_asset(payer=payer, asset=asset, decimals=9, mint_authority=payer.pubkey, freeze_authority=None)


def test_unfunded_payer_is_rejected() -> None:
    ledger = InMemoryLedger()
    payer = Identity.generate("deployer")
    with pytest.raises(LedgerRejected, match="insufficient funds"):
        ledger.define_asset(
            payer=payer, asset=Identity.generate("asset"), decimals=0, mint_authority=payer.pubkey, freeze_authority=None
        )


def test_holding_accounts_are_derived_and_reused() -> None:
    ledger = InMemoryLedger()
    payer, asset, _ = _asset(ledger)
    owner = Identity.generate("recipient:a")

    addr, sig = ledger.create_or_get_holding_account(payer=payer, owner=owner.pubkey, asset_id=asset.pubkey)
    assert sig is not None
    assert addr == ledger.holding_address(owner=owner.pubkey, asset_id=asset.pubkey)

    again, sig2 = ledger.create_or_get_holding_account(payer=payer, owner=owner.pubkey, asset_id=asset.pubkey)
    assert again == addr and sig2 is None


def test_issue_and_revoke() -> None:
    ledger = InMemoryLedger()
    payer, asset, _ = _asset(ledger)
    owner = Identity.generate("recipient:a")
    addr, _ = ledger.create_or_get_holding_account(payer=payer, owner=owner.pubkey, asset_id=asset.pubkey)

    sig = ledger.issue(authority=payer, asset_id=asset.pubkey, destination=addr, quantity=2**64 - 1)
    assert ledger.holding_balance(addr) == 2**64 - 1
    assert ledger.confirm_transaction(sig, timeout_s=1.0).signature == sig

    with pytest.raises(LedgerRejected):
        ledger.issue(authority=payer, asset_id=asset.pubkey, destination=addr, quantity=1)

    ledger.revoke_issuance_authority(authority=payer, asset_id=asset.pubkey)
    assert ledger.asset_info(asset.pubkey)["mint_authority"] is None
    with pytest.raises(LedgerRejected):
        ledger.revoke_issuance_authority(authority=payer, asset_id=asset.pubkey)


def test_unknown_signature_times_out() -> None:
    ledger = InMemoryLedger()
    assert ledger.signature_status("nope") == STATUS_UNKNOWN
    assert ledger.transaction_receipt("nope") is None
    with pytest.raises(LedgerTimeout):
        ledger.confirm_transaction("nope", timeout_s=0.1)


def test_expired_signature_is_rejected_not_awaited() -> None:
    ledger = InMemoryLedger()
    ledger.expire("late")
    assert ledger.signature_status("late") == STATUS_EXPIRED
    assert ledger.transaction_receipt("late") is None
    with pytest.raises(LedgerRejected):
        ledger.confirm_transaction("late", timeout_s=0.1)
