from __future__ import annotations

import json
import os
import stat
from pathlib import Path

import pytest

from lft.crypto.keys import Identity, canonical_op_message, validate_identity_name, verify_signature
from lft.crypto.keystore import CheckpointCredentialStore, CredentialProvider, FileCredentialStore
from lft.runtime.errors import CredentialError


def test_identity_names() -> None:
    assert validate_identity_name("deployer") == "deployer"
    assert validate_identity_name("recipient:foundingTeam") == "recipient:foundingTeam"
    for bad in ["", "a:b:c", "has space", "dot.name", "../x"]:
        with pytest.raises(ValueError):
            validate_identity_name(bad)


def test_identity_signs_and_verifies() -> None:
    ident = Identity.generate("deployer")
    msg = canonical_op_message(op="issue", signer=ident.pubkey, payload={"quantity": "5"})
    sig = ident.sign(msg)
    assert verify_signature(message=msg, sig=sig, pubkey=ident.pubkey)
    assert not verify_signature(message=msg + b"x", sig=sig, pubkey=ident.pubkey)
    # the seed never shows up in repr
    assert ident.seed_hex() not in repr(ident)


def test_identity_rebuilt_from_secret_key_checks_public_half() -> None:
    ident = Identity.generate("asset")
    again = Identity.from_secret_key("asset", ident.secret_key_bytes())
    assert again.pubkey == ident.pubkey

    other = Identity.generate("asset")
    with pytest.raises(ValueError):
        Identity.from_secret_key("asset", ident.secret_key_bytes()[:32] + bytes.fromhex(other.pubkey))


def test_checkpoint_store_load_or_create_is_stable(credentials: CheckpointCredentialStore) -> None:
    assert isinstance(credentials, CredentialProvider)
    assert credentials.load("deployer") is None

    first = credentials.load_or_create("deployer")
    assert first.created is True
    second = credentials.load_or_create("deployer")
    assert second.created is False
    assert second.identity.pubkey == first.identity.pubkey
    assert credentials.names() == ["deployer"]


def test_checkpoint_store_detects_tampered_public_key(credentials: CheckpointCredentialStore) -> None:
    credentials.load_or_create("deployer")
    other = Identity.generate("deployer")
    with credentials._db.write_tx() as con:
        con.execute("UPDATE credentials SET pubkey=? WHERE name='deployer';", (other.pubkey,))
    with pytest.raises(CredentialError):
        credentials.load("deployer")


def test_file_store_writes_keypair_json_with_private_mode(tmp_path: Path) -> None:
    store = FileCredentialStore(directory=str(tmp_path / "keys"))
    loaded = store.load_or_create("recipient:foundingTeam")
    assert loaded.created is True

    path = store.path_for("recipient:foundingTeam")
    assert path.name == "recipient.foundingTeam-keypair.json"
    raw = json.loads(path.read_text(encoding="utf-8"))
    assert isinstance(raw, list) and len(raw) == 64
    assert bytes(raw) == loaded.identity.secret_key_bytes()
    assert stat.S_IMODE(os.stat(path).st_mode) == 0o600

    again = store.load_or_create("recipient:foundingTeam")
    assert again.created is False
    assert again.identity.pubkey == loaded.identity.pubkey
    assert store.names() == ["recipient:foundingTeam"]
    # no temp files left behind
    assert [p.name for p in (tmp_path / "keys").iterdir()] == [path.name]


def test_file_store_never_overwrites_existing_keypair(tmp_path: Path) -> None:
    store = FileCredentialStore(directory=str(tmp_path))
    existing = Identity.generate("deployer")
    store.path_for("deployer").write_text(json.dumps(list(existing.secret_key_bytes())), encoding="utf-8")

    loaded = store.load_or_create("deployer")
    assert loaded.created is False
    assert loaded.identity.pubkey == existing.pubkey


def test_file_store_rejects_malformed_keypair(tmp_path: Path) -> None:
    store = FileCredentialStore(directory=str(tmp_path))
    store.path_for("deployer").write_text("[1, 2, 3]", encoding="utf-8")
    with pytest.raises(CredentialError):
        store.load("deployer")
