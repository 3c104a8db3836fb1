# src/lft/crypto/keys.py
from __future__ import annotations

import base64
import json
import re
import secrets
from dataclasses import dataclass, field
from typing import Any, Dict, List

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey, Ed25519PublicKey
from cryptography.hazmat.primitives.serialization import Encoding, PublicFormat

Json = Dict[str, Any]

SEED_LEN = 32
SECRET_KEY_LEN = 64

# "deployer", "asset", "recipient:communityTreasury", ...
_IDENTITY_NAME_RE = re.compile(r"^[A-Za-z0-9_-]+(:[A-Za-z0-9_-]+)?$")


def validate_identity_name(name: str) -> str:
    n = str(name or "").strip()
    if not _IDENTITY_NAME_RE.match(n):
        raise ValueError(f"invalid identity name: {name!r}")
    return n


def decode_bytes(s: str) -> bytes:
    s = s.strip()
    if not s:
        raise ValueError("empty string")
    # hex
    try:
        return bytes.fromhex(s)
    except ValueError:
        pass
    # base64 / base64url
    try:
        padding = "=" * (-len(s) % 4)
        s2 = (s + padding).replace("-", "+").replace("_", "/")
        return base64.b64decode(s2, validate=True)
    except ValueError as e:
        raise ValueError("not hex or base64") from e


def _pubkey_hex(sk: Ed25519PrivateKey) -> str:
    return sk.public_key().public_bytes(Encoding.Raw, PublicFormat.Raw).hex()


@dataclass(frozen=True)
class Identity:
    """A named Ed25519 keypair: public identity plus signing capability.

    Only ever built from the exact persisted 32-byte seed.
    """

    name: str
    pubkey: str
    _seed: bytes = field(repr=False, compare=False)

    @classmethod
    def generate(cls, name: str) -> "Identity":
        return cls.from_seed(name, secrets.token_bytes(SEED_LEN))

    @classmethod
    def from_seed(cls, name: str, seed: bytes) -> "Identity":
        if len(seed) != SEED_LEN:
            raise ValueError("ed25519 seed must be 32 bytes")
        sk = Ed25519PrivateKey.from_private_bytes(bytes(seed))
        return cls(name=validate_identity_name(name), pubkey=_pubkey_hex(sk), _seed=bytes(seed))

    @classmethod
    def from_secret_key(cls, name: str, secret_key: bytes) -> "Identity":
        """Load from a 64-byte secret key (seed || pubkey) and check its halves agree."""
        if len(secret_key) != SECRET_KEY_LEN:
            raise ValueError("secret key must be 64 bytes (seed || pubkey)")
        ident = cls.from_seed(name, secret_key[:SEED_LEN])
        if bytes.fromhex(ident.pubkey) != bytes(secret_key[SEED_LEN:]):
            raise ValueError("secret key public half does not match its seed")
        return ident

    @property
    def address(self) -> str:
        return self.pubkey

    def seed_hex(self) -> str:
        return self._seed.hex()

    def secret_key_bytes(self) -> bytes:
        return self._seed + bytes.fromhex(self.pubkey)

    def sign(self, message: bytes) -> str:
        sk = Ed25519PrivateKey.from_private_bytes(self._seed)
        return sk.sign(message).hex()


@dataclass(frozen=True)
class LoadedIdentity:
    identity: Identity
    created: bool


def verify_signature(*, message: bytes, sig: str, pubkey: str) -> bool:
    try:
        key = Ed25519PublicKey.from_public_bytes(decode_bytes(pubkey))
        key.verify(decode_bytes(sig), message)
        return True
    except (InvalidSignature, ValueError):
        return False


def canonical_op_message(*, op: str, signer: str, payload: Json) -> bytes:
    obj: Json = {
        "op": str(op),
        "signer": str(signer),
        "payload": payload if isinstance(payload, dict) else {},
    }
    return json.dumps(obj, sort_keys=True, separators=(",", ":"), ensure_ascii=False).encode("utf-8")


def secret_key_to_json_array(ident: Identity) -> List[int]:
    return list(ident.secret_key_bytes())


def secret_key_from_json_array(raw: Any) -> bytes:
    if not isinstance(raw, list) or not all(isinstance(x, int) and 0 <= x <= 255 for x in raw):
        raise ValueError("keypair file must be a JSON array of byte values")
    return bytes(raw)
