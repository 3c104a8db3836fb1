from __future__ import annotations

"""Credential providers.

Contract: load_or_create(name) returns the persisted identity for `name`, or
generates one and persists it *before* returning it. A signing key is only ever
rebuilt from the exact persisted secret, and the stored public key must match
the one derived from it.

Two backends:
  - CheckpointCredentialStore: rows in the run checkpoint database
  - FileCredentialStore: one `<name>-keypair.json` per identity, holding the
    64-byte secret key (seed || pubkey) as a JSON array of byte values
"""

import json
import os
import tempfile
import time
from pathlib import Path
from typing import List, Optional, Protocol, runtime_checkable

from lft.crypto.keys import (
    Identity,
    LoadedIdentity,
    secret_key_from_json_array,
    secret_key_to_json_array,
    validate_identity_name,
)
from lft.runtime.errors import CredentialError
from lft.runtime.sqlite_db import SqliteDB


@runtime_checkable
class CredentialProvider(Protocol):
    def load(self, name: str) -> Optional[Identity]:
        ...

    def load_or_create(self, name: str) -> LoadedIdentity:
        ...

    def names(self) -> List[str]:
        ...


def _check_pubkey(ident: Identity, stored_pubkey: str) -> Identity:
    if ident.pubkey != str(stored_pubkey).strip().lower():
        raise CredentialError(
            "stored public key does not match the persisted secret",
            step="credentials",
            details={"identity": ident.name},
        )
    return ident


class CheckpointCredentialStore:
    """Credentials persisted next to the run state they belong to."""

    def __init__(self, *, db: SqliteDB) -> None:
        self._db = db
        self._db.init_schema()

    def load(self, name: str) -> Optional[Identity]:
        n = validate_identity_name(name)
        with self._db.connection() as con:
            row = con.execute("SELECT pubkey, seed_hex FROM credentials WHERE name=?;", (n,)).fetchone()
        if row is None:
            return None
        try:
            ident = Identity.from_seed(n, bytes.fromhex(str(row["seed_hex"])))
        except ValueError as e:
            raise CredentialError("persisted secret is malformed", step="credentials", details={"identity": n}) from e
        return _check_pubkey(ident, str(row["pubkey"]))

    def load_or_create(self, name: str) -> LoadedIdentity:
        n = validate_identity_name(name)
        existing = self.load(n)
        if existing is not None:
            return LoadedIdentity(identity=existing, created=False)

        fresh = Identity.generate(n)
        with self._db.write_tx() as con:
            cur = con.execute(
                "INSERT OR IGNORE INTO credentials(name, pubkey, seed_hex, created_ts_ms) VALUES(?, ?, ?, ?);",
                (n, fresh.pubkey, fresh.seed_hex(), int(time.time() * 1000)),
            )
            inserted = cur.rowcount == 1

        # Re-read what is durable; never hand out a key that was not committed.
        persisted = self.load(n)
        if persisted is None:
            raise CredentialError("identity was not persisted", step="credentials", details={"identity": n})
        return LoadedIdentity(identity=persisted, created=inserted)

    def names(self) -> List[str]:
        with self._db.connection() as con:
            return [str(r["name"]) for r in con.execute("SELECT name FROM credentials ORDER BY name;").fetchall()]


class FileCredentialStore:
    """Keypair files in a directory, written atomically with mode 0600."""

    SUFFIX = "-keypair.json"

    def __init__(self, *, directory: str) -> None:
        self.directory = Path(directory)

    def path_for(self, name: str) -> Path:
        # ':' is not portable in file names; '.' never occurs in identity names
        return self.directory / (validate_identity_name(name).replace(":", ".") + self.SUFFIX)

    def load(self, name: str) -> Optional[Identity]:
        n = validate_identity_name(name)
        p = self.path_for(n)
        if not p.is_file():
            return None
        try:
            raw = json.loads(p.read_text(encoding="utf-8"))
            return Identity.from_secret_key(n, secret_key_from_json_array(raw))
        except ValueError as e:
            raise CredentialError(f"cannot load keypair file {p}: {e}", step="credentials", details={"identity": n}) from e

    def load_or_create(self, name: str) -> LoadedIdentity:
        n = validate_identity_name(name)
        existing = self.load(n)
        if existing is not None:
            return LoadedIdentity(identity=existing, created=False)

        fresh = Identity.generate(n)
        created = self._write_new(self.path_for(n), json.dumps(secret_key_to_json_array(fresh)))

        persisted = self.load(n)
        if persisted is None:
            raise CredentialError("identity was not persisted", step="credentials", details={"identity": n})
        return LoadedIdentity(identity=persisted, created=created)

    def _write_new(self, dest: Path, body: str) -> bool:
        """Durably create `dest`; return False if another writer got there first."""
        self.directory.mkdir(parents=True, exist_ok=True)
        fd, tmp = tempfile.mkstemp(prefix=".tmp-", dir=str(self.directory))
        try:
            os.fchmod(fd, 0o600)
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(body)
                f.flush()
                os.fsync(f.fileno())
            try:
                # link() fails if dest exists: an existing keypair is never overwritten
                os.link(tmp, dest)
            except FileExistsError:
                return False
            self._fsync_dir()
            return True
        finally:
            try:
                os.unlink(tmp)
            except FileNotFoundError:
                pass

    def _fsync_dir(self) -> None:
        dfd = os.open(str(self.directory), os.O_RDONLY)
        try:
            os.fsync(dfd)
        finally:
            os.close(dfd)

    def names(self) -> List[str]:
        if not self.directory.is_dir():
            return []
        out = []
        for p in sorted(self.directory.glob("*" + self.SUFFIX)):
            out.append(p.name[: -len(self.SUFFIX)].replace(".", ":"))
        return out
