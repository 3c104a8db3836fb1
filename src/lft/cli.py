from __future__ import annotations

"""lft-genesis: operator CLI for the genesis distribution.

Exit codes:
  0  success
  1  fatal error (see the printed code:reason line)
  2  configuration error
  3  controlling identity needs funding
  4  retryable failure (re-run to resume from the checkpoint)
"""

import argparse
import importlib
import json
import logging
import os
import sys
import tempfile
from dataclasses import replace
from pathlib import Path
from typing import Any, Optional

from lft.crypto.keystore import CheckpointCredentialStore, CredentialProvider, FileCredentialStore
from lft.ledger.client import LedgerClient
from lft.ledger.memory import InMemoryLedger
from lft.logging_utils import configure_structured_logging, log_event
from lft.runtime.allocation import compute_allocations
from lft.runtime.checkpoint import CheckpointStore, open_checkpoint
from lft.runtime.context import CONTROLLER_IDENTITY
from lft.runtime.errors import ConfigError, GenesisError, InsufficientFunding, NeedsFunding
from lft.runtime.genesis_config import GenesisConfig, default_genesis_config, format_percentage, load_genesis_config
from lft.runtime.manifest import read_manifest
from lft.runtime.orchestrator import GenesisOrchestrator, plan_run
from lft.runtime.run_config import RunConfig, load_run_config

log = logging.getLogger("lft.cli")

MEMORY_NETWORK = "memory"
DEFAULT_AIRDROP = 10_000_000_000


def exit_code_for(err: GenesisError) -> int:
    if isinstance(err, ConfigError):
        return 2
    if isinstance(err, (NeedsFunding, InsufficientFunding)):
        return 3
    if err.retryable:
        return 4
    return 1


def _print_json(obj: Any) -> None:
    print(json.dumps(obj, sort_keys=True, indent=2, ensure_ascii=False))


def load_genesis(cfg: RunConfig) -> GenesisConfig:
    if cfg.genesis_path:
        return load_genesis_config(cfg.genesis_path)
    return default_genesis_config()


def build_credentials(cfg: RunConfig, checkpoint: CheckpointStore) -> CredentialProvider:
    if cfg.credential_backend == "file":
        return FileCredentialStore(directory=cfg.keys_dir)
    return CheckpointCredentialStore(db=checkpoint.db)


def build_ledger(cfg: RunConfig, factory: Optional[str]) -> LedgerClient:
    """Ledger client for cfg.network; `factory` is "module:callable" taking network=."""
    if cfg.network == MEMORY_NETWORK:
        return InMemoryLedger()
    if not factory:
        raise ConfigError(
            f"no ledger client configured for network {cfg.network!r}; pass --ledger module:factory",
            step="config",
        )
    mod_name, _, attr = factory.partition(":")
    if not mod_name or not attr:
        raise ConfigError(f"--ledger must look like module:factory; got: {factory!r}", step="config")
    try:
        fn = getattr(importlib.import_module(mod_name), attr)
    except (ImportError, AttributeError) as e:
        raise ConfigError(f"cannot load ledger factory {factory!r}: {e}", step="config") from e
    client = fn(network=cfg.network)
    if not isinstance(client, LedgerClient):
        raise ConfigError(f"ledger factory {factory!r} did not return a LedgerClient", step="config")
    return client


def _cmd_validate(cfg: RunConfig, args: argparse.Namespace) -> int:
    gen = load_genesis(cfg)
    _print_json(
        {
            "valid": True,
            "config_fingerprint": gen.fingerprint(),
            "token": gen.token.symbol,
            "decimals": gen.decimals,
            "total_supply": str(gen.total_supply),
            "total_units": str(gen.total_units),
            "allocations": [
                {"category": a.category, "percentage": format_percentage(a.percentage), "quantity": str(a.quantity)}
                for a in compute_allocations(gen)
            ],
        }
    )
    return 0


def _cmd_plan(cfg: RunConfig, args: argparse.Namespace) -> int:
    gen = load_genesis(cfg)
    _print_json(plan_run(gen, open_checkpoint(cfg.checkpoint_path)))
    return 0


def _cmd_status(cfg: RunConfig, args: argparse.Namespace) -> int:
    if not Path(cfg.checkpoint_path).is_file():
        _print_json({"checkpoint": cfg.checkpoint_path, "exists": False})
        return 1
    out = open_checkpoint(cfg.checkpoint_path).snapshot()
    out["checkpoint"] = cfg.checkpoint_path
    out["exists"] = True
    _print_json(out)
    return 0


def _cmd_keygen(cfg: RunConfig, args: argparse.Namespace) -> int:
    creds = build_credentials(cfg, open_checkpoint(cfg.checkpoint_path))
    loaded = creds.load_or_create(args.name)
    _print_json({"name": loaded.identity.name, "address": loaded.identity.address, "created": loaded.created})
    return 0


def _run(cfg: RunConfig, args: argparse.Namespace) -> int:
    gen = load_genesis(cfg)
    ledger = build_ledger(cfg, args.ledger)
    checkpoint = open_checkpoint(cfg.checkpoint_path)
    credentials = build_credentials(cfg, checkpoint)

    if isinstance(ledger, InMemoryLedger):
        controller = credentials.load_or_create(CONTROLLER_IDENTITY).identity
        ledger.airdrop(controller.pubkey, int(args.airdrop))

    orch = GenesisOrchestrator(
        config=gen,
        ledger=ledger,
        checkpoint=checkpoint,
        credentials=credentials,
        manifest_path=cfg.manifest_path,
        confirm_timeout_s=cfg.confirm_timeout_s,
        lock_path=cfg.lock_path,
    )
    result = orch.run()
    out = result.to_json()
    if cfg.network == MEMORY_NETWORK:
        out["manifest_document"] = read_manifest(result.manifest.path)
    _print_json(out)
    return 0


def _cmd_run(cfg: RunConfig, args: argparse.Namespace) -> int:
    if cfg.network != MEMORY_NETWORK:
        return _run(cfg, args)
    # The in-memory ledger lives only as long as this process, so a dry run
    # keeps its checkpoint, keys and manifest in a throwaway directory.
    with tempfile.TemporaryDirectory(prefix="lft-dry-run-") as tmp:
        dry = replace(
            cfg,
            checkpoint_path=os.path.join(tmp, "genesis.db"),
            manifest_path=os.path.join(tmp, "manifest.json"),
            keys_dir=os.path.join(tmp, "keys"),
        )
        return _run(dry, args)


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="lft-genesis", description="LFT genesis distribution orchestrator")
    p.add_argument("--mode", default=None, help="dev | testnet | prod (LFT_MODE)")
    p.add_argument("--network", default=None, help="ledger network name, or 'memory' (LFT_NETWORK)")
    p.add_argument("--genesis", dest="genesis_path", default=None, help="genesis YAML/JSON (LFT_GENESIS_PATH)")
    p.add_argument("--checkpoint", dest="checkpoint_path", default=None, help="checkpoint DB (LFT_CHECKPOINT_PATH)")
    p.add_argument("--manifest", dest="manifest_path", default=None, help="manifest output (LFT_MANIFEST_PATH)")
    p.add_argument("--credential-backend", default=None, choices=["checkpoint", "file"])
    p.add_argument("--keys-dir", default=None, help="keypair directory for the file backend (LFT_KEYS_DIR)")
    p.add_argument("--confirm-timeout-ms", type=int, default=None)
    p.add_argument("--log-level", default=None)
    p.add_argument("--env-file", default=None, help=".env file to load (LFT_DOTENV_PATH)")

    sub = p.add_subparsers(dest="command", required=True)

    run = sub.add_parser("run", help="run or resume the distribution")
    run.add_argument("--ledger", default=os.environ.get("LFT_LEDGER_FACTORY"), help="ledger client factory module:callable")
    run.add_argument("--airdrop", type=int, default=DEFAULT_AIRDROP, help="controller funding for --network memory")
    run.set_defaults(func=_cmd_run)

    plan = sub.add_parser("plan", help="show pending steps without touching the ledger")
    plan.set_defaults(func=_cmd_plan)

    status = sub.add_parser("status", help="print the checkpoint snapshot")
    status.set_defaults(func=_cmd_status)

    keygen = sub.add_parser("keygen", help="create (or show) a persisted identity")
    keygen.add_argument("--name", default=CONTROLLER_IDENTITY)
    keygen.set_defaults(func=_cmd_keygen)

    validate = sub.add_parser("validate", help="validate the genesis config and print the allocation table")
    validate.set_defaults(func=_cmd_validate)
    return p


def main(argv: Optional[list[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    try:
        cfg = load_run_config(
            dotenv_path=args.env_file,
            mode=args.mode,
            network=args.network,
            genesis_path=args.genesis_path,
            checkpoint_path=args.checkpoint_path,
            manifest_path=args.manifest_path,
            credential_backend=args.credential_backend,
            keys_dir=args.keys_dir,
            confirm_timeout_ms=args.confirm_timeout_ms,
            log_level=args.log_level,
        )
        configure_structured_logging(cfg.log_level)
        return int(args.func(cfg, args))
    except GenesisError as e:
        log_event(log, "command_failed", level=logging.ERROR, command=args.command, error=e.to_json())
        print(str(e), file=sys.stderr)
        return exit_code_for(e)


if __name__ == "__main__":
    raise SystemExit(main())
