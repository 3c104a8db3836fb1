# src/lft/runtime/run_config.py
from __future__ import annotations

import os
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Any, Dict, Optional

from lft.runtime.errors import ConfigError

Json = Dict[str, Any]


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return int(default)
    try:
        return int(raw)
    except ValueError as e:
        raise ConfigError(f"{name} must be an integer; got: {raw!r}", step="config") from e


def _env_str(name: str, default: str) -> str:
    v = os.environ.get(name)
    if v is None or not v.strip():
        return str(default)
    return v.strip()


@dataclass(frozen=True)
class RunConfig:
    mode: str  # "dev" | "testnet" | "prod"

    # "memory" runs against the in-process ledger; anything else needs a client factory.
    network: str

    checkpoint_path: str
    manifest_path: str
    genesis_path: str  # empty: built-in LFT distribution

    credential_backend: str  # "checkpoint" | "file"
    keys_dir: str

    confirm_timeout_ms: int

    log_level: str

    @property
    def confirm_timeout_s(self) -> float:
        return float(self.confirm_timeout_ms) / 1000.0

    @property
    def lock_path(self) -> str:
        return str(self.checkpoint_path) + ".lock"

    def to_json(self) -> Json:
        return {
            "mode": self.mode,
            "network": self.network,
            "checkpoint_path": self.checkpoint_path,
            "manifest_path": self.manifest_path,
            "genesis_path": self.genesis_path,
            "credential_backend": self.credential_backend,
            "keys_dir": self.keys_dir,
            "confirm_timeout_ms": int(self.confirm_timeout_ms),
            "log_level": self.log_level,
        }


_ALLOWED_MODES = {"dev", "testnet", "prod"}
_ALLOWED_BACKENDS = {"checkpoint", "file"}


def validate_run_config(cfg: RunConfig) -> None:
    """Fail-fast validation of operator settings; raises ConfigError."""

    mode = str(cfg.mode or "").strip().lower()
    if mode not in _ALLOWED_MODES:
        raise ConfigError(f"mode must be one of {sorted(_ALLOWED_MODES)}; got: {cfg.mode!r}", step="config")

    if not isinstance(cfg.network, str) or not cfg.network.strip():
        raise ConfigError("network must be a non-empty string", step="config")
    if mode == "prod" and cfg.network == "memory":
        raise ConfigError("the in-memory ledger cannot be used in prod mode", step="config")

    for name, p in (("checkpoint_path", cfg.checkpoint_path), ("manifest_path", cfg.manifest_path)):
        if not isinstance(p, str) or not p.strip():
            raise ConfigError(f"{name} must be a non-empty string", step="config")

    if cfg.genesis_path and not Path(cfg.genesis_path).is_file():
        raise ConfigError(f"genesis_path does not exist or is not a file: {cfg.genesis_path!r}", step="config")

    if cfg.credential_backend not in _ALLOWED_BACKENDS:
        raise ConfigError(
            f"credential_backend must be one of {sorted(_ALLOWED_BACKENDS)}; got: {cfg.credential_backend!r}",
            step="config",
        )
    if cfg.credential_backend == "file" and not str(cfg.keys_dir or "").strip():
        raise ConfigError("keys_dir is required for the file credential backend", step="config")

    if int(cfg.confirm_timeout_ms) < 1_000:
        raise ConfigError(f"confirm_timeout_ms must be >= 1000; got: {cfg.confirm_timeout_ms}", step="config")


def default_run_config() -> RunConfig:
    return RunConfig(
        # No silent dev posture without explicit configuration.
        mode="prod",
        network="mainnet",
        checkpoint_path="./data/genesis.db",
        manifest_path="./data/lft-genesis-manifest.json",
        genesis_path="",
        credential_backend="checkpoint",
        keys_dir="./data/keys",
        confirm_timeout_ms=60_000,
        log_level="INFO",
    )


def run_config_from_env(**overrides: Any) -> RunConfig:
    """Defaults, then LFT_* environment variables, then explicit (non-None) overrides."""
    d = default_run_config()
    cfg = RunConfig(
        mode=_env_str("LFT_MODE", d.mode).lower(),
        network=_env_str("LFT_NETWORK", d.network),
        checkpoint_path=_env_str("LFT_CHECKPOINT_PATH", d.checkpoint_path),
        manifest_path=_env_str("LFT_MANIFEST_PATH", d.manifest_path),
        genesis_path=_env_str("LFT_GENESIS_PATH", d.genesis_path),
        credential_backend=_env_str("LFT_CREDENTIAL_BACKEND", d.credential_backend).lower(),
        keys_dir=_env_str("LFT_KEYS_DIR", d.keys_dir),
        confirm_timeout_ms=_env_int("LFT_CONFIRM_TIMEOUT_MS", d.confirm_timeout_ms),
        log_level=_env_str("LFT_LOG_LEVEL", d.log_level),
    )
    given = {k: v for k, v in overrides.items() if v is not None}
    if given:
        cfg = replace(cfg, **given)
    validate_run_config(cfg)
    return cfg


def load_run_config(*, dotenv_path: Optional[str] = None, **overrides: Any) -> RunConfig:
    from lft.env import load_dotenv_if_present

    load_dotenv_if_present(dotenv_path)
    return run_config_from_env(**overrides)
