from __future__ import annotations

import sys
from pathlib import Path
from typing import Callable, Iterator

import pytest

# Ensure local "src/" takes precedence over any globally-installed "lft" package.
ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"

src_str = str(SRC)
if src_str not in sys.path:
    sys.path.insert(0, src_str)

from lft.crypto.keystore import CheckpointCredentialStore  # noqa: E402
from lft.ledger.memory import InMemoryLedger  # noqa: E402
from lft.runtime import metrics  # noqa: E402
from lft.runtime.checkpoint import CheckpointStore, open_checkpoint  # noqa: E402
from lft.runtime.context import CONTROLLER_IDENTITY, StepContext  # noqa: E402
from lft.runtime.genesis_config import default_genesis_config  # noqa: E402
from lft.runtime.orchestrator import GenesisOrchestrator  # noqa: E402

FUNDING = 10_000_000_000


@pytest.fixture(autouse=True)
def _clean_metrics() -> Iterator[None]:
    metrics.reset()
    yield
    metrics.reset()


@pytest.fixture()
def checkpoint(tmp_path: Path) -> CheckpointStore:
    return open_checkpoint(str(tmp_path / "genesis.db"))


@pytest.fixture()
def ledger() -> InMemoryLedger:
    return InMemoryLedger()


@pytest.fixture()
def credentials(checkpoint: CheckpointStore) -> CheckpointCredentialStore:
    return CheckpointCredentialStore(db=checkpoint.db)


@pytest.fixture()
def funded(ledger: InMemoryLedger, credentials: CheckpointCredentialStore) -> str:
    """Create and fund the controlling identity; returns its address."""
    controller = credentials.load_or_create(CONTROLLER_IDENTITY).identity
    ledger.airdrop(controller.pubkey, FUNDING)
    return controller.pubkey


@pytest.fixture()
def make_orchestrator(tmp_path: Path, ledger, checkpoint, credentials) -> Callable[..., GenesisOrchestrator]:
    """Factory for orchestrators sharing this test's ledger, checkpoint and credentials."""

    def _make(config=None, **kw) -> GenesisOrchestrator:
        kw.setdefault("manifest_path", str(tmp_path / "manifest.json"))
        kw.setdefault("confirm_timeout_s", 1.0)
        return GenesisOrchestrator(
            config=config or default_genesis_config(),
            ledger=kw.pop("ledger", ledger),
            checkpoint=checkpoint,
            credentials=credentials,
            **kw,
        )

    return _make


@pytest.fixture()
def orchestrator(make_orchestrator, funded) -> GenesisOrchestrator:
    return make_orchestrator()


@pytest.fixture()
def ctx(ledger, checkpoint, credentials, funded) -> StepContext:
    return StepContext(
        config=default_genesis_config(),
        ledger=ledger,
        checkpoint=checkpoint,
        credentials=credentials,
        controller=credentials.load(CONTROLLER_IDENTITY),
        confirm_timeout_s=1.0,
    )
