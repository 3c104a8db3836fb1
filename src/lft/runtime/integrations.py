from __future__ import annotations

"""Capability interfaces fed by the run manifest.

Governance and staking live outside this package. They plug in as
ManifestSink implementations that receive the finished manifest; nothing
here implements voting or rewards.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, Iterable, Protocol, runtime_checkable

from lft.logging_utils import log_event
from lft.runtime.checkpoint import CheckpointStore
from lft.runtime.errors import GenesisError, ReportWriteError

Json = Dict[str, Any]


@runtime_checkable
class ManifestSink(Protocol):
    name: str

    def publish(self, manifest: Json) -> None:
        ...


@dataclass(frozen=True, slots=True)
class RealmParams:
    """Parameters a governance realm is initialized with for the new asset."""

    name: str
    community_asset: str
    min_tokens_to_create_proposal: int
    use_quadratic_voting: bool = False


@runtime_checkable
class GovernanceRealm(ManifestSink, Protocol):
    def initialize_realm(self, params: RealmParams) -> str:
        """Create the realm; returns its address."""
        ...


@runtime_checkable
class StakingProgram(ManifestSink, Protocol):
    def register_asset(self, asset_id: str, *, decimals: int) -> str:
        """Enable staking of `asset_id`; returns the pool address."""
        ...


def notify_sinks(
    sinks: Iterable[ManifestSink], manifest: Json, *, checkpoint: CheckpointStore, logger: logging.Logger
) -> None:
    """Hand the written manifest to each sink in order; the first failure stops the run.

    A sink that already received this digest is skipped, so re-running after
    a sink failure only reaches the sinks that have not been published to.
    """
    sha256 = str(manifest["sha256"])
    for sink in sinks:
        if checkpoint.sink_published(sink.name, sha256):
            log_event(logger, "step_skipped", step="report", sink=sink.name, sha256=sha256)
            continue
        try:
            sink.publish(manifest)
        except GenesisError:
            raise
        except Exception as e:
            raise ReportWriteError(
                f"manifest sink {sink.name!r} failed: {e}", step="report", details={"sink": sink.name}
            ) from e
        checkpoint.record_sink_published(sink.name, sha256)
        log_event(logger, "manifest_published", step="report", sink=sink.name, sha256=sha256)
