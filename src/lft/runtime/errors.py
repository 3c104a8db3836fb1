from __future__ import annotations

"""Error taxonomy for the genesis distribution run.

Every step-level failure aborts the run. Nothing is rolled back; the checkpoint
is the only recovery mechanism, so each error carries the step (and category,
where there is one) needed to resume correctly.
"""

from dataclasses import dataclass
from typing import Any, ClassVar, Dict, Optional

Json = Dict[str, Any]


@dataclass
class GenesisError(Exception):
    """Canonical error type for orchestration failures."""

    reason: str
    step: Optional[str] = None
    category: Optional[str] = None
    details: Any | None = None

    code: ClassVar[str] = "genesis_error"
    retryable: ClassVar[bool] = False

    def __str__(self) -> str:
        out = f"{self.code}:{self.reason}"
        if self.step:
            out += f" step={self.step}"
        if self.category:
            out += f" category={self.category}"
        if self.details is not None:
            out += f" details={self.details}"
        return out

    def to_json(self) -> Json:
        return {
            "code": self.code,
            "reason": self.reason,
            "step": self.step,
            "category": self.category,
            "details": self.details,
            "retryable": self.retryable,
        }


class ConfigError(GenesisError):
    code = "invalid_config"


class NeedsFunding(GenesisError):
    """Controlling identity is new or empty; external funding is required."""

    code = "needs_funding"


class InsufficientFunding(GenesisError):
    code = "insufficient_funding"


class NetworkRejected(GenesisError):
    code = "network_rejected"


class ConfirmationTimeout(GenesisError):
    """Submitted but not observed as confirmed in time.

    Safe to retry: the next run re-checks ledger state for the recorded
    signature before anything is resubmitted.
    """

    code = "confirmation_timeout"
    retryable = True


class AccountingInvariantViolation(GenesisError):
    code = "accounting_invariant_violation"


class PrematureFinalization(GenesisError):
    code = "premature_finalization"


class AlreadyFinalized(GenesisError):
    code = "already_finalized"


class CredentialError(GenesisError):
    code = "credential_error"


class CheckpointError(GenesisError):
    code = "checkpoint_error"


class RunLockHeld(GenesisError):
    code = "run_lock_held"


class ReportWriteError(GenesisError):
    code = "report_write_failed"
    retryable = True


__all__ = [
    "AccountingInvariantViolation",
    "AlreadyFinalized",
    "CheckpointError",
    "ConfigError",
    "ConfirmationTimeout",
    "CredentialError",
    "GenesisError",
    "InsufficientFunding",
    "NeedsFunding",
    "NetworkRejected",
    "PrematureFinalization",
    "ReportWriteError",
    "RunLockHeld",
]
