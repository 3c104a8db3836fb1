from __future__ import annotations

"""Genesis distribution state machine.

Steps run strictly in this order, each one resumable from the checkpoint:

    asset_init -> provision:<category>... -> issue:<category>...
      -> finalize -> schedule -> report

A failing step aborts the run. Nothing is rolled back; the next run reads the
checkpoint, skips what is confirmed and reconciles what was submitted.
"""

import logging
import uuid
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Sequence, TypeVar

from lft.crypto.keystore import CredentialProvider
from lft.ledger.client import LedgerClient
from lft.ledger.types import AssetDefinition, FinalizationState, IssuanceRecord, RecipientAccount
from lft.logging_utils import log_event
from lft.runtime import metrics
from lft.runtime.allocation import compute_allocations, verify_issuance_totals
from lft.runtime.asset_init import initialize_asset
from lft.runtime.checkpoint import STATUS_CONFIRMED, CheckpointStore
from lft.runtime.context import CONTROLLER_IDENTITY, StepContext
from lft.runtime.errors import GenesisError, NeedsFunding
from lft.runtime.finalize import finalize
from lft.runtime.genesis_config import GenesisConfig, format_percentage
from lft.runtime.integrations import ManifestSink, notify_sinks
from lft.runtime.issuance import issue_all, issue_step
from lft.runtime.manifest import ManifestInfo, build_manifest, write_manifest
from lft.runtime.provision import provision, provision_step
from lft.runtime.release_schedule import LockEnforcer, ReleaseSchedule, schedule_releases
from lft.runtime.single_writer import RunLock

Json = Dict[str, Any]
T = TypeVar("T")

log = logging.getLogger("lft.genesis")

STEP_ASSET_INIT = "asset_init"
STEP_FINALIZE = "finalize"
STEP_SCHEDULE = "schedule"
STEP_REPORT = "report"


@dataclass(frozen=True, slots=True)
class RunResult:
    run_id: str
    asset: AssetDefinition
    recipients: Dict[str, RecipientAccount]
    issuances: List[IssuanceRecord]
    finalization: FinalizationState
    schedules: Dict[str, ReleaseSchedule]
    manifest: ManifestInfo
    skipped: List[str] = field(default_factory=list)

    def to_json(self) -> Json:
        return {
            "run_id": self.run_id,
            "asset_id": self.asset.asset_id,
            "finalization": self.finalization.value,
            "issuances": [r.to_json() for r in self.issuances],
            "release_schedules": {k: v.to_json() for k, v in self.schedules.items()},
            "manifest": self.manifest.to_json(),
            "skipped": list(self.skipped),
        }


def step_names(config: GenesisConfig) -> List[str]:
    names = config.category_names
    return (
        [STEP_ASSET_INIT]
        + [provision_step(n) for n in names]
        + [issue_step(n) for n in names]
        + [STEP_FINALIZE, STEP_SCHEDULE, STEP_REPORT]
    )


def completed_steps(config: GenesisConfig, checkpoint: CheckpointStore) -> List[str]:
    done: List[str] = []
    asset = checkpoint.load_asset()
    if asset is not None and asset.status == STATUS_CONFIRMED:
        done.append(STEP_ASSET_INIT)
    recipients = checkpoint.load_recipients()
    done.extend(provision_step(n) for n in config.category_names if n in recipients)
    issuances = checkpoint.load_issuances()
    done.extend(
        issue_step(n) for n in config.category_names if n in issuances and issuances[n].status == STATUS_CONFIRMED
    )
    if checkpoint.finalization_state() == FinalizationState.FINALIZED:
        done.append(STEP_FINALIZE)
    if checkpoint.schedule_step_done():
        done.append(STEP_SCHEDULE)
    info = checkpoint.load_manifest_info()
    if info is not None and Path(info["path"]).is_file():
        done.append(STEP_REPORT)
    return done


def plan_run(config: GenesisConfig, checkpoint: CheckpointStore) -> Json:
    """What a run would do next. Reads the checkpoint only."""
    done = set(completed_steps(config, checkpoint))
    bound = checkpoint.get_meta("config_fingerprint")
    return {
        "config_fingerprint": config.fingerprint(),
        "checkpoint_matches_config": bound is None or bound == config.fingerprint(),
        "run_id": checkpoint.get_meta("run_id"),
        "total_units": str(config.total_units),
        "allocations": [
            {
                "category": a.category,
                "percentage": format_percentage(a.percentage),
                "quantity": str(a.quantity),
                "remainder_units": a.remainder_units,
            }
            for a in compute_allocations(config)
        ],
        "steps": [{"step": s, "done": s in done} for s in step_names(config)],
        "pending": [s for s in step_names(config) if s not in done],
    }


class GenesisOrchestrator:
    """Runs one genesis distribution against one checkpoint."""

    def __init__(
        self,
        *,
        config: GenesisConfig,
        ledger: LedgerClient,
        checkpoint: CheckpointStore,
        credentials: CredentialProvider,
        manifest_path: str,
        confirm_timeout_s: float = 60.0,
        lock_enforcer: Optional[LockEnforcer] = None,
        sinks: Sequence[ManifestSink] = (),
        lock_path: Optional[str] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.config = config
        self.ledger = ledger
        self.checkpoint = checkpoint
        self.credentials = credentials
        self.manifest_path = str(manifest_path)
        self.confirm_timeout_s = float(confirm_timeout_s)
        self.lock_enforcer = lock_enforcer
        self.sinks = list(sinks)
        self.lock_path = lock_path or (str(checkpoint.path) + ".lock")
        self.log = logger or log

    # ---- planning (no ledger access) ----

    def step_names(self) -> List[str]:
        return step_names(self.config)

    def completed_steps(self) -> List[str]:
        return completed_steps(self.config, self.checkpoint)

    def pending_steps(self) -> List[str]:
        done = set(self.completed_steps())
        return [s for s in self.step_names() if s not in done]

    def plan(self) -> Json:
        return plan_run(self.config, self.checkpoint)

    # ---- execution ----

    def _step(self, name: str, fn: Callable[[], T]) -> T:
        log_event(self.log, "step_started", step=name)
        try:
            out = fn()
        except GenesisError as e:
            metrics.inc_counter("steps_failed_total")
            log_event(self.log, "step_failed", level=logging.ERROR, step=name, error=e.to_json())
            raise
        metrics.inc_counter("steps_completed_total")
        log_event(self.log, "step_completed", step=name)
        return out

    def _controller_context(self, *, ledger_work_pending: bool) -> StepContext:
        loaded = self.credentials.load_or_create(CONTROLLER_IDENTITY)
        controller = loaded.identity
        if ledger_work_pending:
            if loaded.created:
                raise NeedsFunding(
                    "a new controlling identity was generated; fund it and re-run",
                    step="credentials",
                    details={"address": controller.address},
                )
            balance = int(self.ledger.get_balance(controller.pubkey))
            metrics.set_gauge("controller_balance", balance)
            if balance <= 0:
                raise NeedsFunding(
                    "controlling identity has no balance; fund it and re-run",
                    step="credentials",
                    details={"address": controller.address, "balance": balance},
                )
        return StepContext(
            config=self.config,
            ledger=self.ledger,
            checkpoint=self.checkpoint,
            credentials=self.credentials,
            controller=controller,
            confirm_timeout_s=self.confirm_timeout_s,
            logger=self.log,
        )

    def run(self) -> RunResult:
        with RunLock(self.lock_path):
            return self._run_locked()

    def _run_locked(self) -> RunResult:
        run_id = self.checkpoint.bind_config(self.config.fingerprint(), run_id=uuid.uuid4().hex)
        skipped = self.completed_steps()
        ledger_steps = {STEP_ASSET_INIT, STEP_FINALIZE} | {
            s for s in self.step_names() if s.startswith(("provision:", "issue:"))
        }
        pending = [s for s in self.step_names() if s not in set(skipped)]
        log_event(self.log, "run_started", run_id=run_id, pending=pending)
        metrics.set_gauge("categories_total", len(self.config.categories))

        ctx = self._step(
            "credentials",
            lambda: self._controller_context(ledger_work_pending=bool(ledger_steps.intersection(pending))),
        )

        asset = self._step(
            STEP_ASSET_INIT,
            lambda: initialize_asset(ctx, decimals=self.config.decimals, controlling_key=ctx.controller),
        )
        recipients = self._step("provision", lambda: provision(ctx, asset, self.config.categories))
        issuances = self._step("issue", lambda: issue_all(ctx, asset, recipients, self.config.categories))
        metrics.set_gauge("issuances_confirmed", len(issuances))

        if self.checkpoint.finalization_state() == FinalizationState.FINALIZED:
            log_event(self.log, "step_skipped", step=STEP_FINALIZE)
            # the recorded finalization still has to agree with what was issued
            verify_issuance_totals(self.config, issuances)
            state = FinalizationState.FINALIZED
        else:
            state = self._step(STEP_FINALIZE, lambda: finalize(ctx, asset))

        # Once a manifest is recorded the schedules it lists are final; a late
        # activation would contradict the written artifact.
        enforcer = self.lock_enforcer
        if enforcer is not None and self.checkpoint.load_manifest_info() is not None:
            log_event(self.log, "lock_enforcer_skipped", step=STEP_SCHEDULE, reason="manifest_recorded")
            enforcer = None
        schedules = self._step(
            STEP_SCHEDULE,
            lambda: schedule_releases(ctx, asset, recipients, issuances, enforcer=enforcer),
        )

        def _report() -> ManifestInfo:
            fin = self.checkpoint.load_finalization()
            body = build_manifest(
                config=self.config,
                run_id=run_id,
                asset=asset,
                recipients=recipients,
                issuances=issuances,
                finalization_state=fin.state,
                finalization_receipt=fin.receipt,
                schedules=schedules,
            )
            info = write_manifest(self.manifest_path, body)
            self.checkpoint.record_manifest(path=info.path, sha256=info.sha256)
            log_event(self.log, "manifest_written", step=STEP_REPORT, path=info.path, sha256=info.sha256, written=info.written)
            notify_sinks(
                self.sinks, {"body": body, "sha256": info.sha256}, checkpoint=self.checkpoint, logger=self.log
            )
            return info

        manifest = self._step(STEP_REPORT, _report)
        log_event(self.log, "run_completed", run_id=run_id, asset_id=asset.asset_id, sha256=manifest.sha256)
        return RunResult(
            run_id=run_id,
            asset=asset,
            recipients=recipients,
            issuances=issuances,
            finalization=state,
            schedules=schedules,
            manifest=manifest,
            skipped=skipped,
        )
