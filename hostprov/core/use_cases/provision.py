"""
Provision use case — bring the host to the configured state.

This is the top-level orchestrator: it loads config, validates the run
(root, target account), builds the step catalog, orders it, executes
it, and persists the outcome. The full vertical slice from
``hostprov run TARGET`` to an audited report.

Construction-time failures (config, validation, plan) abort before the
first step with an empty report; nothing on the host is touched.
"""

from __future__ import annotations

import logging
import socket
import time
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path

from hostprov.adapters import AdapterRegistry, system_adapters
from hostprov.core.config.loader import ConfigError, load_config
from hostprov.core.engine.executor import execute_plan, generate_run_id
from hostprov.core.engine.graph import ExecutionPlan, build_plan
from hostprov.core.engine.report import Report
from hostprov.core.errors import (
    InvalidTargetError,
    PlanError,
    ProbeUnavailableError,
    ValidationError,
)
from hostprov.core.facts.base import FactProbe
from hostprov.core.facts.host import HostProbe
from hostprov.core.models.host import HostConfig
from hostprov.core.models.state import RunRecord
from hostprov.core.models.step import StepStatus
from hostprov.core.persistence.audit import DEFAULT_AUDIT_FILE, AuditEntry, AuditWriter
from hostprov.core.persistence.state_file import (
    DEFAULT_STATE_FILE,
    load_state,
    save_state,
    state_dir_for,
)
from hostprov.core.reliability.retry import RetryPolicy
from hostprov.core.services.catalog import build_steps, recommendations

logger = logging.getLogger(__name__)


@dataclass
class ProvisionResult:
    """Result of a provisioning run."""

    report: Report
    plan: ExecutionPlan | None = None
    config: HostConfig | None = None
    config_path: Path | None = None
    state_dir: Path | None = None

    @property
    def exit_code(self) -> int:
        return self.report.exit_code

    def to_dict(self) -> dict:
        return {
            "config_path": str(self.config_path) if self.config_path else None,
            "state_dir": str(self.state_dir) if self.state_dir else None,
            "report": self.report.to_dict(),
        }


def validate_run(config: HostConfig, target: str, probe: FactProbe, dry_run: bool = False) -> None:
    """Refuse runs that cannot succeed, before any mutation.

    Raises:
        ValidationError: Missing target, or not root when root is required.
        InvalidTargetError: The target account does not exist.
    """
    if not target:
        raise ValidationError("A target account is required")

    try:
        if config.settings.require_root and not dry_run and not probe.is_root():
            raise ValidationError("hostprov must run as root (use sudo)")
        if not probe.user_exists(target):
            raise InvalidTargetError(target)
    except ProbeUnavailableError as e:
        raise ValidationError(f"Cannot validate the run: {e}") from e


def _abort(report: Report, error_type: str, exc: Exception) -> Report:
    logger.error("Aborting before any step ran: %s", exc)
    report.error = str(exc)
    report.error_type = error_type
    report.finish()
    return report


def provision(
    target: str,
    config_path: Path | None = None,
    *,
    dry_run: bool = False,
    timeout: float | None = None,
    probe: FactProbe | None = None,
    registry: AdapterRegistry | None = None,
    persist: bool = True,
    clock: Callable[[], float] = time.monotonic,
    sleep: Callable[[float], None] = time.sleep,
) -> ProvisionResult:
    """Provision the host for ``target``.

    Args:
        target: Account granted container-runtime access.
        config_path: Explicit host.yml. None searches upward, then
            falls back to built-in defaults.
        dry_run: Check preconditions only; change nothing.
        timeout: Run timeout in seconds (overrides settings.timeout_seconds).
        probe: Fact probe (default: the real host).
        registry: Adapter registry (default: the real system adapters).
        persist: Write the state file and audit entry.
        clock: Monotonic time source for the timeout.
        sleep: Wait function for busy retries.

    Returns:
        ProvisionResult. Never raises for provisioning errors: they end
        up in ``result.report`` with the matching exit code.
    """
    report = Report(run_id=generate_run_id(), target=target, dry_run=dry_run)
    result = ProvisionResult(report=report)

    # ── Load config ─────────────────────────────────────────────
    try:
        config, config_path = load_config(config_path)
    except ConfigError as e:
        _abort(report, "config", e)
        return result
    result.config = config
    result.config_path = config_path
    result.state_dir = state_dir_for(config_path, config.settings.state_dir)

    if probe is None:
        probe = HostProbe()
    if registry is None:
        registry = AdapterRegistry()
        registry.register_all(system_adapters())

    # ── Validate and plan ───────────────────────────────────────
    try:
        validate_run(config, target, probe, dry_run=dry_run)
    except ValidationError as e:
        _abort(report, "validation", e)
        _persist(result, persist)
        return result

    try:
        plan = build_plan(build_steps(config, target, probe))
    except (PlanError, ProbeUnavailableError) as e:
        _abort(report, "plan", e)
        _persist(result, persist)
        return result
    result.plan = plan

    # ── Execute ─────────────────────────────────────────────────
    settings = config.settings
    report = execute_plan(
        plan,
        probe,
        registry,
        target=target,
        run_id=report.run_id,
        dry_run=dry_run,
        retry=RetryPolicy.from_settings(settings.retry),
        timeout=timeout if timeout is not None else settings.timeout_seconds,
        rollback_on_timeout=settings.rollback_on_timeout,
        clock=clock,
        sleep=sleep,
    )
    if report.status == "success" and not dry_run:
        report.notes.extend(recommendations(config))
    result.report = report

    _persist(result, persist)
    return result


def _persist(result: ProvisionResult, persist: bool) -> None:
    """Record the run in the state file and the audit ledger.

    Persistence problems are logged, never fatal: the host has already
    been changed and the report is the primary record.
    """
    if not persist or result.state_dir is None:
        return

    report = result.report
    state_dir = result.state_dir

    try:
        AuditWriter(state_dir / DEFAULT_AUDIT_FILE).write(
            AuditEntry(
                run_id=report.run_id,
                target=report.target,
                dry_run=report.dry_run,
                status=report.status,
                exit_code=report.exit_code,
                steps_total=len(report.run_results),
                steps_applied=report.applied,
                steps_skipped=report.skipped,
                steps_failed=report.failed,
                steps_rolled_back=report.count(StepStatus.ROLLED_BACK),
                changed=[r.step for r in report.run_results if r.status == StepStatus.APPLIED],
                errors=[e for e in [report.error] + [r.error for r in report.results] if e],
                context={"config_path": str(result.config_path) if result.config_path else None},
            )
        )
    except OSError as e:
        logger.warning("Could not write audit entry: %s", e)

    # Dry runs and aborted runs leave the last real run on record
    if report.dry_run or report.error:
        return

    state_path = state_dir / DEFAULT_STATE_FILE
    try:
        state = load_state(state_path)
        state.hostname = socket.gethostname()
        state.last_run = RunRecord(
            run_id=report.run_id,
            target=report.target,
            started_at=report.started_at,
            ended_at=report.ended_at,
            status=report.status,
            steps_total=len(report.run_results),
            steps_applied=report.applied,
            steps_skipped=report.skipped,
            steps_failed=report.failed,
        )
        for r in report.results:
            changes = {"last_status": r.status.value, "last_run_id": report.run_id}
            if r.status in (StepStatus.APPLIED, StepStatus.ROLLED_BACK):
                changes["last_changed_at"] = r.timestamp
            state.set_step_state(r.step, **changes)
        save_state(state, state_path)
    except OSError as e:
        logger.warning("Could not save state to %s: %s", state_path, e)
