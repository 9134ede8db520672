"""
Engine executor — the central provisioning loop.

Runs an ExecutionPlan one step at a time against a host (read through
a FactProbe, changed through the AdapterRegistry) and accumulates the
outcome in a Report.

Flow per step:
    precondition → (held) skipped
                 → (not held) apply actions → verify → applied | failed

A fatal failure halts the run: the remaining steps are recorded as
not_run and every step applied so far is rolled back in reverse
order. An advisory failure is recorded and the run continues.

The run-level timeout is checked between steps only; a running step
is never interrupted.
"""

from __future__ import annotations

import logging
import time
import uuid
from collections.abc import Callable
from datetime import UTC, datetime

from hostprov.adapters.registry import AdapterRegistry
from hostprov.core.engine.dispatch import dispatch
from hostprov.core.engine.graph import ExecutionPlan
from hostprov.core.engine.report import Report, status_marker
from hostprov.core.engine.rollback import rollback_steps
from hostprov.core.errors import ApplyError, ProbeUnavailableError
from hostprov.core.facts.base import FactProbe
from hostprov.core.models.action import Receipt
from hostprov.core.models.step import Step, StepResult, StepStatus
from hostprov.core.reliability.retry import RetryPolicy

logger = logging.getLogger(__name__)


def generate_run_id() -> str:
    """Generate a unique run ID."""
    now = datetime.now(UTC).strftime("%Y%m%d-%H%M%S")
    short = uuid.uuid4().hex[:6]
    return f"run-{now}-{short}"


def run_step(
    step: Step,
    probe: FactProbe,
    registry: AdapterRegistry,
    retry: RetryPolicy,
    sleep: Callable[[float], None] = time.sleep,
    dry_run: bool = False,
    run_id: str | None = None,
) -> StepResult:
    """Check, apply and verify one step. Never raises for runtime errors."""
    start = time.monotonic()
    receipts: list[Receipt] = []
    checked = step.check_label or "precondition"

    def _result(
        status: StepStatus,
        detail: str,
        error: str | None = None,
        note: str = "",
    ) -> StepResult:
        return StepResult(
            step=step.name,
            status=status,
            criticality=step.criticality,
            duration_ms=int((time.monotonic() - start) * 1000),
            checked=step.check_label,
            detail=detail,
            error=error,
            note=note,
            receipts=receipts,
        )

    try:
        held = step.check(probe)
    except ProbeUnavailableError as e:
        return _result(StepStatus.FAILED, f"could not check {checked}", str(e))
    except Exception as e:
        logger.exception("Precondition of %s raised", step.name)
        return _result(StepStatus.FAILED, f"error while checking {checked}", f"Unexpected error: {e}")

    if held:
        return _result(StepStatus.SKIPPED, f"{checked}: already satisfied")

    if dry_run:
        for action in step.apply:
            receipt = registry.execute_action(action, dry_run=True)
            receipts.append(receipt)
            if receipt.failed:
                return _result(
                    StepStatus.FAILED,
                    f"action {action.id} would be rejected",
                    receipt.error,
                )
        return _result(
            StepStatus.PLANNED,
            f"{checked}: not satisfied; would run {len(step.apply)} action(s)",
        )

    for action in step.apply:
        try:
            dispatch(action, registry, retry, sleep, receipts, run_id)
        except ApplyError as e:
            return _result(StepStatus.FAILED, f"apply failed at {action.id}", str(e))

    try:
        verified = step.verify_with(probe)
    except ProbeUnavailableError as e:
        return _result(StepStatus.FAILED, "applied but could not verify", str(e))
    except Exception as e:
        logger.exception("Verification of %s raised", step.name)
        return _result(StepStatus.FAILED, "applied but verification errored", f"Unexpected error: {e}")

    if not verified:
        return _result(
            StepStatus.FAILED,
            f"applied but {checked} still does not hold",
            "verification failed",
        )

    return _result(
        StepStatus.APPLIED,
        f"{checked}: changed with {len(step.apply)} action(s)",
        note=step.note,
    )


def _not_run(step: Step, reason: str) -> StepResult:
    return StepResult(
        step=step.name,
        status=StepStatus.NOT_RUN,
        criticality=step.criticality,
        checked=step.check_label,
        detail=reason,
    )


def execute_plan(
    plan: ExecutionPlan,
    probe: FactProbe,
    registry: AdapterRegistry,
    *,
    target: str = "",
    run_id: str | None = None,
    dry_run: bool = False,
    retry: RetryPolicy | None = None,
    timeout: float | None = None,
    rollback_on_timeout: bool = False,
    clock: Callable[[], float] = time.monotonic,
    sleep: Callable[[float], None] = time.sleep,
) -> Report:
    """Run every step of ``plan`` in order and return the Report.

    Args:
        plan: Ordered steps from ``build_plan``.
        probe: Read-only view of the host.
        registry: Dispatches apply and rollback actions.
        target: Account the run provisions for (recorded in the report).
        run_id: Defaults to a fresh ``run-<timestamp>-<hex>`` id.
        dry_run: Check preconditions only; record ``planned`` for changes.
        retry: Backoff policy for busy resources.
        timeout: Seconds allowed for the whole run, checked between steps.
        rollback_on_timeout: Roll back applied steps when the timeout hits.
        clock: Monotonic time source (injectable for tests).
        sleep: Wait function used between busy retries.
    """
    retry = retry or RetryPolicy()
    report = Report(run_id=run_id or generate_run_id(), target=target, dry_run=dry_run)
    deadline = clock() + timeout if timeout is not None else None

    applied: list[Step] = []
    halted_by: str | None = None
    steps = list(plan)

    logger.info(
        "%s %d step(s) for '%s' (%s)",
        "Planning" if dry_run else "Running",
        len(steps),
        target,
        report.run_id,
    )

    for index, step in enumerate(steps):
        if deadline is not None and clock() >= deadline:
            report.timed_out = True
            logger.error("Run timed out before '%s'; %d step(s) not run", step.name, len(steps) - index)
            report.results.extend(
                _not_run(s, "run timed out before this step") for s in steps[index:]
            )
            break

        result = run_step(
            step, probe, registry, retry, sleep=sleep, dry_run=dry_run, run_id=report.run_id
        )
        report.results.append(result)

        log = logger.error if result.failed else logger.info
        log(
            "%s %s %s (%dms) — %s",
            status_marker(result.status),
            step.name,
            result.status.value,
            result.duration_ms,
            result.error or result.detail,
        )

        if result.status == StepStatus.APPLIED:
            applied.append(step)
            if step.note:
                report.notes.append(f"{step.name}: {step.note}")

        if result.failed and step.fatal:
            halted_by = step.name
            report.results.extend(
                _not_run(s, f"halted after fatal failure of '{step.name}'")
                for s in steps[index + 1:]
            )
            break

    if halted_by or (report.timed_out and rollback_on_timeout):
        reason = f"fatal failure of '{halted_by}'" if halted_by else "timeout"
        if applied:
            logger.warning("Rolling back %d applied step(s) after %s", len(applied), reason)
            report.results.extend(rollback_steps(applied, registry, retry, sleep, report.run_id))
            report.notes.append(f"Rolled back {len(applied)} applied step(s) after {reason}.")
        else:
            report.notes.append(f"Nothing to roll back after {reason}.")

    report.finish()
    logger.info(
        "Run %s finished: %s (%d applied, %d skipped, %d failed, %d not run)",
        report.run_id,
        report.status,
        report.applied,
        report.skipped,
        report.failed,
        report.not_run,
    )
    return report
