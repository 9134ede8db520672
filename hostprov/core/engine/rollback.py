"""
Rollback — undo applied steps after a fatal failure.

Best-effort and exhaustive: every applied step is visited in reverse
apply order, and a failure while undoing one step never stops the
pass. Steps that were skipped (precondition already held) are never
passed in, so they are never undone.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Sequence

from hostprov.adapters.registry import AdapterRegistry
from hostprov.core.engine.dispatch import dispatch
from hostprov.core.errors import ApplyError
from hostprov.core.models.action import Receipt
from hostprov.core.models.step import Step, StepResult, StepStatus
from hostprov.core.reliability.retry import RetryPolicy

logger = logging.getLogger(__name__)


def rollback_step(
    step: Step,
    registry: AdapterRegistry,
    retry: RetryPolicy,
    sleep: Callable[[float], None],
    run_id: str | None = None,
) -> StepResult:
    """Run one step's rollback actions and record the outcome."""
    start = time.monotonic()
    receipts: list[Receipt] = []

    def _result(status: StepStatus, detail: str, error: str | None = None) -> StepResult:
        return StepResult(
            step=step.name,
            phase="rollback",
            status=status,
            criticality=step.criticality,
            duration_ms=int((time.monotonic() - start) * 1000),
            checked=step.check_label,
            detail=detail,
            error=error,
            receipts=receipts,
        )

    if step.rollback is None:
        return _result(
            StepStatus.ROLLBACK_UNAVAILABLE,
            "no rollback defined; change left in place",
        )

    for action in step.rollback:
        try:
            dispatch(action, registry, retry, sleep, receipts, run_id)
        except ApplyError as e:
            return _result(StepStatus.ROLLBACK_FAILED, f"undo stopped at {action.id}", str(e))

    return _result(StepStatus.ROLLED_BACK, f"undid {len(step.rollback)} action(s)")


def rollback_steps(
    applied: Sequence[Step],
    registry: AdapterRegistry,
    retry: RetryPolicy,
    sleep: Callable[[float], None] = time.sleep,
    run_id: str | None = None,
) -> list[StepResult]:
    """Roll back ``applied`` (given in apply order) in reverse order."""
    results: list[StepResult] = []
    for step in reversed(applied):
        result = rollback_step(step, registry, retry, sleep, run_id)
        log = logger.error if result.status == StepStatus.ROLLBACK_FAILED else logger.info
        log("↺ %s %s — %s", step.name, result.status.value, result.error or result.detail)
        results.append(result)
    return results
