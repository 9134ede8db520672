"""
Step and StepResult models — the unit of change and its outcome.

A Step is immutable configuration: what to check, what to do, how to
verify it, how to undo it. The engine never mutates a Step; everything
observed during a run lands in StepResults.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from typing import TYPE_CHECKING, Literal

from pydantic import BaseModel, Field

from hostprov.core.models.action import Action, Receipt

if TYPE_CHECKING:
    from hostprov.core.facts.base import FactProbe

Predicate = Callable[["FactProbe"], bool]


def _now_iso() -> str:
    """Current UTC time as ISO string."""
    return datetime.now(UTC).isoformat()


class Criticality(StrEnum):
    """Whether a step failure halts the run."""

    FATAL = "fatal"
    ADVISORY = "advisory"


class StepStatus(StrEnum):
    """Outcome of one step in one phase of a run."""

    SKIPPED = "skipped"                          # precondition already held
    APPLIED = "applied"                          # changed and verified
    FAILED = "failed"                            # probe, apply or verify failed
    PLANNED = "planned"                          # dry-run: would apply
    NOT_RUN = "not_run"                          # halted or timed out before it
    ROLLED_BACK = "rolled_back"
    ROLLBACK_UNAVAILABLE = "rollback_unavailable"
    ROLLBACK_FAILED = "rollback_failed"


@dataclass(frozen=True)
class Step:
    """A named, idempotent unit of host configuration change.

    Attributes:
        name: Unique identity within a plan.
        check: Precondition. True means the desired state already holds.
        apply: Actions dispatched in order when the check is False.
        depends_on: Names of steps that must run first.
        verify: Post-apply check. Defaults to ``check``.
        rollback: Actions that undo ``apply``. None means not undoable.
        criticality: FATAL halts and rolls back; ADVISORY is recorded only.
        description: Human summary of the desired state.
        check_label: What the precondition looks at, for the report.
        note: Operator note surfaced in the report when the step applies.
    """

    name: str
    check: Predicate
    apply: tuple[Action, ...] = ()
    depends_on: tuple[str, ...] = ()
    verify: Predicate | None = None
    rollback: tuple[Action, ...] | None = None
    criticality: Criticality = Criticality.FATAL
    description: str = ""
    check_label: str = ""
    note: str = ""
    tags: tuple[str, ...] = field(default=())

    @property
    def fatal(self) -> bool:
        return self.criticality == Criticality.FATAL

    @property
    def has_rollback(self) -> bool:
        return self.rollback is not None

    def verify_with(self, probe: FactProbe) -> bool:
        """Run the verify predicate, falling back to the precondition."""
        predicate = self.verify or self.check
        return predicate(probe)


class StepResult(BaseModel):
    """Outcome of one step (or one rollback of a step) in a run."""

    step: str
    phase: Literal["run", "rollback"] = "run"
    status: StepStatus
    criticality: Criticality = Criticality.FATAL

    timestamp: str = Field(default_factory=_now_iso)
    duration_ms: int = 0

    checked: str = ""        # what the precondition looked at
    detail: str = ""         # plain-language explanation of the outcome
    error: str | None = None
    note: str = ""

    receipts: list[Receipt] = Field(default_factory=list)

    @property
    def failed(self) -> bool:
        return self.status == StepStatus.FAILED

    @property
    def fatal(self) -> bool:
        return self.criticality == Criticality.FATAL

    @property
    def stdout(self) -> str:
        """Concatenated stdout of every action this result captured."""
        return "\n".join(r.output for r in self.receipts if r.output)

    @property
    def stderr(self) -> str:
        """Concatenated stderr of every action this result captured."""
        return "\n".join(r.stderr for r in self.receipts if r.stderr)
