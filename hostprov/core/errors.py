"""
Error taxonomy for provisioning runs.

Two families with different blast radius:

    Construction-time  — ValidationError, PlanError (and ConfigError in
                         the config loader). Raised before any step runs;
                         the run aborts with zero mutations.
    Runtime            — ProbeUnavailableError, ApplyError, ResourceBusyError.
                         Raised inside a step; the executor converts them
                         into a failed StepResult scoped by criticality.
"""

from __future__ import annotations


class ProvisionError(Exception):
    """Base class for every hostprov error."""


# ── Construction-time ───────────────────────────────────────────────


class ValidationError(ProvisionError):
    """Bad input to the run (detected before any mutation)."""


class InvalidTargetError(ValidationError):
    """The target account does not exist on the host."""

    def __init__(self, target: str):
        super().__init__(f"Target account '{target}' does not exist on this host")
        self.target = target


class PlanError(ProvisionError):
    """The step set cannot be turned into an execution plan."""


class DuplicateStepError(PlanError):
    """Two steps share the same name."""

    def __init__(self, names: list[str]):
        super().__init__(f"Duplicate step names: {', '.join(names)}")
        self.names = names


class UnknownDependencyError(PlanError):
    """A step depends on a name that is not in the step set."""

    def __init__(self, step: str, dependency: str):
        super().__init__(f"Step '{step}' depends on unknown step '{dependency}'")
        self.step = step
        self.dependency = dependency


class CycleError(PlanError):
    """The dependency relation contains a cycle."""

    def __init__(self, cycle: list[str]):
        super().__init__(f"Dependency cycle: {' -> '.join(cycle)}")
        self.cycle = cycle


# ── Runtime ─────────────────────────────────────────────────────────


class ProbeUnavailableError(ProvisionError):
    """A fact query could not determine host state.

    Distinct from a query returning False: the tool that answers the
    question is missing or broke.
    """

    def __init__(self, query: str, reason: str):
        super().__init__(f"Cannot evaluate {query}: {reason}")
        self.query = query
        self.reason = reason


class ApplyError(ProvisionError):
    """A mutating action failed."""

    def __init__(self, message: str, *, action_id: str = ""):
        super().__init__(message)
        self.action_id = action_id


class ResourceBusyError(ProvisionError):
    """A shared host resource (package manager lock) is held elsewhere."""

    def __init__(self, action_id: str, attempts: int, message: str = ""):
        super().__init__(
            message or f"Resource busy for action '{action_id}' after {attempts} attempt(s)"
        )
        self.action_id = action_id
        self.attempts = attempts
