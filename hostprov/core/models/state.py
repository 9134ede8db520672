"""
HostState — what hostprov last observed and did on this host.

Serialized to .state/current.json after every run. It is a record,
not a source of truth: preconditions always re-probe the live host.
Delete it and nothing changes except `hostprov status` output.
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any

from pydantic import BaseModel, Field


def _now_iso() -> str:
    """Current UTC time as ISO string."""
    return datetime.now(UTC).isoformat()


class StepState(BaseModel):
    """Last known outcome of a step."""

    name: str
    last_status: str = ""           # skipped, applied, failed, rolled_back, ...
    last_run_id: str = ""
    last_changed_at: str | None = None   # last time the step actually applied


class RunRecord(BaseModel):
    """Summary of the last run."""

    run_id: str = ""
    target: str = ""
    started_at: str = ""
    ended_at: str = ""
    status: str = ""                # success, partial_failure, fatal_failure
    dry_run: bool = False
    steps_total: int = 0
    steps_applied: int = 0
    steps_skipped: int = 0
    steps_failed: int = 0


class HostState(BaseModel):
    """Root state model — serialized to .state/current.json."""

    schema_version: int = 1

    hostname: str = ""

    created_at: str = Field(default_factory=_now_iso)
    updated_at: str = Field(default_factory=_now_iso)

    steps: dict[str, StepState] = Field(default_factory=dict)
    last_run: RunRecord = Field(default_factory=RunRecord)

    metadata: dict[str, Any] = Field(default_factory=dict)

    def touch(self) -> None:
        """Update the updated_at timestamp."""
        self.updated_at = _now_iso()

    def set_step_state(self, name: str, **kwargs: Any) -> None:
        """Update or create a step state entry."""
        if name in self.steps:
            for key, value in kwargs.items():
                setattr(self.steps[name], key, value)
        else:
            self.steps[name] = StepState(name=name, **kwargs)
