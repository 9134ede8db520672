"""
Run report — the structured record of one provisioning run.

Accumulates StepResults in execution order (run phase first, then any
rollback results) and derives the overall status from them:

    success          no run-phase step failed
    partial_failure  every failure was advisory
    fatal_failure    a fatal step failed, or the run timed out with
                     steps not run, or the run aborted before starting

Renders as plain text for humans and as a dict/JSON for machines.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from hostprov.core.models.step import StepResult, StepStatus

SUCCESS = "success"
PARTIAL_FAILURE = "partial_failure"
FATAL_FAILURE = "fatal_failure"

EXIT_SUCCESS = 0
EXIT_CONFIG_ERROR = 1
EXIT_PARTIAL = 3
EXIT_FATAL = 4
EXIT_INVALID = 5

_MARKERS = {
    StepStatus.SKIPPED: "⊘",
    StepStatus.APPLIED: "✓",
    StepStatus.FAILED: "✗",
    StepStatus.PLANNED: "→",
    StepStatus.NOT_RUN: "·",
    StepStatus.ROLLED_BACK: "↺",
    StepStatus.ROLLBACK_UNAVAILABLE: "!",
    StepStatus.ROLLBACK_FAILED: "✗",
}


def _now_iso() -> str:
    return datetime.now(UTC).isoformat()


def status_marker(status: StepStatus) -> str:
    return _MARKERS.get(status, "?")


@dataclass
class Report:
    """Result of running (or refusing to run) a plan."""

    run_id: str = ""
    target: str = ""
    dry_run: bool = False
    started_at: str = field(default_factory=_now_iso)
    ended_at: str = ""
    results: list[StepResult] = field(default_factory=list)
    notes: list[str] = field(default_factory=list)
    timed_out: bool = False

    # Construction-time failure: nothing ran
    error: str | None = None
    error_type: str | None = None   # config, validation, plan

    # ── Views ───────────────────────────────────────────────────

    @property
    def run_results(self) -> list[StepResult]:
        return [r for r in self.results if r.phase == "run"]

    @property
    def rollback_results(self) -> list[StepResult]:
        return [r for r in self.results if r.phase == "rollback"]

    def result_for(self, step: str, phase: str = "run") -> StepResult | None:
        for r in self.results:
            if r.step == step and r.phase == phase:
                return r
        return None

    def count(self, status: StepStatus) -> int:
        return sum(1 for r in self.results if r.status == status)

    @property
    def applied(self) -> int:
        return self.count(StepStatus.APPLIED)

    @property
    def skipped(self) -> int:
        return self.count(StepStatus.SKIPPED)

    @property
    def failed(self) -> int:
        return sum(1 for r in self.run_results if r.failed)

    @property
    def not_run(self) -> int:
        return self.count(StepStatus.NOT_RUN)

    @property
    def planned(self) -> int:
        return self.count(StepStatus.PLANNED)

    # ── Outcome ─────────────────────────────────────────────────

    @property
    def status(self) -> str:
        if self.error or self.timed_out:
            return FATAL_FAILURE
        failures = [r for r in self.run_results if r.failed]
        if not failures:
            return SUCCESS
        if any(r.fatal for r in failures):
            return FATAL_FAILURE
        return PARTIAL_FAILURE

    @property
    def exit_code(self) -> int:
        if self.error:
            return EXIT_CONFIG_ERROR if self.error_type == "config" else EXIT_INVALID
        return {
            SUCCESS: EXIT_SUCCESS,
            PARTIAL_FAILURE: EXIT_PARTIAL,
            FATAL_FAILURE: EXIT_FATAL,
        }[self.status]

    def finish(self) -> None:
        self.ended_at = _now_iso()

    # ── Rendering ───────────────────────────────────────────────

    def to_dict(self) -> dict[str, Any]:
        return {
            "run_id": self.run_id,
            "target": self.target,
            "dry_run": self.dry_run,
            "started_at": self.started_at,
            "ended_at": self.ended_at,
            "status": self.status,
            "exit_code": self.exit_code,
            "timed_out": self.timed_out,
            "error": self.error,
            "error_type": self.error_type,
            "summary": {
                "total": len(self.run_results),
                "applied": self.applied,
                "skipped": self.skipped,
                "failed": self.failed,
                "not_run": self.not_run,
                "planned": self.planned,
                "rolled_back": self.count(StepStatus.ROLLED_BACK),
                "rollback_unavailable": self.count(StepStatus.ROLLBACK_UNAVAILABLE),
                "rollback_failed": self.count(StepStatus.ROLLBACK_FAILED),
            },
            "results": [r.model_dump(mode="json") for r in self.results],
            "notes": list(self.notes),
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), indent=2, ensure_ascii=False)

    def render_text(self) -> str:
        """Human-readable summary, one line per step."""
        title = "Dry run" if self.dry_run else "Run"
        lines = [f"{title} {self.run_id} for '{self.target}': {self.status}"]

        if self.error:
            lines.append(f"  Aborted before any step ran: {self.error}")
            return "\n".join(lines)

        width = max((len(r.step) for r in self.results), default=0)

        def _line(r: StepResult) -> str:
            flag = " [advisory]" if not r.fatal else ""
            text = f"  {status_marker(r.status)} {r.step:<{width}}  {r.status.value}{flag}"
            if r.detail:
                text += f" — {r.detail}"
            if r.error and r.error not in r.detail:
                text += f" ({r.error})"
            return text

        lines.extend(_line(r) for r in self.run_results)

        if self.rollback_results:
            lines.append("")
            lines.append("Rollback:")
            lines.extend(_line(r) for r in self.rollback_results)

        if self.notes:
            lines.append("")
            lines.append("Notes:")
            lines.extend(f"  - {note}" for note in self.notes)

        lines.append("")
        summary = (
            f"{self.applied} applied, {self.skipped} skipped, "
            f"{self.failed} failed, {self.not_run} not run"
        )
        if self.dry_run:
            summary = f"{self.planned} would change, {self.skipped} already satisfied"
        lines.append(summary)
        return "\n".join(lines)

    def write(self, path: Path) -> None:
        """Write the JSON form to ``path``."""
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(self.to_json() + "\n", encoding="utf-8")
