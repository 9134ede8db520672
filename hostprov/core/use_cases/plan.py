"""
Plan use case — show the ordered step plan without touching the host.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from hostprov.core.config.loader import ConfigError, load_config
from hostprov.core.engine.graph import ExecutionPlan, build_plan
from hostprov.core.errors import PlanError
from hostprov.core.services.catalog import build_steps


@dataclass
class PlanResult:
    """The ordered plan, or why there is none."""

    plan: ExecutionPlan | None = None
    target: str = ""
    config_path: Path | None = None
    error: str | None = None
    error_type: str | None = None

    def to_dict(self) -> dict:
        if self.error:
            return {"error": self.error, "error_type": self.error_type}
        assert self.plan is not None
        return {
            "target": self.target,
            "config_path": str(self.config_path) if self.config_path else None,
            **self.plan.to_dict(),
        }


def show_plan(target: str = "<target>", config_path: Path | None = None) -> PlanResult:
    """Build and order the step set from config alone.

    Values normally read from the host (architecture, codename) appear
    as placeholders unless the config pins them.
    """
    result = PlanResult(target=target)

    try:
        config, result.config_path = load_config(config_path)
    except ConfigError as e:
        result.error, result.error_type = str(e), "config"
        return result

    try:
        result.plan = build_plan(build_steps(config, target, probe=None))
    except PlanError as e:
        result.error, result.error_type = str(e), "plan"

    return result
