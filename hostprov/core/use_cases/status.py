"""
Status use case — last run and per-step history from the state file.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path

from hostprov.core.config.loader import ConfigError, load_config
from hostprov.core.models.state import HostState
from hostprov.core.persistence.audit import DEFAULT_AUDIT_FILE, AuditEntry, AuditWriter
from hostprov.core.persistence.state_file import DEFAULT_STATE_FILE, load_state, state_dir_for


@dataclass
class StatusResult:
    """Recorded state of this host."""

    state: HostState | None = None
    state_dir: Path | None = None
    config_path: Path | None = None
    recent_runs: list[AuditEntry] = field(default_factory=list)
    error: str | None = None

    @property
    def has_run(self) -> bool:
        return bool(self.state and self.state.last_run.run_id)

    def to_dict(self) -> dict:
        if self.error:
            return {"error": self.error}
        assert self.state is not None
        return {
            "config_path": str(self.config_path) if self.config_path else None,
            "state_dir": str(self.state_dir) if self.state_dir else None,
            "hostname": self.state.hostname,
            "last_run": self.state.last_run.model_dump(mode="json") if self.has_run else None,
            "steps": {
                name: s.model_dump(mode="json", exclude={"name"})
                for name, s in self.state.steps.items()
            },
            "recent_runs": [e.model_dump(mode="json") for e in self.recent_runs],
        }


def get_status(config_path: Path | None = None, recent: int = 5) -> StatusResult:
    """Load the state file and the most recent audit entries."""
    result = StatusResult()

    try:
        config, result.config_path = load_config(config_path)
    except ConfigError as e:
        result.error = str(e)
        return result

    result.state_dir = state_dir_for(result.config_path, config.settings.state_dir)
    result.state = load_state(result.state_dir / DEFAULT_STATE_FILE)
    result.recent_runs = AuditWriter(result.state_dir / DEFAULT_AUDIT_FILE).read_recent(recent)
    return result
