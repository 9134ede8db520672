"""
Tests for the provision, plan and status use cases.

Each run goes against a MemoryHost; persistence lands in tmp_path.
"""

from __future__ import annotations

import json

from hostprov.core.engine.report import EXIT_CONFIG_ERROR, EXIT_FATAL, EXIT_INVALID, EXIT_SUCCESS
from hostprov.core.models.step import StepStatus
from hostprov.core.persistence.audit import AuditWriter
from hostprov.core.persistence.state_file import load_state
from hostprov.core.use_cases.plan import show_plan
from hostprov.core.use_cases.provision import provision
from hostprov.core.use_cases.status import get_status


def _provision(target, config_dir, probe, registry, **kwargs):
    kwargs.setdefault("sleep", lambda _s: None)
    return provision(target, config_dir / "host.yml", probe=probe, registry=registry, **kwargs)


# ── Provision ───────────────────────────────────────────────────────


class TestProvision:
    def test_success_with_recommendations(self, tmp_config_dir, probe, registry):
        result = _provision("alice", tmp_config_dir, probe, registry)

        assert result.exit_code == EXIT_SUCCESS
        assert result.plan is not None and len(result.plan) == 14
        notes = result.report.notes
        assert notes[0].startswith("docker-group-membership:")
        assert any("unattended-upgrades" in n for n in notes)

    def test_unknown_target_aborts_before_any_step(self, tmp_config_dir, probe, registry, faults):
        result = _provision("ghost", tmp_config_dir, probe, registry)

        report = result.report
        assert report.results == []
        assert report.error_type == "validation"
        assert "ghost" in report.error
        assert report.exit_code == EXIT_INVALID
        assert faults.calls == []
        assert result.plan is None
        # only the run validation queries touched the probe
        assert all(q.startswith(("is_root", "user_exists")) for q in probe.queries)

    def test_empty_target(self, tmp_config_dir, probe, registry):
        result = _provision("", tmp_config_dir, probe, registry)
        assert result.report.error == "A target account is required"

    def test_non_root_refused(self, tmp_config_dir, probe, registry, host, faults):
        host.root = False
        result = _provision("alice", tmp_config_dir, probe, registry)
        assert result.exit_code == EXIT_INVALID
        assert "root" in result.report.error
        assert faults.calls == []

    def test_non_root_dry_run_allowed(self, tmp_config_dir, probe, registry, host):
        host.root = False
        result = _provision("alice", tmp_config_dir, probe, registry, dry_run=True)
        assert result.exit_code == EXIT_SUCCESS
        assert result.report.planned > 0

    def test_root_not_required(self, tmp_path, probe, registry, host):
        (tmp_path / "host.yml").write_text("settings:\n  require_root: false\n")
        host.root = False
        assert _provision("alice", tmp_path, probe, registry).exit_code == EXIT_SUCCESS

    def test_probe_unavailable_during_validation(self, tmp_config_dir, probe, registry, host):
        host.unavailable.add("user_exists")
        result = _provision("alice", tmp_config_dir, probe, registry)
        assert result.report.error_type == "validation"
        assert "Cannot validate the run" in result.report.error

    def test_platform_probe_failure_is_plan_error(self, tmp_config_dir, probe, registry, host, faults):
        host.unavailable.add("architecture")
        result = _provision("alice", tmp_config_dir, probe, registry)
        assert result.report.error_type == "plan"
        assert result.exit_code == EXIT_INVALID
        assert faults.calls == []

    def test_config_error(self, tmp_path, probe, registry):
        (tmp_path / "host.yml").write_text("firewall: [not, a, mapping]\n")
        result = _provision("alice", tmp_path, probe, registry)
        assert result.report.error_type == "config"
        assert result.exit_code == EXIT_CONFIG_ERROR
        assert not (tmp_path / ".state").exists()

    def test_duplicate_ports_are_plan_errors(self, tmp_path, probe, registry):
        (tmp_path / "host.yml").write_text("firewall:\n  ports: [22/tcp, 22/tcp]\n")
        result = _provision("alice", tmp_path, probe, registry)
        assert result.report.error_type == "plan"
        assert "Duplicate step names" in result.report.error

    def test_timeout_argument_overrides_settings(self, tmp_config_dir, probe, registry):
        ticks = iter([0.0, 0.0, 100.0])
        result = _provision("alice", tmp_config_dir, probe, registry, timeout=10, clock=lambda: next(ticks))
        report = result.report
        assert report.timed_out
        assert report.exit_code == EXIT_FATAL
        assert report.result_for("base-packages").status == StepStatus.APPLIED
        assert report.not_run == 13


# ── Persistence ─────────────────────────────────────────────────────


class TestPersistence:
    def test_run_writes_state_and_audit(self, tmp_config_dir, probe, registry):
        result = _provision("alice", tmp_config_dir, probe, registry)

        state_dir = tmp_config_dir.resolve() / ".state"
        assert result.state_dir == state_dir
        state = load_state(state_dir / "current.json")
        assert state.last_run.run_id == result.report.run_id
        assert state.last_run.status == "success"
        assert state.steps["docker-service"].last_status == "applied"
        assert state.steps["docker-service"].last_changed_at is not None

        entries = AuditWriter(state_dir / "audit.ndjson").read_all()
        assert len(entries) == 1
        assert entries[0].steps_applied == 13
        assert "ssh-hardening" in entries[0].changed

    def test_skipped_run_keeps_last_changed(self, tmp_config_dir, probe, registry):
        first = _provision("alice", tmp_config_dir, probe, registry)
        _provision("alice", tmp_config_dir, probe, registry)

        state = load_state(tmp_config_dir / ".state" / "current.json")
        step = state.steps["docker-service"]
        assert step.last_status == "skipped"
        assert step.last_run_id != first.report.run_id
        assert step.last_changed_at is not None

    def test_dry_run_audited_not_stated(self, tmp_config_dir, probe, registry):
        _provision("alice", tmp_config_dir, probe, registry, dry_run=True)
        state_dir = tmp_config_dir / ".state"
        assert not (state_dir / "current.json").exists()
        entries = AuditWriter(state_dir / "audit.ndjson").read_all()
        assert entries[0].dry_run is True

    def test_aborted_run_audited(self, tmp_config_dir, probe, registry):
        _provision("ghost", tmp_config_dir, probe, registry)
        entries = AuditWriter(tmp_config_dir / ".state" / "audit.ndjson").read_all()
        assert entries[0].status == "fatal_failure"
        assert entries[0].exit_code == EXIT_INVALID
        assert "ghost" in entries[0].errors[0]

    def test_persist_disabled(self, tmp_config_dir, probe, registry):
        _provision("alice", tmp_config_dir, probe, registry, persist=False)
        assert not (tmp_config_dir / ".state").exists()

    def test_state_dir_setting(self, tmp_path, probe, registry):
        (tmp_path / "host.yml").write_text("settings:\n  state_dir: runs\n")
        _provision("alice", tmp_path, probe, registry)
        assert (tmp_path / "runs" / "current.json").is_file()


# ── Plan and status ─────────────────────────────────────────────────


class TestPlanAndStatus:
    def test_show_plan(self, tmp_config_dir):
        result = show_plan("alice", tmp_config_dir / "host.yml")
        assert result.error is None
        data = result.to_dict()
        assert data["target"] == "alice"
        assert data["total"] == 14
        assert data["steps"][0]["name"] == "base-packages"

    def test_show_plan_config_error(self, tmp_path):
        result = show_plan(config_path=tmp_path / "missing.yml")
        assert result.error_type == "config"
        assert result.to_dict() == {"error": result.error, "error_type": "config"}

    def test_status_before_any_run(self, tmp_config_dir):
        result = get_status(tmp_config_dir / "host.yml")
        assert not result.has_run
        assert result.to_dict()["last_run"] is None

    def test_status_after_run(self, tmp_config_dir, probe, registry):
        run = _provision("alice", tmp_config_dir, probe, registry)
        result = get_status(tmp_config_dir / "host.yml")

        assert result.has_run
        data = result.to_dict()
        assert data["last_run"]["run_id"] == run.report.run_id
        assert data["steps"]["ssh-hardening"]["last_status"] == "applied"
        assert len(data["recent_runs"]) == 1
        json.dumps(data)
