"""
Tests for the executor — step lifecycle, halting, rollback and timeouts.

Runs plans against a MemoryHost through the memory adapters, so every
apply really changes state and every precondition really re-reads it.
"""

from __future__ import annotations

import pytest

from hostprov.core.engine.dispatch import dispatch
from hostprov.core.engine.executor import execute_plan, generate_run_id, run_step
from hostprov.core.engine.graph import build_plan
from hostprov.core.engine.report import FATAL_FAILURE, PARTIAL_FAILURE, SUCCESS
from hostprov.core.errors import ApplyError, ResourceBusyError
from hostprov.core.models.action import Action
from hostprov.core.models.step import Criticality, Step, StepStatus
from hostprov.core.reliability.retry import RetryPolicy

FAST = RetryPolicy.immediate()


def _run(steps, probe, registry, **kwargs):
    kwargs.setdefault("retry", FAST)
    kwargs.setdefault("sleep", lambda _s: None)
    return execute_plan(build_plan(steps), probe, registry, target="alice", **kwargs)


def _install_step(name: str = "install-packages", packages=("curl", "ufw")) -> Step:
    pkgs = tuple(packages)
    return Step(
        name=name,
        check=lambda p: p.packages_installed(pkgs),
        apply=(
            Action(id=f"{name}:install", adapter="apt", operation="install",
                   params={"packages": list(pkgs)}),
        ),
        rollback=(
            Action(id=f"{name}:remove", adapter="apt", operation="remove",
                   params={"packages": list(pkgs), "tolerate_absent": True}),
        ),
    )


def _port_step(port: str, criticality: Criticality = Criticality.FATAL) -> Step:
    name = f"firewall-port:{port}"
    return Step(
        name=name,
        check=lambda p: p.firewall_rule_exists(port),
        apply=(Action(id=f"{name}:allow", adapter="ufw", operation="allow", params={"port": port}),),
        rollback=(Action(id=f"{name}:delete", adapter="ufw", operation="delete",
                         params={"port": port, "tolerate_absent": True}),),
        depends_on=("install-packages",),
        criticality=criticality,
    )


# ── Scenarios ───────────────────────────────────────────────────────


class TestScenarios:
    def test_advisory_port_failure_is_partial(self, probe, registry, faults, host):
        faults.fail("firewall-port:9999/tcp:allow", "ERROR: Bad port")
        steps = [
            _install_step(),
            _port_step("22/tcp"),
            _port_step("9999/tcp", Criticality.ADVISORY),
        ]

        report = _run(steps, probe, registry)

        assert report.applied == 2
        assert report.failed == 1
        assert report.result_for("firewall-port:9999/tcp").status == StepStatus.FAILED
        assert report.status == PARTIAL_FAILURE
        assert report.exit_code == 3
        assert report.rollback_results == []
        assert host.firewall_rules == ["22/tcp"]

    def test_fatal_dependent_failure_rolls_back_dependency(
        self, make_step, probe, registry, faults, host
    ):
        faults.fail("b:write")
        report = _run([make_step("a"), make_step("b", depends_on=("a",))], probe, registry)

        assert report.result_for("a").status == StepStatus.APPLIED
        assert report.result_for("b").status == StepStatus.FAILED
        assert [r.step for r in report.rollback_results] == ["a"]
        assert report.result_for("a", phase="rollback").status == StepStatus.ROLLED_BACK
        assert "/flags/a" not in host.files
        assert report.status == FATAL_FAILURE
        assert report.exit_code == 4


# ── Step lifecycle ──────────────────────────────────────────────────


class TestStepLifecycle:
    def test_held_precondition_skips(self, make_step, probe, registry, faults, host):
        host.files["/flags/a"] = "already"
        report = _run([make_step("a")], probe, registry)

        result = report.result_for("a")
        assert result.status == StepStatus.SKIPPED
        assert "already satisfied" in result.detail
        assert faults.calls == []
        assert report.status == SUCCESS

    def test_apply_then_verify(self, make_step, probe, registry, host):
        report = _run([make_step("a")], probe, registry)

        result = report.result_for("a")
        assert result.status == StepStatus.APPLIED
        assert result.checked == "/flags/a exists"
        assert len(result.receipts) == 1
        assert host.files["/flags/a"] == "a"

    def test_second_run_all_skipped(self, make_step, probe, registry):
        steps = [make_step("a"), make_step("b", depends_on=("a",)), make_step("c")]
        first = _run(steps, probe, registry)
        second = _run(steps, probe, registry)

        assert first.applied == 3
        assert second.skipped == 3
        assert second.applied == 0

    def test_verify_failure_fails_step(self, probe, registry):
        step = Step(
            name="misdirected",
            check=lambda p: p.file_exists("/etc/wanted"),
            apply=(Action(id="misdirected:write", adapter="filesystem", operation="write",
                          params={"path": "/etc/other", "content": "x"}),),
        )
        report = _run([step], probe, registry)

        result = report.result_for("misdirected")
        assert result.status == StepStatus.FAILED
        assert result.error == "verification failed"
        assert report.status == FATAL_FAILURE

    def test_distinct_verify_predicate(self, make_step, probe, registry):
        base = make_step("a")
        step = Step(
            name=base.name,
            check=base.check,
            apply=base.apply,
            verify=lambda p: p.service_active("never-started"),
        )
        report = _run([step], probe, registry)
        assert report.result_for("a").status == StepStatus.FAILED

    def test_probe_unavailable_fails_step(self, make_step, probe, registry, faults, host):
        host.unavailable.add("read_file")
        report = _run([make_step("a")], probe, registry)

        result = report.result_for("a")
        assert result.status == StepStatus.FAILED
        assert "Cannot evaluate read_file(/flags/a)" in result.error
        assert faults.calls == []

    def test_unexpected_predicate_error_halts_and_rolls_back(self, make_step, probe, registry, host):
        def _broken(p):
            raise ValueError("cannot parse config")

        broken = Step(name="b", check=_broken, depends_on=("a",))
        report = _run([make_step("a"), broken, make_step("c", depends_on=("b",))], probe, registry)

        result = report.result_for("b")
        assert result.status == StepStatus.FAILED
        assert "cannot parse config" in result.error
        assert report.result_for("c").status == StepStatus.NOT_RUN
        assert report.result_for("a", phase="rollback").status == StepStatus.ROLLED_BACK
        assert "/flags/a" not in host.files
        assert report.status == FATAL_FAILURE

    def test_unexpected_verify_error_fails_step(self, make_step, probe, registry):
        def _broken(p):
            raise KeyError("state")

        step = Step(
            name="a",
            check=lambda p: p.file_exists("/flags/a"),
            verify=_broken,
            apply=make_step("a").apply,
        )
        result = run_step(step, probe, registry, FAST)
        assert result.status == StepStatus.FAILED
        assert result.detail == "applied but verification errored"

    def test_missing_adapter_fails_step(self, probe, registry):
        step = Step(
            name="exotic",
            check=lambda p: False,
            apply=(Action(id="exotic:do", adapter="snap", operation="install"),),
        )
        report = _run([step], probe, registry)
        assert "No adapter registered for 'snap'" in report.result_for("exotic").error

    def test_apply_stops_at_first_failed_action(self, probe, registry, faults, host):
        step = Step(
            name="two-files",
            check=lambda p: p.file_exists("/x") and p.file_exists("/y"),
            apply=(
                Action(id="two-files:x", adapter="filesystem", operation="write",
                       params={"path": "/x", "content": "x"}),
                Action(id="two-files:y", adapter="filesystem", operation="write",
                       params={"path": "/y", "content": "y"}),
            ),
        )
        faults.fail("two-files:x")
        report = _run([step], probe, registry)

        result = report.result_for("two-files")
        assert result.detail == "apply failed at two-files:x"
        assert "/y" not in host.files
        assert len(result.receipts) == 1

    def test_note_recorded_only_when_applied(self, make_step, probe, registry, host):
        host.files["/flags/b"] = "present"
        steps = [make_step("a", note="relog needed"), make_step("b", note="never shown")]
        report = _run(steps, probe, registry)

        assert report.notes == ["a: relog needed"]
        assert report.result_for("a").note == "relog needed"

    def test_run_step_standalone(self, make_step, probe, registry):
        result = run_step(make_step("solo"), probe, registry, FAST)
        assert result.status == StepStatus.APPLIED
        assert result.phase == "run"


# ── Halting and criticality ─────────────────────────────────────────


class TestHalting:
    def test_fatal_failure_marks_rest_not_run(self, make_step, probe, registry, faults, host):
        faults.fail("a:write")
        report = _run([make_step("a"), make_step("b"), make_step("c")], probe, registry)

        assert [r.status for r in report.run_results] == [
            StepStatus.FAILED,
            StepStatus.NOT_RUN,
            StepStatus.NOT_RUN,
        ]
        assert "halted after fatal failure of 'a'" in report.result_for("b").detail
        assert "b:write" not in faults.calls
        assert report.notes == ["Nothing to roll back after fatal failure of 'a'."]

    def test_advisory_failure_continues(self, make_step, probe, registry, faults):
        faults.fail("a:write")
        steps = [make_step("a", criticality=Criticality.ADVISORY), make_step("b")]
        report = _run(steps, probe, registry)

        assert report.result_for("a").status == StepStatus.FAILED
        assert report.result_for("b").status == StepStatus.APPLIED
        assert report.rollback_results == []
        assert report.status == PARTIAL_FAILURE

    def test_mixed_failures_are_fatal(self, make_step, probe, registry, faults):
        faults.fail("a:write")
        faults.fail("b:write")
        steps = [make_step("a", criticality=Criticality.ADVISORY), make_step("b")]
        assert _run(steps, probe, registry).status == FATAL_FAILURE


# ── Rollback ────────────────────────────────────────────────────────


class TestRollback:
    def test_reverse_order(self, make_step, probe, registry, faults):
        faults.fail("d:write")
        steps = [make_step("a"), make_step("b"), make_step("c"), make_step("d")]
        report = _run(steps, probe, registry)

        assert [r.step for r in report.rollback_results] == ["c", "b", "a"]
        assert all(r.phase == "rollback" for r in report.rollback_results)
        assert report.notes[-1] == "Rolled back 3 applied step(s) after fatal failure of 'd'."

    def test_skipped_steps_are_not_rolled_back(self, make_step, probe, registry, faults, host):
        host.files["/flags/pre"] = "kept"
        faults.fail("b:write")
        steps = [make_step("pre"), make_step("a"), make_step("b")]
        report = _run(steps, probe, registry)

        assert [r.step for r in report.rollback_results] == ["a"]
        assert host.files["/flags/pre"] == "kept"
        assert "pre:remove" not in faults.calls

    def test_advisory_failures_are_not_rolled_back(self, make_step, probe, registry, faults):
        faults.fail("adv:write")
        faults.fail("last:write")
        steps = [make_step("a"), make_step("adv", criticality=Criticality.ADVISORY), make_step("last")]
        report = _run(steps, probe, registry)

        assert [r.step for r in report.rollback_results] == ["a"]

    def test_rollback_unavailable(self, make_step, probe, registry, faults, host):
        faults.fail("b:write")
        report = _run([make_step("a", rollback=False), make_step("b")], probe, registry)

        result = report.result_for("a", phase="rollback")
        assert result.status == StepStatus.ROLLBACK_UNAVAILABLE
        assert host.files["/flags/a"] == "a"
        assert report.status == FATAL_FAILURE

    def test_rollback_failure_does_not_stop_the_pass(self, make_step, probe, registry, faults, host):
        faults.fail("b:remove", "Permission denied")
        faults.fail("c:write")
        report = _run([make_step("a"), make_step("b"), make_step("c")], probe, registry)

        assert report.result_for("b", phase="rollback").status == StepStatus.ROLLBACK_FAILED
        assert "Permission denied" in report.result_for("b", phase="rollback").error
        assert report.result_for("a", phase="rollback").status == StepStatus.ROLLED_BACK
        assert "/flags/a" not in host.files
        assert "/flags/b" in host.files

    def test_rollback_law_on_real_packages(self, probe, registry, faults, host):
        host.packages["curl"] = "7.81.0-1ubuntu1"
        faults.fail("firewall-port:22/tcp:allow")
        report = _run([_install_step(packages=("curl",)), _port_step("22/tcp")], probe, registry)

        # curl was already there, so nothing is rolled back
        assert report.result_for("install-packages").status == StepStatus.SKIPPED
        assert report.rollback_results == []
        assert host.packages["curl"] == "7.81.0-1ubuntu1"


# ── Busy resources ──────────────────────────────────────────────────


class TestBusyRetry:
    def test_retries_until_lock_released(self, probe, registry, faults, host):
        faults.hold_lock("install-packages:install", times=2)
        sleeps: list[float] = []
        report = _run([_install_step()], probe, registry,
                      retry=RetryPolicy.immediate(max_attempts=3), sleep=sleeps.append)

        result = report.result_for("install-packages")
        assert result.status == StepStatus.APPLIED
        assert len(result.receipts) == 3
        assert [r.busy for r in result.receipts] == [True, True, False]
        assert len(sleeps) == 2
        assert "curl" in host.packages

    def test_exhaustion_fails_step(self, probe, registry, faults, host):
        faults.hold_lock("install-packages:install", times=10)
        report = _run([_install_step()], probe, registry, retry=RetryPolicy.immediate(max_attempts=3))

        result = report.result_for("install-packages")
        assert result.status == StepStatus.FAILED
        assert "still busy after 3 attempt(s)" in result.error
        assert faults.calls.count("install-packages:install") == 3
        assert "curl" not in host.packages

    def test_backoff_delays_grow(self, probe, registry, faults):
        faults.hold_lock("install-packages:install", times=3)
        sleeps: list[float] = []
        policy = RetryPolicy(max_attempts=4, base_delay=1.0, max_delay=30.0, jitter=0.0)
        _run([_install_step()], probe, registry, retry=policy, sleep=sleeps.append)
        assert sleeps == [1.0, 2.0, 4.0]

    def test_non_busy_failure_is_not_retried(self, probe, registry, faults):
        faults.fail("install-packages:install")
        sleeps: list[float] = []
        _run([_install_step()], probe, registry, sleep=sleeps.append)
        assert sleeps == []
        assert faults.calls.count("install-packages:install") == 1

    def test_dispatch_chains_busy_cause(self, registry, faults):
        action = Action(id="pkg:install", adapter="apt", operation="install",
                        params={"packages": ["curl"]})
        faults.hold_lock("pkg:install", times=5)
        receipts = []
        with pytest.raises(ApplyError) as exc:
            dispatch(action, registry, RetryPolicy.immediate(max_attempts=2), lambda _s: None, receipts)

        assert isinstance(exc.value.__cause__, ResourceBusyError)
        assert exc.value.__cause__.attempts == 2
        assert exc.value.action_id == "pkg:install"
        assert len(receipts) == 2


# ── Timeout ─────────────────────────────────────────────────────────


class TestTimeout:
    @staticmethod
    def _clock(*ticks: float):
        values = iter(ticks)
        return lambda: next(values)

    def test_remaining_steps_not_run(self, make_step, probe, registry, host):
        # deadline, then one reading before each step
        clock = self._clock(0.0, 0.0, 5.0, 20.0)
        steps = [make_step("a"), make_step("b"), make_step("c")]
        report = _run(steps, probe, registry, timeout=10, clock=clock)

        assert report.timed_out
        assert [r.status for r in report.run_results] == [
            StepStatus.APPLIED,
            StepStatus.APPLIED,
            StepStatus.NOT_RUN,
        ]
        assert report.result_for("c").detail == "run timed out before this step"
        assert report.rollback_results == []
        assert "/flags/a" in host.files
        assert report.status == FATAL_FAILURE
        assert report.exit_code == 4

    def test_rollback_on_timeout(self, make_step, probe, registry, host):
        clock = self._clock(0.0, 0.0, 5.0, 20.0)
        steps = [make_step("a"), make_step("b"), make_step("c")]
        report = _run(steps, probe, registry, timeout=10, clock=clock, rollback_on_timeout=True)

        assert [r.step for r in report.rollback_results] == ["b", "a"]
        assert "/flags/a" not in host.files
        assert report.notes[-1] == "Rolled back 2 applied step(s) after timeout."

    def test_no_timeout_never_reads_clock(self, make_step, probe, registry):
        def clock():
            raise AssertionError("clock read without a timeout")

        report = _run([make_step("a")], probe, registry, clock=clock)
        assert report.status == SUCCESS


# ── Dry run ─────────────────────────────────────────────────────────


class TestDryRun:
    def test_planned_and_unchanged(self, make_step, probe, registry, faults, host):
        host.files["/flags/a"] = "present"
        report = _run([make_step("a"), make_step("b")], probe, registry, dry_run=True)

        assert report.dry_run
        assert report.result_for("a").status == StepStatus.SKIPPED
        assert report.result_for("b").status == StepStatus.PLANNED
        assert "/flags/b" not in host.files
        assert faults.calls == []
        assert report.status == SUCCESS

    def test_invalid_action_rejected(self, probe, registry):
        step = Step(
            name="broken",
            check=lambda p: False,
            apply=(Action(id="broken:install", adapter="apt", operation="install"),),
        )
        report = _run([step], probe, registry, dry_run=True)

        result = report.result_for("broken")
        assert result.status == StepStatus.FAILED
        assert "Missing required param: 'packages'" in result.error


# ── Run IDs ─────────────────────────────────────────────────────────


class TestRunId:
    def test_format(self):
        run_id = generate_run_id()
        assert run_id.startswith("run-")
        assert len(run_id.split("-")) == 4

    def test_unique(self):
        assert generate_run_id() != generate_run_id()

    def test_explicit_run_id(self, make_step, probe, registry):
        report = _run([make_step("a")], probe, registry, run_id="run-fixed")
        assert report.run_id == "run-fixed"
        assert report.target == "alice"
        assert report.ended_at
