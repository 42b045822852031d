"""
ServiceOrchestrator start/stop/fix behaviour against the fake host
"""

import pytest

from mailstack.orchestrator.errors import EssentialServiceFailed, StopFailed
from mailstack.orchestrator.models import PortSpec, ServiceOutcome, ServiceSpec


def spec(name, ports=(), essential=True, order=0, **kwargs):
    return ServiceSpec(
        name=name,
        order=order,
        essential=essential,
        ports=[PortSpec(port=p, label=f"{name}-{p}") for p in ports],
        **kwargs
    )


@pytest.fixture
def stack(host):
    host.unit_ports = {"a": {100}, "b": {200}, "c": {300, 301}}
    return [spec("a", [100], order=1), spec("b", [200], order=2), spec("c", [300, 301], order=3)]


# ========================
# start_all
# ========================

def test_start_all_starts_in_declared_order(orchestrator, host, stack):
    run = orchestrator.start_all(stack)

    assert host.names("start") == ["a", "b", "c"]
    assert [r.name for r in run.results] == ["a", "b", "c"]
    assert all(r.outcome == ServiceOutcome.RUNNING for r in run.results)
    assert run.succeeded
    assert run.exit_code == 0


def test_start_all_sorts_by_order_field(orchestrator, host):
    host.unit_ports = {"late": {2}, "early": {1}}
    specs = [spec("late", [2], order=20), spec("early", [1], order=10)]

    orchestrator.start_all(specs)

    assert host.names("start") == ["early", "late"]


def test_start_all_enables_before_starting(orchestrator, host, stack):
    orchestrator.start_all(stack[:1])

    assert host.mutations()[:2] == [("enable", "a"), ("start", "a")]
    assert host.calls[0] == ("daemon-reload", "")


def test_start_all_is_noop_for_running_services(orchestrator, host, stack):
    host.active = {"a", "b", "c"}
    host.listening = {100, 200, 300, 301}

    run = orchestrator.start_all(stack)

    assert host.mutations() == []
    assert all(r.outcome == ServiceOutcome.ALREADY_RUNNING for r in run.results)
    assert run.succeeded


def test_second_start_all_issues_no_start_commands(orchestrator, host, stack):
    orchestrator.start_all(stack)
    host.calls.clear()

    run = orchestrator.start_all(stack)

    assert host.names("start") == []
    assert run.succeeded


def test_running_service_with_missing_port_is_restarted(orchestrator, host, stack):
    host.active = {"a"}

    run = orchestrator.start_all(stack[:1])

    assert host.names("start") == ["a"]
    assert run.results[0].outcome == ServiceOutcome.RUNNING


def test_essential_failure_without_fallback_aborts(orchestrator, host, stack):
    host.failing = {"b"}

    run = orchestrator.start_all(stack)

    assert run.aborted
    assert not run.succeeded
    assert run.exit_code == 1
    assert [r.name for r in run.results] == ["a", "b"]
    assert run.results[1].outcome == ServiceOutcome.ESSENTIAL_ABORTED
    assert run.results[1].error == "EssentialServiceFailed"
    assert run.results[1].cause == "StartTimeout"
    assert "c" not in host.names("start")


def test_aborted_run_raises_for_status(orchestrator, host, stack):
    host.failing = {"a"}

    run = orchestrator.start_all(stack)

    with pytest.raises(EssentialServiceFailed) as exc:
        run.raise_for_status()
    assert exc.value.service == "a"


def test_optional_failure_continues_with_later_services(orchestrator, host):
    host.unit_ports = {"opt": {10}, "core": {20}}
    host.failing = {"opt"}
    specs = [spec("opt", [10], essential=False, order=1), spec("core", [20], order=2)]

    run = orchestrator.start_all(specs)

    assert host.names("start") == ["opt", "core"]
    assert run.result_for("opt").outcome == ServiceOutcome.OPTIONAL_FAILED
    assert run.result_for("core").outcome == ServiceOutcome.RUNNING
    assert run.warnings == [run.result_for("opt")]
    assert run.succeeded


def test_essential_then_failing_optional_is_healthy(orchestrator, host):
    host.unit_ports = {"A": {100}}
    host.failing = {"B"}
    specs = [spec("A", [100]), spec("B", [200], essential=False)]

    run = orchestrator.start_all(specs)

    assert [r.name for r in run.results] == ["A", "B"]
    assert run.results[0].outcome == ServiceOutcome.RUNNING
    assert run.results[1].outcome == ServiceOutcome.OPTIONAL_FAILED
    assert run.results[1].error == "OptionalServiceFailed"
    assert run.exit_code == 0


def test_ports_never_bound_exhausts_retry_budget(orchestrator, host, clock):
    run = orchestrator.start_all([spec("a", [100])])

    result = run.results[0]
    assert result.outcome == ServiceOutcome.ESSENTIAL_ABORTED
    assert result.cause == "PortNotBound"
    assert clock.slept == [2.0] * 9
    assert result.elapsed_seconds == 18.0


def test_unit_that_never_turns_active_times_out(orchestrator, host, clock):
    host.never_active = {"a"}

    run = orchestrator.start_all([spec("a", essential=False)])

    assert run.results[0].cause == "StartTimeout"
    assert sum(clock.slept) == pytest.approx(30.0)
    assert run.succeeded


def test_slow_start_request_counts_against_start_timeout(orchestrator, host, clock):
    host.never_active = {"a"}
    host.start_seconds = {"a": 20.0}

    run = orchestrator.start_all([spec("a", essential=False)])

    assert run.results[0].cause == "StartTimeout"
    assert sum(clock.slept) == pytest.approx(10.0)
    assert clock.now == pytest.approx(30.0)


def test_reload_after_start(orchestrator, host):
    host.unit_ports = {"postfix": {25}}

    orchestrator.start_all([spec("postfix", [25], reload_after_start=True)])

    assert host.names("reload") == ["postfix"]


# ========================
# Fallback
# ========================

def fallback_spec(essential=False):
    return spec(
        "postsrsd",
        [10001, 10002],
        essential=essential,
        fallback_command=["/usr/sbin/postsrsd", "-f", "10001", "-r", "10002"],
        kill_pattern="postsrsd"
    )


def test_fallback_runs_after_failed_primary(orchestrator, host):
    host.failing = {"postsrsd"}
    host.spawn_ports = {"/usr/sbin/postsrsd": {10001, 10002}}

    run = orchestrator.start_all([fallback_spec()])

    result = run.results[0]
    assert result.outcome == ServiceOutcome.RUNNING_VIA_FALLBACK
    assert result.launcher == "command"
    # Partial instance is stopped and swept before the direct launch
    assert host.mutations() == [
        ("enable", "postsrsd"),
        ("start", "postsrsd"),
        ("stop", "postsrsd"),
        ("kill", "postsrsd"),
        ("spawn", "/usr/sbin/postsrsd"),
    ]


def test_fallback_not_used_when_primary_succeeds(orchestrator, host):
    host.unit_ports = {"postsrsd": {10001, 10002}}

    run = orchestrator.start_all([fallback_spec()])

    assert run.results[0].outcome == ServiceOutcome.RUNNING
    assert host.names("spawn") == []


def test_fallback_exhausted_for_essential_service(orchestrator, host):
    host.failing = {"postsrsd"}

    run = orchestrator.start_all([fallback_spec(essential=True), spec("after")])

    assert run.aborted
    assert [r.name for r in run.results] == ["postsrsd"]
    assert run.results[0].cause == "FallbackExhausted"
    assert run.results[0].launcher == "command"
    assert "after" not in host.names("start")


# ========================
# stop_all
# ========================

def test_stop_all_reverses_start_order(orchestrator, host, stack):
    orchestrator.start_all(stack)
    started = host.names("start")

    run = orchestrator.stop_all(stack)

    assert host.names("stop") == list(reversed(started))
    assert [r.name for r in run.results] == ["c", "b", "a"]
    assert all(r.outcome == ServiceOutcome.STOPPED for r in run.results)


def test_stop_all_skips_stopped_services_silently(orchestrator, host, stack):
    run = orchestrator.stop_all(stack)

    assert host.mutations() == []
    assert all(r.outcome == ServiceOutcome.ALREADY_STOPPED for r in run.results)
    assert run.succeeded


def test_stop_sweeps_after_grace_period(orchestrator, host, clock):
    host.active = {"postfix"}

    orchestrator.stop_all([spec("postfix", kill_pattern="postfix")])

    assert host.mutations() == [("stop", "postfix"), ("kill", "postfix")]
    assert clock.slept == [2.0]


def test_stop_sweeps_processes_outside_service_manager(orchestrator, host):
    orchestrator.stop_all([fallback_spec()])

    assert host.mutations() == [("kill", "postsrsd")]


def test_stop_never_sweeps_inactive_unit_without_fallback(orchestrator, host):
    run = orchestrator.stop_all([spec("postfix", kill_pattern="postfix")])

    assert host.mutations() == []
    assert run.results[0].outcome == ServiceOutcome.ALREADY_STOPPED


def test_unit_refusing_to_stop_fails_the_run(orchestrator, host):
    host.active = {"dovecot"}
    host.stuck = {"dovecot"}

    run = orchestrator.stop_all([spec("dovecot")])

    result = run.results[0]
    assert result.outcome == ServiceOutcome.STOP_FAILED
    assert result.error == "StopFailed"
    assert result.failed
    assert not run.succeeded
    assert run.exit_code == 1
    with pytest.raises(StopFailed) as exc:
        run.raise_for_status()
    assert exc.value.service == "dovecot"


def test_unit_still_active_after_accepted_stop(orchestrator, host):
    host.active = {"dovecot"}
    orchestrator.services.stop = lambda name: True

    run = orchestrator.stop_all([spec("dovecot")])

    assert run.results[0].outcome == ServiceOutcome.STOP_FAILED
    assert run.results[0].detail == "still active after stop"
    assert run.exit_code == 1


# ========================
# check_ports / fix_ports / restart_all
# ========================

def test_check_ports_is_pure(orchestrator, host):
    host.listening = {25}
    ports = [PortSpec(port=25, label="SMTP"), PortSpec(port=587, label="Submission")]

    first = orchestrator.check_ports(ports)
    second = orchestrator.check_ports(ports)

    assert first.to_dict() == second.to_dict()
    assert host.mutations() == []
    assert first.get(25).bound
    assert not first.get(587).bound
    assert [p.port for p in first.unbound] == [587]
    assert first.exit_code == 1


def test_check_ports_probes_critical_ports_only(orchestrator, host):
    host.listening = {25}
    ports = [PortSpec(port=25, critical=True), PortSpec(port=143)]

    report = orchestrator.check_ports(ports, probe=True)

    assert report.get(25).reachable is True
    assert report.get(143).reachable is None


def test_fix_ports_noop_when_everything_bound(orchestrator, host, stack):
    host.active = {"a", "b", "c"}
    host.listening = {100, 200, 300, 301}

    run = orchestrator.fix_ports(stack)

    assert host.mutations() == []
    assert run.results == []
    assert run.port_report.all_bound
    assert run.exit_code == 0


def test_fix_ports_restarts_when_port_missing(orchestrator, host, stack, clock):
    host.active = {"a", "b", "c"}
    host.listening = {100, 200, 300}

    run = orchestrator.fix_ports(stack)

    assert host.names("stop") == ["c", "b", "a"]
    assert host.names("start") == ["a", "b", "c"]
    assert 3.0 in clock.slept
    assert run.operation == "fix-ports"
    assert run.port_report.all_bound
    assert run.succeeded


def test_fix_ports_reports_ports_still_missing(orchestrator, host):
    host.unit_ports = {"a": {100}}
    specs = [spec("a", [100]), spec("web", [80], essential=False)]
    host.failing = {"web"}

    run = orchestrator.fix_ports(specs)

    assert [p.port for p in run.port_report.unbound] == [80]
    # Only the optional service's port is missing
    assert run.unbound_essential_ports == []
    assert run.exit_code == 0


def test_restart_all_stops_then_starts(orchestrator, host, stack):
    host.active = {"a", "b", "c"}

    run = orchestrator.restart_all(stack)

    verbs = [verb for verb, _ in host.mutations() if verb in ("start", "stop")]
    assert verbs == ["stop"] * 3 + ["start"] * 3
    assert run.operation == "restart-all"
    assert run.succeeded


def test_restart_all_does_not_start_after_failed_stop(orchestrator, host, stack):
    host.active = {"a", "b", "c"}
    host.listening = {100, 200, 300, 301}
    host.stuck = {"b"}

    run = orchestrator.restart_all(stack)

    assert host.names("start") == []
    assert run.operation == "restart-all"
    assert run.aborted
    assert [r.name for r in run.stop_failures] == ["b"]
    assert run.exit_code == 1


def test_fix_ports_reports_unit_refusing_to_stop(orchestrator, host, stack):
    host.active = {"a", "b", "c"}
    host.listening = {100, 200, 300}
    host.stuck = {"a"}

    run = orchestrator.fix_ports(stack)

    assert host.names("start") == []
    assert run.operation == "fix-ports"
    assert [p.port for p in run.port_report.unbound] == [200, 300, 301]
    assert not run.succeeded
