"""
Report Rendering
Human-readable summaries of runs, ports and status checks
"""

from typing import List, Optional

from ..utils.timezone import format_timestamp
from .models import (
    ConfigCheckResult,
    OrchestrationRun,
    PortReport,
    ServiceOutcome,
    StatusReport,
)

RULE = "=" * 70

OUTCOME_ICONS = {
    ServiceOutcome.RUNNING: "🟢",
    ServiceOutcome.RUNNING_VIA_FALLBACK: "🟡",
    ServiceOutcome.ALREADY_RUNNING: "🟢",
    ServiceOutcome.STOPPED: "⚫",
    ServiceOutcome.ALREADY_STOPPED: "⚫",
    ServiceOutcome.OPTIONAL_FAILED: "🟠",
    ServiceOutcome.ESSENTIAL_ABORTED: "🔴",
    ServiceOutcome.STOP_FAILED: "🔴",
}


def render_ports(report: PortReport) -> List[str]:
    lines = []
    for status in report.ports:
        state = "✅ ACTIVE" if status.bound else "❌ INACTIVE"
        if status.reachable is not None:
            state += " (connect ok)" if status.reachable else " (connect failed)"
        lines.append(f"{status.port:<6} {status.label:<15}: {state}")
    return lines


def render_run(run: OrchestrationRun, timezone: Optional[str] = None) -> str:
    """Summary of an orchestration run"""
    lines = [
        RULE,
        f"{run.operation} - {format_timestamp(run.started_at, timezone)}",
        RULE,
    ]

    if not run.results:
        lines.append("No service changes were needed")

    for result in run.results:
        icon = OUTCOME_ICONS.get(result.outcome, "⚪")
        via = f" via {result.launcher}" if result.launcher else ""
        line = f"{icon} {result.name:<12} {result.outcome.value}{via} ({result.elapsed_seconds:.1f}s)"
        if result.failed:
            line += f" - {result.error}: {result.detail}"
        lines.append(line)

    if run.port_report is not None:
        lines.append("")
        lines.append("Port Status:")
        lines.extend(render_ports(run.port_report))

    lines.append(RULE)
    if run.succeeded:
        suffix = f" ({len(run.warnings)} optional warnings)" if run.warnings else ""
        lines.append(f"✅ {run.operation} succeeded{suffix}")
    elif run.stop_failures:
        names = ", ".join(r.name for r in run.stop_failures)
        lines.append(f"❌ {run.operation} failed: still running after stop: {names}")
    elif run.aborted:
        lines.append(f"❌ {run.operation} aborted")
    else:
        lines.append(
            f"❌ {run.operation} failed: essential ports inactive {run.unbound_essential_ports}"
        )
    return "\n".join(lines)


def render_status(report: StatusReport, timezone: Optional[str] = None) -> str:
    """Summary of a status check, essential and optional tiers listed separately"""
    lines = [
        RULE,
        f"📋 Mail stack status - {format_timestamp(report.checked_at, timezone)}",
        RULE,
    ]

    for title, essential in (("🔧 Essential Services:", True), ("🔧 Optional Services:", False)):
        states = [s for s in report.services if s.essential == essential]
        if not states:
            continue
        lines.append(title)
        for state in states:
            if state.running:
                mark = "✅ Running"
            elif essential:
                mark = "❌ Stopped"
            else:
                mark = "⚠️  Stopped (optional)"
            lines.append(f"  {state.name:<12}: {mark}")
        lines.append("")

    lines.append("🔌 Ports:")
    lines.extend(f"  {line}" for line in render_ports(report.port_report))
    lines.append("")

    if report.healthy:
        lines.append("🎯 Mail Server: ✅ FULLY OPERATIONAL")
    else:
        lines.append("🎯 Mail Server: ⚠️  NEEDS ATTENTION")
        if report.failed_essential:
            lines.append(
                f"   - Essential services not running: {', '.join(report.failed_essential)} "
                "(run restart-all)"
            )
        if report.unbound_essential_ports:
            ports = ", ".join(str(p) for p in report.unbound_essential_ports)
            lines.append(f"   - Essential ports inactive: {ports} (run fix-ports)")
    lines.append(RULE)
    return "\n".join(lines)


def render_config_checks(results: List[ConfigCheckResult]) -> str:
    lines = []
    for result in results:
        if result.passed is None:
            lines.append(f"{result.name:<12}: ➖ no test")
        elif result.passed:
            lines.append(f"{result.name:<12}: ✅ valid")
        else:
            lines.append(f"{result.name:<12}: ❌ invalid")
            lines.extend(f"    {line}" for line in result.output.splitlines())
    return "\n".join(lines)
