"""
Service Manager
Start, stop and repair the mail stack services in dependency order
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import List, Optional, Sequence, Type

from .errors import (
    EssentialServiceFailed,
    FallbackExhausted,
    OptionalServiceFailed,
    OrchestratorError,
    StopFailed,
)
from .launchers import CommandLauncher, Launcher, SystemdLauncher
from .models import (
    OrchestrationRun,
    PortReport,
    PortSpec,
    PortStatus,
    ServiceOutcome,
    ServiceResult,
    ServiceSpec,
    collect_ports,
    ordered,
)
from .retry import Clock, RetryPolicy, SystemClock
from .system import (
    OSProcessControl,
    PortInspector,
    ProcessControl,
    ServiceControl,
    SocketTablePortInspector,
    SystemctlServiceControl,
)
from ..utils.timezone import now_utc

logger = logging.getLogger(__name__)

DEFAULT_LAUNCHERS: Sequence[Type[Launcher]] = (SystemdLauncher, CommandLauncher)


class ServiceStatus(str, Enum):
    """Service state during a single start attempt"""
    NOT_STARTED = "not_started"
    STARTING = "starting"
    START_FAILED = "start_failed"
    FALLBACK_STARTING = "fallback_starting"
    FALLBACK_FAILED = "fallback_failed"
    RUNNING = "running"
    ABORTED = "aborted"


@dataclass
class ServiceInfo:
    """Transient bookkeeping for one service while it is being started"""
    name: str
    status: ServiceStatus = ServiceStatus.NOT_STARTED
    launcher: Optional[str] = None
    started_at: Optional[datetime] = None
    error: Optional[OrchestratorError] = None


class ServiceOrchestrator:
    """
    Bring a declared sequence of OS services into a running, port-bound state

    Services are handled strictly one at a time in declared order. Essential
    failures abort the run; optional failures are recorded and skipped.
    Stopping walks the same list in reverse.
    """

    def __init__(
        self,
        policy: Optional[RetryPolicy] = None,
        services: Optional[ServiceControl] = None,
        inspector: Optional[PortInspector] = None,
        processes: Optional[ProcessControl] = None,
        clock: Optional[Clock] = None,
        launchers: Sequence[Type[Launcher]] = DEFAULT_LAUNCHERS
    ):
        """
        Initialize orchestrator

        Args:
            policy: Timing budget (timeouts, poll attempts, grace periods)
            services: OS service manager interface
            inspector: Socket table interface
            processes: Process signalling/launch interface
            clock: Time source for every sleep and timeout
            launchers: Launcher chain tried in order for each service
        """
        self.policy = policy or RetryPolicy()
        self.services = services or SystemctlServiceControl()
        self.inspector = inspector or SocketTablePortInspector()
        self.processes = processes or OSProcessControl()
        self.clock = clock or SystemClock()
        self.launchers: List[Launcher] = [
            launcher_type(
                services=self.services,
                inspector=self.inspector,
                processes=self.processes,
                policy=self.policy,
                clock=self.clock
            )
            for launcher_type in launchers
        ]

    # ========================
    # Queries
    # ========================

    def check_ports(self, ports: List[PortSpec], probe: bool = False) -> PortReport:
        """
        Report which ports have a listening socket

        Pure read: one socket table snapshot, no service state changes.

        Args:
            ports: Ports to check
            probe: Also try a TCP connect to critical ports

        Returns:
            PortReport in the given port order
        """
        listening = self.inspector.listening_ports()
        statuses = []
        for spec in ports:
            reachable = None
            if probe and spec.critical:
                reachable = self.inspector.can_connect(spec.port)
            statuses.append(PortStatus(
                port=spec.port,
                label=spec.label,
                bound=spec.port in listening,
                reachable=reachable
            ))
        return PortReport(ports=statuses)

    def is_up(self, spec: ServiceSpec) -> bool:
        """Service is active and every declared port is bound"""
        if not self.services.is_active(spec.name):
            return False
        if not spec.ports:
            return True
        listening = self.inspector.listening_ports()
        return all(p in listening for p in spec.port_numbers)

    def launcher_chain(self, spec: ServiceSpec) -> List[Launcher]:
        return [launcher for launcher in self.launchers if launcher.applies_to(spec)]

    # ========================
    # Start
    # ========================

    def start_all(self, specs: List[ServiceSpec], operation: str = "start-all") -> OrchestrationRun:
        """
        Start every service in declared order

        Args:
            specs: Service declarations
            operation: Name recorded in the run report

        Returns:
            OrchestrationRun; ``aborted`` is set and the result list ends at
            the failing service if an essential service could not be started
        """
        run = OrchestrationRun(operation=operation, started_at=now_utc())
        logger.info("=" * 70)
        logger.info("🚀 Starting all mail services")
        logger.info("=" * 70)

        self.services.daemon_reload()

        for spec in ordered(specs):
            result = self.start_service(spec)
            run.results.append(result)

            if result.outcome == ServiceOutcome.ESSENTIAL_ABORTED:
                run.aborted = True
                logger.error(f"🛑 Aborting {operation}: essential service {spec.name} failed")
                break

        self._finish(run, specs)
        return run

    def start_service(self, spec: ServiceSpec) -> ServiceResult:
        """
        Start one service through its launcher chain

        Returns:
            ServiceResult describing the terminal state
        """
        info = ServiceInfo(name=spec.name)
        started = self.clock.monotonic()

        if self.is_up(spec):
            logger.info(f"✅ {spec.name} already running")
            return ServiceResult(
                name=spec.name,
                essential=spec.essential,
                outcome=ServiceOutcome.ALREADY_RUNNING
            )

        chain = self.launcher_chain(spec)
        failures: List[OrchestratorError] = []

        for index, launcher in enumerate(chain):
            if index > 0:
                # Clear out whatever the previous launcher left half-started
                self._stop_partial(spec)
                info.status = ServiceStatus.FALLBACK_STARTING
                logger.info(f"🛠️  Trying {launcher.name} launcher for {spec.name}...")
            else:
                info.status = ServiceStatus.STARTING
                logger.info(f"🚀 Starting {spec.name}...")

            info.launcher = launcher.name
            try:
                launcher.launch(spec)
            except OrchestratorError as e:
                failures.append(e)
                info.error = e
                info.status = (
                    ServiceStatus.FALLBACK_FAILED if launcher.fallback
                    else ServiceStatus.START_FAILED
                )
                logger.error(f"❌ {e}")
                self._log_journal(spec)
                continue

            info.status = ServiceStatus.RUNNING
            info.started_at = now_utc()
            outcome = (
                ServiceOutcome.RUNNING_VIA_FALLBACK if index > 0
                else ServiceOutcome.RUNNING
            )
            logger.info(f"✅ {spec.name} started ({launcher.name})")
            return ServiceResult(
                name=spec.name,
                essential=spec.essential,
                outcome=outcome,
                launcher=launcher.name,
                elapsed_seconds=self.clock.monotonic() - started
            )

        return self._failed_result(spec, info, failures, self.clock.monotonic() - started)

    def _failed_result(
        self,
        spec: ServiceSpec,
        info: ServiceInfo,
        failures: List[OrchestratorError],
        elapsed: float
    ) -> ServiceResult:
        if len(failures) > 1:
            cause: OrchestratorError = FallbackExhausted(spec.name, failures)
        elif failures:
            cause = failures[0]
        else:
            cause = OrchestratorError(f"{spec.name}: no launcher applies", spec.name)

        if spec.essential:
            info.status = ServiceStatus.ABORTED
            error: OrchestratorError = EssentialServiceFailed(str(cause), spec.name)
            outcome = ServiceOutcome.ESSENTIAL_ABORTED
            logger.error(f"❌ {spec.name}: essential service failed")
        else:
            error = OptionalServiceFailed(str(cause), spec.name)
            outcome = ServiceOutcome.OPTIONAL_FAILED
            logger.warning(f"⚠️  {spec.name}: optional service failed, continuing")

        return ServiceResult(
            name=spec.name,
            essential=spec.essential,
            outcome=outcome,
            launcher=info.launcher,
            elapsed_seconds=elapsed,
            error=error.kind,
            cause=cause.kind,
            detail=str(cause)
        )

    def _stop_partial(self, spec: ServiceSpec):
        logger.info(f"🛑 Stopping partially started {spec.name}...")
        self.services.stop(spec.name)
        if spec.kill_pattern:
            self.clock.sleep(self.policy.stop_grace)
            self._sweep(spec)

    def _log_journal(self, spec: ServiceSpec):
        tail = self.services.journal_tail(spec.name)
        if tail:
            logger.error(f"   Last journal lines for {spec.name}:")
            for line in tail.splitlines():
                logger.error(f"   {line}")

    # ========================
    # Stop
    # ========================

    def stop_all(self, specs: List[ServiceSpec]) -> OrchestrationRun:
        """
        Stop every service in reverse declared order

        Already stopped services are skipped silently. Services with a kill
        pattern get a pkill sweep after the grace period. A unit still active
        afterwards is recorded as stop_failed.
        """
        run = OrchestrationRun(operation="stop-all", started_at=now_utc())
        logger.info("=" * 70)
        logger.info("🛑 Stopping all mail services")
        logger.info("=" * 70)

        for spec in reversed(ordered(specs)):
            run.results.append(self.stop_service(spec))

        if run.stop_failures:
            names = ", ".join(r.name for r in run.stop_failures)
            logger.error(f"❌ Services still running after stop: {names}")
        else:
            logger.info("✅ All services stopped")
        return run

    def stop_service(self, spec: ServiceSpec) -> ServiceResult:
        started = self.clock.monotonic()

        if not self.services.is_active(spec.name):
            # Only a fallback launch leaves processes the service manager cannot see
            swept = self._sweep(spec) if spec.kill_pattern and spec.fallback_command else False
            return ServiceResult(
                name=spec.name,
                essential=spec.essential,
                outcome=ServiceOutcome.STOPPED if swept else ServiceOutcome.ALREADY_STOPPED,
                detail="terminated processes outside the service manager" if swept else None,
                elapsed_seconds=self.clock.monotonic() - started
            )

        logger.info(f"🛑 Stopping {spec.name}...")
        accepted = self.services.stop(spec.name)
        if spec.kill_pattern:
            self.clock.sleep(self.policy.stop_grace)
            self._sweep(spec)

        if self.services.is_active(spec.name):
            detail = "still active after stop" if accepted else "stop request rejected, unit still active"
            logger.error(f"❌ {spec.name}: {detail}")
            self._log_journal(spec)
            return ServiceResult(
                name=spec.name,
                essential=spec.essential,
                outcome=ServiceOutcome.STOP_FAILED,
                error=StopFailed.__name__,
                detail=detail,
                elapsed_seconds=self.clock.monotonic() - started
            )

        logger.info(f"✅ {spec.name} stopped")
        return ServiceResult(
            name=spec.name,
            essential=spec.essential,
            outcome=ServiceOutcome.STOPPED,
            elapsed_seconds=self.clock.monotonic() - started
        )

    def _sweep(self, spec: ServiceSpec) -> bool:
        try:
            return self.processes.kill_matching(spec.kill_pattern)
        except OrchestratorError as e:
            logger.warning(f"⚠️  Kill sweep for {spec.name} failed: {e}")
            return False

    # ========================
    # Composite operations
    # ========================

    def restart_all(self, specs: List[ServiceSpec]) -> OrchestrationRun:
        """Stop everything, pause, start everything"""
        return self._restart(specs, operation="restart-all")

    def _restart(self, specs: List[ServiceSpec], operation: str) -> OrchestrationRun:
        """
        Stop, pause and start the stack

        Returns:
            The start run, or the stop run marked aborted when a unit refused
            to stop
        """
        stopped = self.stop_all(specs)
        if stopped.stop_failures:
            logger.error(f"❌ {operation} aborted: not every service stopped")
            stopped.operation = operation
            stopped.aborted = True
            return stopped

        self.clock.sleep(self.policy.restart_pause)
        return self.start_all(specs, operation=operation)

    def fix_ports(self, specs: List[ServiceSpec]) -> OrchestrationRun:
        """
        Restart the stack only if some declared port is not listening

        Returns:
            Run with the final port report; empty results when nothing was done
        """
        ports = collect_ports(specs)
        logger.info("🔍 Checking current port status...")
        report = self.check_ports(ports)

        if report.all_bound:
            logger.info("✅ All ports are already working!")
            return OrchestrationRun(
                operation="fix-ports",
                started_at=now_utc(),
                port_report=report
            )

        missing = ", ".join(str(p.port) for p in report.unbound)
        logger.info(f"🔧 Found {len(report.unbound)} inactive ports ({missing}). Fixing...")

        run = self._restart(specs, operation="fix-ports")

        logger.info("🔍 Verifying port fix...")
        run.port_report = self.check_ports(ports)
        self._finish(run, specs)
        if run.port_report.all_bound:
            logger.info("✅ All ports fixed successfully!")
        else:
            logger.warning(f"⚠️  {len(run.port_report.unbound)} ports still inactive")
        return run

    def _finish(self, run: OrchestrationRun, specs: List[ServiceSpec]):
        """Record essential ports left unbound by the run"""
        if run.aborted:
            return
        essential_ports = [p for s in ordered(specs) if s.essential for p in s.ports]
        if not essential_ports:
            return
        report = run.port_report
        if report is None:
            report = self.check_ports(essential_ports)
        run.unbound_essential_ports = [
            status.port for status in report.unbound
            if status.port in {p.port for p in essential_ports}
        ]
        if run.unbound_essential_ports:
            logger.warning(f"⚠️  Essential ports not listening: {run.unbound_essential_ports}")
