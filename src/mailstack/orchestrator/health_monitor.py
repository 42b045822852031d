"""
Health Monitor
Service and port health of the mail stack
"""

import logging
from typing import Callable, List, Optional

from .errors import CommandError
from .models import (
    ConfigCheckResult,
    ServiceSpec,
    ServiceState,
    StatusReport,
    collect_ports,
    ordered,
)
from .service_manager import ServiceOrchestrator
from .system import run_command
from ..utils.timezone import now_utc

logger = logging.getLogger(__name__)


class HealthMonitor:
    """
    Monitor mail stack health

    Checks:
    - Service manager state of every declared service
    - Listening sockets for every declared port
    - TCP connectivity of critical ports
    - Configuration syntax of services that declare a test command
    """

    def __init__(
        self,
        orchestrator: ServiceOrchestrator,
        check_interval: float = 60,
        runner: Callable = run_command
    ):
        """
        Initialize health monitor

        Args:
            orchestrator: Orchestrator whose collaborators are queried
            check_interval: Seconds between checks in watch mode
            runner: Command runner used for configuration tests
        """
        self.orchestrator = orchestrator
        self.check_interval = check_interval
        self.runner = runner
        self._running = False

    def check(self, specs: List[ServiceSpec], probe: bool = True) -> StatusReport:
        """
        Build a fresh status report

        Args:
            specs: Service declarations
            probe: TCP-connect critical ports

        Returns:
            StatusReport classifying essential and optional failures
        """
        port_report = self.orchestrator.check_ports(collect_ports(specs), probe=probe)
        report = StatusReport(checked_at=now_utc(), port_report=port_report)

        for spec in ordered(specs):
            running = self.orchestrator.services.is_active(spec.name)
            bound = [p for p in spec.port_numbers if port_report.get(p).bound]
            unbound = [p for p in spec.port_numbers if p not in bound]
            report.services.append(ServiceState(
                name=spec.name,
                essential=spec.essential,
                running=running,
                bound_ports=bound,
                unbound_ports=unbound
            ))

            if spec.essential:
                if not running:
                    report.failed_essential.append(spec.name)
                report.unbound_essential_ports.extend(
                    p for p in unbound if p not in report.unbound_essential_ports
                )
            elif not running:
                report.failed_optional.append(spec.name)

        return report

    def run_health_check(self, specs: List[ServiceSpec]) -> StatusReport:
        """Run a check and log the assessment"""
        report = self.check(specs)

        for state in report.services:
            if state.running:
                logger.info(f"✅ {state.name}: Running")
            elif state.essential:
                logger.error(f"❌ {state.name}: Not running")
            else:
                logger.warning(f"⚠️  {state.name}: Not running (optional service)")

        if report.healthy:
            logger.info("✅ All essential services are running")
            if report.failed_optional:
                logger.info(
                    "ℹ️  Some optional services are not running, "
                    "but core functionality is operational"
                )
        else:
            if report.failed_essential:
                logger.warning(
                    f"⚠️  Essential services not running: {', '.join(report.failed_essential)}"
                )
            if report.unbound_essential_ports:
                logger.warning(
                    f"⚠️  Essential ports inactive: {report.unbound_essential_ports}"
                )
        return report

    def check_config(self, specs: List[ServiceSpec]) -> List[ConfigCheckResult]:
        """
        Run each declared configuration test

        Returns:
            One result per service; ``passed`` is None when no test is declared
        """
        results = []
        for spec in ordered(specs):
            if not spec.config_test:
                logger.warning(f"⚠️  No syntax test available for {spec.name}")
                results.append(ConfigCheckResult(name=spec.name))
                continue

            try:
                completed = self.runner(list(spec.config_test))
                passed = completed.returncode == 0
                output = (completed.stdout + completed.stderr).strip()
            except CommandError as e:
                passed = False
                output = str(e)

            if passed:
                logger.info(f"✅ {spec.name} configuration: Valid")
            else:
                logger.error(f"❌ {spec.name} configuration: Invalid")
            results.append(ConfigCheckResult(
                name=spec.name,
                command=list(spec.config_test),
                passed=passed,
                output=output
            ))
        return results

    def watch(
        self,
        specs: List[ServiceSpec],
        iterations: Optional[int] = None,
        on_report: Optional[Callable[[StatusReport], None]] = None
    ) -> Optional[StatusReport]:
        """
        Repeat health checks every ``check_interval`` seconds

        Args:
            specs: Service declarations
            iterations: Stop after this many checks (None = until stop())
            on_report: Called with every report

        Returns:
            The last report
        """
        self._running = True
        logger.info(f"🏥 Health monitor started (interval: {self.check_interval}s)")

        report = None
        count = 0
        while self._running:
            report = self.run_health_check(specs)
            if on_report:
                on_report(report)
            count += 1
            if iterations is not None and count >= iterations:
                break
            self.orchestrator.clock.sleep(self.check_interval)

        self._running = False
        return report

    def stop(self):
        """Stop health monitoring"""
        self._running = False
