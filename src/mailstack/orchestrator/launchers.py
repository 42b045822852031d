"""
Launchers
Strategies for bringing a service up: the service manager first, a direct
process launch as fallback
"""

import logging
from typing import List, Set

from .errors import PortNotBound, StartTimeout
from .models import ServiceSpec
from .retry import Clock, RetryPolicy, poll_until, wait_until
from .system import PortInspector, ProcessControl, ServiceControl

logger = logging.getLogger(__name__)


class Launcher:
    """
    Base launcher

    ``launch`` returns normally once the service is running and every declared
    port is bound, otherwise raises StartTimeout or PortNotBound.
    """

    name = "base"
    fallback = False

    def __init__(
        self,
        services: ServiceControl,
        inspector: PortInspector,
        processes: ProcessControl,
        policy: RetryPolicy,
        clock: Clock
    ):
        self.services = services
        self.inspector = inspector
        self.processes = processes
        self.policy = policy
        self.clock = clock

    def applies_to(self, spec: ServiceSpec) -> bool:
        return True

    def launch(self, spec: ServiceSpec) -> None:
        raise NotImplementedError

    def unbound_ports(self, spec: ServiceSpec) -> List[int]:
        listening: Set[int] = self.inspector.listening_ports()
        return [p for p in spec.port_numbers if p not in listening]

    def wait_for_ports(self, spec: ServiceSpec) -> None:
        """
        Poll declared ports with the fixed retry budget

        Raises:
            PortNotBound: If ports are still missing after the last attempt
        """
        if not spec.ports:
            return

        def report(attempt: int, attempts: int):
            logger.info(f"   Attempt {attempt}/{attempts}: waiting for {spec.name} ports...")

        bound = poll_until(
            lambda: not self.unbound_ports(spec),
            attempts=self.policy.port_attempts,
            interval=self.policy.port_interval,
            clock=self.clock,
            on_retry=report
        )
        if not bound:
            missing = self.unbound_ports(spec)
            raise PortNotBound(
                f"{spec.name}: ports {missing} not listening after "
                f"{self.policy.port_attempts} attempts",
                service=spec.name,
                ports=missing
            )


class SystemdLauncher(Launcher):
    """Enable and start the unit through the service manager"""

    name = "systemd"

    def launch(self, spec: ServiceSpec) -> None:
        self.services.enable(spec.name)
        began = self.clock.monotonic()
        accepted = self.services.start(spec.name, timeout=self.policy.start_timeout)
        if not accepted:
            raise StartTimeout(f"{spec.name}: start request failed", service=spec.name)

        # systemctl start and the is-active wait share one budget
        remaining = max(0.0, self.policy.start_timeout - (self.clock.monotonic() - began))
        active = wait_until(
            lambda: self.services.is_active(spec.name),
            timeout=remaining,
            interval=self.policy.active_poll_interval,
            clock=self.clock
        )
        if not active:
            raise StartTimeout(
                f"{spec.name}: not active after {self.policy.start_timeout:g}s",
                service=spec.name
            )

        if spec.reload_after_start:
            logger.info(f"🔄 Reloading {spec.name} to activate all listeners...")
            if not self.services.reload(spec.name):
                logger.warning(f"⚠️  Reload of {spec.name} failed")

        self.wait_for_ports(spec)


class CommandLauncher(Launcher):
    """Run the declared fallback command directly, bypassing the service manager"""

    name = "command"
    fallback = True

    def applies_to(self, spec: ServiceSpec) -> bool:
        return bool(spec.fallback_command)

    def launch(self, spec: ServiceSpec) -> None:
        if not spec.fallback_command:
            raise StartTimeout(f"{spec.name}: no fallback command declared", service=spec.name)

        pid = self.processes.spawn(list(spec.fallback_command))
        logger.info(f"🛠️  Launched {spec.name} directly (pid {pid})")

        # Without declared ports a successful spawn is the only readiness signal
        self.wait_for_ports(spec)
