"""
Shared fixtures: an in-memory host standing in for systemctl, ss and pkill
"""

from typing import Dict, List, Optional, Set, Tuple

import pytest

from mailstack.orchestrator.retry import Clock, RetryPolicy
from mailstack.orchestrator.service_manager import ServiceOrchestrator
from mailstack.orchestrator.system import PortInspector, ProcessControl, ServiceControl

MUTATING = {"start", "stop", "enable", "reload", "spawn", "kill"}


class FakeHost:
    """Service and socket state of a pretend machine"""

    def __init__(self):
        self.active: Set[str] = set()
        self.listening: Set[int] = set()
        self.calls: List[Tuple[str, str]] = []
        # Ports a unit binds once it starts
        self.unit_ports: Dict[str, Set[int]] = {}
        # Units whose start request is rejected
        self.failing: Set[str] = set()
        # Units accepted by systemctl that never turn active
        self.never_active: Set[str] = set()
        # Units whose stop request is rejected, they stay active
        self.stuck: Set[str] = set()
        # Seconds a systemctl start call blocks before returning
        self.start_seconds: Dict[str, float] = {}
        # Ports bound by a directly spawned executable
        self.spawn_ports: Dict[str, Set[int]] = {}
        self.port_queries = 0

    def mutations(self) -> List[Tuple[str, str]]:
        return [c for c in self.calls if c[0] in MUTATING]

    def names(self, action: str) -> List[str]:
        return [name for verb, name in self.calls if verb == action]


class FakeServiceControl(ServiceControl):

    def __init__(self, host: FakeHost, clock: Optional["FakeClock"] = None):
        self.host = host
        self.clock = clock

    def daemon_reload(self):
        self.host.calls.append(("daemon-reload", ""))

    def enable(self, name):
        self.host.calls.append(("enable", name))

    def start(self, name, timeout=None):
        self.host.calls.append(("start", name))
        if self.clock is not None:
            self.clock.now += self.host.start_seconds.get(name, 0.0)
        if name in self.host.failing:
            return False
        if name not in self.host.never_active:
            self.host.active.add(name)
            self.host.listening |= self.host.unit_ports.get(name, set())
        return True

    def stop(self, name):
        self.host.calls.append(("stop", name))
        if name in self.host.stuck:
            return False
        self.host.active.discard(name)
        self.host.listening -= self.host.unit_ports.get(name, set())
        return True

    def reload(self, name):
        self.host.calls.append(("reload", name))
        return True

    def is_active(self, name):
        return name in self.host.active

    def journal_tail(self, name, lines=5):
        return f"{name}: failed to start"


class FakePortInspector(PortInspector):

    def __init__(self, host: FakeHost):
        self.host = host

    def listening_ports(self):
        self.host.port_queries += 1
        return set(self.host.listening)

    def can_connect(self, port, host="127.0.0.1"):
        return port in self.host.listening


class FakeProcessControl(ProcessControl):

    def __init__(self, host: FakeHost):
        self.host = host

    def kill_matching(self, pattern):
        self.host.calls.append(("kill", pattern))
        return False

    def spawn(self, argv):
        self.host.calls.append(("spawn", argv[0]))
        self.host.listening |= self.host.spawn_ports.get(argv[0], set())
        return 4242


class FakeClock(Clock):

    def __init__(self):
        self.now = 0.0
        self.slept: List[float] = []

    def monotonic(self):
        return self.now

    def sleep(self, seconds):
        self.slept.append(seconds)
        self.now += seconds


@pytest.fixture
def host() -> FakeHost:
    return FakeHost()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def policy() -> RetryPolicy:
    return RetryPolicy()


@pytest.fixture
def orchestrator(host, clock, policy) -> ServiceOrchestrator:
    return ServiceOrchestrator(
        policy=policy,
        services=FakeServiceControl(host, clock),
        inspector=FakePortInspector(host),
        processes=FakeProcessControl(host),
        clock=clock
    )
