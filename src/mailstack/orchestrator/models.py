"""
Orchestrator Models
Service declarations, run results and port reports
"""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from ..utils.timezone import now_utc
from .errors import EssentialServiceFailed, StopFailed


class _ReportModel(BaseModel):
    """Shared serialization helpers"""

    def to_dict(self) -> Dict[str, Any]:
        """
        Convert model to dictionary for JSON serialization

        Returns:
            Dictionary representation
        """
        return self.model_dump(mode="json")

    def to_json(self, indent: Optional[int] = None) -> str:
        """
        Convert model to JSON string

        Args:
            indent: Optional indentation for human consumption

        Returns:
            JSON string representation
        """
        return self.model_dump_json(indent=indent)

    @classmethod
    def from_json(cls, json_str: str):
        """Create model from JSON string"""
        return cls.model_validate_json(json_str)


# ========================
# Declarations
# ========================

class PortSpec(_ReportModel):
    """A TCP port a service must expose"""

    model_config = ConfigDict(frozen=True)

    port: int = Field(ge=1, le=65535, description="TCP port number")
    label: str = Field(default="", description="Human label, e.g. SMTP")
    critical: bool = Field(
        default=False,
        description="Probe for TCP connectivity during status checks"
    )


class ServiceSpec(_ReportModel):
    """
    Declaration of one OS-managed service

    The orchestrator sorts specs by ``order``; ties keep declaration order.
    """

    model_config = ConfigDict(frozen=True)

    name: str = Field(min_length=1, description="Service unit name")
    order: int = Field(default=0, description="Position in startup sequence")
    ports: List[PortSpec] = Field(default_factory=list)
    essential: bool = Field(default=True, description="Failure aborts the run")
    fallback_command: Optional[List[str]] = Field(
        default=None,
        description="argv launched directly when the managed start fails"
    )
    kill_pattern: Optional[str] = Field(
        default=None,
        description="pkill -f pattern swept after stopping"
    )
    reload_after_start: bool = Field(
        default=False,
        description="Reload the unit after a successful start"
    )
    config_test: Optional[List[str]] = Field(
        default=None,
        description="argv validating the service configuration"
    )

    @field_validator("fallback_command", "config_test")
    @classmethod
    def validate_argv(cls, v: Optional[List[str]]) -> Optional[List[str]]:
        """Reject empty command lists"""
        if v is not None and not v:
            raise ValueError("command must contain at least the executable")
        return v

    @property
    def port_numbers(self) -> List[int]:
        return [p.port for p in self.ports]


def ordered(specs: List[ServiceSpec]) -> List[ServiceSpec]:
    """Sort specs into startup order (stable for equal ordinals)"""
    return sorted(specs, key=lambda s: s.order)


def collect_ports(specs: List[ServiceSpec]) -> List[PortSpec]:
    """All declared ports in startup order, first declaration wins"""
    seen = set()
    ports = []
    for spec in ordered(specs):
        for port in spec.ports:
            if port.port not in seen:
                seen.add(port.port)
                ports.append(port)
    return ports


# ========================
# Snapshots
# ========================

class ServiceState(_ReportModel):
    """Point-in-time view of a service, built fresh on every query"""

    name: str
    essential: bool = True
    running: bool = False
    bound_ports: List[int] = Field(default_factory=list)
    unbound_ports: List[int] = Field(default_factory=list)

    @property
    def healthy(self) -> bool:
        return self.running and not self.unbound_ports


class PortStatus(_ReportModel):
    """Bound state of a single port"""

    port: int
    label: str = ""
    bound: bool = False
    reachable: Optional[bool] = Field(
        default=None,
        description="TCP connect result, None when not probed"
    )


class PortReport(_ReportModel):
    """Result of a port check"""

    ports: List[PortStatus] = Field(default_factory=list)

    @property
    def all_bound(self) -> bool:
        return all(p.bound for p in self.ports)

    @property
    def unbound(self) -> List[PortStatus]:
        return [p for p in self.ports if not p.bound]

    @property
    def exit_code(self) -> int:
        return 0 if self.all_bound else 1

    def get(self, port: int) -> Optional[PortStatus]:
        for status in self.ports:
            if status.port == port:
                return status
        return None


# ========================
# Run results
# ========================

class ServiceOutcome(str, Enum):
    """Terminal outcome of one service in a run"""
    RUNNING = "running"
    RUNNING_VIA_FALLBACK = "running_via_fallback"
    ALREADY_RUNNING = "already_running"
    STOPPED = "stopped"
    ALREADY_STOPPED = "already_stopped"
    OPTIONAL_FAILED = "optional_failed"
    ESSENTIAL_ABORTED = "essential_aborted"
    STOP_FAILED = "stop_failed"


FAILED_OUTCOMES = {
    ServiceOutcome.OPTIONAL_FAILED,
    ServiceOutcome.ESSENTIAL_ABORTED,
    ServiceOutcome.STOP_FAILED,
}


class ServiceResult(_ReportModel):
    """Per-service entry of an orchestration run"""

    name: str
    essential: bool = True
    outcome: ServiceOutcome
    launcher: Optional[str] = None
    elapsed_seconds: float = 0.0
    error: Optional[str] = None
    cause: Optional[str] = None
    detail: Optional[str] = None

    @property
    def failed(self) -> bool:
        return self.outcome in FAILED_OUTCOMES


class OrchestrationRun(_ReportModel):
    """Ordered results of one start/stop/fix invocation"""

    operation: str
    started_at: datetime = Field(default_factory=now_utc)
    results: List[ServiceResult] = Field(default_factory=list)
    aborted: bool = False
    port_report: Optional[PortReport] = None
    unbound_essential_ports: List[int] = Field(default_factory=list)

    @property
    def succeeded(self) -> bool:
        """True when nothing essential failed and every stop took effect"""
        if self.aborted or self.unbound_essential_ports or self.stop_failures:
            return False
        return not any(
            r.outcome == ServiceOutcome.ESSENTIAL_ABORTED for r in self.results
        )

    @property
    def exit_code(self) -> int:
        return 0 if self.succeeded else 1

    @property
    def warnings(self) -> List[ServiceResult]:
        return [r for r in self.results if r.outcome == ServiceOutcome.OPTIONAL_FAILED]

    @property
    def stop_failures(self) -> List[ServiceResult]:
        return [r for r in self.results if r.outcome == ServiceOutcome.STOP_FAILED]

    def result_for(self, name: str) -> Optional[ServiceResult]:
        for result in self.results:
            if result.name == name:
                return result
        return None

    def raise_for_status(self) -> None:
        """Raise EssentialServiceFailed or StopFailed for an unsuccessful run"""
        for result in self.results:
            if result.outcome == ServiceOutcome.ESSENTIAL_ABORTED:
                raise EssentialServiceFailed(
                    f"{result.name}: {result.detail or result.error}",
                    service=result.name
                )
        if self.stop_failures:
            result = self.stop_failures[0]
            raise StopFailed(f"{result.name}: {result.detail}", service=result.name)
        if self.aborted:
            raise EssentialServiceFailed(f"{self.operation} aborted")
        if self.unbound_essential_ports:
            raise EssentialServiceFailed(
                f"{self.operation}: essential ports not listening: {self.unbound_essential_ports}"
            )


class StatusReport(_ReportModel):
    """Service and port health of the whole stack"""

    checked_at: datetime = Field(default_factory=now_utc)
    services: List[ServiceState] = Field(default_factory=list)
    port_report: PortReport = Field(default_factory=PortReport)
    failed_essential: List[str] = Field(default_factory=list)
    failed_optional: List[str] = Field(default_factory=list)
    unbound_essential_ports: List[int] = Field(default_factory=list)

    @property
    def healthy(self) -> bool:
        return not self.failed_essential and not self.unbound_essential_ports

    @property
    def exit_code(self) -> int:
        return 0 if self.healthy else 1


class ConfigCheckResult(_ReportModel):
    """Outcome of a service configuration test"""

    name: str
    command: Optional[List[str]] = None
    passed: Optional[bool] = Field(default=None, description="None when no test is declared")
    output: str = ""
