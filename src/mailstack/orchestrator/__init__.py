"""
Service Orchestrator
Start, stop and monitor the mail stack services
"""

from .health_monitor import HealthMonitor
from .models import OrchestrationRun, PortReport, PortSpec, ServiceOutcome, ServiceSpec
from .retry import RetryPolicy
from .service_manager import ServiceOrchestrator

__all__ = [
    "ServiceOrchestrator",
    "HealthMonitor",
    "RetryPolicy",
    "ServiceSpec",
    "PortSpec",
    "ServiceOutcome",
    "OrchestrationRun",
    "PortReport",
]
