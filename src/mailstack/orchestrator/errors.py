"""
Orchestrator Errors
Exception taxonomy for service start/stop failures
"""

from typing import List, Optional


class OrchestratorError(Exception):
    """Base class for all orchestrator errors"""

    def __init__(self, message: str, service: Optional[str] = None):
        super().__init__(message)
        self.service = service

    @property
    def kind(self) -> str:
        """Error kind name used in run reports"""
        return self.__class__.__name__


class CommandError(OrchestratorError):
    """An OS command could not be executed (missing binary, timeout)"""

    def __init__(self, message: str, argv: Optional[List[str]] = None):
        super().__init__(message)
        self.argv = argv or []


class CatalogError(OrchestratorError):
    """Service catalog file is missing or invalid"""


class StartTimeout(OrchestratorError):
    """Service did not become active within the start timeout"""


class PortNotBound(OrchestratorError):
    """Service is active but its declared ports never appeared"""

    def __init__(self, message: str, service: Optional[str] = None, ports: Optional[List[int]] = None):
        super().__init__(message, service)
        self.ports = ports or []


class FallbackExhausted(OrchestratorError):
    """Every launcher in the chain failed"""

    def __init__(self, service: str, failures: List[OrchestratorError]):
        details = "; ".join(f"{f.kind}: {f}" for f in failures)
        super().__init__(f"{service}: all launchers failed ({details})", service)
        self.failures = failures


class EssentialServiceFailed(OrchestratorError):
    """Essential service failed, the run was aborted"""


class OptionalServiceFailed(OrchestratorError):
    """Optional service failed, the run continued"""


class StopFailed(OrchestratorError):
    """Service was still active after the stop request and kill sweep"""
